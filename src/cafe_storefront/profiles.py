"""Per-profile state containers.

A profile stands in for one browser profile: it owns the durable storage,
the notifier every live store instance listens on, the long-lived cart and
favorites stores served over HTTP, and the auth session.
"""

from __future__ import annotations

import re
from pathlib import Path

import structlog

from cafe_storefront.backend.auth import AuthSessionProvider
from cafe_storefront.backend.client import BackendClient
from cafe_storefront.state.bridge import PersistentBridge
from cafe_storefront.state.cart import CartStore
from cafe_storefront.state.favorites import FavoritesStore
from cafe_storefront.state.notifier import Notifier
from cafe_storefront.state.storage import FileStorage, MemoryStorage, Storage

logger = structlog.get_logger(__name__)

_PROFILE_ID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class InvalidProfileError(ValueError):
    """Raised for profile ids that cannot be used as storage names."""


class Profile:
    def __init__(
        self,
        profile_id: str,
        storage: Storage,
        notifier: Notifier,
        backend: BackendClient,
    ) -> None:
        self.id = profile_id
        self.notifier = notifier
        self.bridge = PersistentBridge(storage)
        self.cart = CartStore(self.bridge, notifier, instance_id=f"{profile_id}:cart")
        self.favorites = FavoritesStore(self.bridge, notifier, instance_id=f"{profile_id}:favorites")
        self.auth = AuthSessionProvider(backend)

    def open_cart(self) -> CartStore:
        """A fresh cart instance on the same storage, like a new tab."""
        return CartStore(self.bridge, self.notifier)

    def close(self) -> None:
        self.cart.close()
        self.favorites.close()
        self.notifier.close()


class ProfileRegistry:
    """Creates profiles lazily and keeps them for the process lifetime."""

    def __init__(
        self,
        backend: BackendClient,
        storage_dir: str = "",
        event_queue_size: int = 256,
    ) -> None:
        self._backend = backend
        self._storage_dir = Path(storage_dir) if storage_dir else None
        self._queue_size = event_queue_size
        self._profiles: dict[str, Profile] = {}

    def get(self, profile_id: str) -> Profile:
        profile = self._profiles.get(profile_id)
        if profile is not None:
            return profile

        if not _PROFILE_ID.match(profile_id):
            raise InvalidProfileError(f"Invalid profile id: {profile_id!r}")

        notifier = Notifier(max_queue_size=self._queue_size)
        storage: Storage
        if self._storage_dir is not None:
            storage = FileStorage(self._storage_dir / profile_id, notifier=notifier)
        else:
            storage = MemoryStorage(notifier=notifier)

        profile = Profile(profile_id, storage, notifier, self._backend)
        self._profiles[profile_id] = profile
        logger.info("profile_opened", profile_id=profile_id, durable=self._storage_dir is not None)
        return profile

    def close_all(self) -> None:
        for profile in self._profiles.values():
            profile.close()
        self._profiles.clear()
