"""Favorites state machine: a set of products unique by id."""

from __future__ import annotations

import uuid

import structlog
from pydantic import TypeAdapter

from cafe_storefront.models import FavoritesSnapshot, Product, StateEvent
from cafe_storefront.state.bridge import FAVORITES_KEY, PersistentBridge
from cafe_storefront.state.notifier import TOPIC_FAVORITES_UPDATED, TOPIC_STORAGE, Notifier

logger = structlog.get_logger(__name__)

_PRODUCTS = TypeAdapter(list[Product])


class FavoritesStore:
    """Favorited products for one profile, persisted under ``favorites``."""

    def __init__(
        self,
        bridge: PersistentBridge,
        notifier: Notifier,
        instance_id: str | None = None,
    ) -> None:
        self._bridge = bridge
        self._notifier = notifier
        self.instance_id = instance_id or f"favorites-{uuid.uuid4().hex[:8]}"
        self._items: list[Product] = []

        self._unsubscribe = [
            notifier.subscribe(TOPIC_FAVORITES_UPDATED, self._on_favorites_updated, owner=self.instance_id),
            notifier.subscribe(TOPIC_STORAGE, self._on_storage, owner=self.instance_id),
        ]
        self.reload()

    @property
    def items(self) -> list[Product]:
        return list(self._items)

    def snapshot(self) -> FavoritesSnapshot:
        return FavoritesSnapshot(items=self.items, total=len(self._items))

    def is_favorite(self, product_id: str) -> bool:
        return any(product.id == product_id for product in self._items)

    def add(self, product: Product) -> FavoritesSnapshot:
        if self.is_favorite(product.id):
            return self.snapshot()
        self._commit([*self._items, product])
        logger.info("favorite_added", product_id=product.id)
        return self.snapshot()

    def remove(self, product_id: str) -> FavoritesSnapshot:
        if not self.is_favorite(product_id):
            return self.snapshot()
        self._commit([product for product in self._items if product.id != product_id])
        logger.info("favorite_removed", product_id=product_id)
        return self.snapshot()

    def toggle(self, product: Product) -> bool:
        """Flip membership of *product* and return the new membership."""
        if self.is_favorite(product.id):
            self.remove(product.id)
            return False
        self.add(product)
        return True

    def clear(self) -> FavoritesSnapshot:
        self._items = []
        self._bridge.clear(FAVORITES_KEY)
        self._notifier.publish(TOPIC_FAVORITES_UPDATED, key=FAVORITES_KEY, origin=self.instance_id)
        logger.info("favorites_cleared", instance=self.instance_id)
        return self.snapshot()

    def reload(self) -> None:
        self._items = self._bridge.load(FAVORITES_KEY, _PRODUCTS)

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

    def _on_favorites_updated(self, event: StateEvent) -> None:
        self.reload()

    def _on_storage(self, event: StateEvent) -> None:
        if event.key in (None, FAVORITES_KEY):
            self.reload()

    def _commit(self, items: list[Product]) -> None:
        self._items = items
        self._bridge.save(FAVORITES_KEY, items)
        self._notifier.publish(TOPIC_FAVORITES_UPDATED, key=FAVORITES_KEY, origin=self.instance_id)
