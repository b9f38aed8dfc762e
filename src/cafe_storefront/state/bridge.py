"""Persistent key-value bridge between the state stores and storage.

Lists of models are stored as JSON text inside a versioned envelope::

    {"version": 1, "items": [...]}

A bare JSON list is the legacy unversioned layout and is passed through a
per-key migration before validation.  Anything that cannot be decoded or
validated resets the key to empty.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, TypeAdapter, ValidationError

from cafe_storefront.state.storage import Storage

logger = structlog.get_logger(__name__)

CART_KEY = "cartItems"
FAVORITES_KEY = "favorites"

SCHEMA_VERSION = 1
LEGACY_VERSION = 0

M = TypeVar("M", bound=BaseModel)

Migration = Callable[[list[Any]], list[Any]]


class StateSchemaError(ValueError):
    """Raised when a persisted payload has an unrecognised layout."""


def encode_items(items: Sequence[BaseModel]) -> str:
    """Serialize *items* into the canonical envelope text."""
    payload = {
        "version": SCHEMA_VERSION,
        "items": [item.model_dump(mode="json") for item in items],
    }
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


class PersistentBridge:
    """Reads and writes model lists under well-known storage keys."""

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    def load(
        self,
        key: str,
        adapter: TypeAdapter[list[M]],
        migrate: Migration | None = None,
    ) -> list[M]:
        """Return the list stored under *key*, or ``[]``.

        Corrupted entries (undecodable bytes, bad JSON, unknown layouts,
        invalid items) are removed from storage and read as empty.
        """
        try:
            raw = self._storage.get_item(key)
            if raw is None:
                return []
            payload = json.loads(raw)
            version, entries = self._unwrap(payload)
            if version == LEGACY_VERSION and migrate is not None:
                entries = migrate(entries)
            items = adapter.validate_python(entries)
        except (ValueError, ValidationError, TypeError, KeyError, RecursionError) as exc:
            logger.warning("persisted_state_reset", key=key, error=str(exc))
            self._storage.remove_item(key)
            return []

        if version == LEGACY_VERSION:
            logger.info("persisted_state_migrated", key=key, items=len(items))
            self._storage.set_item(key, encode_items(items))

        return items

    def save(self, key: str, items: Sequence[BaseModel]) -> str:
        """Persist *items* under *key* and return the stored text."""
        text = encode_items(items)
        self._storage.set_item(key, text)
        return text

    def clear(self, key: str) -> None:
        self._storage.remove_item(key)

    def raw(self, key: str) -> str | None:
        """Return the stored text for *key* without decoding it."""
        return self._storage.get_item(key)

    @staticmethod
    def _unwrap(payload: Any) -> tuple[int, list[Any]]:
        if isinstance(payload, list):
            return LEGACY_VERSION, payload
        if isinstance(payload, dict):
            version = payload.get("version")
            items = payload.get("items")
            if version == SCHEMA_VERSION and isinstance(items, list):
                return SCHEMA_VERSION, items
            raise StateSchemaError(f"Unsupported state version: {version!r}")
        raise StateSchemaError(f"Unexpected payload type: {type(payload).__name__}")
