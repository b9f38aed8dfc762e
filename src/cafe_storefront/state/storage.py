"""Durable key-value storage backends for persisted client state.

Both backends expose the ``get_item`` / ``set_item`` / ``remove_item``
shape of browser local storage.  When a :class:`Notifier` is attached,
every write publishes a ``storage`` event carrying the changed key.
"""

from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path
from typing import Protocol

import structlog

from cafe_storefront.state.notifier import TOPIC_STORAGE, Notifier

logger = structlog.get_logger(__name__)

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


class Storage(Protocol):
    """Minimal key-value interface the bridge relies on."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryStorage:
    """Process-local storage, lost on restart."""

    def __init__(self, notifier: Notifier | None = None) -> None:
        self._items: dict[str, str] = {}
        self._notifier = notifier

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value
        if self._notifier is not None:
            self._notifier.publish(TOPIC_STORAGE, key=key)

    def remove_item(self, key: str) -> None:
        existed = self._items.pop(key, None) is not None
        if existed and self._notifier is not None:
            self._notifier.publish(TOPIC_STORAGE, key=key)


class FileStorage:
    """One file per key inside *directory*.

    Writes go through a temporary file and ``os.replace`` so a reader in
    another process never observes a half-written value.
    """

    def __init__(self, directory: str | Path, notifier: Notifier | None = None) -> None:
        self._directory = Path(directory)
        self._directory.mkdir(parents=True, exist_ok=True)
        self._notifier = notifier

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self._directory / f"{key}.json"

    def get_item(self, key: str) -> str | None:
        """Return the file text; bytes that are not UTF-8 raise ``UnicodeDecodeError``."""
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        fd, tmp_name = tempfile.mkstemp(dir=self._directory, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(value)
            os.replace(tmp_name, path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("storage_item_written", key=key, path=str(path), size=len(value))
        if self._notifier is not None:
            self._notifier.publish(TOPIC_STORAGE, key=key)

    def remove_item(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        if self._notifier is not None:
            self._notifier.publish(TOPIC_STORAGE, key=key)
