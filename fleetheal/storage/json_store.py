"""
JSON Store with Atomic Writes
=============================

Thread-safe named JSON documents under one directory:
- one lock per document, so writers to different documents never contend
- atomic replace on every write
- list documents with bounded append and in-place update by id
- an unreadable list document is moved aside, never overwritten
"""

import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import orjson

from fleetheal.core.exceptions import CorruptStateError, StorageError
from fleetheal.core.logging import get_logger
from fleetheal.storage.atomic import atomic_write

logger = get_logger("fleetheal.storage.json_store")

JSONDocument = dict[str, Any] | list[Any]


class JSONStore:
    """
    Example:
        >>> store = JSONStore(base_dir=".fleetheal/state")
        >>> store.save("delta_cache", {"flagged_nodes": ["DC02"]})
        >>> store.load("delta_cache")
        {'flagged_nodes': ['DC02']}
    """

    def __init__(self, base_dir: Path | str = ".fleetheal/state") -> None:
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

        self._locks: dict[str, threading.Lock] = {}
        self._global_lock = threading.Lock()

    def _get_lock(self, name: str) -> threading.Lock:
        with self._global_lock:
            if name not in self._locks:
                self._locks[name] = threading.Lock()
            return self._locks[name]

    def path_for(self, name: str) -> Path:
        return self.base_dir / f"{name}.json"

    def _read(self, name: str, strict: bool = False) -> JSONDocument | None:
        """
        Read a document. Missing documents are None.

        An unreadable document is None as well unless ``strict``, in which
        case CorruptStateError is raised so the caller can refuse to proceed.
        """
        path = self.path_for(name)
        if not path.exists():
            return None
        try:
            data = orjson.loads(path.read_bytes())
        except (OSError, orjson.JSONDecodeError) as e:
            if strict:
                raise CorruptStateError(name, str(e), cause=e) from e
            logger.error("Failed to read document, treating as absent", document=name, error=str(e))
            return None
        if not isinstance(data, (dict, list)):
            if strict:
                raise CorruptStateError(name, f"unexpected top-level {type(data).__name__}")
            return None
        return data

    def _write(self, name: str, data: JSONDocument) -> None:
        content = orjson.dumps(data, option=orjson.OPT_INDENT_2, default=str)
        atomic_write(self.path_for(name), content)

    def _quarantine(self, name: str) -> Path:
        """Move an unreadable document aside so it is never overwritten."""
        path = self.path_for(name)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        target = path.with_name(f"{name}.corrupt-{stamp}.json")
        counter = 1
        while target.exists():
            target = path.with_name(f"{name}.corrupt-{stamp}-{counter}.json")
            counter += 1
        try:
            os.replace(path, target)
        except OSError as e:
            raise StorageError(name, f"cannot move corrupt document aside: {e}", cause=e) from e
        return target

    def save(self, name: str, data: JSONDocument) -> None:
        with self._get_lock(name):
            self._write(name, data)

    def load(
        self, name: str, default: JSONDocument | None = None, strict: bool = False
    ) -> JSONDocument | None:
        data = self._read(name, strict=strict)
        return default if data is None else data

    def append(self, name: str, item: dict[str, Any], max_items: int | None = None) -> None:
        """
        Append to a list document, keeping only the newest ``max_items``.

        A document that cannot be parsed as a list is moved aside to
        ``<name>.corrupt-<timestamp>.json`` and a new list is started.
        """
        with self._get_lock(name):
            try:
                data = self._read(name, strict=True)
            except CorruptStateError as e:
                data = None
                moved_to = self._quarantine(name)
                logger.error(
                    "Corrupt list document moved aside",
                    document=name,
                    moved_to=str(moved_to),
                    error=e.details["reason"],
                )
            if isinstance(data, dict):
                moved_to = self._quarantine(name)
                logger.error(
                    "List document held an object, moved aside", document=name, moved_to=str(moved_to)
                )
                data = None
            items = data if isinstance(data, list) else []
            items.append(item)
            if max_items is not None and len(items) > max_items:
                items = items[-max_items:]
            self._write(name, items)

    def update(self, name: str, item_id: str, updates: dict[str, Any], id_field: str = "id") -> bool:
        """Update the first item of a list document whose ``id_field`` matches."""
        with self._get_lock(name):
            data = self._read(name)
            if not isinstance(data, list):
                return False

            for item in data:
                if isinstance(item, dict) and item.get(id_field) == item_id:
                    item.update(updates)
                    self._write(name, data)
                    return True
            return False
