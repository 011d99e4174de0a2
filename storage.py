"""Durable string-keyed store backing all persisted companion state."""
from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

LOGGER = logging.getLogger(__name__)


class KeyValueStore:
    """Small JSON-file key/value store.

    The whole document is loaded once at construction and rewritten on every
    mutation. Write failures are logged and the in-memory value is kept, so the
    session stays consistent and only durability is lost.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = Path(path) if path is not None else None
        self._data: Dict[str, Any] = self._load()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._save()

    def update(self, values: Dict[str, Any]) -> None:
        """Set several keys with a single write."""
        self._data.update(values)
        self._save()

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._data))

    def _load(self) -> Dict[str, Any]:
        if self._path is None or not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, ValueError):
            LOGGER.warning("Unreadable state file %s; starting empty", self._path, exc_info=True)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("State file %s does not hold an object; starting empty", self._path)
            return {}
        LOGGER.debug("Loaded %d persisted keys from %s", len(payload), self._path)
        return payload

    def _save(self) -> None:
        """Replace the file atomically; a failed write leaves the previous document intact."""
        if self._path is None:
            return
        temp_name: Optional[str] = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=str(self._path.parent),
                prefix=f".{self._path.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                temp_name = handle.name
                json.dump(self._data, handle, indent=2, sort_keys=True)
            os.replace(temp_name, self._path)
            temp_name = None
        except (OSError, TypeError, ValueError):
            LOGGER.exception("Failed to persist state to %s", self._path)
        finally:
            if temp_name is not None:
                _discard(temp_name)


def _discard(temp_name: str) -> None:
    try:
        os.unlink(temp_name)
    except OSError:
        LOGGER.warning("Could not remove temporary state file %s", temp_name)
