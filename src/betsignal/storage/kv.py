"""
Key-value persistence.

The ledger and the saved-signal store each persist one JSON array under
their own key. The engine only talks to KeyValueStore, so the medium
(files, an embedded DB, ...) can change without touching engine logic.
"""

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

import orjson  # 2-3x faster than stdlib json
import structlog

logger = structlog.get_logger()


class KeyValueStore(ABC):
    """Minimal load/save interface over JSON-serializable values."""

    @abstractmethod
    def load(self, key: str) -> Optional[Any]:
        """
        Load the value stored under key.

        Returns:
            The decoded value, or None when absent or unreadable.
        """
        pass

    @abstractmethod
    def save(self, key: str, value: Any) -> None:
        """Persist value under key, replacing any previous value."""
        pass


class InMemoryStore(KeyValueStore):
    """Process-local store. Values are kept encoded so callers never share references."""

    def __init__(self):
        self._blobs: dict[str, bytes] = {}

    def load(self, key: str) -> Optional[Any]:
        blob = self._blobs.get(key)
        if blob is None:
            return None
        try:
            return orjson.loads(blob)
        except orjson.JSONDecodeError as e:
            logger.warning("Corrupt blob in memory store", key=key, error=str(e))
            return None

    def save(self, key: str, value: Any) -> None:
        self._blobs[key] = orjson.dumps(value)


class JsonFileStore(KeyValueStore):
    """
    One `<key>.json` file per key inside a data directory.

    Writes go to a temp file first and are swapped in with os.replace, so a
    crash mid-write leaves the previous file intact.
    """

    def __init__(self, data_dir: str = "data"):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.logger = logger.bind(component="json_file_store", data_dir=str(self.data_dir))

    def _path(self, key: str) -> Path:
        return self.data_dir / f"{key}.json"

    def load(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not path.exists():
            return None

        try:
            return orjson.loads(path.read_bytes())
        except orjson.JSONDecodeError as e:
            self.logger.warning("Corrupt store file, starting empty", key=key, error=str(e))
        except OSError as e:
            self.logger.warning("Unreadable store file, starting empty", key=key, error=str(e))
        return None

    def save(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_bytes(orjson.dumps(value))
        os.replace(tmp_path, path)
