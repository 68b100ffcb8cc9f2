"""Device-local key/value storage used for the guest cart blob."""

import json
import threading
from pathlib import Path
from typing import Dict, Optional

from errors import CapabilityError


class MemoryLocalCache:
    """Dict-backed cache, safe to share between request threads."""

    def __init__(self):
        self._items: Dict[str, str] = {}
        self._lock = threading.RLock()

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = value

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)


class FileLocalCache(MemoryLocalCache):
    """Keeps every item in one JSON file, rewritten on each mutation."""

    def __init__(self, path):
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            try:
                self._items = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                raise CapabilityError(f"Could not read local cache {self.path}: {e}") from e

    def _flush(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(self._items), encoding="utf-8")
        except OSError as e:
            raise CapabilityError(f"Could not write local cache {self.path}: {e}") from e

    def set_item(self, key, value):
        with self._lock:
            super().set_item(key, value)
            self._flush()

    def remove_item(self, key):
        with self._lock:
            super().remove_item(key)
            self._flush()


class NamespacedCache:
    """View of a shared cache where every key is prefixed, one namespace per device."""

    def __init__(self, cache, namespace: str):
        self.cache = cache
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def get_item(self, key):
        return self.cache.get_item(self._key(key))

    def set_item(self, key, value):
        self.cache.set_item(self._key(key), value)

    def remove_item(self, key):
        self.cache.remove_item(self._key(key))
