import copy
import threading
from typing import Any, Callable, Dict, List, Optional

from services.storage.base import KeyValueStore
from utils.keyed_lock import KeyedLock


class InMemoryStore(KeyValueStore):
    """Process-local store used by tests and single-instance deployments."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Any]] = {}
        self._namespaces_lock = threading.Lock()
        self._locks = KeyedLock()

    def _namespace(self, namespace: str) -> Dict[str, Any]:
        with self._namespaces_lock:
            return self._data.setdefault(namespace, {})

    def get(self, namespace: str, key: str, default: Any = None) -> Any:
        bucket = self._namespace(namespace)
        if key not in bucket:
            return default
        return copy.deepcopy(bucket[key])

    def set(self, namespace: str, key: str, value: Any) -> None:
        with self._locks.hold((namespace, key)):
            self._namespace(namespace)[key] = copy.deepcopy(value)

    def delete(self, namespace: str, key: str) -> bool:
        with self._locks.hold((namespace, key)):
            return self._namespace(namespace).pop(key, None) is not None

    def set_if_absent(self, namespace: str, key: str, value: Any) -> Any:
        with self._locks.hold((namespace, key)):
            bucket = self._namespace(namespace)
            if key not in bucket:
                bucket[key] = copy.deepcopy(value)
            return copy.deepcopy(bucket[key])

    def update(self, namespace: str, key: str, fn: Callable[[Optional[Any]], Any]) -> Any:
        with self._locks.hold((namespace, key)):
            bucket = self._namespace(namespace)
            current = copy.deepcopy(bucket.get(key))
            replacement = fn(current)
            bucket[key] = copy.deepcopy(replacement)
            return replacement

    def keys(self, namespace: str) -> List[str]:
        return list(self._namespace(namespace).keys())
