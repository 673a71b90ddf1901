"""
Storage port for the engine.

Every service keeps its state in namespaced key-value collections: one
aggregate per user, one bounded history per tool, one assignment per
(test, user) and so on. Any backend that provides these few atomic
operations can host the engine.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional


class KeyValueStore(ABC):
    """
    Abstract key-value store with bounded lists.

    Values must be JSON-compatible. Implementations serialize writers per
    (namespace, key) and never hold a store-wide lock, so writes to different
    keys proceed in parallel.
    """

    @abstractmethod
    def get(self, namespace: str, key: str, default: Any = None) -> Any:
        pass

    @abstractmethod
    def set(self, namespace: str, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def delete(self, namespace: str, key: str) -> bool:
        """Remove a key. Returns False when it did not exist."""
        pass

    @abstractmethod
    def set_if_absent(self, namespace: str, key: str, value: Any) -> Any:
        """
        Store ``value`` only when the key is unset.

        Returns:
            The value now stored under the key: ``value`` for the first
            writer, the earlier value for everyone else.
        """
        pass

    @abstractmethod
    def update(self, namespace: str, key: str, fn: Callable[[Optional[Any]], Any]) -> Any:
        """
        Atomic read-modify-write.

        ``fn`` receives a private copy of the current value (None when unset)
        and returns the replacement, which is written in a single step.
        Returns the stored replacement.
        """
        pass

    @abstractmethod
    def keys(self, namespace: str) -> List[str]:
        pass

    def append(self, namespace: str, key: str, item: Any, max_length: Optional[int] = None) -> int:
        """Append to the list under ``key``, evicting the oldest entries beyond ``max_length``."""
        def _append(current: Optional[List[Any]]) -> List[Any]:
            items = list(current or [])
            items.append(item)
            if max_length is not None and len(items) > max_length:
                items = items[len(items) - max_length:]
            return items

        return len(self.update(namespace, key, _append))

    def get_list(self, namespace: str, key: str) -> List[Any]:
        value = self.get(namespace, key)
        return list(value) if value else []

    def close(self) -> None:
        pass
