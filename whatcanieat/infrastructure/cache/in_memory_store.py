"""
In-memory key-value store.

Process-local implementation of ICacheStore, used by default and in tests.
"""

from typing import Dict, List, Optional, Sequence


class InMemoryCacheStore:
    """
    Dict-backed async key-value store.

    Example:
        >>> store = InMemoryCacheStore()
        >>> await store.set("menu_analysis_cache_abc", "{}")
        >>> await store.keys("menu_analysis_cache_")
        ['menu_analysis_cache_abc']
    """

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> List[str]:
        return [key for key in self._data if key.startswith(prefix)]

    async def delete_many(self, keys: Sequence[str]) -> int:
        removed = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                removed += 1
        return removed

    def size(self) -> int:
        """Number of stored keys."""
        return len(self._data)
