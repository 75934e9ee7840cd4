"""Process-lifetime fetch cache."""

from __future__ import annotations

from typing import Dict

from kubeswitch.shared.cache import CachedStore
from kubeswitch.shared.config import CacheConfig
from kubeswitch.shared.stores.base import KubeconfigStore, Tags


class MemoryCache(CachedStore):
    def __init__(self, upstream: KubeconfigStore, cache_config: CacheConfig):
        super().__init__(upstream, cache_config)
        self._entries: Dict[str, bytes] = {}

    async def fetch(self, key: str, tags: Tags) -> bytes:
        cached = self._entries.get(key)
        if cached is not None:
            return cached
        data = await self.upstream.fetch(key, tags)
        self._entries[key] = data
        return data
