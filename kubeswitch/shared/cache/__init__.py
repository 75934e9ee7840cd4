"""Fetch caches that wrap kubeconfig stores."""

from __future__ import annotations

import logging
from typing import AsyncIterator, Callable, Dict, Iterable, Optional, Protocol, runtime_checkable

from kubeswitch.shared.config import CacheConfig, KubeconfigStoreConfig
from kubeswitch.shared.errors import UnknownStoreKindError
from kubeswitch.shared.stores.base import KubeconfigStore, SearchResult, Tags

CacheFactory = Callable[[KubeconfigStore, CacheConfig], KubeconfigStore]


@runtime_checkable
class Flushable(Protocol):
    """Caches that can drop their persisted entries."""

    def flush(self) -> int:
        """Remove cached entries and return how many were removed."""


class CachedStore:
    """Forward every store operation to ``upstream``; subclasses override fetch."""

    def __init__(self, upstream: KubeconfigStore, cache_config: CacheConfig):
        self.upstream = upstream
        self.cache_config = cache_config

    def id(self) -> str:
        return self.upstream.id()

    def kind(self) -> str:
        return self.upstream.kind()

    async def verify(self) -> None:
        await self.upstream.verify()

    def context_prefix(self, key: str) -> str:
        return self.upstream.context_prefix(key)

    def start_search(self) -> AsyncIterator[SearchResult]:
        return self.upstream.start_search()

    async def fetch(self, key: str, tags: Tags) -> bytes:
        return await self.upstream.fetch(key, tags)

    def logger(self) -> logging.Logger:
        return self.upstream.logger()

    def config(self) -> KubeconfigStoreConfig:
        return self.upstream.config()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} of {self.upstream!r}>"


class CacheRegistry:
    def __init__(self):
        self._caches: Dict[str, CacheFactory] = {}

    def register(self, kind: str, factory: CacheFactory) -> None:
        self._caches[kind] = factory

    def has_kind(self, kind: str) -> bool:
        return kind in self._caches

    def available_kinds(self) -> Iterable[str]:
        return self._caches.keys()

    def create(self, store: KubeconfigStore, cache_config: CacheConfig) -> KubeconfigStore:
        factory = self._caches.get(cache_config.kind)
        if factory is None:
            raise UnknownStoreKindError(f"unknown cache kind {cache_config.kind!r}")
        return factory(store, cache_config)


_REGISTRY: Optional[CacheRegistry] = None


def get_cache_registry() -> CacheRegistry:
    global _REGISTRY
    if _REGISTRY is None:
        from kubeswitch.shared.cache.filesystem import FilesystemCache
        from kubeswitch.shared.cache.memory import MemoryCache

        _REGISTRY = CacheRegistry()
        _REGISTRY.register("memory", MemoryCache)
        _REGISTRY.register("filesystem", FilesystemCache)
    return _REGISTRY


def register_cache(kind: str, factory: CacheFactory) -> None:
    get_cache_registry().register(kind, factory)


def wrap_store(store: KubeconfigStore, cache_config: CacheConfig) -> KubeconfigStore:
    return get_cache_registry().create(store, cache_config)


__all__ = [
    "CachedStore",
    "CacheRegistry",
    "Flushable",
    "get_cache_registry",
    "register_cache",
    "wrap_store",
]
