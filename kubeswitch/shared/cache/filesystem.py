"""On-disk fetch cache with content-addressed filenames."""

from __future__ import annotations

import hashlib
import os

from kubeswitch.shared.cache import CachedStore
from kubeswitch.shared.config import CacheConfig
from kubeswitch.shared.stores.base import KubeconfigStore, Tags
from kubeswitch.shared.utils import atomic_write, expand_path

CACHE_SUFFIX = ".cache"


class FilesystemCache(CachedStore):
    """Persist fetched kubeconfigs as ``<md5(key)>.<store-id>.cache`` files."""

    def __init__(self, upstream: KubeconfigStore, cache_config: CacheConfig):
        super().__init__(upstream, cache_config)
        path = cache_config.config.get("path")
        if not path:
            raise ValueError("the filesystem cache requires 'config.path'")
        self.directory = expand_path(str(path))
        os.makedirs(self.directory, mode=0o700, exist_ok=True)

    @property
    def _suffix(self) -> str:
        return f".{self.upstream.id()}{CACHE_SUFFIX}"

    def cache_file(self, key: str) -> str:
        digest = hashlib.md5(key.encode()).hexdigest()
        return os.path.join(self.directory, digest + self._suffix)

    async def fetch(self, key: str, tags: Tags) -> bytes:
        path = self.cache_file(key)
        try:
            with open(path, "rb") as handle:
                return handle.read()
        except FileNotFoundError:
            pass

        data = await self.upstream.fetch(key, tags)
        try:
            atomic_write(path, data)
        except OSError as exc:
            self.logger().warning("failed to write cache file %s: %s", path, exc)
        return data

    def flush(self) -> int:
        removed = 0
        if not os.path.isdir(self.directory):
            return removed
        for name in os.listdir(self.directory):
            if name.endswith(self._suffix):
                os.remove(os.path.join(self.directory, name))
                removed += 1
        return removed
