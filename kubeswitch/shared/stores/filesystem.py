"""Local filesystem kubeconfig store."""

from __future__ import annotations

import asyncio
import fnmatch
import os
from typing import AsyncIterator, List

from kubeswitch.shared.config import KubeconfigStoreConfig
from kubeswitch.shared.errors import StoreVerifyError
from kubeswitch.shared.stores.base import BaseStore, SearchResult, StoreKind, Tags
from kubeswitch.shared.utils import expand_path


class FilesystemStore(BaseStore):
    """Discover kubeconfig files below directories or as explicit files.

    Entry keys are absolute file paths; the context prefix is the name of the
    directory holding the file.
    """

    store_kind = StoreKind.FILESYSTEM

    def __init__(self, store_config, switch_config):
        super().__init__(store_config, switch_config)
        self.directories: List[str] = []
        self.files: List[str] = []

    async def verify(self) -> None:
        seen = set()
        directories: List[str] = []
        files: List[str] = []
        for raw in self._config.paths:
            path = os.path.abspath(expand_path(raw))
            if path in seen:
                continue
            seen.add(path)
            if not os.path.exists(path):
                raise StoreVerifyError(
                    f"the kubeconfig path {path!r} configured for store {self.id()} does not exist"
                )
            if os.path.isdir(path):
                directories.append(path)
            else:
                files.append(path)

        if not directories and not files:
            raise StoreVerifyError(f"store {self.id()} has no valid kubeconfig paths")
        self.directories = directories
        self.files = files

    async def start_search(self) -> AsyncIterator[SearchResult]:
        for path in self.files:
            yield SearchResult(key=path)

        for root in self.directories:
            for dirpath, dirnames, filenames in os.walk(root):
                dirnames.sort()
                for name in sorted(filenames):
                    if fnmatch.fnmatch(name, self.kubeconfig_name):
                        yield SearchResult(key=os.path.join(dirpath, name))
                # yield to the event loop between directories
                await asyncio.sleep(0)

    async def fetch(self, key: str, tags: Tags) -> bytes:
        return await asyncio.to_thread(_read_file, key)

    def prefix_for(self, key: str) -> str:
        return os.path.basename(os.path.dirname(key))


def _read_file(path: str) -> bytes:
    with open(path, "rb") as handle:
        return handle.read()


def validate(store_config: KubeconfigStoreConfig) -> List[str]:
    if not store_config.paths:
        return ["paths: at least one path is required for the filesystem store"]
    return []


STORE_KIND = StoreKind.FILESYSTEM
STORE_CLASS = FilesystemStore
