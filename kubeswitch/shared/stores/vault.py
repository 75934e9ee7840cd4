"""HashiCorp Vault kubeconfig store (key-value secret tree)."""

from __future__ import annotations

import asyncio
import base64
import binascii
import fnmatch
import os
from pathlib import Path
from typing import AsyncIterator, List, Optional

from kubeswitch.shared.config import KubeconfigStoreConfig
from kubeswitch.shared.errors import StoreInitError, StoreVerifyError
from kubeswitch.shared.stores.base import BaseStore, SearchResult, StoreKind, Tags
from kubeswitch.shared.stores.http import RestClient, RestError

DEFAULT_CONCURRENCY = 10

_DONE = object()


def _read_token() -> str:
    token = os.environ.get("VAULT_TOKEN")
    if token:
        return token
    token_file = Path.home() / ".vault-token"
    try:
        return token_file.read_text().strip()
    except OSError:
        return ""


def decode_secret_value(value: object) -> bytes:
    """Return the secret value, base64-decoded when it is valid base64."""
    if not isinstance(value, str):
        raise ValueError("secret value is not a string")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return value.encode()


class VaultStore(BaseStore):
    """Discover kubeconfigs stored as secrets below configured Vault paths.

    Folders (list keys ending in ``/``) are traversed recursively with at most
    ``DEFAULT_CONCURRENCY`` outstanding list requests. Every leaf secret is an
    entry whose key is its full path.
    """

    store_kind = StoreKind.VAULT

    def __init__(self, store_config, switch_config, client: Optional[RestClient] = None):
        super().__init__(store_config, switch_config)
        address = self.options.get("vaultAPIAddress") or os.environ.get("VAULT_ADDR")
        if not address and client is None:
            raise StoreInitError(
                "no Vault address configured: set 'config.vaultAPIAddress' or VAULT_ADDR"
            )
        self.engine_version = str(self.options.get("engineVersion") or "v1")
        self.client = client or RestClient(
            f"{str(address).rstrip('/')}/v1", headers={"X-Vault-Token": _read_token()}
        )
        self.search_paths: List[str] = []
        self._semaphore = asyncio.Semaphore(
            int(self.options.get("concurrency") or DEFAULT_CONCURRENCY)
        )

    def _api_path(self, path: str, operation: str) -> str:
        """Map a logical secret path to the KV engine's API path."""
        path = path.strip("/")
        if self.engine_version != "v2":
            return path
        mount, _, rest = path.partition("/")
        return f"{mount}/{operation}/{rest}".rstrip("/")

    async def verify(self) -> None:
        paths: List[str] = []
        for path in self._config.paths:
            if path in paths:
                continue
            try:
                await self.client.get(
                    self._api_path(path, "metadata"), {"list": "true"}, allow_missing=True
                )
            except RestError as exc:
                raise StoreVerifyError(f"vault path {path!r} is not readable: {exc}") from exc
            paths.append(path)
        self.search_paths = paths

    async def start_search(self) -> AsyncIterator[SearchResult]:
        queue: asyncio.Queue = asyncio.Queue()
        tasks = set()

        def spawn(path: str) -> None:
            tasks.add(asyncio.ensure_future(self._list(path, queue)))

        for path in self.search_paths or self._config.paths:
            self.logger().debug("discovering secrets from vault under path %r", path)
            spawn(path)

        pending = len(tasks)
        try:
            while pending:
                item = await queue.get()
                if item is _DONE:
                    pending -= 1
                elif isinstance(item, SearchResult):
                    yield item
                else:
                    spawn(item)
                    pending += 1
        finally:
            for task in tasks:
                task.cancel()

    async def _list(self, path: str, queue: asyncio.Queue) -> None:
        try:
            async with self._semaphore:
                response = await self.client.get(
                    self._api_path(path, "metadata"), {"list": "true"}, allow_missing=True
                )
            if not response:
                self.logger().info("no secrets found for path %s", path)
                return
            for item in (response.get("data") or {}).get("keys") or []:
                item_path = f"{path.rstrip('/')}/{item}"
                if item.endswith("/"):
                    await queue.put(item_path.rstrip("/"))
                elif item:
                    await queue.put(SearchResult(key=item_path))
        except Exception as exc:
            await queue.put(SearchResult(error=exc))
        finally:
            await queue.put(_DONE)

    async def fetch(self, key: str, tags: Tags) -> bytes:
        self.logger().debug("vault: getting secret for path %r", key)
        response = await self.client.get(self._api_path(key, "data"), allow_missing=True)
        if not response:
            raise KeyError(f"no kubeconfig found for path {key}")

        data = response.get("data") or {}
        if self.engine_version == "v2":
            data = data.get("data") or {}
        if len(data) != 1:
            raise ValueError(
                f"cannot read kubeconfig from {key!r}: only secrets with exactly one entry are supported"
            )
        secret_key, value = next(iter(data.items()))
        if not fnmatch.fnmatch(secret_key, self.kubeconfig_name):
            raise ValueError(
                f"cannot read kubeconfig from {key!r}: key {secret_key!r} does not match {self.kubeconfig_name!r}"
            )
        return decode_secret_value(value)

    def prefix_for(self, key: str) -> str:
        return os.path.basename(key.rstrip("/"))

    async def close(self) -> None:
        await self.client.close()


def validate(store_config: KubeconfigStoreConfig) -> List[str]:
    problems = []
    if not store_config.paths:
        problems.append("paths: at least one path is required for the vault store")
    engine = (store_config.config or {}).get("engineVersion")
    if engine not in (None, "v1", "v2"):
        problems.append(f"config.engineVersion: must be 'v1' or 'v2', got {engine!r}")
    return problems


STORE_KIND = StoreKind.VAULT
STORE_CLASS = VaultStore
