"""DigitalOcean Kubernetes (DOKS) kubeconfig store."""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional

import yaml

from kubeswitch.shared.config import KubeconfigStoreConfig
from kubeswitch.shared.errors import StoreInitError
from kubeswitch.shared.stores.base import BaseStore, SearchResult, StoreKind, Tags
from kubeswitch.shared.stores.http import RestClient
from kubeswitch.shared.stores.preview import render_tree
from kubeswitch.shared.utils import expand_path

DEFAULT_API_URL = "https://api.digitalocean.com"
PAGE_SIZE = 200

TAG_CLUSTER_ID = "id"
TAG_CONTEXT = "ctx"
TAG_NAME = "name"
TAG_REGION = "region"
TAG_VERSION = "version"
TAG_NODE_POOLS = "pools"


def default_doctl_config_path() -> str:
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return os.path.join(base, "doctl", "config.yaml")


@dataclass
class DoctlConfig:
    """The parts of doctl's ``config.yaml`` the store uses."""

    default_context: str = "default"
    access_token: str = ""
    auth_contexts: Dict[str, str] = field(default_factory=dict)
    api_url: str = DEFAULT_API_URL
    http_retry_max: int = 0
    http_retry_wait_min: float = 0
    http_retry_wait_max: float = 0

    @classmethod
    def load(cls, path: str) -> "DoctlConfig":
        with open(path, "r") as handle:
            data = yaml.safe_load(handle) or {}
        return cls(
            default_context=str(data.get("context") or "default"),
            access_token=str(data.get("access-token") or ""),
            auth_contexts={str(k): str(v) for k, v in (data.get("auth-contexts") or {}).items()},
            api_url=str(data.get("api-url") or DEFAULT_API_URL),
            http_retry_max=int(data.get("http-retry-max") or 0),
            http_retry_wait_min=float(data.get("http-retry-wait-min") or 0),
            http_retry_wait_max=float(data.get("http-retry-wait-max") or 0),
        )

    def tokens(self) -> Dict[str, str]:
        tokens = {}
        if self.access_token:
            tokens[self.default_context] = self.access_token
        for name, token in self.auth_contexts.items():
            if token:
                tokens[name] = token
        return tokens


def cluster_key(context: str, region: str, name: str) -> str:
    return f"do_{context}--{region}--{name}"


class DigitalOceanStore(BaseStore):
    """List DOKS clusters for every doctl auth context.

    Cluster IDs and the doctl context are carried in tags; fetch never needs
    to parse the entry key.
    """

    store_kind = StoreKind.DIGITALOCEAN

    def __init__(self, store_config, switch_config, doctl: Optional[DoctlConfig] = None):
        super().__init__(store_config, switch_config)
        if doctl is None:
            path = expand_path(str(self.options.get("doctlConfigPath") or default_doctl_config_path()))
            try:
                doctl = DoctlConfig.load(path)
            except (OSError, yaml.YAMLError) as exc:
                raise StoreInitError(f"failed to read doctl config {path!r}: {exc}") from exc
        self.doctl = doctl
        self._clients: Dict[str, RestClient] = {}

    def client(self, context: str) -> RestClient:
        client = self._clients.get(context)
        if client is None:
            token = self.doctl.tokens().get(context)
            if not token:
                raise KeyError(f"no access token for doctl context {context!r}")
            kwargs = {}
            if self.doctl.http_retry_max > 0:
                kwargs["max_retries"] = self.doctl.http_retry_max
            if self.doctl.http_retry_wait_min > 0:
                kwargs["retry_wait_min"] = self.doctl.http_retry_wait_min
            if self.doctl.http_retry_wait_max > 0:
                kwargs["retry_wait_max"] = self.doctl.http_retry_wait_max
            client = RestClient(
                self.doctl.api_url,
                headers={
                    "Authorization": f"Bearer {token}",
                    "User-Agent": "kubeswitch-client",
                },
                **kwargs,
            )
            self._clients[context] = client
        return client

    async def _list_clusters(self, context: str) -> List[SearchResult]:
        client = self.client(context)
        results: List[SearchResult] = []
        page = 1
        while True:
            body = await client.get(
                "/v2/kubernetes/clusters", {"page": str(page), "per_page": str(PAGE_SIZE)}
            )
            for cluster in (body or {}).get("kubernetes_clusters") or []:
                pools = " ".join(p.get("name", "") for p in cluster.get("node_pools") or [])
                results.append(
                    SearchResult(
                        key=cluster_key(context, cluster.get("region", ""), cluster["name"]),
                        tags={
                            TAG_CLUSTER_ID: cluster["id"],
                            TAG_CONTEXT: context,
                            TAG_NAME: cluster["name"],
                            TAG_REGION: cluster.get("region", ""),
                            TAG_VERSION: cluster.get("version", ""),
                            TAG_NODE_POOLS: f"[{pools}]",
                        },
                    )
                )
            if not ((body or {}).get("links") or {}).get("pages", {}).get("next"):
                return results
            page += 1

    async def start_search(self) -> AsyncIterator[SearchResult]:
        contexts = list(self.doctl.tokens())
        if not contexts:
            yield SearchResult(error=RuntimeError("no doctl access tokens configured"))
            return

        tasks = {ctx: asyncio.ensure_future(self._list_clusters(ctx)) for ctx in contexts}
        try:
            for ctx, task in tasks.items():
                self.logger().debug("listing DOKS clusters for context %r", ctx)
                try:
                    for result in await task:
                        yield result
                except Exception as exc:
                    yield SearchResult(
                        error=RuntimeError(f"error listing DOKS clusters for context {ctx}: {exc}")
                    )
        finally:
            for task in tasks.values():
                task.cancel()

    async def fetch(self, key: str, tags: Tags) -> bytes:
        cluster_id, context = tags.get(TAG_CLUSTER_ID), tags.get(TAG_CONTEXT)
        if not cluster_id or not context:
            raise ValueError(
                f"DOKS entry {key!r} lacks the cluster ID or doctl context in its tags: {tags}"
            )
        text = await self.client(context).get_text(f"/v2/kubernetes/clusters/{cluster_id}/kubeconfig")
        return text.encode()

    def prefix_for(self, key: str) -> str:
        context = key[len("do_"):].split("--", 1)[0] if key.startswith("do_") else key
        return f"do_{context}"

    async def preview(self, key: str, tags: Tags) -> str:
        labels = (
            (TAG_CLUSTER_ID, "ID"),
            (TAG_CONTEXT, "doctl context"),
            (TAG_VERSION, "Kubernetes Version"),
            (TAG_REGION, "Region"),
            (TAG_NODE_POOLS, "Node Pools"),
        )
        lines = [f"{label}: {tags[tag]}" for tag, label in labels if tags.get(tag)]
        return render_tree(f"DOKS: {tags.get(TAG_NAME, key)}", lines)

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()


def validate(store_config: KubeconfigStoreConfig) -> List[str]:
    return []


STORE_KIND = StoreKind.DIGITALOCEAN
STORE_CLASS = DigitalOceanStore
