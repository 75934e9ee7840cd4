"""Rancher kubeconfig store using the Rancher v3 management API."""

from __future__ import annotations

from typing import AsyncIterator, List, Optional

from kubeswitch.shared.config import KubeconfigStoreConfig
from kubeswitch.shared.errors import StoreInitError
from kubeswitch.shared.stores.base import BaseStore, SearchResult, StoreKind, Tags
from kubeswitch.shared.stores.http import RestClient

LOCAL_CLUSTER_ID = "local"


class RancherStore(BaseStore):
    """Every Rancher-managed cluster is one entry keyed by its cluster ID.

    The ``local`` cluster is keyed by the store ID instead so it stays
    distinguishable across several Rancher stores.
    """

    store_kind = StoreKind.RANCHER

    def __init__(self, store_config, switch_config, client: Optional[RestClient] = None):
        super().__init__(store_config, switch_config)
        address = self.options.get("rancherAPIAddress")
        token = self.options.get("rancherToken")
        if client is None and (not address or not token):
            raise StoreInitError(
                "the Rancher store needs 'config.rancherAPIAddress' and 'config.rancherToken'"
            )
        self.client = client or RestClient(
            str(address), headers={"Authorization": f"Bearer {token}"}
        )

    async def start_search(self) -> AsyncIterator[SearchResult]:
        self.logger().debug("Rancher: start search")
        try:
            body = await self.client.get("/v3/clusters")
        except Exception as exc:
            yield SearchResult(error=RuntimeError(f"failed to list Rancher clusters: {exc}"))
            return
        for cluster in (body or {}).get("data") or []:
            cluster_id = cluster["id"]
            key = self.id() if cluster_id == LOCAL_CLUSTER_ID else cluster_id
            yield SearchResult(key=key, tags={"id": cluster_id, "name": cluster.get("name", "")})

    async def fetch(self, key: str, tags: Tags) -> bytes:
        cluster_id = tags.get("id") or (LOCAL_CLUSTER_ID if key == self.id() else key)
        body = await self.client.post(
            f"/v3/clusters/{cluster_id}", {"action": "generateKubeconfig"}
        )
        config = (body or {}).get("config")
        if not config:
            raise ValueError(f"Rancher returned no kubeconfig for cluster {cluster_id!r}")
        return config.encode()

    def prefix_for(self, key: str) -> str:
        return key

    async def close(self) -> None:
        await self.client.close()


def validate(store_config: KubeconfigStoreConfig) -> List[str]:
    config = store_config.config or {}
    problems = []
    if not config.get("rancherAPIAddress"):
        problems.append("config.rancherAPIAddress: required for the rancher store")
    if not config.get("rancherToken"):
        problems.append("config.rancherToken: required for the rancher store")
    return problems


STORE_KIND = StoreKind.RANCHER
STORE_CLASS = RancherStore
