"""Akamai (Linode) LKE kubeconfig store."""

from __future__ import annotations

import base64
import os
from typing import AsyncIterator, List, Optional

from kubeswitch.shared.config import KubeconfigStoreConfig
from kubeswitch.shared.stores.base import BaseStore, SearchResult, StoreKind, Tags
from kubeswitch.shared.stores.http import RestClient
from kubeswitch.shared.stores.preview import render_tree

API_URL = "https://api.linode.com/v4"
TOKEN_ENV = "LINODE_TOKEN"


class AkamaiStore(BaseStore):
    """List LKE clusters keyed by label.

    The API token comes from ``config.linodeToken`` or ``$LINODE_TOKEN`` and
    is only required once the store is searched.
    """

    store_kind = StoreKind.AKAMAI

    def __init__(self, store_config, switch_config, client: Optional[RestClient] = None):
        super().__init__(store_config, switch_config)
        self._client = client

    def client(self) -> RestClient:
        if self._client is None:
            token = self.options.get("linodeToken") or os.environ.get(TOKEN_ENV)
            if not token:
                raise RuntimeError("linode token not set")
            self._client = RestClient(API_URL, headers={"Authorization": f"Bearer {token}"})
        return self._client

    async def start_search(self) -> AsyncIterator[SearchResult]:
        self.logger().debug("Akamai: start search")
        page = 1
        while True:
            try:
                body = await self.client().get("/lke/clusters", {"page": str(page)})
            except Exception as exc:
                yield SearchResult(error=RuntimeError(f"failed to list LKE clusters: {exc}"))
                return
            for cluster in (body or {}).get("data") or []:
                yield SearchResult(
                    key=cluster["label"],
                    tags={
                        "clusterID": str(cluster["id"]),
                        "region": str(cluster.get("region") or ""),
                        "version": str(cluster.get("k8s_version") or ""),
                        "status": str(cluster.get("status") or ""),
                    },
                )
            if page >= int((body or {}).get("pages") or 1):
                return
            page += 1

    async def fetch(self, key: str, tags: Tags) -> bytes:
        cluster_id = tags.get("clusterID")
        if not cluster_id or not cluster_id.isdigit():
            raise ValueError(f"LKE entry {key!r} has no valid clusterID tag")
        body = await self.client().get(f"/lke/clusters/{cluster_id}/kubeconfig")
        encoded = (body or {}).get("kubeconfig")
        if not encoded:
            raise ValueError(f"LKE returned no kubeconfig for cluster {key!r}")
        return base64.b64decode(encoded)

    def prefix_for(self, key: str) -> str:
        return f"{StoreKind.AKAMAI.value}_{key}"

    async def preview(self, key: str, tags: Tags) -> str:
        labels = (("version", "Kubernetes Version"), ("status", "Status"), ("region", "Region"))
        lines = [f"{label}: {tags[tag]}" for tag, label in labels if tags.get(tag)]
        return render_tree(f"LKE: {key}", lines)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()


def validate(store_config: KubeconfigStoreConfig) -> List[str]:
    return []


STORE_KIND = StoreKind.AKAMAI
STORE_CLASS = AkamaiStore
