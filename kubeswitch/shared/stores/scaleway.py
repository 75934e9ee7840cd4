"""Scaleway Kapsule kubeconfig store."""

from __future__ import annotations

import base64
from typing import Any, AsyncIterator, Dict, List, Optional

from kubeswitch.shared.config import KubeconfigStoreConfig
from kubeswitch.shared.errors import StoreInitError
from kubeswitch.shared.stores.base import BaseStore, SearchResult, StoreKind, Tags
from kubeswitch.shared.stores.http import RestClient
from kubeswitch.shared.stores.preview import render_tree

API_URL = "https://api.scaleway.com"
DEFAULT_REGION = "fr-par"
PAGE_SIZE = 100

REQUIRED_OPTIONS = ("scalewayAccessKey", "scalewaySecretKey", "scalewayOrganizationID")


class ScalewayStore(BaseStore):
    """List Kapsule clusters of every project in the organization.

    Entries are keyed by cluster name; the cluster ID, region and project
    travel in tags.
    """

    store_kind = StoreKind.SCALEWAY

    def __init__(self, store_config, switch_config, client: Optional[RestClient] = None):
        super().__init__(store_config, switch_config)
        missing = [name for name in REQUIRED_OPTIONS if not self.options.get(name)]
        if missing:
            raise StoreInitError(
                f"the Scaleway store needs {', '.join(f'config.{m}' for m in missing)}"
            )
        self.organization_id = str(self.options["scalewayOrganizationID"])
        self.region = str(self.options.get("scalewayRegion") or "")
        if not self.region:
            self.logger().warning("no region specified for Scaleway, using default %r", DEFAULT_REGION)
            self.region = DEFAULT_REGION
        self.client = client or RestClient(
            API_URL, headers={"X-Auth-Token": str(self.options["scalewaySecretKey"])}
        )

    async def _paginate(self, path: str, field: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        page = 1
        while True:
            body = await self.client.get(
                path, {**params, "page": str(page), "page_size": str(PAGE_SIZE)}
            )
            batch = (body or {}).get(field) or []
            items.extend(batch)
            if not batch or len(items) >= int((body or {}).get("total_count") or 0):
                return items
            page += 1

    async def start_search(self) -> AsyncIterator[SearchResult]:
        self.logger().debug("Scaleway: start search")
        try:
            projects = await self._paginate(
                "/account/v3/projects", "projects", {"organization_id": self.organization_id}
            )
        except Exception as exc:
            yield SearchResult(error=RuntimeError(f"could not list projects in Scaleway: {exc}"))
            return

        for project in projects:
            try:
                clusters = await self._paginate(
                    f"/k8s/v1/regions/{self.region}/clusters",
                    "clusters",
                    {"project_id": project["id"]},
                )
            except Exception as exc:
                yield SearchResult(
                    error=RuntimeError(
                        f"failed to list Kubernetes clusters for project {project.get('name')}: {exc}"
                    )
                )
                return
            if not clusters:
                self.logger().debug("no Kubernetes clusters in project %s", project.get("name"))
            for cluster in clusters:
                yield SearchResult(
                    key=cluster["name"],
                    tags={
                        "id": cluster["id"],
                        "name": cluster["name"],
                        "project": project["id"],
                        "region": str(cluster.get("region") or self.region),
                        "version": str(cluster.get("version") or ""),
                        "status": str(cluster.get("status") or ""),
                    },
                )

    async def fetch(self, key: str, tags: Tags) -> bytes:
        cluster_id = tags.get("id")
        if not cluster_id:
            raise ValueError(f"Scaleway entry {key!r} lacks the cluster ID tag")
        region = tags.get("region") or self.region
        body = await self.client.get(f"/k8s/v1/regions/{region}/clusters/{cluster_id}/kubeconfig")
        content = (body or {}).get("content")
        if not content:
            raise ValueError(f"failed to get kubeconfig for cluster {key!r}")
        return base64.b64decode(content)

    def prefix_for(self, key: str) -> str:
        return self._config.id or StoreKind.SCALEWAY.value

    async def preview(self, key: str, tags: Tags) -> str:
        labels = (("version", "Kubernetes Version"), ("status", "Status"), ("region", "Region"))
        lines = [f"{label}: {tags[tag]}" for tag, label in labels if tags.get(tag)]
        return render_tree(f"Scaleway: {tags.get('name', key)}", lines)

    async def close(self) -> None:
        await self.client.close()


def validate(store_config: KubeconfigStoreConfig) -> List[str]:
    config = store_config.config or {}
    return [
        f"config.{name}: required for the scaleway store"
        for name in REQUIRED_OPTIONS
        if not config.get(name)
    ]


STORE_KIND = StoreKind.SCALEWAY
STORE_CLASS = ScalewayStore
