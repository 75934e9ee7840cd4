"""OVHcloud Managed Kubernetes kubeconfig store."""

from __future__ import annotations

import hashlib
import time
from typing import AsyncIterator, Dict, List, Optional

from kubeswitch.shared.config import KubeconfigStoreConfig
from kubeswitch.shared.errors import StoreInitError
from kubeswitch.shared.stores.base import BaseStore, SearchResult, StoreKind, Tags
from kubeswitch.shared.stores.http import RestClient, Signer

DEFAULT_ENDPOINT = "ovh-eu"
ENDPOINTS = {
    "ovh-eu": "https://eu.api.ovh.com/1.0",
    "ovh-ca": "https://ca.api.ovh.com/1.0",
    "ovh-us": "https://api.us.ovhcloud.com/1.0",
}

REQUIRED_OPTIONS = ("ovhApplicationKey", "ovhApplicationSecret", "ovhConsumerKey")


def request_signer(application_key: str, application_secret: str, consumer_key: str) -> Signer:
    """Sign each request with OVH's ``$1$`` SHA1 scheme."""

    def sign(method: str, url: str, params: Optional[Dict[str, str]], body: str) -> Dict[str, str]:
        timestamp = str(int(time.time()))
        digest = hashlib.sha1(
            "+".join(
                [application_secret, consumer_key, method.upper(), url, body, timestamp]
            ).encode()
        ).hexdigest()
        return {
            "X-Ovh-Application": application_key,
            "X-Ovh-Consumer": consumer_key,
            "X-Ovh-Timestamp": timestamp,
            "X-Ovh-Signature": f"$1${digest}",
        }

    return sign


class OVHStore(BaseStore):
    store_kind = StoreKind.OVH

    def __init__(self, store_config, switch_config, client: Optional[RestClient] = None):
        super().__init__(store_config, switch_config)
        if client is None:
            missing = [name for name in REQUIRED_OPTIONS if not self.options.get(name)]
            if missing:
                raise StoreInitError(
                    f"the OVH store needs {', '.join(f'config.{m}' for m in missing)}"
                )
            endpoint = str(self.options.get("ovhEndpoint") or DEFAULT_ENDPOINT)
            client = RestClient(
                ENDPOINTS.get(endpoint, endpoint),
                signer=request_signer(*(str(self.options[name]) for name in REQUIRED_OPTIONS)),
            )
        self.client = client

    async def start_search(self) -> AsyncIterator[SearchResult]:
        self.logger().debug("OVH: start search")
        try:
            projects = await self.client.get("/cloud/project") or []
            for project in projects:
                for cluster_id in await self.client.get(f"/cloud/project/{project}/kube") or []:
                    kube = await self.client.get(f"/cloud/project/{project}/kube/{cluster_id}") or {}
                    yield SearchResult(
                        key=kube.get("name") or cluster_id,
                        tags={
                            "id": str(kube.get("id") or cluster_id),
                            "project": str(project),
                            "region": str(kube.get("region") or ""),
                            "version": str(kube.get("version") or ""),
                        },
                    )
        except Exception as exc:
            yield SearchResult(error=RuntimeError(f"failed to list OVH Kubernetes clusters: {exc}"))

    async def fetch(self, key: str, tags: Tags) -> bytes:
        project, cluster_id = tags.get("project"), tags.get("id")
        if not project or not cluster_id:
            raise ValueError(f"OVH entry {key!r} lacks the project or cluster ID tag")
        body = await self.client.post(f"/cloud/project/{project}/kube/{cluster_id}/kubeconfig")
        content = (body or {}).get("content")
        if not content:
            raise ValueError(f"failed to get kubeconfig for cluster {key!r}")
        return content.encode()

    def prefix_for(self, key: str) -> str:
        return self._config.id or StoreKind.OVH.value

    async def close(self) -> None:
        await self.client.close()


def validate(store_config: KubeconfigStoreConfig) -> List[str]:
    config = store_config.config or {}
    return [
        f"config.{name}: required for the ovh store"
        for name in REQUIRED_OPTIONS
        if not config.get(name)
    ]


STORE_KIND = StoreKind.OVH
STORE_CLASS = OVHStore
