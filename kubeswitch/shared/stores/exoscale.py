"""Exoscale SKS kubeconfig store."""

from __future__ import annotations

import base64
import hashlib
import hmac
import time
from typing import AsyncIterator, Dict, List, Optional
from urllib.parse import urlparse

from kubeswitch.shared.config import KubeconfigStoreConfig
from kubeswitch.shared.errors import StoreInitError
from kubeswitch.shared.stores.base import BaseStore, SearchResult, StoreKind, Tags
from kubeswitch.shared.stores.http import RestClient, Signer
from kubeswitch.shared.stores.preview import render_tree

API_URL = "https://api-ch-gva-2.exoscale.com/v2"
SIGNATURE_TTL = 600
KUBECONFIG_TTL = 2592000
KUBECONFIG_REQUEST = {"user": "default", "groups": ["system:masters"], "ttl": KUBECONFIG_TTL}


def request_signer(api_key: str, secret_key: str) -> Signer:
    """Build the ``EXO2-HMAC-SHA256`` Authorization header for each request."""

    def sign(method: str, url: str, params: Optional[Dict[str, str]], body: str) -> Dict[str, str]:
        expires = int(time.time()) + SIGNATURE_TTL
        names = sorted(params or {})
        message = "\n".join(
            [
                f"{method} {urlparse(url).path}",
                body,
                "".join(str(params[name]) for name in names),
                "",
                str(expires),
            ]
        )
        signature = base64.b64encode(
            hmac.new(secret_key.encode(), message.encode(), hashlib.sha256).digest()
        ).decode()
        header = f"EXO2-HMAC-SHA256 credential={api_key}"
        if names:
            header += f",signed-query-args={';'.join(names)}"
        header += f",expires={expires},signature={signature}"
        return {"Authorization": header}

    return sign


def cluster_key(zone: str, name: str) -> str:
    return f"{zone}/{name}"


class ExoscaleStore(BaseStore):
    """List SKS clusters in every Exoscale zone.

    A zone that fails to list is logged and skipped; the others still report.
    """

    store_kind = StoreKind.EXOSCALE

    def __init__(self, store_config, switch_config):
        super().__init__(store_config, switch_config)
        api_key = self.options.get("exoscaleAPIKey")
        secret_key = self.options.get("exoscaleSecretKey")
        if not api_key or not secret_key:
            raise StoreInitError(
                "the Exoscale store needs 'config.exoscaleAPIKey' and 'config.exoscaleSecretKey'"
            )
        self._signer = request_signer(str(api_key), str(secret_key))
        self._clients: Dict[str, RestClient] = {}

    def client(self, endpoint: str = API_URL) -> RestClient:
        client = self._clients.get(endpoint)
        if client is None:
            client = RestClient(endpoint, signer=self._signer)
            self._clients[endpoint] = client
        return client

    async def start_search(self) -> AsyncIterator[SearchResult]:
        self.logger().debug("Exoscale: start search")
        try:
            body = await self.client().get("/zone")
        except Exception as exc:
            yield SearchResult(error=RuntimeError(f"failed to list Exoscale zones: {exc}"))
            return

        for zone in (body or {}).get("zones") or []:
            zone_name, endpoint = zone.get("name", ""), zone.get("api-endpoint", "")
            try:
                listing = await self.client(endpoint).get("/sks-cluster")
            except Exception as exc:
                self.logger().warning("failed to list SKS clusters for zone %s: %s", zone_name, exc)
                continue
            clusters = (listing or {}).get("sks-clusters") or []
            if not clusters:
                self.logger().debug("no SKS clusters found in zone %s", zone_name)
            for cluster in clusters:
                yield SearchResult(
                    key=cluster_key(zone_name, cluster["name"]),
                    tags={
                        "id": cluster["id"],
                        "name": cluster["name"],
                        "zone": zone_name,
                        "endpoint": endpoint,
                        "version": str(cluster.get("version") or ""),
                        "state": str(cluster.get("state") or ""),
                    },
                )

    async def fetch(self, key: str, tags: Tags) -> bytes:
        cluster_id, endpoint = tags.get("id"), tags.get("endpoint")
        if not cluster_id or not endpoint:
            raise ValueError(f"Exoscale entry {key!r} lacks the cluster ID or zone endpoint tag")
        body = await self.client(endpoint).post(
            f"/sks-cluster-kubeconfig/{cluster_id}", body=KUBECONFIG_REQUEST
        )
        encoded = (body or {}).get("kubeconfig")
        if not encoded:
            raise ValueError(f"failed to generate kubeconfig for cluster {key!r}")
        return base64.b64decode(encoded)

    def prefix_for(self, key: str) -> str:
        return self._config.id or StoreKind.EXOSCALE.value

    async def preview(self, key: str, tags: Tags) -> str:
        labels = (("version", "Kubernetes Version"), ("state", "State"), ("zone", "Zone"))
        lines = [f"{label}: {tags[tag]}" for tag, label in labels if tags.get(tag)]
        return render_tree(f"SKS: {tags.get('name', key)}", lines)

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()


def validate(store_config: KubeconfigStoreConfig) -> List[str]:
    config = store_config.config or {}
    return [
        f"config.{name}: required for the exoscale store"
        for name in ("exoscaleAPIKey", "exoscaleSecretKey")
        if not config.get(name)
    ]


STORE_KIND = StoreKind.EXOSCALE
STORE_CLASS = ExoscaleStore
