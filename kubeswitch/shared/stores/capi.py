"""Cluster API kubeconfig store: workload clusters of one management cluster."""

from __future__ import annotations

import base64
import json
import os
from typing import Any, AsyncIterator, Dict, List

from kubeswitch.shared.config import KubeconfigStoreConfig
from kubeswitch.shared.errors import StoreVerifyError
from kubeswitch.shared.stores.base import BaseStore, SearchResult, StoreKind, Tags
from kubeswitch.shared.stores.preview import render_tree
from kubeswitch.shared.utils import expand_path, run_subprocess_with_cancellation

KUBECTL_TIMEOUT = 60.0
CLUSTER_RESOURCE = "clusters.cluster.x-k8s.io"
SECRET_SUFFIX = "-kubeconfig"
SECRET_DATA_KEY = "value"


def cluster_key(namespace: str, name: str) -> str:
    return f"{namespace}-{name}"


class CapiStore(BaseStore):
    """List ``Cluster`` objects with ``kubectl`` and read their ``<name>-kubeconfig`` secrets."""

    store_kind = StoreKind.CAPI

    def __init__(self, store_config, switch_config):
        super().__init__(store_config, switch_config)
        self.management_kubeconfig = expand_path(str(self.options.get("kubeconfigPath") or ""))
        self.kubectl = str(self.options.get("kubectlPath") or "kubectl")

    async def _get_json(self, *args: str) -> Dict[str, Any]:
        command = [self.kubectl]
        if self.management_kubeconfig:
            command += ["--kubeconfig", self.management_kubeconfig]
        result = await run_subprocess_with_cancellation(
            [*command, "get", *args, "-o", "json"], timeout=KUBECTL_TIMEOUT
        )
        if result["returncode"] != 0:
            raise RuntimeError(f"kubectl get {args[0]} failed: {result['stderr'].strip()}")
        return json.loads(result["stdout"])

    async def verify(self) -> None:
        if self.management_kubeconfig and not os.path.isfile(self.management_kubeconfig):
            raise StoreVerifyError(
                f"the management cluster kubeconfig {self.management_kubeconfig!r} does not exist"
            )

    async def start_search(self) -> AsyncIterator[SearchResult]:
        self.logger().debug("CAPI: start search")
        try:
            clusters = await self._get_json(CLUSTER_RESOURCE, "--all-namespaces")
        except Exception as exc:
            yield SearchResult(error=RuntimeError(f"failed to list CAPI clusters: {exc}"))
            return

        for cluster in clusters.get("items") or []:
            metadata = cluster.get("metadata") or {}
            namespace, name = metadata.get("namespace", ""), metadata.get("name", "")
            self.logger().debug("CAPI: found cluster %s/%s", namespace, name)
            yield SearchResult(
                key=cluster_key(namespace, name),
                tags={
                    "namespace": namespace,
                    "name": name,
                    "phase": str((cluster.get("status") or {}).get("phase") or ""),
                },
            )

    async def fetch(self, key: str, tags: Tags) -> bytes:
        namespace, name = tags.get("namespace"), tags.get("name")
        if not namespace or not name:
            raise ValueError(f"CAPI entry {key!r} lacks the namespace or name tag: {tags}")
        secret = await self._get_json("secret", f"{name}{SECRET_SUFFIX}", "-n", namespace)
        value = (secret.get("data") or {}).get(SECRET_DATA_KEY)
        if not value:
            raise ValueError(
                f"secret {namespace}/{name}{SECRET_SUFFIX} has no {SECRET_DATA_KEY!r} field"
            )
        return base64.b64decode(value)

    def prefix_for(self, key: str) -> str:
        return StoreKind.CAPI.value

    async def preview(self, key: str, tags: Tags) -> str:
        lines = [f"Namespace: {tags.get('namespace', '')}"]
        if tags.get("phase"):
            lines.append(f"Phase: {tags['phase']}")
        return render_tree(f"CAPI: {tags.get('name', key)}", lines)


def validate(store_config: KubeconfigStoreConfig) -> List[str]:
    return []


STORE_KIND = StoreKind.CAPI
STORE_CLASS = CapiStore
