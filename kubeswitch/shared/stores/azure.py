"""Azure Kubernetes Service kubeconfig store backed by the az CLI."""

from __future__ import annotations

import shutil
from typing import AsyncIterator, List, Optional

from kubeswitch.shared.config import KubeconfigStoreConfig
from kubeswitch.shared.errors import StoreVerifyError
from kubeswitch.shared.stores.base import BaseStore, SearchResult, StoreKind, Tags
from kubeswitch.shared.stores.preview import render_tree
from kubeswitch.shared.utils import run_json_command, run_subprocess_with_cancellation

AZ_TIMEOUT = 30.0


def cluster_key(resource_group: str, name: str) -> str:
    return f"az_{resource_group}--{name}"


class AzureStore(BaseStore):
    """List AKS clusters, optionally restricted to resource groups."""

    store_kind = StoreKind.AZURE

    def __init__(self, store_config, switch_config):
        super().__init__(store_config, switch_config)
        self.az = str(self.options.get("azPath") or "az")
        self.subscription: Optional[str] = self.options.get("subscriptionID")
        self.resource_groups: List[str] = [str(g) for g in self.options.get("resourceGroups") or []]

    def _scope(self) -> List[str]:
        return ["--subscription", self.subscription] if self.subscription else []

    async def verify(self) -> None:
        if shutil.which(self.az) is None:
            raise StoreVerifyError(f"unable to find {self.az!r} on the system. Is it installed?")

    async def start_search(self) -> AsyncIterator[SearchResult]:
        groups: List[Optional[str]] = list(self.resource_groups) or [None]
        for group in groups:
            cmd = [self.az, "aks", "list", "-o", "json", *self._scope()]
            if group:
                cmd += ["--resource-group", group]
            try:
                clusters = await run_json_command(cmd, timeout=AZ_TIMEOUT)
            except Exception as exc:
                where = f"resource group {group!r}" if group else "subscription"
                yield SearchResult(error=RuntimeError(f"failed to list AKS clusters in {where}: {exc}"))
                continue

            for cluster in clusters or []:
                resource_group = cluster.get("resourceGroup") or group or ""
                yield SearchResult(
                    key=cluster_key(resource_group, cluster["name"]),
                    tags={
                        "resourceGroup": resource_group,
                        "name": cluster["name"],
                        "subscription": self.subscription or "",
                        "location": str(cluster.get("location") or ""),
                        "version": str(cluster.get("kubernetesVersion") or ""),
                        "status": str(cluster.get("provisioningState") or ""),
                        "power": str((cluster.get("powerState") or {}).get("code") or ""),
                    },
                )

    async def fetch(self, key: str, tags: Tags) -> bytes:
        resource_group, name = tags.get("resourceGroup"), tags.get("name")
        if not resource_group or not name:
            raise ValueError(f"AKS entry {key!r} lacks resourceGroup/name tags")
        cmd = [
            self.az, "aks", "get-credentials",
            "--resource-group", resource_group, "--name", name, "--file", "-",
        ]
        if tags.get("subscription"):
            cmd += ["--subscription", tags["subscription"]]
        result = await run_subprocess_with_cancellation(cmd, timeout=AZ_TIMEOUT)
        if result["returncode"] != 0:
            raise RuntimeError(
                f"failed to get credentials for AKS cluster {name!r}: {result['stderr'].strip()}"
            )
        return result["stdout"]

    async def preview(self, key: str, tags: Tags) -> str:
        lines = []
        if tags.get("version"):
            lines.append(f"Kubernetes Version: {tags['version']}")
        if tags.get("status"):
            status = tags["status"]
            if tags.get("power"):
                status = f"{status}({tags['power']})"
            lines.append(f"Status: {status}")
        lines.append(f"Resource group: {tags.get('resourceGroup', '')}")
        if tags.get("location"):
            lines.append(f"Location: {tags['location']}")
        if tags.get("subscription"):
            lines.append(f"Subscription ID: {tags['subscription']}")
        return render_tree(f"AKS: {tags.get('name', key)}", lines)


def validate(store_config: KubeconfigStoreConfig) -> List[str]:
    groups = (store_config.config or {}).get("resourceGroups")
    if groups is not None and not isinstance(groups, list):
        return ["config.resourceGroups: must be a list of resource group names"]
    return []


STORE_KIND = StoreKind.AZURE
STORE_CLASS = AzureStore
