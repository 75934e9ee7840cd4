"""AWS EKS kubeconfig store."""

from __future__ import annotations

import asyncio
import os
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import boto3
import yaml
from botocore.config import Config as BotoConfig

from kubeswitch.shared.config import KubeconfigStoreConfig
from kubeswitch.shared.errors import StoreInitError
from kubeswitch.shared.stores.base import BaseStore, SearchResult, StoreKind, Tags
from kubeswitch.shared.stores.preview import render_tree

EXEC_API_VERSION = "client.authentication.k8s.io/v1beta1"

_BOTO_CONFIG = BotoConfig(connect_timeout=5, read_timeout=10, retries={"max_attempts": 3})


def cluster_key(profile: str, region: str, name: str) -> str:
    return f"eks_{profile}--{region}--{name}"


def synthesize_kubeconfig(
    name: str, endpoint: str, ca_data: str, region: str, profile: str
) -> Dict[str, Any]:
    """Build a single-context kubeconfig whose user calls ``aws eks get-token``."""
    exec_env: Optional[List[Dict[str, str]]] = None
    if profile:
        exec_env = [{"name": "AWS_PROFILE", "value": profile}]
    user_exec: Dict[str, Any] = {
        "apiVersion": EXEC_API_VERSION,
        "command": "aws",
        "args": ["--region", region, "eks", "get-token", "--cluster-name", name],
    }
    if exec_env:
        user_exec["env"] = exec_env
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [
            {
                "name": name,
                "cluster": {"server": endpoint, "certificate-authority-data": ca_data},
            }
        ],
        "users": [{"name": name, "user": {"exec": user_exec}}],
        "contexts": [{"name": name, "context": {"cluster": name, "user": name}}],
        "current-context": name,
    }


class EKSStore(BaseStore):
    """List EKS clusters of one AWS profile across the configured regions.

    Entry keys are ``eks_<profile>--<region>--<name>``; the profile, region and
    cluster name are also carried in tags so fetch never parses the key.
    """

    store_kind = StoreKind.EKS

    def __init__(self, store_config, switch_config, session: Any = None):
        super().__init__(store_config, switch_config)
        self.profile = str(self.options.get("profile") or "")
        regions = self.options.get("regions") or []
        region = self.options.get("region") or os.environ.get("AWS_DEFAULT_REGION") or os.environ.get("AWS_REGION")
        if region and region not in regions:
            regions = [region, *regions]
        if not regions:
            raise StoreInitError(
                "no AWS region configured for the EKS store: set 'config.region' or AWS_DEFAULT_REGION"
            )
        self.regions: List[str] = [str(r) for r in regions]
        self._session = session
        self._clients: Dict[str, Any] = {}

    def _client(self, region: str) -> Any:
        client = self._clients.get(region)
        if client is None:
            if self._session is None:
                self._session = boto3.Session(profile_name=self.profile or None)
            client = self._session.client("eks", region_name=region, config=_BOTO_CONFIG)
            self._clients[region] = client
        return client

    async def start_search(self) -> AsyncIterator[SearchResult]:
        for region in self.regions:
            try:
                names = await asyncio.to_thread(self._list_clusters, region)
            except Exception as exc:
                yield SearchResult(error=RuntimeError(f"failed to list EKS clusters in {region}: {exc}"))
                continue
            for name in names:
                yield SearchResult(
                    key=cluster_key(self.profile or "default", region, name),
                    tags={"profile": self.profile, "region": region, "name": name},
                )

    def _list_clusters(self, region: str) -> List[str]:
        paginator = self._client(region).get_paginator("list_clusters")
        names: List[str] = []
        for page in paginator.paginate():
            names.extend(page.get("clusters") or [])
        return names

    def _describe(self, region: str, name: str) -> Dict[str, Any]:
        return self._client(region).describe_cluster(name=name)["cluster"]

    def _identity(self, key: str, tags: Tags) -> Tuple[str, str]:
        region, name = tags.get("region"), tags.get("name")
        if not region or not name:
            # entries from an older index without tags
            parts = key.split("--")
            if len(parts) != 3:
                raise ValueError(f"cannot parse EKS key {key!r}")
            region, name = parts[1], parts[2]
        return region, name

    async def fetch(self, key: str, tags: Tags) -> bytes:
        region, name = self._identity(key, tags)
        cluster = await asyncio.to_thread(self._describe, region, name)
        ca_data = (cluster.get("certificateAuthority") or {}).get("data")
        if not ca_data:
            raise ValueError(f"EKS cluster {name!r} has no certificate authority data")
        document = synthesize_kubeconfig(
            name, cluster.get("endpoint", ""), ca_data, region, tags.get("profile", self.profile)
        )
        return yaml.safe_dump(document, sort_keys=False).encode()

    async def preview(self, key: str, tags: Tags) -> str:
        region, name = self._identity(key, tags)
        cluster = await asyncio.to_thread(self._describe, region, name)
        lines = []
        if cluster.get("version"):
            lines.append(f"Kubernetes Version: {cluster['version']}")
        if cluster.get("platformVersion"):
            lines.append(f"Platform Version: {cluster['platformVersion']}")
        if cluster.get("status"):
            lines.append(f"Status: {cluster['status']}")
        lines.append(f"Profile: {tags.get('profile') or self.profile or 'default'}")
        lines.append(f"Region: {region}")
        return render_tree(f"EKS: {name}", lines)


def validate(store_config: KubeconfigStoreConfig) -> List[str]:
    regions = (store_config.config or {}).get("regions")
    if regions is not None and not isinstance(regions, list):
        return ["config.regions: must be a list of region names"]
    return []


STORE_KIND = StoreKind.EKS
STORE_CLASS = EKSStore
