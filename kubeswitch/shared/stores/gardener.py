"""Gardener kubeconfig store: Shoots and shooted Seeds of one landscape."""

from __future__ import annotations

import base64
import json
import os
from typing import Any, AsyncIterator, Dict, List, Optional

from kubeswitch.shared.config import KubeconfigStoreConfig
from kubeswitch.shared.errors import StoreVerifyError
from kubeswitch.shared.kubeconfig import (
    GARDENER_CLUSTER_NAME_KEY,
    GARDENER_CLUSTER_NAMESPACE_KEY,
    GARDENER_CLUSTER_TYPE_KEY,
    GARDENER_LANDSCAPE_KEY,
    GARDENER_PROJECT_KEY,
)
from kubeswitch.shared.stores.base import BaseStore, SearchResult, StoreKind, Tags
from kubeswitch.shared.utils import expand_path, run_subprocess_with_cancellation

KUBECTL_TIMEOUT = 30.0
SHOOTED_SEED_ANNOTATION = "shoot.gardener.cloud/use-as-seed"

RESOURCE_SHOOT = "shoot"
RESOURCE_SEED = "seed"
RESOURCE_GARDEN = "garden"


def garden_key(landscape: str) -> str:
    return f"{landscape}-garden"


def shoot_key(landscape: str, project: str, shoot: str) -> str:
    return f"{landscape}--shoot--{project}--{shoot}"


def seed_key(landscape: str, shoot: str) -> str:
    return f"{landscape}--seed--{shoot}"


def parse_key(key: str) -> Dict[str, str]:
    """Split a shoot or seed key into its parts (for entries without tags)."""
    parts = key.split("--")
    if len(parts) == 4 and parts[1] == RESOURCE_SHOOT:
        project = parts[2]
        namespace = "garden" if project == "garden" else f"garden-{project}"
        return {"type": RESOURCE_SHOOT, "project": project, "name": parts[3], "namespace": namespace}
    if len(parts) == 3 and parts[1] == RESOURCE_SEED:
        return {"type": RESOURCE_SEED, "project": "garden", "name": parts[2], "namespace": "garden"}
    raise ValueError(f"cannot parse Gardener kubeconfig key {key!r}")


class GardenerStore(BaseStore):
    """Discover clusters of a Gardener landscape with ``kubectl`` against its garden cluster."""

    store_kind = StoreKind.GARDENER

    def __init__(self, store_config, switch_config):
        self.landscape_name: Optional[str] = (store_config.config or {}).get("landscapeName")
        super().__init__(store_config, switch_config)
        self.garden_kubeconfig = expand_path(str(self.options.get("gardenerAPIKubeconfigPath") or ""))
        self.kubectl = str(self.options.get("kubectlPath") or "kubectl")
        self.landscape_identity: Optional[str] = None

    def id(self) -> str:
        return f"{self.store_kind.value}.{self._config.id or self.landscape_name or 'default'}"

    async def _kubectl(self, *args: str) -> bytes:
        result = await run_subprocess_with_cancellation(
            [self.kubectl, "--kubeconfig", self.garden_kubeconfig, *args],
            timeout=KUBECTL_TIMEOUT,
        )
        if result["returncode"] != 0:
            raise RuntimeError(f"kubectl {' '.join(args[:2])} failed: {result['stderr'].strip()}")
        return result["stdout"]

    async def _get_json(self, *args: str) -> Dict[str, Any]:
        return json.loads(await self._kubectl(*args, "-o", "json"))

    async def _identity(self) -> str:
        if self.landscape_identity is None:
            configmap = await self._get_json("get", "configmap", "cluster-identity", "-n", "kube-system")
            self.landscape_identity = (configmap.get("data") or {}).get("cluster-identity") or ""
        return self.landscape_identity

    async def verify(self) -> None:
        if not os.path.isfile(self.garden_kubeconfig):
            raise StoreVerifyError(
                f"the Gardener API kubeconfig {self.garden_kubeconfig!r} does not exist"
            )

    async def start_search(self) -> AsyncIterator[SearchResult]:
        try:
            identity = await self._identity()
        except Exception as exc:
            yield SearchResult(error=RuntimeError(f"failed to read the Gardener landscape identity: {exc}"))
            return

        landscape = self.landscape_name or identity
        yield SearchResult(
            key=garden_key(landscape),
            tags={"type": RESOURCE_GARDEN, "landscape": identity},
        )

        try:
            projects = await self._get_json("get", "projects")
            shoots = await self._get_json("get", "shoots", "--all-namespaces")
        except Exception as exc:
            yield SearchResult(error=RuntimeError(f"failed to list Gardener resources: {exc}"))
            return

        namespace_to_project = {
            (p.get("spec") or {}).get("namespace"): p["metadata"]["name"]
            for p in projects.get("items") or []
            if (p.get("spec") or {}).get("namespace")
        }

        for shoot in shoots.get("items") or []:
            metadata = shoot.get("metadata") or {}
            if not (shoot.get("spec") or {}).get("seedName"):
                continue
            namespace, name = metadata.get("namespace", ""), metadata.get("name", "")
            project = namespace_to_project.get(namespace)
            if not project:
                self.logger().warning(
                    "could not find project for Shoot (%s/%s). Skipping.", namespace, name
                )
                continue

            annotations = metadata.get("annotations") or {}
            if namespace == "garden" and SHOOTED_SEED_ANNOTATION in annotations:
                key, kind = seed_key(landscape, name), RESOURCE_SEED
            else:
                key, kind = shoot_key(landscape, project, name), RESOURCE_SHOOT
            yield SearchResult(
                key=key,
                tags={
                    "type": kind,
                    "landscape": identity,
                    "project": project,
                    "namespace": namespace,
                    "name": name,
                },
            )

    async def fetch(self, key: str, tags: Tags) -> bytes:
        if tags.get("type") == RESOURCE_GARDEN or (key.endswith("-garden") and "--" not in key):
            with open(self.garden_kubeconfig, "rb") as handle:
                return handle.read()

        ident = tags if tags.get("name") and tags.get("namespace") else parse_key(key)
        secret = await self._get_json(
            "get", "secret", f"{ident['name']}.kubeconfig", "-n", ident["namespace"]
        )
        value = (secret.get("data") or {}).get("kubeconfig")
        if not value:
            raise ValueError(
                f"kubeconfig secret for ({ident['namespace']}/{ident['name']}) does not contain a kubeconfig"
            )
        return base64.b64decode(value)

    def switch_metadata(self, key: str, tags: Tags) -> Dict[str, str]:
        if tags.get("type") == RESOURCE_GARDEN:
            return {GARDENER_LANDSCAPE_KEY: tags.get("landscape", "")}
        try:
            ident = tags if tags.get("name") else parse_key(key)
        except ValueError:
            return {}
        return {
            GARDENER_LANDSCAPE_KEY: tags.get("landscape") or self.landscape_identity or "",
            GARDENER_CLUSTER_TYPE_KEY: ident.get("type", RESOURCE_SHOOT),
            GARDENER_PROJECT_KEY: ident.get("project", ""),
            GARDENER_CLUSTER_NAME_KEY: ident.get("name", ""),
            GARDENER_CLUSTER_NAMESPACE_KEY: ident.get("namespace", ""),
        }


def validate(store_config: KubeconfigStoreConfig) -> List[str]:
    problems = []
    if store_config.paths:
        problems.append("paths: specifying a path for the Gardener store is not supported")
    config = store_config.config or {}
    if not config.get("gardenerAPIKubeconfigPath"):
        problems.append("config.gardenerAPIKubeconfigPath: the kubeconfig to the Gardener API server must be set")
    if "landscapeName" in config and not config.get("landscapeName"):
        problems.append("config.landscapeName: the optional landscape name must not be empty")
    return problems


STORE_KIND = StoreKind.GARDENER
STORE_CLASS = GardenerStore
