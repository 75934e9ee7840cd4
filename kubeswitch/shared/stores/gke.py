"""Google Kubernetes Engine kubeconfig store backed by the gcloud CLI."""

from __future__ import annotations

import shutil
from typing import Any, AsyncIterator, Dict, List

import yaml

from kubeswitch.shared.config import KubeconfigStoreConfig
from kubeswitch.shared.errors import StoreVerifyError
from kubeswitch.shared.stores.base import BaseStore, SearchResult, StoreKind, Tags
from kubeswitch.shared.stores.eks import EXEC_API_VERSION
from kubeswitch.shared.stores.preview import render_tree
from kubeswitch.shared.utils import run_json_command

GCLOUD_TIMEOUT = 20.0
AUTH_PLUGIN = "gke-gcloud-auth-plugin"


def cluster_key(project: str, location: str, name: str) -> str:
    return f"gke_{project}--{location}--{name}"


class GKEStore(BaseStore):
    """List GKE clusters of the configured projects via ``gcloud``.

    Without ``config.projectIDs`` every project visible to the active gcloud
    account is searched.
    """

    store_kind = StoreKind.GKE

    def __init__(self, store_config, switch_config):
        super().__init__(store_config, switch_config)
        self.gcloud = str(self.options.get("gcloudPath") or "gcloud")
        self.project_ids: List[str] = [str(p) for p in self.options.get("projectIDs") or []]

    async def verify(self) -> None:
        if shutil.which(self.gcloud) is None:
            raise StoreVerifyError(f"unable to find {self.gcloud!r} on the system. Is it installed?")

    async def _projects(self) -> List[str]:
        if self.project_ids:
            return self.project_ids
        projects = await run_json_command(
            [self.gcloud, "projects", "list", "--format", "json"], timeout=GCLOUD_TIMEOUT
        )
        return [p["projectId"] for p in projects or [] if p.get("projectId")]

    async def start_search(self) -> AsyncIterator[SearchResult]:
        try:
            projects = await self._projects()
        except Exception as exc:
            yield SearchResult(error=RuntimeError(f"failed to list GCP projects: {exc}"))
            return

        for project in projects:
            try:
                clusters = await run_json_command(
                    [self.gcloud, "container", "clusters", "list", "--project", project, "--format", "json"],
                    timeout=GCLOUD_TIMEOUT,
                )
            except Exception as exc:
                yield SearchResult(
                    error=RuntimeError(f"failed to list GKE clusters for project {project!r}: {exc}")
                )
                continue
            for cluster in clusters or []:
                location = cluster.get("location") or cluster.get("zone") or ""
                yield SearchResult(
                    key=cluster_key(project, location, cluster["name"]),
                    tags={
                        "project": project,
                        "location": location,
                        "name": cluster["name"],
                        "version": str(cluster.get("currentMasterVersion") or ""),
                        "status": str(cluster.get("status") or ""),
                    },
                )

    async def _describe(self, key: str, tags: Tags) -> Dict[str, Any]:
        project, location, name = tags.get("project"), tags.get("location"), tags.get("name")
        if not (project and location and name):
            raise ValueError(f"GKE entry {key!r} lacks project/location/name tags")
        return await run_json_command(
            [
                self.gcloud, "container", "clusters", "describe", name,
                "--location", location, "--project", project, "--format", "json",
            ],
            timeout=GCLOUD_TIMEOUT,
        )

    async def fetch(self, key: str, tags: Tags) -> bytes:
        cluster = await self._describe(key, tags)
        context_name = f"gke_{cluster['name']}"
        ca_data = (cluster.get("masterAuth") or {}).get("clusterCaCertificate")
        if not ca_data:
            raise ValueError(f"cluster CA certificate not found for GKE cluster {cluster['name']!r}")
        document = {
            "apiVersion": "v1",
            "kind": "Config",
            "clusters": [
                {
                    "name": context_name,
                    "cluster": {
                        "server": f"https://{cluster['endpoint']}",
                        "certificate-authority-data": ca_data,
                    },
                }
            ],
            "users": [
                {
                    "name": context_name,
                    "user": {
                        "exec": {
                            "apiVersion": EXEC_API_VERSION,
                            "command": AUTH_PLUGIN,
                            "provideClusterInfo": True,
                            "installHint": "Install gke-gcloud-auth-plugin for use with kubectl",
                        }
                    },
                }
            ],
            "contexts": [
                {"name": context_name, "context": {"cluster": context_name, "user": context_name}}
            ],
            "current-context": context_name,
        }
        return yaml.safe_dump(document, sort_keys=False).encode()

    async def preview(self, key: str, tags: Tags) -> str:
        lines = []
        if tags.get("version"):
            lines.append(f"Kubernetes Version: {tags['version']}")
        if tags.get("status"):
            lines.append(f"Status: {tags['status']}")
        lines.append(f"Project: {tags.get('project', '')}")
        lines.append(f"Location: {tags.get('location', '')}")
        return render_tree(f"GKE: {tags.get('name', key)}", lines)


def validate(store_config: KubeconfigStoreConfig) -> List[str]:
    projects = (store_config.config or {}).get("projectIDs")
    if projects is not None and not isinstance(projects, list):
        return ["config.projectIDs: must be a list of project IDs"]
    return []


STORE_KIND = StoreKind.GKE
STORE_CLASS = GKEStore
