"""Tests for the CLI- and REST-backed cloud stores."""

import base64
import json

import pytest

from conftest import kubeconfig_yaml
from kubeswitch.shared.config import KubeconfigStoreConfig, SwitchConfig
from kubeswitch.shared.errors import StoreInitError
from kubeswitch.shared.kubeconfig import Kubeconfig
from kubeswitch.shared.stores import Previewer, build_stores, find_capability
from kubeswitch.shared.stores import azure, capi, gke
from kubeswitch.shared.stores.akamai import AkamaiStore
from kubeswitch.shared.stores.exoscale import ExoscaleStore, request_signer
from kubeswitch.shared.stores.ovh import OVHStore
from kubeswitch.shared.stores.scaleway import ScalewayStore


async def _search(store):
    return [result async for result in store.start_search()]


class FakeCommands:
    """Answers ``run_json_command`` by the first matching argument prefix."""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    async def __call__(self, cmd, timeout=None):
        self.calls.append(cmd)
        for prefix, response in self.responses:
            if cmd[: len(prefix)] == prefix:
                if isinstance(response, Exception):
                    raise response
                return response
        raise AssertionError(f"unexpected command {cmd}")


class FakeProcess:
    def __init__(self, outputs, returncode=0):
        self.outputs = outputs
        self.returncode = returncode
        self.calls = []

    async def __call__(self, cmd, stdin_data=None, env=None, timeout=None):
        self.calls.append(cmd)
        for marker, stdout in self.outputs.items():
            if marker in cmd:
                return {"returncode": self.returncode, "stdout": stdout, "stderr": "boom"}
        return {"returncode": 1, "stdout": b"", "stderr": f"unexpected {cmd}"}


class FakeApi:
    def __init__(self, gets=None, posts=None):
        self.gets = gets or {}
        self.posts = posts or {}
        self.requests = []
        self.closed = False

    async def get(self, path, params=None, *, allow_missing=False):
        self.requests.append(("GET", path, params))
        response = self.gets.get(path)
        if callable(response):
            return response(params)
        return response

    async def post(self, path, params=None, body=None):
        self.requests.append(("POST", path, body))
        return self.posts.get(path)

    async def close(self):
        self.closed = True


# --------------------------------------------------------------------------- #
# gke
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio
async def test_gke_lists_clusters_per_project(monkeypatch):
    commands = FakeCommands(
        [
            (["gcloud", "projects", "list"], [{"projectId": "alpha"}, {"projectId": "beta"}]),
            (
                ["gcloud", "container", "clusters", "list", "--project", "alpha"],
                [{"name": "web", "location": "europe-west1", "currentMasterVersion": "1.30"}],
            ),
            (
                ["gcloud", "container", "clusters", "list", "--project", "beta"],
                RuntimeError("permission denied"),
            ),
        ]
    )
    monkeypatch.setattr(gke, "run_json_command", commands)
    store = gke.GKEStore(KubeconfigStoreConfig(kind="gke"), SwitchConfig())

    results = await _search(store)
    assert [r.key for r in results if r.error is None] == ["gke_alpha--europe-west1--web"]
    assert results[0].tags == {
        "project": "alpha",
        "location": "europe-west1",
        "name": "web",
        "version": "1.30",
        "status": "",
    }
    errors = [r.error for r in results if r.error is not None]
    assert len(errors) == 1 and "beta" in str(errors[0])


@pytest.mark.asyncio
async def test_gke_configured_projects_skip_discovery(monkeypatch):
    commands = FakeCommands([(["gcloud", "container", "clusters", "list"], [])])
    monkeypatch.setattr(gke, "run_json_command", commands)
    store = gke.GKEStore(
        KubeconfigStoreConfig(kind="gke", config={"projectIDs": ["only"]}), SwitchConfig()
    )
    assert await _search(store) == []
    assert [c[5] for c in commands.calls] == ["only"]


@pytest.mark.asyncio
async def test_gke_fetch_from_tags(monkeypatch):
    commands = FakeCommands(
        [
            (
                ["gcloud", "container", "clusters", "describe", "web"],
                {
                    "name": "web",
                    "endpoint": "10.0.0.1",
                    "masterAuth": {"clusterCaCertificate": "Y2E="},
                },
            )
        ]
    )
    monkeypatch.setattr(gke, "run_json_command", commands)
    store = gke.GKEStore(KubeconfigStoreConfig(kind="gke"), SwitchConfig())

    tags = {"project": "alpha", "location": "europe-west1", "name": "web"}
    kubeconfig = Kubeconfig.parse(await store.fetch("any-key", tags))
    assert kubeconfig.get_context_names() == ["gke_web"]
    assert "--location" in commands.calls[0] and "europe-west1" in commands.calls[0]

    with pytest.raises(ValueError):
        await store.fetch("gke_alpha--europe-west1--web", {})


# --------------------------------------------------------------------------- #
# azure
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio
async def test_azure_lists_per_resource_group(monkeypatch):
    commands = FakeCommands(
        [
            (
                ["az", "aks", "list", "-o", "json", "--subscription", "sub-1", "--resource-group", "rg-a"],
                [
                    {
                        "name": "aks-1",
                        "resourceGroup": "rg-a",
                        "location": "westeurope",
                        "kubernetesVersion": "1.29",
                        "provisioningState": "Succeeded",
                        "powerState": {"code": "Running"},
                    }
                ],
            ),
            (["az", "aks", "list"], RuntimeError("not authorized")),
        ]
    )
    monkeypatch.setattr(azure, "run_json_command", commands)
    store = azure.AzureStore(
        KubeconfigStoreConfig(
            kind="azure", config={"subscriptionID": "sub-1", "resourceGroups": ["rg-a", "rg-b"]}
        ),
        SwitchConfig(),
    )

    results = await _search(store)
    assert results[0].key == "az_rg-a--aks-1"
    assert results[0].tags["subscription"] == "sub-1"
    assert results[0].tags["power"] == "Running"
    assert "rg-b" in str(results[1].error)

    preview = await find_capability(store, Previewer).preview(results[0].key, results[0].tags)
    assert "Succeeded(Running)" in preview


@pytest.mark.asyncio
async def test_azure_fetch_from_tags(monkeypatch):
    process = FakeProcess({"get-credentials": kubeconfig_yaml("aks-1").encode()})
    monkeypatch.setattr(azure, "run_subprocess_with_cancellation", process)
    store = azure.AzureStore(KubeconfigStoreConfig(kind="azure"), SwitchConfig())

    data = await store.fetch("ignored", {"resourceGroup": "rg-a", "name": "aks-1", "subscription": "sub-1"})
    assert Kubeconfig.parse(data).get_context_names() == ["aks-1"]
    assert process.calls[0][-2:] == ["--subscription", "sub-1"]

    with pytest.raises(ValueError):
        await store.fetch("az_rg-a--aks-1", {"name": "aks-1"})


@pytest.mark.asyncio
async def test_azure_fetch_failure(monkeypatch):
    monkeypatch.setattr(
        azure, "run_subprocess_with_cancellation", FakeProcess({"get-credentials": b""}, returncode=1)
    )
    store = azure.AzureStore(KubeconfigStoreConfig(kind="azure"), SwitchConfig())
    with pytest.raises(RuntimeError, match="aks-1"):
        await store.fetch("k", {"resourceGroup": "rg-a", "name": "aks-1"})


# --------------------------------------------------------------------------- #
# capi
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio
async def test_capi_lists_clusters_and_reads_secret(monkeypatch):
    clusters = {
        "items": [
            {"metadata": {"namespace": "tenants", "name": "blue"}, "status": {"phase": "Provisioned"}},
        ]
    }
    secret = {"data": {"value": base64.b64encode(kubeconfig_yaml("blue-admin").encode()).decode()}}
    process = FakeProcess(
        {
            capi.CLUSTER_RESOURCE: json.dumps(clusters).encode(),
            "blue-kubeconfig": json.dumps(secret).encode(),
        }
    )
    monkeypatch.setattr(capi, "run_subprocess_with_cancellation", process)
    store = capi.CapiStore(
        KubeconfigStoreConfig(kind="capi", config={"kubeconfigPath": "/tmp/mgmt"}), SwitchConfig()
    )

    results = await _search(store)
    assert [r.key for r in results] == ["tenants-blue"]
    assert results[0].tags == {"namespace": "tenants", "name": "blue", "phase": "Provisioned"}
    assert store.context_prefix(results[0].key) == "capi"
    assert process.calls[0][:3] == ["kubectl", "--kubeconfig", "/tmp/mgmt"]

    data = await store.fetch(results[0].key, results[0].tags)
    assert Kubeconfig.parse(data).get_context_names() == ["blue-admin"]
    assert process.calls[1][-3:] == ["tenants", "-o", "json"]


@pytest.mark.asyncio
async def test_capi_list_failure_is_reported(monkeypatch):
    monkeypatch.setattr(capi, "run_subprocess_with_cancellation", FakeProcess({}, returncode=1))
    store = capi.CapiStore(KubeconfigStoreConfig(kind="capi"), SwitchConfig())
    results = await _search(store)
    assert len(results) == 1 and "failed to list CAPI clusters" in str(results[0].error)
    with pytest.raises(ValueError):
        await store.fetch("tenants-blue", {})


# --------------------------------------------------------------------------- #
# scaleway, exoscale, ovh, akamai
# --------------------------------------------------------------------------- #


SCALEWAY_OPTIONS = {
    "scalewayAccessKey": "SCW123",
    "scalewaySecretKey": "secret",
    "scalewayOrganizationID": "org-1",
}


@pytest.mark.asyncio
async def test_scaleway_store():
    def clusters(params):
        if params["project_id"] == "p-1":
            return {"clusters": [{"id": "k-1", "name": "kapsule", "version": "1.31"}], "total_count": 1}
        return {"clusters": [], "total_count": 0}

    api = FakeApi(
        gets={
            "/account/v3/projects": {"projects": [{"id": "p-1", "name": "one"}, {"id": "p-2", "name": "two"}], "total_count": 2},
            "/k8s/v1/regions/fr-par/clusters": clusters,
            "/k8s/v1/regions/fr-par/clusters/k-1/kubeconfig": {
                "content": base64.b64encode(kubeconfig_yaml("admin@kapsule").encode()).decode()
            },
        }
    )
    store = ScalewayStore(
        KubeconfigStoreConfig(kind="scaleway", config=SCALEWAY_OPTIONS), SwitchConfig(), client=api
    )

    results = await _search(store)
    assert [r.key for r in results] == ["kapsule"]
    assert results[0].tags["project"] == "p-1" and results[0].tags["region"] == "fr-par"
    assert store.context_prefix("kapsule") == "scaleway"
    assert api.requests[0][2]["organization_id"] == "org-1"

    data = await store.fetch("kapsule", results[0].tags)
    assert Kubeconfig.parse(data).get_context_names() == ["admin@kapsule"]
    await store.close()
    assert api.closed


def test_scaleway_requires_credentials():
    with pytest.raises(StoreInitError, match="scalewaySecretKey"):
        ScalewayStore(
            KubeconfigStoreConfig(kind="scaleway", config={"scalewayAccessKey": "a"}), SwitchConfig()
        )


@pytest.mark.asyncio
async def test_exoscale_store_skips_failing_zone():
    class FailingApi(FakeApi):
        async def get(self, path, params=None, *, allow_missing=False):
            raise RuntimeError("zone down")

    endpoint = "https://api-de-fra-1.exoscale.com/v2"
    root = FakeApi(
        gets={
            "/zone": {
                "zones": [
                    {"name": "de-fra-1", "api-endpoint": endpoint},
                    {"name": "at-vie-1", "api-endpoint": "https://api-at-vie-1.exoscale.com/v2"},
                ]
            }
        }
    )
    zone = FakeApi(
        gets={"/sks-cluster": {"sks-clusters": [{"id": "uuid-1", "name": "sks", "state": "running"}]}},
        posts={
            "/sks-cluster-kubeconfig/uuid-1": {
                "kubeconfig": base64.b64encode(kubeconfig_yaml("sks-admin").encode()).decode()
            }
        },
    )
    store = ExoscaleStore(
        KubeconfigStoreConfig(
            kind="exoscale", id="corp", config={"exoscaleAPIKey": "EXO1", "exoscaleSecretKey": "s"}
        ),
        SwitchConfig(),
    )
    store._clients.update(
        {
            "https://api-ch-gva-2.exoscale.com/v2": root,
            endpoint: zone,
            "https://api-at-vie-1.exoscale.com/v2": FailingApi(),
        }
    )

    results = await _search(store)
    assert [r.key for r in results] == ["de-fra-1/sks"]
    assert results[0].error is None
    assert store.context_prefix(results[0].key) == "corp"

    data = await store.fetch(results[0].key, results[0].tags)
    assert Kubeconfig.parse(data).get_context_names() == ["sks-admin"]
    assert zone.requests[-1][2]["groups"] == ["system:masters"]


def test_exoscale_signature_header():
    sign = request_signer("EXO1", "secret")
    header = sign("GET", "https://api-ch-gva-2.exoscale.com/v2/zone", {"b": "2", "a": "1"}, "")
    value = header["Authorization"]
    assert value.startswith("EXO2-HMAC-SHA256 credential=EXO1,signed-query-args=a;b,expires=")
    assert ",signature=" in value


@pytest.mark.asyncio
async def test_ovh_store():
    api = FakeApi(
        gets={
            "/cloud/project": ["proj"],
            "/cloud/project/proj/kube": ["id-1"],
            "/cloud/project/proj/kube/id-1": {"id": "id-1", "name": "mks", "region": "GRA7"},
        },
        posts={"/cloud/project/proj/kube/id-1/kubeconfig": {"content": kubeconfig_yaml("kubernetes-admin@mks")}},
    )
    store = OVHStore(KubeconfigStoreConfig(kind="ovh"), SwitchConfig(), client=api)

    results = await _search(store)
    assert [r.key for r in results] == ["mks"]
    assert results[0].tags == {"id": "id-1", "project": "proj", "region": "GRA7", "version": ""}
    assert store.context_prefix("mks") == "ovh"

    data = await store.fetch("mks", results[0].tags)
    assert Kubeconfig.parse(data).get_context_names() == ["kubernetes-admin@mks"]


def test_ovh_requires_credentials():
    with pytest.raises(StoreInitError, match="ovhConsumerKey"):
        OVHStore(
            KubeconfigStoreConfig(
                kind="ovh", config={"ovhApplicationKey": "a", "ovhApplicationSecret": "b"}
            ),
            SwitchConfig(),
        )


@pytest.mark.asyncio
async def test_akamai_store_paginates():
    def clusters(params):
        page = int(params["page"])
        return {
            "data": [{"id": page, "label": f"lke-{page}", "region": "us-east", "k8s_version": "1.30"}],
            "page": page,
            "pages": 2,
        }

    api = FakeApi(
        gets={
            "/lke/clusters": clusters,
            "/lke/clusters/2/kubeconfig": {
                "kubeconfig": base64.b64encode(kubeconfig_yaml("lke2-ctx").encode()).decode()
            },
        }
    )
    store = AkamaiStore(KubeconfigStoreConfig(kind="akamai"), SwitchConfig(), client=api)

    results = await _search(store)
    assert [r.key for r in results] == ["lke-1", "lke-2"]
    assert store.context_prefix("lke-2") == "akamai_lke-2"

    data = await store.fetch("lke-2", results[1].tags)
    assert Kubeconfig.parse(data).get_context_names() == ["lke2-ctx"]
    with pytest.raises(ValueError):
        await store.fetch("lke-2", {"clusterID": "abc"})


@pytest.mark.asyncio
async def test_akamai_without_token_reports_error(monkeypatch):
    monkeypatch.delenv("LINODE_TOKEN", raising=False)
    store = AkamaiStore(KubeconfigStoreConfig(kind="akamai"), SwitchConfig())
    results = await _search(store)
    assert len(results) == 1 and "linode token not set" in str(results[0].error)


def test_new_store_kinds_are_registered(monkeypatch):
    monkeypatch.setenv("LINODE_TOKEN", "token")
    config = SwitchConfig(
        stores=[
            KubeconfigStoreConfig(kind="capi"),
            KubeconfigStoreConfig(kind="akamai"),
            KubeconfigStoreConfig(kind="ovh", config={"ovhApplicationKey": "a"}),
        ]
    )
    assert [s.id() for s in build_stores(config)] == ["capi.default", "akamai.default"]
