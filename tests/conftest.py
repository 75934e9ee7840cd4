"""Shared fixtures for kubeswitch tests."""

import os
import textwrap

import pytest


def kubeconfig_yaml(*contexts: str, current: str = "", namespace: str = "") -> str:
    """A minimal kubeconfig with one cluster/user/context triple per name."""
    lines = ["apiVersion: v1", "kind: Config", "clusters:"]
    for name in contexts:
        lines += [f"- name: {name}", "  cluster:", f"    server: https://{name}.example.com"]
    lines.append("users:")
    for name in contexts:
        lines += [f"- name: {name}", "  user:", f"    token: secret-{name}"]
    lines.append("contexts:")
    for name in contexts:
        lines += [f"- name: {name}", "  context:", f"    cluster: {name}", f"    user: {name}"]
        if namespace:
            lines.append(f"    namespace: {namespace}")
    lines.append(f"current-context: {current or (contexts[0] if contexts else '')}")
    return "\n".join(lines) + "\n"


def write_kubeconfig(directory, *contexts: str, name: str = "config", **kwargs) -> str:
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(str(directory), name)
    with open(path, "w") as handle:
        handle.write(kubeconfig_yaml(*contexts, **kwargs))
    return path


def write_switch_config(path, body: str) -> str:
    with open(path, "w") as handle:
        handle.write(textwrap.dedent(body))
    return str(path)


@pytest.fixture
def home(tmp_path, monkeypatch):
    """Point $HOME at a temp dir so history and temp kubeconfigs stay isolated."""
    home_dir = tmp_path / "home"
    (home_dir / ".kube").mkdir(parents=True)
    monkeypatch.setenv("HOME", str(home_dir))
    monkeypatch.delenv("KUBECONFIG", raising=False)
    monkeypatch.delenv("SWITCH_CONFIG", raising=False)
    return home_dir


class StubStore:
    """In-memory kubeconfig store keyed by name, counting calls."""

    def __init__(self, entries, store_id="stub.default", kind="stub", prefix=True, store_config=None, delay=0.0):
        from kubeswitch.shared.config import KubeconfigStoreConfig
        from kubeswitch.shared.debug import store_logger

        self.entries = dict(entries)
        self._id = store_id
        self._kind = kind
        self._prefix = prefix
        self._config = store_config or KubeconfigStoreConfig(kind=kind)
        self._logger = store_logger(store_id)
        self.delay = delay
        self.searches = 0
        self.fetches = []
        self.closed = 0
        self.verified = 0

    def id(self):
        return self._id

    def kind(self):
        return self._kind

    async def verify(self):
        self.verified += 1

    def context_prefix(self, key):
        return key if self._prefix else ""

    async def start_search(self):
        import asyncio

        from kubeswitch.shared.stores import SearchResult

        self.searches += 1
        for key in self.entries:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield SearchResult(key=key, tags={"origin": key})

    async def fetch(self, key, tags):
        self.fetches.append(key)
        value = self.entries[key]
        if isinstance(value, Exception):
            raise value
        return value.encode() if isinstance(value, str) else value

    def logger(self):
        return self._logger

    def config(self):
        return self._config

    async def close(self):
        self.closed += 1
