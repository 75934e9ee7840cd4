"""Tests for materializing a selected context."""

import os
import re

import pytest
import yaml

from conftest import StubStore, kubeconfig_yaml, write_kubeconfig
from kubeswitch.shared.config import KubeconfigStoreConfig, SwitchConfig
from kubeswitch.shared.errors import ContextNotFoundError
from kubeswitch.shared.history import read_history
from kubeswitch.shared.search import DiscoveredContext
from kubeswitch.shared.stores.filesystem import FilesystemStore
from kubeswitch.shared.switcher import materialize, preview, switch_context, switch_message


def _entry(store, name, key, raw=""):
    return DiscoveredContext(name=name, key=key, store=store, raw_context=raw)


@pytest.mark.asyncio
async def test_materialize_sets_current_context(tmp_path):
    store = StubStore({"team": kubeconfig_yaml("dev", "prod", current="dev")})
    path, kubeconfig = await materialize(
        _entry(store, "team/prod", "team", raw="prod"), namespace="ops", temp_dir=str(tmp_path)
    )

    with open(path) as handle:
        written = yaml.safe_load(handle)
    assert written["current-context"] == "prod"
    assert written["kubeswitch-context"] == "team/prod"
    assert kubeconfig.get_namespace() == "ops"
    assert os.path.dirname(path) == str(tmp_path)


@pytest.mark.asyncio
async def test_materialize_recovers_raw_context_from_prefix(tmp_path):
    store = StubStore({"team": kubeconfig_yaml("dev", "prod")})
    path, kubeconfig = await materialize(_entry(store, "team/prod", "team"), temp_dir=str(tmp_path))
    assert kubeconfig.get_current_context() == "prod"


@pytest.mark.asyncio
async def test_materialize_leaves_origin_file_untouched(tmp_path):
    origin = write_kubeconfig(tmp_path / "kube" / "team", "dev", "prod", current="dev")
    with open(origin, "rb") as handle:
        before = handle.read()
    mtime = os.stat(origin).st_mtime_ns

    store = FilesystemStore(
        KubeconfigStoreConfig(kind="filesystem", paths=[str(tmp_path / "kube")]), SwitchConfig()
    )
    path, _ = await materialize(
        _entry(store, "team/prod", origin, raw="prod"), namespace="ops", temp_dir=str(tmp_path / "tmp")
    )

    assert path != origin
    with open(origin, "rb") as handle:
        assert handle.read() == before
    assert os.stat(origin).st_mtime_ns == mtime


@pytest.mark.asyncio
async def test_materialize_unknown_context(tmp_path):
    store = StubStore({"team": kubeconfig_yaml("dev")})
    with pytest.raises(ContextNotFoundError):
        await materialize(_entry(store, "team/gone", "team"), temp_dir=str(tmp_path))


@pytest.mark.asyncio
async def test_switch_context_records_history(tmp_path):
    store = StubStore({"team": kubeconfig_yaml("dev", namespace="web")})
    history = str(tmp_path / "history")

    path = await switch_context(
        _entry(store, "team/dev", "team", raw="dev"), temp_dir=str(tmp_path / "tmp"), history_path=history
    )

    assert re.match(r'^switched to context "[^"]+\.tmp"\.$', switch_message(path))
    assert [(h.context, h.namespace) for h in read_history(history)] == [("team/dev", "web")]


@pytest.mark.asyncio
async def test_preview_is_sanitized_and_never_raises():
    store = StubStore({"team": kubeconfig_yaml("dev"), "bad": RuntimeError("offline")})

    text = await preview(_entry(store, "team/dev", "team"))
    assert "server: https://dev.example.com" in text
    assert "secret-dev" not in text

    assert await preview(_entry(store, "bad/x", "bad")) == ""
