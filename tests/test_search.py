"""Tests for the discovery orchestrator."""

import asyncio
from datetime import timedelta

import pytest

from conftest import StubStore, kubeconfig_yaml
from kubeswitch.shared.cache import wrap_store
from kubeswitch.shared.config import CacheConfig, SwitchConfig
from kubeswitch.shared.search import SearchSession, close_stores


async def _run(stores, state_dir, config=None, **kwargs):
    session = SearchSession(stores, config or SwitchConfig(), str(state_dir), **kwargs)
    await session.start()
    items = [item async for item in session.results()]
    await session.cancel()
    return session, items


@pytest.mark.asyncio
async def test_merges_every_store(tmp_path):
    first = StubStore({"a": kubeconfig_yaml("dev", "prod")}, store_id="stub.first")
    second = StubStore({"b": kubeconfig_yaml("qa")}, store_id="stub.second", prefix=False)

    session, items = await _run(
        [first, second], tmp_path, aliases={"a/prod": "production"}
    )

    names = sorted(item.name for item in items)
    assert names == ["a/dev", "a/prod", "qa"]
    by_name = {item.name: item for item in items}
    assert by_name["a/prod"].display == "production"
    assert by_name["a/dev"].raw_context == "dev"
    assert by_name["a/dev"].store is first
    assert by_name["a/dev"].tags == {"origin": "a"}
    assert "secret-dev" not in by_name["a/dev"].preview_text
    assert first.verified == 1 and second.verified == 1
    assert not session.timed_out


@pytest.mark.asyncio
async def test_fetch_errors_are_records_and_garbage_is_skipped(tmp_path):
    store = StubStore(
        {
            "good": kubeconfig_yaml("ok"),
            "broken": RuntimeError("permission denied"),
            "garbage": "not: [valid",
        }
    )
    _, items = await _run([store], tmp_path)

    errors = [item for item in items if item.error is not None]
    assert len(errors) == 1
    assert errors[0].key == "broken"
    assert "permission denied" in str(errors[0].error)
    assert [item.name for item in items if item.error is None] == ["good/ok"]


@pytest.mark.asyncio
async def test_index_is_written_and_reused(tmp_path):
    config = SwitchConfig(refresh_index_after=timedelta(hours=1))
    entries = {"a": kubeconfig_yaml("dev"), "b": kubeconfig_yaml("prod")}

    live = StubStore(entries)
    _, first = await _run([live], tmp_path, config=config)
    assert live.searches == 1
    assert (tmp_path / "switch.stub.default.index").exists()

    indexed = StubStore(entries)
    _, second = await _run([indexed], tmp_path, config=config)
    assert indexed.searches == 0
    assert indexed.fetches == []
    assert sorted(i.name for i in second) == sorted(i.name for i in first)
    assert {i.name: i.tags for i in second} == {"a/dev": {"origin": "a"}, "b/prod": {"origin": "b"}}

    bypass = StubStore(entries)
    await _run([bypass], tmp_path, config=config, no_index=True)
    assert bypass.searches == 1


@pytest.mark.asyncio
async def test_timeout_closes_the_session(tmp_path):
    slow = StubStore({"a": kubeconfig_yaml("dev"), "b": kubeconfig_yaml("qa")}, delay=5)
    fast = StubStore({"c": kubeconfig_yaml("prod")}, store_id="stub.fast")

    session, items = await asyncio.wait_for(_run([slow, fast], tmp_path, timeout=0.2), 3)

    assert session.timed_out
    assert [item.name for item in items] == ["c/prod"]


@pytest.mark.asyncio
async def test_collect_drops_errors(tmp_path):
    store = StubStore({"a": kubeconfig_yaml("dev"), "b": RuntimeError("boom")})
    session = SearchSession([store], SwitchConfig(), str(tmp_path))
    await session.start()
    found = await session.collect()
    assert [item.name for item in found] == ["a/dev"]


@pytest.mark.asyncio
async def test_close_stores_walks_cache_wrappers(tmp_path):
    plain = StubStore({})
    upstream = StubStore({}, store_id="stub.cached")
    cached = wrap_store(upstream, CacheConfig(kind="memory"))

    await close_stores([plain, cached])

    assert plain.closed == 1
    assert upstream.closed == 1
