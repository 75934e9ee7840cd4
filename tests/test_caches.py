"""Tests for the fetch caches wrapping kubeconfig stores."""

import os

import pytest

from conftest import StubStore, kubeconfig_yaml
from kubeswitch.shared.cache import Flushable, wrap_store
from kubeswitch.shared.cache.filesystem import FilesystemCache
from kubeswitch.shared.cache.memory import MemoryCache
from kubeswitch.shared.config import CacheConfig
from kubeswitch.shared.errors import UnknownStoreKindError
from kubeswitch.shared.stores import Closable, find_capability


@pytest.mark.asyncio
async def test_memory_cache_fetches_once():
    upstream = StubStore({"a": kubeconfig_yaml("a")})
    store = wrap_store(upstream, CacheConfig(kind="memory"))

    assert isinstance(store, MemoryCache)
    first = await store.fetch("a", {})
    second = await store.fetch("a", {})
    assert first == second
    assert upstream.fetches == ["a"]
    assert store.id() == "stub.default"


@pytest.mark.asyncio
async def test_filesystem_cache_persists_and_flushes(tmp_path):
    upstream = StubStore({"a": kubeconfig_yaml("a"), "b": kubeconfig_yaml("b")})
    cache_config = CacheConfig(kind="filesystem", config={"path": str(tmp_path / "cache")})
    store = wrap_store(upstream, cache_config)
    assert isinstance(store, FilesystemCache)

    await store.fetch("a", {})
    await store.fetch("b", {})
    assert sorted(os.listdir(tmp_path / "cache")) == sorted(
        os.path.basename(store.cache_file(k)) for k in ("a", "b")
    )
    assert store.cache_file("a").endswith(".stub.default.cache")

    # a second process reads from disk
    again = wrap_store(upstream, cache_config)
    await again.fetch("a", {})
    assert upstream.fetches == ["a", "b"]

    assert again.flush() == 2
    assert os.listdir(tmp_path / "cache") == []


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", ["memory", "filesystem"])
async def test_failed_fetch_is_not_cached(tmp_path, kind):
    upstream = StubStore({"a": RuntimeError("backend unavailable")})
    store = wrap_store(upstream, CacheConfig(kind=kind, config={"path": str(tmp_path / "cache")}))

    with pytest.raises(RuntimeError):
        await store.fetch("a", {})
    if kind == "filesystem":
        assert not os.path.exists(store.cache_file("a"))

    upstream.entries["a"] = kubeconfig_yaml("a")
    assert await store.fetch("a", {}) == kubeconfig_yaml("a").encode()
    assert upstream.fetches == ["a", "a"]


def test_filesystem_cache_requires_path():
    with pytest.raises(ValueError):
        FilesystemCache(StubStore({}), CacheConfig(kind="filesystem"))


def test_unknown_cache_kind():
    with pytest.raises(UnknownStoreKindError):
        wrap_store(StubStore({}), CacheConfig(kind="redis"))


def test_capabilities_are_found_through_cache(tmp_path):
    upstream = StubStore({})
    store = wrap_store(upstream, CacheConfig(kind="filesystem", config={"path": str(tmp_path)}))

    assert find_capability(store, Closable) is upstream
    assert find_capability(store, Flushable) is store
    assert find_capability(upstream, Flushable) is None
