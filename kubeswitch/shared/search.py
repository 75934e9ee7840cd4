"""Discovery orchestrator: merge the contexts of every store onto one queue."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional

from kubeswitch.shared.config import SwitchConfig
from kubeswitch.shared.index import IndexEntry, SearchIndex
from kubeswitch.shared.kubeconfig import Kubeconfig
from kubeswitch.shared.stores.base import (
    Closable,
    KubeconfigStore,
    PrefixResolver,
    Tags,
    find_capability,
    prefixed_context_name,
)

logger = logging.getLogger("kubeswitch.search")

DEFAULT_SEARCH_TIMEOUT = 30.0
QUEUE_SIZE = 256

_CLOSED = object()


@dataclass
class DiscoveredContext:
    """One context (or one discovery error) found by a store."""

    name: str
    key: str
    store: KubeconfigStore
    tags: Tags = field(default_factory=dict)
    raw_context: str = ""
    alias: Optional[str] = None
    error: Optional[BaseException] = None
    preview_text: Optional[str] = None

    @property
    def display(self) -> str:
        return self.alias or self.name

    @classmethod
    def failed(cls, store: KubeconfigStore, error: BaseException, key: str = "") -> "DiscoveredContext":
        return cls(name="", key=key, store=store, error=error)


async def context_prefix_for(store: KubeconfigStore, key: str) -> str:
    resolver = find_capability(store, PrefixResolver)
    if resolver is not None:
        return await resolver.resolve_context_prefix(key)
    return store.context_prefix(key)


class SearchSession:
    """A single search over ``stores``.

    Each store runs in its own task, reading from its index when it is fresh
    or searching live otherwise. A closer task puts the close marker on the
    queue exactly once, after every store task finished or the deadline
    passed.
    """

    def __init__(
        self,
        stores: List[KubeconfigStore],
        config: SwitchConfig,
        state_dir: str,
        no_index: bool = False,
        timeout: Optional[float] = DEFAULT_SEARCH_TIMEOUT,
        aliases: Optional[Dict[str, str]] = None,
    ):
        self.stores = stores
        self.config = config
        self.state_dir = state_dir
        self.no_index = no_index
        self.timeout = timeout
        self.aliases = aliases or {}
        self.timed_out = False
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=QUEUE_SIZE)
        self._tasks: List[asyncio.Task] = []
        self._closer: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Verify every store, then start searching. Verification errors propagate."""
        for store in self.stores:
            await store.verify()
        self._tasks = [asyncio.create_task(self._run_store(store)) for store in self.stores]
        self._closer = asyncio.create_task(self._close_when_done())

    async def _close_when_done(self) -> None:
        if self._tasks:
            _, pending = await asyncio.wait(self._tasks, timeout=self.timeout)
            if pending:
                self.timed_out = True
                logger.warning(
                    "search timed out after %ss, %d store(s) did not finish", self.timeout, len(pending)
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
        await self.queue.put(_CLOSED)

    async def _emit(self, item: DiscoveredContext) -> None:
        await self.queue.put(item)

    async def _run_store(self, store: KubeconfigStore) -> None:
        ttl = self.config.ttl_for(store.config())
        index = SearchIndex(self.state_dir, store.kind(), store.id())
        try:
            if not self.no_index and index.should_be_used(ttl):
                entries = index.read()
                if entries is not None:
                    store.logger().debug("using search index %s", index.index_path)
                    for name, entry in entries.items():
                        await self._emit(
                            DiscoveredContext(
                                name=name,
                                key=entry.key,
                                tags=entry.tags,
                                store=store,
                                alias=self.aliases.get(name),
                            )
                        )
                    return
            await self._search_live(store, index if ttl else None)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            store.logger().warning("search failed: %s", exc)
            await self._emit(DiscoveredContext.failed(store, exc))

    async def _search_live(self, store: KubeconfigStore, index: Optional[SearchIndex]) -> None:
        found: Dict[str, IndexEntry] = {}
        async for result in store.start_search():
            if result.error is not None:
                store.logger().warning("%s", result.error)
                await self._emit(DiscoveredContext.failed(store, result.error, key=result.key))
                continue

            try:
                data = await store.fetch(result.key, result.tags)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                store.logger().warning("failed to fetch kubeconfig %s: %s", result.key, exc)
                await self._emit(DiscoveredContext.failed(store, exc, key=result.key))
                continue

            try:
                kubeconfig = Kubeconfig.parse(data, path=result.key)
            except Exception as exc:
                store.logger().warning("skipping %s: %s", result.key, exc)
                continue

            prefix = await context_prefix_for(store, result.key)
            preview = kubeconfig.write_sanitized().decode(errors="replace")
            for context in kubeconfig.get_context_names():
                name = prefixed_context_name(prefix, context)
                found[name] = IndexEntry(key=result.key, tags=dict(result.tags))
                await self._emit(
                    DiscoveredContext(
                        name=name,
                        key=result.key,
                        tags=dict(result.tags),
                        store=store,
                        raw_context=context,
                        alias=self.aliases.get(name),
                        preview_text=preview,
                    )
                )

        if index is not None:
            index.write(found)

    async def results(self) -> AsyncIterator[DiscoveredContext]:
        """Yield records until the close marker; errors are yielded too."""
        while True:
            item = await self.queue.get()
            if item is _CLOSED:
                return
            yield item

    async def collect(self) -> List[DiscoveredContext]:
        """Drain the session and return the successful records."""
        found = []
        async for item in self.results():
            if item.error is None:
                found.append(item)
        return found

    async def cancel(self) -> None:
        pending = [t for t in [*self._tasks, self._closer] if t is not None and not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


async def close_stores(stores: List[KubeconfigStore]) -> None:
    """Release processes and HTTP sessions held by stores."""
    for store in stores:
        closable = find_capability(store, Closable)
        if closable is None:
            continue
        try:
            await closable.close()
        except Exception as exc:
            store.logger().debug("failed to close store: %s", exc)
