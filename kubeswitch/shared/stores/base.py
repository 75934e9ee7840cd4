"""Kubeconfig store interfaces shared by the orchestrator, caches and CLI."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Dict, Optional, Protocol, runtime_checkable

from kubeswitch.shared.config import KubeconfigStoreConfig, SwitchConfig
from kubeswitch.shared.debug import store_logger

Tags = Dict[str, str]


class StoreKind(str, Enum):
    """Supported kubeconfig backends."""

    FILESYSTEM = "filesystem"
    VAULT = "vault"
    EKS = "eks"
    GKE = "gke"
    AZURE = "azure"
    DIGITALOCEAN = "digitalocean"
    RANCHER = "rancher"
    GARDENER = "gardener"
    CAPI = "capi"
    SCALEWAY = "scaleway"
    EXOSCALE = "exoscale"
    OVH = "ovh"
    AKAMAI = "akamai"
    PLUGIN = "plugin"


@dataclass
class SearchResult:
    """One item streamed by ``start_search``: an entry or an error."""

    key: str = ""
    tags: Tags = field(default_factory=dict)
    error: Optional[BaseException] = None


@runtime_checkable
class KubeconfigStore(Protocol):
    """Uniform contract every kubeconfig backend satisfies."""

    def id(self) -> str:
        """Stable ``<kind>.<id>`` identifier."""

    def kind(self) -> str:
        """Store kind, one of :class:`StoreKind`."""

    async def verify(self) -> None:
        """Pre-flight check of the configured search paths."""

    def context_prefix(self, key: str) -> str:
        """Prefix for context names found under ``key``; empty when disabled."""

    def start_search(self) -> AsyncIterator[SearchResult]:
        """Stream discovered entries; the iterator ends when discovery is done."""

    async def fetch(self, key: str, tags: Tags) -> bytes:
        """Return the raw kubeconfig bytes for an entry."""

    def logger(self) -> logging.Logger:
        """Logger scoped to this store."""

    def config(self) -> KubeconfigStoreConfig:
        """The store's configuration entry."""


@runtime_checkable
class Previewer(Protocol):
    """Optional capability: richer preview text than the sanitized kubeconfig."""

    async def preview(self, key: str, tags: Tags) -> str:
        """Return preview text for an entry."""


@runtime_checkable
class MetadataProvider(Protocol):
    """Optional capability: vendor keys written into the switched kubeconfig."""

    def switch_metadata(self, key: str, tags: Tags) -> Dict[str, str]:
        """Return top-level keys to set on the kubeconfig of ``key``."""


@runtime_checkable
class PrefixResolver(Protocol):
    """Optional capability: context prefixes that need a round-trip to compute."""

    async def resolve_context_prefix(self, key: str) -> str:
        """Return the context prefix for ``key``, asking the backend if needed."""


@runtime_checkable
class Closable(Protocol):
    """Optional capability: release processes or sessions at exit."""

    async def close(self) -> None:
        """Release resources held by the store."""


class BaseStore:
    """Shared bookkeeping for concrete stores."""

    store_kind: StoreKind

    def __init__(self, store_config: KubeconfigStoreConfig, switch_config: SwitchConfig):
        self._config = store_config
        self._switch_config = switch_config
        self._logger = store_logger(self.id())

    def id(self) -> str:
        return f"{self.store_kind.value}.{self._config.id or 'default'}"

    def kind(self) -> str:
        return self.store_kind.value

    def logger(self) -> logging.Logger:
        return self._logger

    def config(self) -> KubeconfigStoreConfig:
        return self._config

    @property
    def kubeconfig_name(self) -> str:
        return self._switch_config.kubeconfig_name_for(self._config)

    @property
    def options(self) -> Dict[str, object]:
        return self._config.config

    async def verify(self) -> None:
        return None

    def context_prefix(self, key: str) -> str:
        if not self._config.show_prefix:
            return ""
        return self.prefix_for(key)

    def prefix_for(self, key: str) -> str:
        """Prefix policy of the store kind; only used when ``showPrefix`` is on."""
        return key.replace("--", "-")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id()}>"


def prefixed_context_name(prefix: str, context: str) -> str:
    """Join a store prefix and a context name as shown to the user.

    A context name that already contains ``/`` keeps only its last segment.
    """
    if not prefix:
        return context
    if "/" in context:
        context = context.rsplit("/", 1)[-1]
    return f"{prefix}/{context}"


def strip_context_prefix(name: str) -> str:
    """Return everything after the first ``/`` of a prefixed context name."""
    return name.split("/", 1)[-1]


def find_capability(store: object, capability: type) -> Optional[object]:
    """Return the first layer of ``store`` (walking cache wrappers) that
    implements ``capability``, or ``None``."""
    layer: Optional[object] = store
    while layer is not None:
        if isinstance(layer, capability):
            return layer
        layer = getattr(layer, "upstream", None)
    return None
