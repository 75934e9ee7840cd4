"""Kubeconfig store abstractions and helpers."""

from kubeswitch.shared.stores.base import (
    BaseStore,
    Closable,
    KubeconfigStore,
    MetadataProvider,
    PrefixResolver,
    Previewer,
    SearchResult,
    StoreKind,
    Tags,
    find_capability,
    prefixed_context_name,
    strip_context_prefix,
)
from kubeswitch.shared.stores.registry import (
    StoreRegistry,
    build_stores,
    ensure_default_stores,
    get_store_registry,
)

__all__ = [
    "BaseStore",
    "Closable",
    "KubeconfigStore",
    "MetadataProvider",
    "PrefixResolver",
    "Previewer",
    "SearchResult",
    "StoreKind",
    "StoreRegistry",
    "Tags",
    "build_stores",
    "ensure_default_stores",
    "find_capability",
    "get_store_registry",
    "prefixed_context_name",
    "strip_context_prefix",
]
