"""Registry for kubeconfig store kinds."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from kubeswitch.shared.config import KubeconfigStoreConfig, SwitchConfig
from kubeswitch.shared.errors import StoreInitError, UnknownStoreKindError
from kubeswitch.shared.stores.base import KubeconfigStore

logger = logging.getLogger("kubeswitch.stores")

StoreFactory = Callable[[KubeconfigStoreConfig, SwitchConfig], KubeconfigStore]
StoreValidator = Callable[[KubeconfigStoreConfig], List[str]]


@dataclass
class StoreEntry:
    factory: StoreFactory
    validator: Optional[StoreValidator] = None


class StoreRegistry:
    """Singleton registry mapping store kinds to factories."""

    def __init__(self):
        self._stores: Dict[str, StoreEntry] = {}

    def register(
        self,
        kind: str,
        factory: StoreFactory,
        *,
        validator: Optional[StoreValidator] = None,
    ) -> None:
        self._stores[kind] = StoreEntry(factory=factory, validator=validator)

    def get(self, kind: str) -> Optional[StoreFactory]:
        entry = self._stores.get(kind)
        return entry.factory if entry else None

    def available_kinds(self) -> Iterable[str]:
        return self._stores.keys()

    def has_kind(self, kind: str) -> bool:
        return kind in self._stores

    def validate(self, store_config: KubeconfigStoreConfig) -> List[str]:
        entry = self._stores.get(store_config.kind)
        if entry is None or entry.validator is None:
            return []
        return entry.validator(store_config)

    def create(
        self, store_config: KubeconfigStoreConfig, switch_config: SwitchConfig
    ) -> KubeconfigStore:
        factory = self.get(store_config.kind)
        if factory is None:
            raise UnknownStoreKindError(f"unknown store kind {store_config.kind!r}")
        return factory(store_config, switch_config)


_REGISTRY: Optional[StoreRegistry] = None


def get_store_registry() -> StoreRegistry:
    global _REGISTRY
    if _REGISTRY is None:
        _REGISTRY = StoreRegistry()
    return _REGISTRY


def ensure_default_stores() -> StoreRegistry:
    """Register built-in stores if none are registered yet."""

    registry = get_store_registry()
    if not any(True for _ in registry.available_kinds()):
        from kubeswitch.shared.stores import (
            akamai,
            azure,
            capi,
            digitalocean,
            eks,
            exoscale,
            filesystem,
            gardener,
            gke,
            ovh,
            rancher,
            scaleway,
            vault,
        )
        from kubeswitch.shared.stores.plugin import client as plugin

        for module in (
            filesystem,
            vault,
            eks,
            gke,
            azure,
            digitalocean,
            rancher,
            gardener,
            capi,
            scaleway,
            exoscale,
            ovh,
            akamai,
            plugin,
        ):
            registry.register(
                module.STORE_KIND.value, module.STORE_CLASS, validator=module.validate
            )

    return registry


def build_stores(config: SwitchConfig) -> List[KubeconfigStore]:
    """Instantiate (and cache-wrap) every configured store.

    Stores marked ``required`` propagate construction failures as
    :class:`StoreInitError`; others are dropped with a debug log.
    """
    from kubeswitch.shared.cache import wrap_store

    registry = ensure_default_stores()
    stores: List[KubeconfigStore] = []
    for store_config in config.stores:
        try:
            store = registry.create(store_config, config)
            if store_config.cache is not None:
                store = wrap_store(store, store_config.cache)
        except UnknownStoreKindError:
            raise
        except Exception as exc:
            if store_config.is_required:
                raise StoreInitError(
                    f"failed to initialize store {store_config.store_id}: {exc}"
                ) from exc
            logger.debug("dropping store %s: %s", store_config.store_id, exc)
            continue
        stores.append(store)
    return stores
