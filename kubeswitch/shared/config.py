"""SwitchConfig loading, legacy migration and validation."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from kubeswitch.shared.errors import ConfigError
from kubeswitch.shared.utils import expand_path

logger = logging.getLogger("kubeswitch.config")

CONFIG_KIND = "SwitchConfig"
VALID_CONFIG_VERSIONS = ("v1alpha1",)
DEFAULT_CONFIG_VERSION = "v1alpha1"
DEFAULT_KUBECONFIG_NAME = "config"
DEFAULT_STORE_ID = "default"

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")


def default_config_path() -> str:
    return os.environ.get("SWITCH_CONFIG") or str(
        Path.home() / ".kube" / "switch-config.yaml"
    )


def default_state_dir() -> str:
    return str(Path.home() / ".kube" / "switch-state")


def default_kubeconfig_path() -> str:
    return str(Path.home() / ".kube" / "config")


def parse_duration(value: Any) -> Optional[timedelta]:
    """Parse a Go-style duration such as ``1h30m`` or ``90s``.

    Plain numbers are read as seconds. ``None`` and ``""`` yield ``None``.
    """
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)

    text = str(value).strip()
    if text.isdigit():
        return timedelta(seconds=int(text))
    pos = 0
    total = timedelta()
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        amount, unit = float(match.group(1)), match.group(2)
        if unit == "h":
            total += timedelta(hours=amount)
        elif unit == "m":
            total += timedelta(minutes=amount)
        elif unit == "s":
            total += timedelta(seconds=amount)
        else:
            total += timedelta(milliseconds=amount)
        pos = match.end()
    if pos != len(text) or pos == 0:
        raise ValueError(f"invalid duration {value!r}")
    return total


@dataclass
class CacheConfig:
    kind: str
    config: Dict[str, Any] = field(default_factory=dict)


@dataclass
class KubeconfigStoreConfig:
    """One entry of ``kubeconfigStores``."""

    kind: str
    id: Optional[str] = None
    kubeconfig_name: Optional[str] = None
    paths: List[str] = field(default_factory=list)
    cache: Optional[CacheConfig] = None
    required: Optional[bool] = None
    show_prefix: bool = True
    refresh_index_after: Optional[timedelta] = None
    config: Dict[str, Any] = field(default_factory=dict)

    @property
    def store_id(self) -> str:
        return f"{self.kind}.{self.id or DEFAULT_STORE_ID}"

    @property
    def is_required(self) -> bool:
        if self.required is None:
            return self.kind == "filesystem"
        return self.required

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KubeconfigStoreConfig":
        if not isinstance(data, dict):
            raise ConfigError(
                "invalid switch configuration",
                [f"kubeconfigStores entry must be a mapping, got {data!r}"],
            )
        cache = data.get("cache")
        if cache is not None and not isinstance(cache, dict):
            raise ConfigError("invalid switch configuration", ["cache must be a mapping"])
        paths = data.get("paths") or []
        if not isinstance(paths, list):
            raise ConfigError("invalid switch configuration", ["paths must be a list"])
        return cls(
            kind=str(data.get("kind") or ""),
            id=data.get("id"),
            kubeconfig_name=data.get("kubeconfigName"),
            paths=[str(p) for p in paths],
            cache=(
                CacheConfig(kind=str(cache.get("kind") or ""), config=cache.get("config") or {})
                if cache is not None
                else None
            ),
            required=data.get("required"),
            show_prefix=data.get("showPrefix", True) is not False,
            refresh_index_after=parse_duration(data.get("refreshIndexAfter")),
            config=data.get("config") or {},
        )


@dataclass
class SwitchConfig:
    kind: str = CONFIG_KIND
    version: str = DEFAULT_CONFIG_VERSION
    kubeconfig_name: Optional[str] = None
    show_preview: bool = True
    refresh_index_after: Optional[timedelta] = None
    exec_shell: Optional[str] = None
    stores: List[KubeconfigStoreConfig] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SwitchConfig":
        stores = data.get("kubeconfigStores") or []
        if not isinstance(stores, list):
            raise ConfigError("invalid switch configuration", ["kubeconfigStores must be a list"])
        return cls(
            kind=str(data.get("kind") or CONFIG_KIND),
            version=str(data.get("version") or ""),
            kubeconfig_name=data.get("kubeconfigName"),
            show_preview=data.get("showPreview", True) is not False,
            refresh_index_after=parse_duration(data.get("refreshIndexAfter")),
            exec_shell=data.get("execShell"),
            stores=[KubeconfigStoreConfig.from_dict({} if s is None else s) for s in stores],
        )

    def kubeconfig_name_for(self, store: KubeconfigStoreConfig) -> str:
        return store.kubeconfig_name or self.kubeconfig_name or DEFAULT_KUBECONFIG_NAME

    def ttl_for(self, store: KubeconfigStoreConfig) -> Optional[timedelta]:
        return store.refresh_index_after or self.refresh_index_after

    def uses_index(self) -> bool:
        return any(self.ttl_for(store) for store in self.stores)


def is_legacy(data: Dict[str, Any]) -> bool:
    return "version" not in data and (
        "kubeconfigPaths" in data or "kubeconfigRediscoveryInterval" in data
    )


def migrate_legacy(data: Dict[str, Any]) -> Dict[str, Any]:
    """Convert the pre-``v1alpha1`` layout into the current one."""

    migrated: Dict[str, Any] = {
        "kind": CONFIG_KIND,
        "version": DEFAULT_CONFIG_VERSION,
        "refreshIndexAfter": data.get("kubeconfigRediscoveryInterval"),
        "kubeconfigStores": [],
    }
    if data.get("kubeconfigName"):
        migrated["kubeconfigName"] = data["kubeconfigName"]

    filesystem = {"kind": "filesystem", "id": DEFAULT_STORE_ID, "paths": []}
    vault: Dict[str, Any] = {"kind": "vault", "id": DEFAULT_STORE_ID, "paths": []}
    if data.get("vaultAPIAddress"):
        vault["config"] = {"vaultAPIAddress": data["vaultAPIAddress"]}

    for entry in data.get("kubeconfigPaths") or []:
        if entry.get("store") == "filesystem":
            filesystem["paths"].append(entry.get("path"))
        elif entry.get("store") == "vault":
            vault["paths"].append(entry.get("path"))

    for store in (filesystem, vault):
        if store["paths"]:
            migrated["kubeconfigStores"].append(store)
    return migrated


def load_config(path: Optional[str] = None) -> Optional[SwitchConfig]:
    """Load the switch configuration, or return ``None`` when no file exists."""

    config_path = expand_path(path or default_config_path())
    if not os.path.exists(config_path):
        logger.debug("no switch configuration at %s", config_path)
        return None

    try:
        with open(config_path, "r") as handle:
            data = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"failed to read switch configuration {config_path!r}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"switch configuration {config_path!r} must be a YAML mapping")

    if is_legacy(data):
        logger.info("migrating legacy switch configuration %s", config_path)
        data = migrate_legacy(data)

    try:
        return SwitchConfig.from_dict(data)
    except ValueError as exc:
        raise ConfigError(f"invalid switch configuration {config_path!r}: {exc}") from exc


def validate_config(config: SwitchConfig) -> None:
    """Validate the configuration, raising one ConfigError listing every problem."""

    from kubeswitch.shared.cache import get_cache_registry
    from kubeswitch.shared.stores.registry import ensure_default_stores

    stores = ensure_default_stores()
    caches = get_cache_registry()
    problems: List[str] = []

    if config.kind != CONFIG_KIND:
        problems.append(f"kind: must be {CONFIG_KIND!r}, got {config.kind!r}")
    if config.version not in VALID_CONFIG_VERSIONS:
        problems.append(
            f"version: must be one of {', '.join(VALID_CONFIG_VERSIONS)}, got {config.version!r}"
        )

    seen: Dict[str, int] = {}
    for idx, store in enumerate(config.stores):
        where = f"kubeconfigStores[{idx}]"
        if not stores.has_kind(store.kind):
            problems.append(
                f"{where}.kind: unknown store kind {store.kind!r} "
                f"(known: {', '.join(sorted(stores.available_kinds()))})"
            )
            continue

        problems.extend(f"{where}.{p}" for p in stores.validate(store))

        if store.cache is not None:
            if not caches.has_kind(store.cache.kind):
                problems.append(f"{where}.cache.kind: unknown cache kind {store.cache.kind!r}")
            elif store.cache.kind == "filesystem" and not store.cache.config.get("path"):
                problems.append(f"{where}.cache.config.path: required for the filesystem cache")

        if config.ttl_for(store):
            if store.store_id in seen:
                problems.append(
                    f"{where}: duplicate store {store.store_id!r} (also kubeconfigStores[{seen[store.store_id]}]); "
                    "set a unique id when using the search index"
                )
            else:
                seen[store.store_id] = idx

    if problems:
        raise ConfigError("invalid switch configuration", problems)
