"""Shared plumbing for subcommands: options, configuration and store lifetime."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import click

from kubeswitch.shared.aliases import AliasTable
from kubeswitch.shared.config import (
    DEFAULT_CONFIG_VERSION,
    KubeconfigStoreConfig,
    SwitchConfig,
    default_state_dir,
    load_config,
    validate_config,
)
from kubeswitch.shared.errors import ContextNotFoundError
from kubeswitch.shared.search import (
    DEFAULT_SEARCH_TIMEOUT,
    DiscoveredContext,
    SearchSession,
    close_stores,
)
from kubeswitch.shared.stores import KubeconfigStore, build_stores, strip_context_prefix
from kubeswitch.shared.utils import expand_path

logger = logging.getLogger("kubeswitch.commands")


def default_kubeconfig_dir() -> str:
    return str(Path.home() / ".kube")


@dataclass
class SwitchOptions:
    """Global options of the root command."""

    config_path: Optional[str] = None
    kubeconfig_path: Optional[str] = None
    kubeconfig_name: Optional[str] = None
    state_dir: Optional[str] = None
    show_preview: Optional[bool] = None
    no_index: bool = False
    search_timeout: float = DEFAULT_SEARCH_TIMEOUT

    @property
    def state_directory(self) -> str:
        return expand_path(self.state_dir or default_state_dir())


def load_switch_config(options: SwitchOptions) -> SwitchConfig:
    """Load and validate the configuration, applying command-line overrides.

    Without a configuration file a single filesystem store searches the
    kubeconfig path.
    """
    config = load_config(options.config_path)
    kubeconfig_path = options.kubeconfig_path
    if config is None:
        config = SwitchConfig(version=DEFAULT_CONFIG_VERSION)
        kubeconfig_path = kubeconfig_path or default_kubeconfig_dir()

    if kubeconfig_path:
        path = expand_path(kubeconfig_path)
        configured = {
            expand_path(p) for s in config.stores if s.kind == "filesystem" for p in s.paths
        }
        if path not in configured:
            config.stores.insert(
                0,
                KubeconfigStoreConfig(
                    kind="filesystem",
                    id=None if not configured else "kubeconfig-path",
                    paths=[path],
                ),
            )

    if options.kubeconfig_name:
        config.kubeconfig_name = options.kubeconfig_name
    if options.show_preview is not None:
        config.show_preview = options.show_preview

    validate_config(config)
    return config


class Workspace:
    """Configuration, stores and aliases for one invocation.

    Use as an async context manager so stores are closed on exit.
    """

    def __init__(self, options: SwitchOptions):
        self.options = options
        self.config: Optional[SwitchConfig] = None
        self.stores: List[KubeconfigStore] = []
        self.aliases: Optional[AliasTable] = None

    async def __aenter__(self) -> "Workspace":
        self.config = load_switch_config(self.options)
        self.aliases = AliasTable(self.options.state_directory)
        self.stores = build_stores(self.config)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await close_stores(self.stores)

    def session(self) -> SearchSession:
        return SearchSession(
            self.stores,
            self.config,
            self.options.state_directory,
            no_index=self.options.no_index,
            timeout=self.options.search_timeout,
            aliases=self.aliases.context_to_alias,
        )

    async def search(self) -> List[DiscoveredContext]:
        """Run a complete search and return every discovered context."""
        session = self.session()
        await session.start()
        try:
            found = []
            async for item in session.results():
                if item.error is not None:
                    logger.warning("%s: %s", item.store.id(), item.error)
                    continue
                found.append(item)
        finally:
            await session.cancel()
        if session.timed_out:
            click.echo("Warning: the search timed out, results may be incomplete.", err=True)
        return found

    async def find(self, name: str, match_alias: bool = True) -> DiscoveredContext:
        """Search until a context matches ``name`` by full name, alias or bare name."""
        session = self.session()
        await session.start()
        errors = []
        try:
            async for item in session.results():
                if item.error is not None:
                    errors.append(f"{item.store.id()}: {item.error}")
                    continue
                bare = item.raw_context or strip_context_prefix(item.name)
                if name in (item.name, bare) or (match_alias and name == item.alias):
                    return item
        finally:
            await session.cancel()

        message = f"context with name {name!r} not found"
        if errors:
            message += ". Possibly due to errors: " + "; ".join(errors)
        raise ContextNotFoundError(message)
