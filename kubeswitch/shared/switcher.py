"""Turn a selected context into a temporary kubeconfig for the shell wrapper."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional, Tuple

from kubeswitch.shared.errors import ContextNotFoundError, KubeconfigError, SwitchError
from kubeswitch.shared.history import append_history
from kubeswitch.shared.kubeconfig import KUBESWITCH_CONTEXT_KEY, Kubeconfig
from kubeswitch.shared.search import DiscoveredContext, context_prefix_for
from kubeswitch.shared.stores.base import MetadataProvider, Previewer, find_capability, prefixed_context_name

logger = logging.getLogger("kubeswitch.switcher")

TEMP_DIR_NAME = ".switch_tmp"


def default_temp_dir() -> str:
    return str(Path.home() / ".kube" / TEMP_DIR_NAME)


def switch_message(path: str) -> str:
    """The exact line the shell wrapper looks for on stdout."""
    return f'switched to context "{path}".'


async def resolve_raw_context(entry: DiscoveredContext, kubeconfig: Kubeconfig) -> str:
    """Find the context inside ``kubeconfig`` that is shown as ``entry.name``."""
    if entry.raw_context and kubeconfig.has_context(entry.raw_context):
        return entry.raw_context
    prefix = await context_prefix_for(entry.store, entry.key)
    for context in kubeconfig.get_context_names():
        if prefixed_context_name(prefix, context) == entry.name:
            return context
    raise ContextNotFoundError(
        f"context {entry.name!r} not found in kubeconfig {entry.key!r} of store {entry.store.id()}"
    )


async def materialize(
    entry: DiscoveredContext,
    namespace: Optional[str] = None,
    temp_dir: Optional[str] = None,
) -> Tuple[str, Kubeconfig]:
    """Fetch, retarget and write the kubeconfig of ``entry`` to a new temp file."""
    try:
        data = await entry.store.fetch(entry.key, entry.tags)
    except SwitchError:
        raise
    except Exception as exc:
        raise KubeconfigError(f"failed to fetch kubeconfig for context {entry.name!r}: {exc}") from exc

    kubeconfig = Kubeconfig.parse(data, path=entry.key)
    kubeconfig.set_current_context(await resolve_raw_context(entry, kubeconfig))
    kubeconfig.set_switch_metadata(KUBESWITCH_CONTEXT_KEY, entry.name)

    provider = find_capability(entry.store, MetadataProvider)
    if provider is not None:
        for key, value in provider.switch_metadata(entry.key, entry.tags).items():
            if value:
                kubeconfig.set_switch_metadata(key, value)

    if namespace:
        kubeconfig.set_namespace_for_current_context(namespace)

    try:
        path = kubeconfig.write_to_temp_file(temp_dir or default_temp_dir())
    except OSError as exc:
        raise KubeconfigError(f"failed to write temporary kubeconfig: {exc}") from exc
    return path, kubeconfig


async def switch_context(
    entry: DiscoveredContext,
    namespace: Optional[str] = None,
    temp_dir: Optional[str] = None,
    history_path: Optional[str] = None,
) -> str:
    """Materialize ``entry``, record it in the history and return the temp path."""
    path, kubeconfig = await materialize(entry, namespace=namespace, temp_dir=temp_dir)
    try:
        append_history(entry.name, kubeconfig.get_namespace(), path=history_path)
    except OSError as exc:
        logger.warning("failed to write history: %s", exc)
    return path


async def preview(entry: DiscoveredContext) -> str:
    """Preview text for the picker; empty when it cannot be produced."""
    try:
        previewer = find_capability(entry.store, Previewer)
        if previewer is not None:
            return await previewer.preview(entry.key, entry.tags)
        if entry.preview_text is None:
            data = await entry.store.fetch(entry.key, entry.tags)
            entry.preview_text = Kubeconfig.parse(data).write_sanitized().decode(errors="replace")
        return entry.preview_text
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.debug("no preview for %s: %s", entry.name, exc)
        return ""
