"""Namespace switching for the current context of ``$KUBECONFIG``."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import AsyncIterator, List, Optional

from kubeswitch.commands.common import SwitchOptions
from kubeswitch.picker import Picker
from kubeswitch.shared.config import default_kubeconfig_path
from kubeswitch.shared.errors import KubeconfigError, SwitchError
from kubeswitch.shared.history import append_history
from kubeswitch.shared.kubeconfig import Kubeconfig
from kubeswitch.shared.namespace_cache import NamespaceCache, merge_namespaces
from kubeswitch.shared.utils import expand_path, run_subprocess_with_cancellation

logger = logging.getLogger("kubeswitch.namespace")

NAMESPACE_TIMEOUT = 10.0


def current_kubeconfig_path(kubeconfig_path: Optional[str] = None) -> str:
    """The single kubeconfig file namespaces are written to."""
    path = kubeconfig_path or os.environ.get("KUBECONFIG") or default_kubeconfig_path()
    if os.pathsep in path:
        raise KubeconfigError(
            f"KUBECONFIG lists several files ({path}); switching namespaces needs exactly one"
        )
    return expand_path(path)


async def list_live_namespaces(kubeconfig_path: str, kubectl: str = "kubectl") -> List[str]:
    try:
        result = await run_subprocess_with_cancellation(
            [kubectl, "get", "namespaces", "-o", "json", "--kubeconfig", kubeconfig_path],
            timeout=NAMESPACE_TIMEOUT,
        )
    except asyncio.TimeoutError as exc:
        raise SwitchError("timed out listing namespaces") from exc
    except OSError as exc:
        raise SwitchError(f"failed to run {kubectl!r}: {exc}") from exc
    if result["returncode"] != 0:
        raise SwitchError(f"failed to retrieve current namespaces: {result['stderr'].strip()}")
    body = json.loads(result["stdout"] or b"{}")
    return sorted(item["metadata"]["name"] for item in body.get("items") or [])


async def namespace_exists(kubeconfig_path: str, namespace: str, kubectl: str = "kubectl") -> bool:
    try:
        result = await run_subprocess_with_cancellation(
            [kubectl, "get", "namespace", namespace, "-o", "name", "--kubeconfig", kubeconfig_path],
            timeout=NAMESPACE_TIMEOUT,
        )
    except asyncio.TimeoutError as exc:
        raise SwitchError(f"timed out looking up namespace {namespace!r}") from exc
    except OSError as exc:
        raise SwitchError(f"failed to run {kubectl!r}: {exc}") from exc
    if result["returncode"] == 0:
        return True
    if "NotFound" in result["stderr"]:
        return False
    raise SwitchError(f"failed to find namespace {namespace!r}: {result['stderr'].strip()}")


def _apply(kubeconfig: Kubeconfig, namespace: str) -> None:
    kubeconfig.set_namespace_for_current_context(namespace)
    kubeconfig.write_to_file()
    context = kubeconfig.get_kubeswitch_context()
    if context:
        try:
            append_history(context, namespace)
        except OSError as exc:
            logger.warning("failed to write namespace history: %s", exc)


async def switch_to_namespace(
    options: SwitchOptions, namespace: str, check_existence: bool = True, kubectl: str = "kubectl"
) -> str:
    """Set ``namespace`` on the current context, checking it exists first."""
    path = current_kubeconfig_path()
    if check_existence and not await namespace_exists(path, namespace, kubectl=kubectl):
        raise SwitchError(f"namespace {namespace!r} not found")
    _apply(Kubeconfig.load(path), namespace)
    return namespace


async def pick_namespace(
    options: SwitchOptions, kubectl: str = "kubectl", picker_io: Optional[dict] = None
) -> Optional[str]:
    """Offer cached namespaces at once and add live ones as they arrive."""
    path = current_kubeconfig_path()
    kubeconfig = Kubeconfig.load(path)
    context = kubeconfig.get_kubeswitch_context() or kubeconfig.get_current_context()

    cache = NamespaceCache(options.state_directory, context) if context else None
    cached = cache.read() if cache is not None and not options.no_index else []
    live: List[str] = []

    async def arrivals() -> AsyncIterator[str]:
        try:
            live.extend(await list_live_namespaces(path, kubectl=kubectl))
        except SwitchError as exc:
            logger.warning("%s", exc)
            return
        known = set(cached)
        for namespace in live:
            if namespace not in known:
                yield namespace

    picker: Picker[str] = Picker(show_preview=False, items=cached, **(picker_io or {}))
    selected = await picker.run(arrivals())
    if selected is None:
        return None

    _apply(kubeconfig, selected)
    if cache is not None and live:
        cache.write(merge_namespaces(cached, live))
    return selected
