"""Switching contexts: interactively, by name, or from the history."""

from __future__ import annotations

import logging
from typing import Optional

import click

from kubeswitch.commands.common import SwitchOptions, Workspace
from kubeswitch.picker import Picker
from kubeswitch.shared.errors import ContextNotFoundError
from kubeswitch.shared.history import (
    HistoryEntry,
    last_entry,
    previous_entry,
    read_history,
)
from kubeswitch.shared.search import DiscoveredContext
from kubeswitch.shared.switcher import preview, switch_context, switch_message

logger = logging.getLogger("kubeswitch.commands.switch")

PREVIOUS = "-"
LAST = "."


async def _filtered(session, picker: Picker):
    async for item in session.results():
        if item.error is not None:
            logger.warning("%s: %s", item.store.id(), item.error)
            continue
        yield item
    if session.timed_out:
        picker.warn("search timed out")


async def pick_and_switch(options: SwitchOptions, picker_io: Optional[dict] = None) -> Optional[str]:
    """Search every store, let the user pick and switch. ``None`` means aborted."""
    async with Workspace(options) as workspace:
        session = workspace.session()
        await session.start()
        picker: Picker[DiscoveredContext] = Picker(
            label=lambda entry: entry.display,
            preview=preview,
            show_preview=workspace.config.show_preview,
            **(picker_io or {}),
        )
        try:
            selected = await picker.run(_filtered(session, picker))
        finally:
            await session.cancel()

        if session.timed_out:
            click.echo("Warning: the search timed out, results may be incomplete.", err=True)
        if selected is None:
            return None
        return await switch_context(selected)


async def switch_to_name(options: SwitchOptions, name: str, namespace: Optional[str] = None) -> str:
    """Switch to the context called ``name`` (prefixed name, alias or bare name)."""
    async with Workspace(options) as workspace:
        entry = await workspace.find(name)
        return await switch_context(entry, namespace=namespace or None)


async def switch_to_history(options: SwitchOptions, which: str) -> str:
    """Switch to the previous (``-``) or last (``.``) history entry."""
    history = read_history()
    entry = previous_entry(history) if which == PREVIOUS else last_entry(history)
    if entry is None:
        raise ContextNotFoundError("there is no context in the history yet")
    return await switch_to_name(options, entry.context, namespace=entry.namespace)


async def pick_from_history(options: SwitchOptions, picker_io: Optional[dict] = None) -> Optional[str]:
    """Pick a history line (newest first) and switch to it."""
    history = read_history()
    if not history:
        raise ContextNotFoundError("there is no context in the history yet")

    picker: Picker[HistoryEntry] = Picker(
        label=lambda entry: entry.to_line(),
        show_preview=False,
        items=history,
        **(picker_io or {}),
    )
    selected = await picker.run()
    if selected is None:
        return None
    return await switch_to_name(options, selected.context, namespace=selected.namespace)


def echo_switched(path: Optional[str]) -> None:
    """Print the line for the shell wrapper, or exit 1 when the pick was aborted."""
    if path is None:
        raise click.exceptions.Exit(1)
    click.echo(switch_message(path))
