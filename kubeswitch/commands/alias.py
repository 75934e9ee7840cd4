"""Alias management: set, list and remove."""

from __future__ import annotations

from typing import Optional

from rich.console import Console
from rich.table import Table

from kubeswitch.commands.common import SwitchOptions, Workspace
from kubeswitch.shared.aliases import AliasTable, parse_alias_assignment
from kubeswitch.shared.errors import ContextNotFoundError


async def set_alias(options: SwitchOptions, assignment: str) -> Optional[str]:
    """Bind ``ALIAS=CONTEXT`` and return the previously bound context.

    CONTEXT may be given with or without its store prefix; the alias is
    always stored against the prefixed name.
    """
    alias, context = parse_alias_assignment(assignment)
    async with Workspace(options) as workspace:
        try:
            entry = await workspace.find(context, match_alias=False)
        except ContextNotFoundError as exc:
            raise ContextNotFoundError(f"cannot set alias {alias!r}: {exc}") from exc
        return workspace.aliases.set(alias, entry.name)


def remove_alias(options: SwitchOptions, alias: str) -> str:
    return AliasTable(options.state_directory).remove(alias)


def render_aliases(options: SwitchOptions, console: Console) -> None:
    aliases = AliasTable(options.state_directory).aliases()
    if not aliases:
        console.print("No aliases registered")
        return

    table = Table(show_footer=True)
    table.add_column("Alias", footer="Total")
    table.add_column("Context", footer=str(len(aliases)))
    for alias in sorted(aliases):
        table.add_row(alias, aliases[alias])
    console.print(table)
