"""Non-interactive context commands: list-contexts, show and exec."""

from __future__ import annotations

import os
from fnmatch import fnmatchcase
from typing import List, Optional, Sequence, Tuple

import click

from kubeswitch.commands.common import SwitchOptions, Workspace
from kubeswitch.shared.errors import SwitchError
from kubeswitch.shared.switcher import materialize
from kubeswitch.shared.utils import run_subprocess_with_cancellation


def _matches(pattern: Optional[str], *names: Optional[str]) -> bool:
    if not pattern:
        return True
    return any(name and fnmatchcase(name, pattern) for name in names)


async def list_contexts(options: SwitchOptions, pattern: Optional[str] = None) -> List[str]:
    """Display names of every discovered context, optionally filtered by a wildcard."""
    async with Workspace(options) as workspace:
        found = await workspace.search()
    return [entry.display for entry in found if _matches(pattern, entry.display, entry.name)]


async def show_context(options: SwitchOptions, name: str) -> bytes:
    """Raw kubeconfig bytes of the store entry that holds ``name``."""
    async with Workspace(options) as workspace:
        entry = await workspace.find(name)
        return await entry.store.fetch(entry.key, entry.tags)


def _exec_argv(command: Sequence[str], shell: Optional[str]) -> List[str]:
    if shell and len(command) == 1:
        return [shell, "-c", command[0]]
    return list(command)


async def exec_in_contexts(options: SwitchOptions, pattern: str, command: Sequence[str]) -> List[Tuple[str, str]]:
    """Run ``command`` once per matching context with ``KUBECONFIG`` set.

    Contexts run one after another in name order; the first failing command
    stops the fan-out. Returns (context, kubeconfig path) pairs.
    """
    if not command:
        raise SwitchError("no command given, use: exec PATTERN -- COMMAND [ARGS...]")

    done: List[Tuple[str, str]] = []
    async with Workspace(options) as workspace:
        found = await workspace.search()
        matching = sorted(
            (entry for entry in found if _matches(pattern, entry.display)),
            key=lambda entry: entry.display,
        )
        argv = _exec_argv(command, workspace.config.exec_shell)

        for entry in matching:
            path, _ = await materialize(entry)
            click.echo(f"=== START Executing on {entry.display} ===", err=True)
            env = dict(os.environ, KUBECONFIG=path)
            try:
                result = await run_subprocess_with_cancellation(argv, env=env)
            except OSError as exc:
                raise SwitchError(f"failed to run {argv[0]!r}: {exc}") from exc
            if result["stdout"]:
                click.echo(result["stdout"].decode(errors="replace"), nl=False)
            if result["stderr"]:
                click.echo(result["stderr"], nl=False, err=True)
            if result["returncode"] != 0:
                raise SwitchError(
                    f"command execution failed on {entry.display} with exit code {result['returncode']}"
                )
            click.echo(f"=== END Executing on {entry.display} ===", err=True)
            done.append((entry.display, path))
    return done
