"""kubeswitch CLI implementation."""

import asyncio
import logging
from importlib import metadata
from typing import Any, Coroutine, Optional, Tuple

import click
from rich.console import Console

from kubeswitch.commands import alias as alias_commands
from kubeswitch.commands import clean as clean_commands
from kubeswitch.commands import contexts as context_commands
from kubeswitch.commands import namespace as namespace_commands
from kubeswitch.commands import switch as switch_commands
from kubeswitch.commands.common import SwitchOptions
from kubeswitch.shared import debug
from kubeswitch.shared.errors import SwitchError
from kubeswitch.shared.search import DEFAULT_SEARCH_TIMEOUT

logger = logging.getLogger("kubeswitch.cli")


def run(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run a command coroutine, turning kubeswitch errors into CLI errors."""
    try:
        return asyncio.run(coro)
    except SwitchError as exc:
        if debug.is_enabled():
            logger.exception("command failed")
        raise click.ClickException(str(exc)) from exc
    except KeyboardInterrupt:
        raise click.exceptions.Exit(1)


class ContextGroup(click.Group):
    """Treat an unknown first argument (a context name, ``-`` or ``.``) as ``set-context``."""

    def resolve_command(self, ctx: click.Context, args):
        if args and self.get_command(ctx, args[0]) is None:
            return "set-context", self.get_command(ctx, "set-context"), args
        return super().resolve_command(ctx, args)


@click.group(
    cls=ContextGroup,
    invoke_without_command=True,
    help="Search kubeconfigs across stores and switch the shell to a context.",
)
@click.option("--config-path", envvar="SWITCH_CONFIG", help="Path to the switch configuration file.")
@click.option("--kubeconfig-path", help="Directory or file searched when no configuration exists (default $HOME/.kube).")
@click.option("--kubeconfig-name", help="Glob for kubeconfig file names (default 'config').")
@click.option("--state-directory", help="State directory (default $HOME/.kube/switch-state).")
@click.option("--show-preview/--no-show-preview", default=None, help="Show the preview pane in the picker.")
@click.option("--no-index", is_flag=True, help="Ignore the search index and search every store live.")
@click.option(
    "--search-timeout",
    type=float,
    default=DEFAULT_SEARCH_TIMEOUT,
    show_default=True,
    help="Seconds before an unfinished search is cancelled.",
)
@click.option("--debug", "debug_flag", is_flag=True, help="Enable verbose logging on stderr.")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Optional[str],
    kubeconfig_path: Optional[str],
    kubeconfig_name: Optional[str],
    state_directory: Optional[str],
    show_preview: Optional[bool],
    no_index: bool,
    search_timeout: float,
    debug_flag: bool,
) -> None:
    """Root command; without a subcommand it opens the context picker."""
    debug.configure_root()
    if debug_flag:
        debug.enable()

    ctx.obj = SwitchOptions(
        config_path=config_path,
        kubeconfig_path=kubeconfig_path,
        kubeconfig_name=kubeconfig_name,
        state_dir=state_directory,
        show_preview=show_preview,
        no_index=no_index,
        search_timeout=search_timeout,
    )
    if ctx.invoked_subcommand is None:
        switch_commands.echo_switched(run(switch_commands.pick_and_switch(ctx.obj)))


@cli.command("set-context", help="Switch to a context by name, alias, '-' (previous) or '.' (last).")
@click.argument("name")
@click.pass_obj
def set_context(options: SwitchOptions, name: str) -> None:
    if name in (switch_commands.PREVIOUS, switch_commands.LAST):
        path = run(switch_commands.switch_to_history(options, name))
    else:
        path = run(switch_commands.switch_to_name(options, name))
    switch_commands.echo_switched(path)


@cli.command("list-contexts", help="Print every discovered context, one per line.")
@click.argument("pattern", required=False)
@click.pass_obj
def list_contexts(options: SwitchOptions, pattern: Optional[str]) -> None:
    for name in run(context_commands.list_contexts(options, pattern)):
        click.echo(name)


@cli.command("history", help="Pick a context from the switch history.")
@click.pass_obj
def history(options: SwitchOptions) -> None:
    switch_commands.echo_switched(run(switch_commands.pick_from_history(options)))


@cli.command("namespace", help="Pick or set the namespace of the current context.")
@click.argument("name", required=False)
@click.pass_obj
def namespace(options: SwitchOptions, name: Optional[str]) -> None:
    if name:
        run(namespace_commands.switch_to_namespace(options, name))
        return
    if run(namespace_commands.pick_namespace(options)) is None:
        raise click.exceptions.Exit(1)


cli.add_command(namespace, "ns")


class AliasGroup(click.Group):
    """Treat an unknown first argument as an ``ALIAS=CONTEXT`` assignment."""

    def resolve_command(self, ctx: click.Context, args):
        if args and self.get_command(ctx, args[0]) is None:
            return "set", self.get_command(ctx, "set"), args
        return super().resolve_command(ctx, args)


@cli.group("alias", cls=AliasGroup, help="Manage context aliases: ALIAS=CONTEXT, ls, rm.")
def alias() -> None:
    """Alias commands."""


@alias.command("set", hidden=True)
@click.argument("assignment")
@click.pass_obj
def alias_set(options: SwitchOptions, assignment: str) -> None:
    previous = run(alias_commands.set_alias(options, assignment))
    if previous:
        click.echo(f"Alias was previously set for context {previous}")


@alias.command("ls", help="List all aliases.")
@click.pass_obj
def alias_ls(options: SwitchOptions) -> None:
    alias_commands.render_aliases(options, Console())


@alias.command("rm", help="Remove an alias.")
@click.argument("name")
@click.pass_obj
def alias_rm(options: SwitchOptions, name: str) -> None:
    try:
        context = alias_commands.remove_alias(options, name)
    except SwitchError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Removed alias {name} for context {context}")


@cli.command(
    "exec",
    context_settings={"ignore_unknown_options": True},
    help="Run a command against every context matching PATTERN: exec PATTERN -- CMD...",
)
@click.argument("pattern")
@click.argument("command", nargs=-1, type=click.UNPROCESSED)
@click.pass_obj
def exec_cmd(options: SwitchOptions, pattern: str, command: Tuple[str, ...]) -> None:
    run(context_commands.exec_in_contexts(options, pattern, command))


@cli.command("show", help="Print the kubeconfig of a context.")
@click.argument("name")
@click.pass_obj
def show(options: SwitchOptions, name: str) -> None:
    data = run(context_commands.show_context(options, name))
    click.echo(data.decode(errors="replace"), nl=not data.endswith(b"\n"))


@cli.command("clean", help="Remove temporary kubeconfigs and flush fetch caches.")
@click.pass_obj
def clean(options: SwitchOptions) -> None:
    removed = run(clean_commands.clean(options))
    click.echo(f"Cleaned {removed} files.")


@cli.command("version", help="Print the kubeswitch version.")
def version() -> None:
    try:
        click.echo(metadata.version("kubeswitch"))
    except metadata.PackageNotFoundError:
        click.echo("unknown")


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
