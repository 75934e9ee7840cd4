"""Tests for the kubeswitch CLI."""

import os
import re

import pytest
import yaml
from click.testing import CliRunner

from conftest import write_kubeconfig, write_switch_config
from kubeswitch.cli import cli
from kubeswitch.commands import contexts as context_commands
from kubeswitch.commands import namespace as namespace_commands
from kubeswitch.shared import debug

SWITCHED = re.compile(r'^switched to context "([^"]+\.tmp)"\.$')


@pytest.fixture
def runner():
    """Create a CLI runner."""
    return CliRunner()


@pytest.fixture
def switch_env(home, tmp_path):
    """Two directories of kubeconfigs behind a filesystem store."""
    kube = tmp_path / "kube"
    write_kubeconfig(kube / "team-a", "dev", "staging", namespace="web")
    write_kubeconfig(kube / "team-b", "prod")
    config = write_switch_config(
        tmp_path / "switch-config.yaml",
        f"""
        kind: SwitchConfig
        version: v1alpha1
        refreshIndexAfter: 1h
        kubeconfigStores:
        - kind: filesystem
          paths: [{kube}]
        """,
    )
    state = tmp_path / "state"
    return ["--config-path", config, "--state-directory", str(state)], state


def _load(path):
    with open(path) as handle:
        return yaml.safe_load(handle)


def _switched_path(result) -> str:
    match = SWITCHED.match(result.stdout.strip())
    assert match, result.output
    return match.group(1)


def test_cli_help(runner):
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "switch the shell to a context" in result.output
    assert "list-contexts" in result.output


def test_list_contexts(runner, switch_env):
    args, state = switch_env
    result = runner.invoke(cli, [*args, "list-contexts"])
    assert result.exit_code == 0, result.output
    assert sorted(result.stdout.split()) == ["team-a/dev", "team-a/staging", "team-b/prod"]
    assert (state / "switch.filesystem.default.index").exists()

    filtered = runner.invoke(cli, [*args, "list-contexts", "team-a/*"])
    assert sorted(filtered.stdout.split()) == ["team-a/dev", "team-a/staging"]


def test_set_context_prints_wrapper_line(runner, switch_env, home):
    args, _ = switch_env
    result = runner.invoke(cli, [*args, "set-context", "team-b/prod"])
    assert result.exit_code == 0, result.output

    path = _switched_path(result)
    assert path.startswith(str(home / ".kube" / ".switch_tmp"))
    with open(path) as handle:
        written = yaml.safe_load(handle)
    assert written["current-context"] == "prod"
    assert written["kubeswitch-context"] == "team-b/prod"

    history = (home / ".kube" / ".switch_history").read_text().splitlines()
    assert history == ["team-b/prod ::"]


def test_unknown_first_argument_is_a_context(runner, switch_env):
    args, _ = switch_env
    result = runner.invoke(cli, [*args, "staging"])
    assert result.exit_code == 0, result.output
    with open(_switched_path(result)) as handle:
        assert yaml.safe_load(handle)["current-context"] == "staging"


def test_unknown_context_fails(runner, switch_env):
    args, _ = switch_env
    result = runner.invoke(cli, [*args, "set-context", "nope"])
    assert result.exit_code == 1
    assert "not found" in result.output
    assert not SWITCHED.match(result.stdout.strip())


def test_previous_and_last_from_history(runner, switch_env):
    args, _ = switch_env
    runner.invoke(cli, [*args, "team-a/dev"])
    runner.invoke(cli, [*args, "team-b/prod"])

    previous = runner.invoke(cli, [*args, "-"])
    assert previous.exit_code == 0, previous.output
    with open(_switched_path(previous)) as handle:
        written = yaml.safe_load(handle)
    assert written["kubeswitch-context"] == "team-a/dev"
    assert written["contexts"][0]["context"]["namespace"] == "web"

    last = runner.invoke(cli, [*args, "."])
    with open(_switched_path(last)) as handle:
        assert yaml.safe_load(handle)["kubeswitch-context"] == "team-a/dev"


def test_history_navigation_without_history(runner, switch_env):
    args, _ = switch_env
    result = runner.invoke(cli, [*args, "-"])
    assert result.exit_code == 1
    assert "no context in the history" in result.output


def test_exec_runs_once_per_context(runner, switch_env, home):
    args, _ = switch_env
    result = runner.invoke(cli, [*args, "exec", "*", "--", "printenv", "KUBECONFIG"])
    assert result.exit_code == 0, result.output

    paths = result.stdout.split()
    assert len(paths) == 3
    assert all(p.endswith(".tmp") and os.path.exists(p) for p in paths)
    contexts = [_load(p)["kubeswitch-context"] for p in paths]
    assert contexts == ["team-a/dev", "team-a/staging", "team-b/prod"]
    assert "=== START Executing on team-a/dev ===" in result.output
    assert not (home / ".kube" / ".switch_history").exists()


def test_exec_uses_subprocess_helper(runner, switch_env, monkeypatch):
    args, _ = switch_env
    calls = []

    async def interrupted(cmd, stdin_data=None, env=None, timeout=None):
        calls.append((cmd, env["KUBECONFIG"]))
        raise KeyboardInterrupt

    monkeypatch.setattr(context_commands, "run_subprocess_with_cancellation", interrupted)
    result = runner.invoke(cli, [*args, "exec", "team-b/*", "--", "sleep", "60"])
    assert result.exit_code == 1
    assert calls and calls[0][0] == ["sleep", "60"]
    assert calls[0][1].endswith(".tmp")


def test_exec_stops_on_failure(runner, switch_env):
    args, _ = switch_env
    result = runner.invoke(cli, [*args, "exec", "team-a/*", "--", "sh", "-c", "exit 3"])
    assert result.exit_code == 1
    assert "command execution failed on team-a/dev with exit code 3" in result.output
    assert "team-a/staging" not in result.output


def test_alias_lifecycle(runner, switch_env):
    args, state = switch_env
    result = runner.invoke(cli, [*args, "alias", "p=team-b/prod"])
    assert result.exit_code == 0, result.output
    assert (state / "switch.alias").exists()

    rebound = runner.invoke(cli, [*args, "alias", "p=team-a/dev"])
    assert "previously set for context team-b/prod" in rebound.output

    listed = runner.invoke(cli, [*args, "alias", "ls"])
    assert listed.exit_code == 0
    assert "team-a/dev" in listed.stdout and "Total" in listed.stdout

    names = runner.invoke(cli, [*args, "list-contexts"])
    assert "p" in names.stdout.split()

    switched = runner.invoke(cli, [*args, "p"])
    with open(_switched_path(switched)) as handle:
        assert yaml.safe_load(handle)["kubeswitch-context"] == "team-a/dev"

    removed = runner.invoke(cli, [*args, "alias", "rm", "p"])
    assert "Removed alias p for context team-a/dev" in removed.output
    missing = runner.invoke(cli, [*args, "alias", "rm", "p"])
    assert missing.exit_code == 1
    assert 'alias with name "p" does not exist' in missing.output

    empty = runner.invoke(cli, [*args, "alias", "ls"])
    assert "No aliases registered" in empty.stdout


def test_alias_with_bare_context_name_stores_prefixed_name(runner, switch_env):
    args, state = switch_env
    result = runner.invoke(cli, [*args, "alias", "prd=prod"])
    assert result.exit_code == 0, result.output
    stored = _load(state / "switch.alias")
    assert stored["contextToAliasMapping"] == {"team-b/prod": "prd"}

    switched = runner.invoke(cli, [*args, "prd"])
    assert _load(_switched_path(switched))["kubeswitch-context"] == "team-b/prod"


def test_alias_for_unknown_context_fails(runner, switch_env):
    args, state = switch_env
    result = runner.invoke(cli, [*args, "alias", "typo=does-not-exist"])
    assert result.exit_code == 1
    assert "cannot set alias 'typo'" in result.output
    assert "does-not-exist" in result.output
    assert not (state / "switch.alias").exists()


def test_invalid_alias(runner, switch_env):
    args, _ = switch_env
    result = runner.invoke(cli, [*args, "alias", "nonsense"])
    assert result.exit_code == 1
    assert "expected ALIAS=CONTEXT" in result.output


def test_show_prints_raw_kubeconfig(runner, switch_env):
    args, _ = switch_env
    result = runner.invoke(cli, [*args, "show", "team-b/prod"])
    assert result.exit_code == 0, result.output
    assert yaml.safe_load(result.stdout)["users"][0]["user"]["token"] == "secret-prod"


def test_clean_removes_temp_kubeconfigs(runner, switch_env, home):
    args, _ = switch_env
    runner.invoke(cli, [*args, "team-b/prod"])
    result = runner.invoke(cli, [*args, "clean"])
    assert result.exit_code == 0, result.output
    assert "Cleaned 1 files." in result.stdout
    assert not (home / ".kube" / ".switch_tmp").exists()


def test_namespace_with_name(runner, switch_env, home, monkeypatch):
    args, _ = switch_env
    path = _switched_path(runner.invoke(cli, [*args, "team-b/prod"]))

    async def exists(kubeconfig_path, namespace, kubectl="kubectl"):
        return namespace == "monitoring"

    monkeypatch.setattr(namespace_commands, "namespace_exists", exists)
    monkeypatch.setenv("KUBECONFIG", path)

    result = runner.invoke(cli, [*args, "ns", "monitoring"])
    assert result.exit_code == 0, result.output
    with open(path) as handle:
        assert yaml.safe_load(handle)["contexts"][0]["context"]["namespace"] == "monitoring"
    history = (home / ".kube" / ".switch_history").read_text().splitlines()
    assert history[-1] == "team-b/prod :: monitoring"

    missing = runner.invoke(cli, [*args, "ns", "nope"])
    assert missing.exit_code == 1
    assert "namespace 'nope' not found" in missing.output


def test_default_store_without_config(runner, home, tmp_path):
    write_kubeconfig(home / ".kube", "local")
    result = runner.invoke(
        cli, ["--config-path", str(tmp_path / "none.yaml"), "--state-directory", str(tmp_path / "s"), "list-contexts"]
    )
    assert result.exit_code == 0, result.output
    assert result.stdout.split() == [".kube/local"]


def test_invalid_config_is_reported(runner, home, tmp_path):
    config = write_switch_config(
        tmp_path / "bad.yaml",
        """
        kind: SwitchConfig
        version: v1alpha1
        kubeconfigStores:
        - kind: floppy
        """,
    )
    result = runner.invoke(cli, ["--config-path", config, "list-contexts"])
    assert result.exit_code == 1
    assert "unknown store kind 'floppy'" in result.output


def test_version(runner):
    result = runner.invoke(cli, ["version"])
    assert result.exit_code == 0
    assert result.stdout.strip()


@pytest.fixture
def debug_mode():
    yield
    debug.disable()


def test_debug_flag_logs_traceback(runner, switch_env, caplog, debug_mode):
    args, _ = switch_env
    result = runner.invoke(cli, ["--debug", *args, "set-context", "nope"])
    assert result.exit_code == 1
    failures = [r for r in caplog.records if r.getMessage() == "command failed"]
    assert failures and failures[0].exc_info is not None


def test_errors_without_debug_are_one_line(runner, switch_env, caplog):
    args, _ = switch_env
    result = runner.invoke(cli, [*args, "set-context", "nope"])
    assert result.exit_code == 1
    assert not [r for r in caplog.records if r.getMessage() == "command failed"]
