# src/cratewatch/cli/run_cmds.py

import asyncio
from pathlib import Path

import click
import structlog
from rich.console import Console
from rich.panel import Panel

from cratewatch.cli.utils import (
    logging_options,
    open_session,
    resolve_config,
    setup_logging_from_context,
    workspace_options,
)
from cratewatch.config import CratewatchConfig
from cratewatch.discovery.presentation import render
from cratewatch.exceptions import CratewatchError
from cratewatch.runtime.orchestrator import DiscoverySession, find_nodes_by_test_path
from cratewatch.state import TestOutcome, TestRunState
from cratewatch.telemetry import StructLogger
from cratewatch.testing import SubprocessTestRunner

log: StructLogger = structlog.get_logger("cli.run")


def _select_node(session: DiscoverySession, test_path: str, package: str | None, target: str | None):
    nodes = find_nodes_by_test_path(session.tree, test_path, package=package, target=target)
    if not nodes:
        raise click.ClickException(f"No test or module matches '{test_path}'")
    if len(nodes) > 1:
        raise click.ClickException(
            f"'{test_path}' is ambiguous ({len(nodes)} matches); narrow it with --package or --target"
        )
    return nodes[0]


def _report(session: DiscoverySession, state: TestRunState, console: Console) -> None:
    """Prints the outcome tree, failure messages and a one-line summary."""
    outcomes: dict[str, TestOutcome] = {}
    for node, outcome in state.outcomes.items():
        item = session.builder.item_for(node)
        if item is not None:
            outcomes[item.id] = outcome
    console.print(render(session.builder.roots, title="Results", outcomes=outcomes))

    for node, message in state.messages.items():
        console.print(Panel(message, title="::".join(node.test_path), border_style="red"))

    summary = state.summary()
    console.print(", ".join(f"{count} {name}" for name, count in summary.items() if count))


async def _run(config: CratewatchConfig, test_path: str, package, target, console: Console) -> TestRunState:
    async with open_session(config) as session:
        node = _select_node(session, test_path, package, target)
        runner = SubprocessTestRunner(session.synchronizer, config.runner)
        state = TestRunState()
        await runner.run(node, state)
        _report(session, state, console)
        return state


async def _replay(
    config: CratewatchConfig, output_file: Path, test_path: str, package, target, console: Console
) -> TestRunState:
    async with open_session(config) as session:
        node = _select_node(session, test_path, package, target)
        runner = SubprocessTestRunner(session.synchronizer, config.runner)
        state = TestRunState()
        await runner.replay_output_file(node, output_file, state)
        _report(session, state, console)
        return state


def _selection_options(f):
    f = click.option("-p", "--package", default=None, help="Only consider targets of this package.")(f)
    f = click.option("-t", "--target", default=None, help="Only consider targets with this name.")(f)
    return f


def _exit_code(state: TestRunState) -> int:
    return 1 if any(o is TestOutcome.FAILED for o in state.outcomes.values()) else 0


@click.command(name="run")
@click.argument("test_path")
@_selection_options
@workspace_options
@logging_options
@click.pass_context
def run_cli(
    ctx: click.Context,
    test_path: str,
    package: str | None,
    target: str | None,
    config_path: Path,
    workspaces: tuple[Path, ...],
    **kwargs,
):
    """
    Run one test or test module and report the outcomes.

    TEST_PATH is the `::`-separated path, e.g. `inner::case1`. An empty
    string runs whole targets.
    """
    setup_logging_from_context(
        ctx,
        local_log_level=kwargs.get("log_level"),
        local_log_file=kwargs.get("log_file"),
        local_json_logs=kwargs.get("json_logs"),
        default_log_level="WARNING",
        headless_mode=True,
    )
    try:
        config = resolve_config(config_path, workspaces)
        state = asyncio.run(_run(config, test_path, package, target, Console()))
    except CratewatchError as e:
        log.error("Test run failed", error=str(e), exc_info=True)
        click.echo(f"Error: {e}", err=True)
        ctx.exit(2)
    ctx.exit(_exit_code(state))


@click.command(name="replay")
@click.argument("output_file", type=click.Path(exists=True, dir_okay=False, readable=True, path_type=Path))
@click.argument("test_path")
@_selection_options
@workspace_options
@logging_options
@click.pass_context
def replay_cli(
    ctx: click.Context,
    output_file: Path,
    test_path: str,
    package: str | None,
    target: str | None,
    config_path: Path,
    workspaces: tuple[Path, ...],
    **kwargs,
):
    """Analyze saved `cargo test` output as if it came from running TEST_PATH."""
    setup_logging_from_context(
        ctx,
        local_log_level=kwargs.get("log_level"),
        local_log_file=kwargs.get("log_file"),
        local_json_logs=kwargs.get("json_logs"),
        default_log_level="WARNING",
        headless_mode=True,
    )
    try:
        config = resolve_config(config_path, workspaces)
        state = asyncio.run(_replay(config, output_file, test_path, package, target, Console()))
    except CratewatchError as e:
        log.error("Replay failed", error=str(e), exc_info=True)
        click.echo(f"Error: {e}", err=True)
        ctx.exit(2)
    ctx.exit(_exit_code(state))

# 🔼⚙️
