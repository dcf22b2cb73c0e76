# src/cratewatch/cli/tree_cmds.py

import asyncio
from pathlib import Path

import click
import structlog
from rich.console import Console

from cratewatch.cli.utils import (
    logging_options,
    open_session,
    resolve_config,
    setup_logging_from_context,
    workspace_options,
)
from cratewatch.discovery.presentation import render
from cratewatch.exceptions import CratewatchError
from cratewatch.model import collect_tests
from cratewatch.telemetry import StructLogger

log: StructLogger = structlog.get_logger("cli.tree")


async def _discover_and_render(config, console: Console) -> int:
    async with open_session(config) as session:
        console.print(render(session.builder.roots, title="Tests"))
        count = len(collect_tests(session.tree.roots))
        console.print(f"{count} test(s) in {len(session.tree.roots)} workspace(s)")
        return count


@click.command(name="tree")
@workspace_options
@logging_options
@click.pass_context
def tree_cli(ctx: click.Context, config_path: Path, workspaces: tuple[Path, ...], **kwargs):
    """Discover the tests of the workspaces and print them as a tree."""
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
        asyncio.run(_discover_and_render(config, Console()))
    except CratewatchError as e:
        log.error("Test discovery failed", error=str(e), exc_info=True)
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)

# 🔼⚙️
