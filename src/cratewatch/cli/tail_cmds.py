# src/cratewatch/cli/tail_cmds.py

import asyncio
import logging
import sys
from pathlib import Path

import click
import structlog
from rich.console import Console

from cratewatch.cli.utils import logging_options, resolve_config, setup_logging_from_context, workspace_options
from cratewatch.exceptions import ConfigurationError
from cratewatch.runtime.orchestrator import WatchOrchestrator
from cratewatch.telemetry import StructLogger

log: StructLogger = structlog.get_logger("cli.tail")


def _run_headless_orchestrator(orchestrator: WatchOrchestrator) -> int:
    """
    Runs the orchestrator under asyncio.run(), which cancels the main task on
    SIGINT and SIGTERM so the orchestrator's cleanup still runs.
    """
    try:
        asyncio.run(orchestrator.run())
        return 0
    except KeyboardInterrupt:
        log.warning("Shutdown initiated by KeyboardInterrupt (CTRL-C).")
        return 130  # Standard exit code for SIGINT
    except Exception:
        log.critical("Orchestrator exited with an unhandled exception.", exc_info=True)
        return 1
    finally:
        logging.shutdown()


@click.command(name="tail")
@workspace_options
@logging_options
@click.pass_context
def tail_cli(ctx: click.Context, config_path: Path, workspaces: tuple[Path, ...], **kwargs):
    """Watch the workspaces and keep the test tree up to date (non-interactive mode)."""
    shutdown_event = asyncio.Event()

    setup_logging_from_context(
        ctx,
        local_log_level=kwargs.get("log_level"),
        local_log_file=kwargs.get("log_file"),
        local_json_logs=kwargs.get("json_logs"),
        headless_mode=True,
    )

    log.info("Initializing tail command...")
    try:
        config = resolve_config(config_path, workspaces)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)

    orchestrator = WatchOrchestrator(
        config_path=config.config_path,
        shutdown_event=shutdown_event,
        console=Console(),
        config=config,
    )

    exit_code = _run_headless_orchestrator(orchestrator)

    log.info("'tail' command finished.")
    if exit_code != 0:
        sys.exit(exit_code)

# 🔼⚙️
