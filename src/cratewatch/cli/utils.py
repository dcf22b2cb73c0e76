# src/cratewatch/cli/utils.py

import logging
from contextlib import AbstractAsyncContextManager
from pathlib import Path

import click
import structlog

from cratewatch.config import DEFAULT_CONFIG_NAME, CratewatchConfig, config_for_workspaces, load_config
from cratewatch.runtime.orchestrator import DiscoverySession, discovery_session
from cratewatch.telemetry.logger import setup_logging as core_setup_logging

log = structlog.get_logger("cli.utils")

LOG_LEVEL_CHOICES = click.Choice(list(logging._nameToLevel.keys()), case_sensitive=False)


def logging_options(f):
    """Decorator to add logging options to any command."""
    f = click.option(
        "-l",
        "--log-level",
        type=LOG_LEVEL_CHOICES,
        default=None,
        envvar="CRATEWATCH_LOG_LEVEL",
        help="Set the logging level (overrides config file).",
    )(f)
    f = click.option(
        "--log-file",
        type=click.Path(dir_okay=False, writable=True, resolve_path=True),
        default=None,
        envvar="CRATEWATCH_LOG_FILE",
        help="Path to write logs to a file (JSON format).",
    )(f)
    f = click.option(
        "--json-logs",
        is_flag=True,
        default=None,
        envvar="CRATEWATCH_JSON_LOGS",
        help="Output console logs as JSON.",
    )(f)
    return f


def workspace_options(f):
    """Decorator for commands that need to know which workspaces to model."""
    f = click.option(
        "-c",
        "--config-path",
        type=click.Path(file_okay=True, dir_okay=False, path_type=Path),
        default=Path(DEFAULT_CONFIG_NAME),
        show_default=True,
        envvar="CRATEWATCH_CONF",
        show_envvar=True,
        help="Path to the cratewatch configuration file (env var CRATEWATCH_CONF).",
    )(f)
    f = click.option(
        "-w",
        "--workspace",
        "workspaces",
        type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
        multiple=True,
        help="Workspace root to model instead of the configured ones. Repeatable.",
    )(f)
    return f


def resolve_config(config_path: Path, workspaces: tuple[Path, ...]) -> CratewatchConfig:
    """Explicit `--workspace` roots win over the configuration file."""
    if workspaces:
        return config_for_workspaces(list(workspaces))
    return load_config(config_path)


def open_session(config: CratewatchConfig) -> AbstractAsyncContextManager[DiscoverySession]:
    """The discovery session used by the one-shot commands."""
    return discovery_session(config)


def setup_logging_from_context(
    ctx: click.Context,
    local_log_level: str | None = None,
    local_log_file: str | None = None,
    local_json_logs: bool | None = None,
    default_log_level: str = "INFO",
    headless_mode: bool = False,
) -> None:
    """
    Setup logging using context values, allowing local overrides.
    """
    obj = ctx.obj or {}
    log_level_str = local_log_level or obj.get("LOG_LEVEL") or default_log_level
    log_file_path = local_log_file or obj.get("LOG_FILE")
    use_json_logs = local_json_logs if local_json_logs is not None else obj.get("JSON_LOGS", False)

    numeric_level = logging.getLevelName(log_level_str.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
        log_level_str = "INFO"

    core_setup_logging(
        level=numeric_level,
        json_logs=use_json_logs,
        log_file=log_file_path,
        file_only=False,
        headless_mode=headless_mode,
    )

    log.debug(
        "CLI logging initialized via utils",
        level=log_level_str,
        file=log_file_path or "console",
        json=use_json_logs,
        headless=headless_mode,
    )

# ⚙️🛠️
