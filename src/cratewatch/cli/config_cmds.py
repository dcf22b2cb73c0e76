# src/cratewatch/cli/config_cmds.py

from pathlib import Path

import click
import structlog
from rich.pretty import pretty_repr

from cratewatch.cli.utils import logging_options, setup_logging_from_context
from cratewatch.config import DEFAULT_CONFIG_NAME, load_config
from cratewatch.exceptions import ConfigurationError
from cratewatch.telemetry import StructLogger

log: StructLogger = structlog.get_logger("cli.config")


@click.group(name="config")
def config_cli():
    """Commands for inspecting and validating configuration."""
    pass


@config_cli.command(name="show")
@click.option(
    "-c",
    "--config-path",
    type=click.Path(exists=True, file_okay=True, dir_okay=False, readable=True, path_type=Path),
    default=Path(DEFAULT_CONFIG_NAME),
    show_default=True,
    envvar="CRATEWATCH_CONF",
    help="Path to the cratewatch configuration file (env var CRATEWATCH_CONF).",
    show_envvar=True,
)
@logging_options
@click.pass_context
def show_config(ctx: click.Context, config_path: Path, **kwargs):
    """Load, validate, and display the configuration."""
    setup_logging_from_context(
        ctx,
        local_log_level=kwargs.get("log_level"),
        local_log_file=kwargs.get("log_file"),
        local_json_logs=kwargs.get("json_logs"),
    )
    log.info("Executing 'config show' command", config_path=str(config_path))

    try:
        config = load_config(config_path)
        log.debug("Configuration loaded successfully by 'show' command.")

        # Echo the rich-formatted string so CliRunner captures it
        click.echo(pretty_repr(config, expand_all=True))

        missing = [w for w in config.workspaces if not w.is_dir()]
        if missing:
            log.warning(
                f"{len(missing)} workspace path(s) do not exist.",
                missing=[str(w) for w in missing],
            )
        elif not config.workspaces:
            log.warning("No workspaces are configured.")
        else:
            log.info("All workspace paths validated successfully.")

    except ConfigurationError as e:
        log.error("Failed to load or validate configuration", error=str(e), exc_info=True)
        click.echo(f"Error: Configuration problem in '{config_path}':\n{e}", err=True)
        ctx.exit(1)

# 🔼⚙️
