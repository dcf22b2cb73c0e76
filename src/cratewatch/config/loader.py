#
# config/loader.py
#
"""
Reads the TOML configuration file into the attrs models.
"""

import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import attrs
import structlog

from cratewatch.config.models import (
    CratewatchConfig,
    DiscoveryConfig,
    GlobalConfig,
    RunnerConfig,
)
from cratewatch.exceptions import ConfigurationError
from cratewatch.telemetry import StructLogger

log: StructLogger = structlog.get_logger("config.loader")

DEFAULT_CONFIG_NAME = "cratewatch.conf"
ENV_LOG_LEVEL = "CRATEWATCH_LOG_LEVEL"


def _toml_key(attribute: attrs.Attribute) -> str:
    return attribute.metadata.get("toml_name", attribute.name)


def _build_section(cls: type, data: Any, section: str, config_path: Path) -> Any:
    """Instantiates one attrs section class, rejecting unknown keys."""
    if data is None:
        return cls()
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Section [{section}] must be a table", str(config_path))

    known = {a.name for a in attrs.fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"Unknown key(s) in [{section}]: {', '.join(unknown)}", str(config_path))
    try:
        return cls(**data)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value in [{section}]: {e}", str(config_path)) from e


def _resolve_workspaces(raw: Any, config_path: Path) -> tuple[Path, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list) or not all(isinstance(item, str) for item in raw):
        raise ConfigurationError("'workspaces' must be a list of paths", str(config_path))

    base = config_path.parent
    resolved = []
    for item in raw:
        path = Path(item).expanduser()
        if not path.is_absolute():
            path = base / path
        path = path.resolve()
        if not path.is_dir():
            log.warning("Workspace path does not exist or is not a directory", path=str(path))
        resolved.append(path)
    return tuple(resolved)


def _apply_env_overrides(global_config: GlobalConfig) -> GlobalConfig:
    level = os.environ.get(ENV_LOG_LEVEL)
    if not level:
        return global_config
    try:
        return attrs.evolve(global_config, log_level=level)
    except ValueError as e:
        raise ConfigurationError(f"Invalid {ENV_LOG_LEVEL}: {e}") from e


def load_config(config_path: Path) -> CratewatchConfig:
    """
    Loads and validates the configuration file at `config_path`.

    Relative workspace paths are resolved against the file's directory.
    """
    config_path = Path(config_path)
    log.debug("Loading configuration", path=str(config_path))
    try:
        with config_path.open("rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError("Configuration file not found", str(config_path)) from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML syntax: {e}", str(config_path)) from e
    except OSError as e:
        raise ConfigurationError(f"Could not read configuration file: {e}", str(config_path)) from e

    sections = {_toml_key(a): a for a in attrs.fields(CratewatchConfig) if a.name not in ("workspaces", "config_path")}
    unknown = sorted(set(data) - set(sections) - {"workspaces"})
    if unknown:
        raise ConfigurationError(f"Unknown top-level key(s): {', '.join(unknown)}", str(config_path))

    config = CratewatchConfig(
        workspaces=_resolve_workspaces(data.get("workspaces"), config_path),
        global_config=_apply_env_overrides(_build_section(GlobalConfig, data.get("global"), "global", config_path)),
        discovery=_build_section(DiscoveryConfig, data.get("discovery"), "discovery", config_path),
        runner=_build_section(RunnerConfig, data.get("runner"), "runner", config_path),
        config_path=config_path,
    )
    log.info(
        "Configuration loaded",
        path=str(config_path),
        workspaces=len(config.workspaces),
        debounce_seconds=config.discovery.debounce_seconds,
    )
    return config


def config_for_workspaces(workspaces: list[Path]) -> CratewatchConfig:
    """A default configuration watching `workspaces`, for runs without a config file."""
    return CratewatchConfig(
        workspaces=tuple(Path(w).resolve() for w in workspaces),
        global_config=_apply_env_overrides(GlobalConfig()),
    )

# 🔼⚙️
