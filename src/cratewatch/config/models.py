#
# config/models.py
#
"""
Attrs-based data models for cratewatch configuration structure.
"""

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from attrs import define, field


# --- Validators ---
def _validate_log_level(inst: Any, attr: Any, value: str) -> None:
    """Validator for standard logging level names."""
    valid = logging._nameToLevel.keys()
    if value.upper() not in valid:
        raise ValueError(f"Invalid log_level '{value}'. Must be one of {list(valid)}.")


def _validate_non_negative(inst: Any, attr: Any, value: float) -> None:
    if isinstance(value, bool) or not isinstance(value, int | float) or value < 0:
        raise ValueError(f"Field '{attr.name}' must be a non-negative number, got {value!r}")


def _validate_non_empty(inst: Any, attr: Any, value: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Field '{attr.name}' must be a non-empty string, got {value!r}")


@define(frozen=True, slots=True)
class GlobalConfig:
    """Global default settings for cratewatch."""
    log_level: str = field(default="INFO", validator=_validate_log_level)

    @property
    def numeric_log_level(self) -> int:
        return logging.getLevelName(self.log_level.upper())


@define(frozen=True, slots=True)
class DiscoveryConfig:
    """How source changes are picked up and turned into model updates."""
    # Trailing-edge debounce window per file; a burst only reconciles once
    debounce_seconds: float = field(default=2.0, validator=_validate_non_negative)
    rust_analyzer: str = field(default="rust-analyzer", validator=_validate_non_empty)


@define(frozen=True, slots=True)
class RunnerConfig:
    """How `cargo test` is launched."""
    cargo: str = field(default="cargo", validator=_validate_non_empty)
    # The analyzer needs captured output to attach failure messages
    strip_nocapture: bool = field(default=True)
    env: Mapping[str, str] = field(factory=dict)


@define(frozen=True, slots=True)
class CratewatchConfig:
    """Root configuration object for the cratewatch application."""
    workspaces: tuple[Path, ...] = field(factory=tuple)
    global_config: GlobalConfig = field(factory=GlobalConfig, metadata={"toml_name": "global"})
    discovery: DiscoveryConfig = field(factory=DiscoveryConfig)
    runner: RunnerConfig = field(factory=RunnerConfig)
    config_path: Path | None = field(default=None, repr=False)

# 🔼⚙️
