#
# config/__init__.py
#
"""
Configuration handling sub-package for cratewatch.

Exports the loading function and core configuration model.
"""

from .loader import DEFAULT_CONFIG_NAME, config_for_workspaces, load_config
from .models import (
    CratewatchConfig,
    DiscoveryConfig,
    GlobalConfig,
    RunnerConfig,
)

__all__ = [
    "DEFAULT_CONFIG_NAME",
    "CratewatchConfig",
    "DiscoveryConfig",
    "GlobalConfig",
    "RunnerConfig",
    "config_for_workspaces",
    "load_config",
]

# 🔼⚙️
