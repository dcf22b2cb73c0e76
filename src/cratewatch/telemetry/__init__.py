#
# src/cratewatch/telemetry/__init__.py
#
"""
Telemetry sub-package: structured logging setup for cratewatch.
"""
from .logger import StructLogger, setup_logging

__all__ = ["StructLogger", "setup_logging"]
