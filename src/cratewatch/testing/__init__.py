#
# src/cratewatch/testing/__init__.py
#
"""
Test execution and output analysis sub-package for cratewatch.
"""
from .analyzer import (
    LinesOutputAnalyzer,
    PipeOutputAnalyzer,
    TestRun,
    normalize_target_name,
)
from .subprocess_runner import SubprocessTestRunner, build_cargo_command

__all__ = [
    "LinesOutputAnalyzer",
    "PipeOutputAnalyzer",
    "SubprocessTestRunner",
    "TestRun",
    "build_cargo_command",
    "normalize_target_name",
]

# 🔼⚙️
