#
# src/cratewatch/discovery/__init__.py
#
"""
Turns runnables reported by the symbol service into test model updates.
"""
from .runnable import ModuleShape, Runnable, decode_runnables, unique_runnables
from .synchronizer import TestModelSynchronizer

__all__ = [
    "ModuleShape",
    "Runnable",
    "TestModelSynchronizer",
    "decode_runnables",
    "unique_runnables",
]

# 🔼⚙️
