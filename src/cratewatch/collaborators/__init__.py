#
# src/cratewatch/collaborators/__init__.py
#
"""
Concrete metadata, runnable and definition providers.
"""
from .cargo import CargoMetadataProvider, filter_out_dependencies, parse_metadata
from .rust_analyzer import RustAnalyzerClient

__all__ = [
    "CargoMetadataProvider",
    "RustAnalyzerClient",
    "filter_out_dependencies",
    "parse_metadata",
]

# 🔼⚙️
