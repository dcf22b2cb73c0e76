#
# src/cratewatch/runtime/__init__.py
#
"""
Watch-mode runtime: filesystem monitoring, debounced synchronization and lifecycle.
"""
from .event_processor import EventProcessor, SyncUnit, UnitKind
from .monitor import MonitoredEvent, MonitoringService
from .orchestrator import DiscoverySession, WatchOrchestrator, discovery_session, find_nodes_by_test_path

__all__ = [
    "DiscoverySession",
    "EventProcessor",
    "MonitoredEvent",
    "MonitoringService",
    "SyncUnit",
    "UnitKind",
    "WatchOrchestrator",
    "discovery_session",
    "find_nodes_by_test_path",
]

# 🔼⚙️
