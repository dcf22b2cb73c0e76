# src/cratewatch/runtime/monitor.py

"""
Bridges watchdog's observer threads into the asyncio event queue.
"""

import asyncio
from pathlib import Path

import structlog
from attrs import define, field
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from cratewatch.exceptions import MonitoringSetupError
from cratewatch.telemetry import StructLogger

log: StructLogger = structlog.get_logger("runtime.monitor")

MANIFEST_NAME = "Cargo.toml"
SOURCE_SUFFIX = ".rs"
# Build output and VCS metadata never hold sources we model
IGNORED_DIR_NAMES = frozenset({"target", ".git"})


@define(frozen=True, slots=True)
class MonitoredEvent:
    """A relevant filesystem change inside a watched workspace."""
    workspace_root: Path
    event_type: str  # created, modified, deleted or moved
    src_path: Path
    is_directory: bool = False
    dest_path: Path | None = field(default=None)

    @property
    def is_manifest(self) -> bool:
        return self.src_path.name == MANIFEST_NAME or (
            self.dest_path is not None and self.dest_path.name == MANIFEST_NAME
        )


def is_relevant_path(path: Path, workspace_root: Path) -> bool:
    """True for Rust sources and manifests outside build and VCS directories."""
    if path.name != MANIFEST_NAME and path.suffix != SOURCE_SUFFIX:
        return False
    try:
        relative = path.relative_to(workspace_root)
    except ValueError:
        return False
    return not any(part in IGNORED_DIR_NAMES for part in relative.parts[:-1])


class WorkspaceEventHandler(FileSystemEventHandler):
    """Forwards relevant events of one workspace to the asyncio queue."""

    def __init__(
        self,
        workspace_root: Path,
        event_queue: asyncio.Queue[MonitoredEvent],
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        super().__init__()
        self.workspace_root = workspace_root
        self.event_queue = event_queue
        self.loop = loop

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in ("created", "modified", "deleted", "moved"):
            return
        src_path = Path(str(event.src_path))
        dest_raw = getattr(event, "dest_path", "")
        dest_path = Path(str(dest_raw)) if dest_raw else None

        relevant = is_relevant_path(src_path, self.workspace_root) or (
            dest_path is not None and is_relevant_path(dest_path, self.workspace_root)
        )
        if not relevant:
            return

        monitored = MonitoredEvent(
            workspace_root=self.workspace_root,
            event_type=event.event_type,
            src_path=src_path,
            is_directory=False,
            dest_path=dest_path,
        )
        # Called from the observer thread
        self.loop.call_soon_threadsafe(self.event_queue.put_nowait, monitored)


class MonitoringService:
    """Owns one watchdog Observer that watches every workspace root recursively."""

    def __init__(self, event_queue: asyncio.Queue[MonitoredEvent]) -> None:
        self.event_queue = event_queue
        self._observer: Observer | None = None
        self._handlers: dict[Path, WorkspaceEventHandler] = {}

    @property
    def is_running(self) -> bool:
        return self._observer is not None and self._observer.is_alive()

    def add_workspace(self, workspace_root: Path, loop: asyncio.AbstractEventLoop) -> None:
        if not workspace_root.is_dir():
            raise MonitoringSetupError(f"Workspace root is not a directory: '{workspace_root}'")
        if self._observer is None:
            self._observer = Observer()
        handler = WorkspaceEventHandler(workspace_root, self.event_queue, loop)
        try:
            self._observer.schedule(handler, str(workspace_root), recursive=True)
        except OSError as e:
            raise MonitoringSetupError(f"Failed to watch '{workspace_root}': {e}") from e
        self._handlers[workspace_root] = handler
        log.info("Watching workspace", workspace_root=str(workspace_root))

    def start(self) -> None:
        if self._observer is None:
            log.warning("No workspaces scheduled, monitoring not started")
            return
        self._observer.start()
        log.debug("Monitoring service started", workspaces=len(self._handlers))

    async def stop(self) -> None:
        if self._observer is None:
            return
        observer, self._observer = self._observer, None
        if observer.is_alive():
            observer.stop()
            await asyncio.to_thread(observer.join)
        self._handlers.clear()
        log.debug("Monitoring service stopped")

# 🔼⚙️
