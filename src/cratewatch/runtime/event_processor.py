# src/cratewatch/runtime/event_processor.py
"""
Consumes filesystem events, debounces them per file, and runs synchronization units.
"""
import asyncio
from collections.abc import Callable
from enum import Enum, auto
from pathlib import Path

import structlog
from attrs import define

from cratewatch.discovery.synchronizer import TestModelSynchronizer
from cratewatch.runtime.monitor import MonitoredEvent
from cratewatch.telemetry import StructLogger

log: StructLogger = structlog.get_logger("runtime.event_processor")
# Two events per save are common (content change, then save), usually about
# a second apart, so the window has to be wider than that.
DEFAULT_DEBOUNCE_SECONDS = 2.0
# Timer key for manifest changes, kept apart from per-file keys
MANIFEST_KEY = "__manifest__"


class UnitKind(Enum):
    REFRESH = auto()
    UPDATE_FILE = auto()
    REMOVE_FILE = auto()


@define(frozen=True, slots=True)
class SyncUnit:
    """One synchronization step, executed on the worker task."""
    kind: UnitKind
    path: Path | None = None


class EventProcessor:
    """
    Turns monitored events into serialized synchronization units.

    Created files are synchronized at once, modified files only after their
    debounce timer fires, deleted files are dropped at once. Changes to a
    `Cargo.toml` trigger a debounced full refresh. Intermediate states within
    one debounce window are never observed.
    """

    def __init__(
        self,
        synchronizer: TestModelSynchronizer,
        event_queue: asyncio.Queue[MonitoredEvent],
        shutdown_event: asyncio.Event,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        on_model_changed: Callable[[], None] | None = None,
    ):
        self.synchronizer = synchronizer
        self.event_queue = event_queue
        self.shutdown_event = shutdown_event
        self.debounce_seconds = debounce_seconds
        self.on_model_changed = on_model_changed
        self._timers: dict[Path | str, asyncio.TimerHandle] = {}
        self._units: asyncio.Queue[SyncUnit] = asyncio.Queue()
        self._worker_task: asyncio.Task | None = None
        log.debug("EventProcessor initialized.", debounce_seconds=debounce_seconds)

    @property
    def pending_timers(self) -> int:
        return len(self._timers)

    def start(self) -> None:
        """Starts the worker that executes synchronization units."""
        if self._worker_task is None or self._worker_task.done():
            self._worker_task = asyncio.create_task(self._work())

    def submit(self, unit: SyncUnit) -> None:
        self._units.put_nowait(unit)

    async def run(self) -> None:
        """Main event consumption loop."""
        log.info("Event processor is running.")
        self.start()

        while not self.shutdown_event.is_set():
            try:
                get_task = asyncio.create_task(self.event_queue.get())
                shutdown_task = asyncio.create_task(self.shutdown_event.wait())
                done, _ = await asyncio.wait({get_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)

                if shutdown_task in done:
                    get_task.cancel()
                    break

                event = get_task.result()
                shutdown_task.cancel()
                self.handle_event(event)

            except asyncio.CancelledError:
                log.info("Event processor run loop cancelled.")
                break
            except Exception:
                log.exception("Error in event processor loop.")

        await self.stop()
        log.info("Event processor has stopped.")

    def handle_event(self, event: MonitoredEvent) -> None:
        event_log = log.bind(event_type=event.event_type, path=str(event.src_path))
        if event.is_manifest:
            event_log.debug("Manifest changed, scheduling refresh")
            self._debounce(MANIFEST_KEY, SyncUnit(UnitKind.REFRESH))
            return

        match event.event_type:
            case "created":
                self._cancel_timer(event.src_path)
                self.submit(SyncUnit(UnitKind.UPDATE_FILE, event.src_path))
            case "modified":
                self._debounce(event.src_path, SyncUnit(UnitKind.UPDATE_FILE, event.src_path))
            case "deleted":
                self._cancel_timer(event.src_path)
                self.submit(SyncUnit(UnitKind.REMOVE_FILE, event.src_path))
            case "moved":
                self._cancel_timer(event.src_path)
                self.submit(SyncUnit(UnitKind.REMOVE_FILE, event.src_path))
                if event.dest_path is not None:
                    self.submit(SyncUnit(UnitKind.UPDATE_FILE, event.dest_path))
            case _:
                event_log.debug("Ignoring event")

    def _debounce(self, key: Path | str, unit: SyncUnit) -> None:
        """Schedules `unit` after the debounce delay, replacing any pending timer for `key`."""
        self._cancel_timer(key)
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(self.debounce_seconds, self._fire, key, unit)
        log.debug("Debounce timer set", key=str(key), delay=self.debounce_seconds)

    def _fire(self, key: Path | str, unit: SyncUnit) -> None:
        self._timers.pop(key, None)
        self.submit(unit)

    def _cancel_timer(self, key: Path | str) -> None:
        handle = self._timers.pop(key, None)
        if handle is not None:
            handle.cancel()

    async def _work(self) -> None:
        while True:
            unit = await self._units.get()
            try:
                await self.execute(unit)
            except asyncio.CancelledError:
                raise
            except Exception:
                # The next event re-derives state from scratch
                log.exception("Synchronization unit failed", unit=unit.kind.name, path=str(unit.path))
            finally:
                self._notify_model_changed()
                self._units.task_done()

    async def execute(self, unit: SyncUnit) -> None:
        match unit.kind:
            case UnitKind.REFRESH:
                await self.synchronizer.refresh()
            case UnitKind.UPDATE_FILE:
                await self.synchronizer.update_model_by_change_of_file(unit.path)
            case UnitKind.REMOVE_FILE:
                self.synchronizer.remove_file(unit.path)
        log.debug("Synchronization unit done", unit=unit.kind.name, path=str(unit.path))

    def _notify_model_changed(self) -> None:
        if self.on_model_changed is None:
            return
        try:
            self.on_model_changed()
        except Exception:
            log.exception("Model change callback failed")

    async def drain(self) -> None:
        """Waits until every submitted unit has been executed."""
        await self._units.join()

    async def stop(self) -> None:
        """Cancels pending timers and the worker."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        if self._worker_task is not None:
            self._worker_task.cancel()
            await asyncio.gather(self._worker_task, return_exceptions=True)
            self._worker_task = None
        log.debug("Event processor stopped its worker.")
