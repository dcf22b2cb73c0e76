# src/cratewatch/runtime/orchestrator.py

"""
High-level coordinator for the cratewatch watch process.
Manages lifecycle of all runtime components.
"""

import asyncio
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from attrs import define, field
from rich.console import Console

from cratewatch.collaborators import CargoMetadataProvider, RustAnalyzerClient
from cratewatch.config import CratewatchConfig, load_config
from cratewatch.discovery.presentation import TestItemTreeBuilder, render
from cratewatch.discovery.synchronizer import TestModelSynchronizer
from cratewatch.exceptions import ConfigurationError, CratewatchError, MonitoringSetupError
from cratewatch.model import TargetNode, TestLikeNode, WorkspaceTree
from cratewatch.protocols import DefinitionResolver, MetadataProvider, RunnableProvider
from cratewatch.telemetry import StructLogger

from .event_processor import EventProcessor
from .monitor import MonitoredEvent, MonitoringService

log: StructLogger = structlog.get_logger("runtime.orchestrator")


@define
class DiscoverySession:
    """The model and the collaborators that keep it current."""
    config: CratewatchConfig
    tree: WorkspaceTree
    synchronizer: TestModelSynchronizer
    builder: TestItemTreeBuilder = field(factory=TestItemTreeBuilder)

    def rebuild_items(self):
        return self.builder.build(self.tree)


@asynccontextmanager
async def discovery_session(
    config: CratewatchConfig,
    metadata_provider: MetadataProvider | None = None,
    runnable_provider: RunnableProvider | None = None,
    definition_resolver: DefinitionResolver | None = None,
) -> AsyncIterator[DiscoverySession]:
    """
    Builds the model for the configured workspaces.

    Collaborators that are not passed in are created from the configuration;
    a rust-analyzer started here is shut down on exit.
    """
    if not config.workspaces:
        raise ConfigurationError("No workspaces configured", str(config.config_path) if config.config_path else None)

    analyzer_client: RustAnalyzerClient | None = None
    if runnable_provider is None or definition_resolver is None:
        analyzer_client = RustAnalyzerClient(config.discovery.rust_analyzer)
        await analyzer_client.start(config.workspaces)
        runnable_provider = runnable_provider or analyzer_client
        definition_resolver = definition_resolver or analyzer_client

    try:
        tree = WorkspaceTree()
        synchronizer = TestModelSynchronizer(
            tree,
            metadata_provider or CargoMetadataProvider(config.runner.cargo),
            runnable_provider,
            definition_resolver,
            config.workspaces,
        )
        await synchronizer.refresh()
        session = DiscoverySession(config=config, tree=tree, synchronizer=synchronizer)
        session.rebuild_items()
        yield session
    finally:
        if analyzer_client is not None:
            await analyzer_client.stop()


def find_nodes_by_test_path(
    tree: WorkspaceTree,
    test_path: str,
    package: str | None = None,
    target: str | None = None,
) -> list[TestLikeNode | TargetNode]:
    """
    Every node whose `::`-joined test path is `test_path`.

    An empty `test_path` selects whole targets.
    """
    segments = tuple(test_path.split("::")) if test_path else ()
    found: list[TestLikeNode | TargetNode] = []
    for workspace in tree:
        for package_node in workspace.members:
            if package is not None and package_node.name != package:
                continue
            for target_node in package_node.targets:
                if target is not None and target_node.name != target:
                    continue
                if not segments:
                    found.append(target_node)
                    continue
                node = tree.resolve_exact(target_node, segments)
                if node is not None:
                    found.append(node)
    return found


class WatchOrchestrator:
    """Instantiates and coordinates all runtime components for the tail command."""

    def __init__(
        self,
        config_path: Path | None,
        shutdown_event: asyncio.Event,
        console: Console | None = None,
        config: CratewatchConfig | None = None,
        metadata_provider: MetadataProvider | None = None,
        runnable_provider: RunnableProvider | None = None,
        definition_resolver: DefinitionResolver | None = None,
    ):
        self.config_path = config_path
        self.shutdown_event = shutdown_event
        self.console = console
        self.config = config
        self.metadata_provider = metadata_provider
        self.runnable_provider = runnable_provider
        self.definition_resolver = definition_resolver
        self.event_queue: asyncio.Queue[MonitoredEvent] = asyncio.Queue()
        self.monitor_service: MonitoringService | None = None
        self.event_processor: EventProcessor | None = None
        self.session: DiscoverySession | None = None

    async def run(self) -> None:
        """Main execution method: setup, run, and cleanup."""
        log.info("Orchestrator run sequence starting.")
        processor_task = None

        try:
            if self.config is None:
                if self.config_path is None:
                    raise ConfigurationError("Neither a configuration nor a configuration path was given")
                try:
                    self.config = await asyncio.to_thread(load_config, self.config_path)
                except ConfigurationError as e:
                    log.critical("Failed to load or validate config", error=str(e), exc_info=True)
                    return

            async with discovery_session(
                self.config, self.metadata_provider, self.runnable_provider, self.definition_resolver
            ) as session:
                self.session = session
                self._show_tree()

                self.event_processor = EventProcessor(
                    session.synchronizer,
                    self.event_queue,
                    self.shutdown_event,
                    debounce_seconds=self.config.discovery.debounce_seconds,
                    on_model_changed=self._on_model_changed,
                )

                self.monitor_service = self._setup_monitoring(self.config.workspaces)
                if self.monitor_service:
                    try:
                        self.monitor_service.start()
                        if not self.monitor_service.is_running:
                            log.error("Monitoring service for workspaces failed to start silently.")
                    except Exception as e:
                        log.critical("Failed to start filesystem monitoring service", error=str(e), exc_info=True)

                log.info("Starting event processor task.")
                processor_task = asyncio.create_task(self.event_processor.run())
                await processor_task

        except asyncio.CancelledError:
            log.warning("Orchestrator task was cancelled.")
        except CratewatchError as e:
            log.critical("Orchestrator could not start", error=str(e), exc_info=True)
        except Exception:
            log.critical("Orchestrator run failed with an unhandled exception.", exc_info=True)
        finally:
            log.info("Orchestrator entering cleanup phase.")
            if processor_task and not processor_task.done():
                processor_task.cancel()
                await asyncio.gather(processor_task, return_exceptions=True)

            if self.monitor_service and self.monitor_service.is_running:
                await self.monitor_service.stop()

            log.info("Orchestrator cleanup complete.")

    def _on_model_changed(self) -> None:
        if self.session is None:
            return
        self.session.rebuild_items()
        self._show_tree()

    def _show_tree(self) -> None:
        if self.session is None or self.console is None:
            return
        self.console.print(render(self.session.builder.roots))

    def _setup_monitoring(self, workspace_roots: Sequence[Path]) -> MonitoringService | None:
        if not workspace_roots:
            return None

        log.info("Setting up filesystem monitoring...")
        service = MonitoringService(self.event_queue)
        loop = asyncio.get_running_loop()

        for root in workspace_roots:
            try:
                service.add_workspace(root, loop)
            except MonitoringSetupError as e:
                log.error("Failed to add workspace to monitor", workspace_root=str(root), error=str(e))
        return service
