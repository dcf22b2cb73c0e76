# src/cratewatch/discovery/synchronizer.py

"""
Keeps the test model in step with the source files of the watched workspaces.

Each public coroutine is one synchronization unit. Units only suspend while
waiting on a collaborator; between those points the tree is mutated without
interleaving, so callers must run at most one unit at a time.
"""

import weakref
from collections.abc import Iterable, Sequence
from pathlib import Path

import structlog

from cratewatch.discovery.runnable import Runnable, decode_runnables, sort_key
from cratewatch.exceptions import CratewatchError, invariant
from cratewatch.model import (
    NodeKind,
    PackageNode,
    TargetNode,
    TestLikeNode,
    TestLocation,
    TestModuleNode,
    TestNode,
    WorkspaceNode,
    WorkspaceTree,
    collect_falsy_leaves,
    is_attached,
    remove_recursively,
    target_of,
)
from cratewatch.protocols import DefinitionResolver, MetadataProvider, RunnableProvider
from cratewatch.telemetry import StructLogger

log: StructLogger = structlog.get_logger("discovery.synchronizer")

MatchKey = tuple[NodeKind, tuple[str, ...]]


class TestModelSynchronizer:
    """Applies runnables reported for a file to the test model."""

    __test__ = False

    def __init__(
        self,
        tree: WorkspaceTree,
        metadata_provider: MetadataProvider,
        runnable_provider: RunnableProvider,
        definition_resolver: DefinitionResolver,
        workspace_roots: Sequence[Path] = (),
    ) -> None:
        self.tree = tree
        self.metadata_provider = metadata_provider
        self.runnable_provider = runnable_provider
        self.definition_resolver = definition_resolver
        self.workspace_roots = list(workspace_roots)
        # Entries die with their node; the whole table is reset on refresh
        self._runnables: weakref.WeakKeyDictionary[TestLikeNode, Runnable] = weakref.WeakKeyDictionary()
        log.debug("Synchronizer initialized", workspace_roots=[str(r) for r in self.workspace_roots])

    # --- Registry ---
    def runnable_for(self, node: TargetNode | TestLikeNode) -> Runnable:
        """The runnable last seen for `node`. A target answers with its root module's."""
        if isinstance(node, TargetNode):
            node = node.root_module
        runnable = self._runnables.get(node)
        invariant(runnable is not None, f"No runnable is known for {node.kind.name} '{'::'.join(node.test_path)}'")
        return runnable

    def has_runnable(self, node: TargetNode | TestLikeNode) -> bool:
        if isinstance(node, TargetNode):
            node = node.root_module
        return node in self._runnables

    # --- Full rebuild ---
    async def refresh(self) -> None:
        """Discards the model and rebuilds it from metadata and every target source file."""
        self.tree.clear()
        self._runnables = weakref.WeakKeyDictionary()

        metadata = await self.metadata_provider.workspaces(self.workspace_roots)
        if not metadata:
            log.warning("No workspace metadata available, model left empty", roots=[str(r) for r in self.workspace_roots])
            return

        workspaces = [m.without_dependencies() for m in metadata]
        self.tree.init_by_metadata(workspaces)

        # Targets come back without tests. Treating each source file as changed
        # populates them and prunes the ones holding no tests at all.
        source_files = dict.fromkeys(
            target.src_path for workspace in self.tree for package in workspace.members for target in package.targets
        )
        for path in source_files:
            try:
                await self.update_model_by_change_of_file(path)
            except CratewatchError:
                log.error("Failed to synchronize target source file", path=str(path), exc_info=True)

        log.info(
            "Model refreshed",
            workspaces=len(self.tree.roots),
            source_files=len(source_files),
        )

    # --- Incremental updates ---
    async def update_model_by_change_of_file(self, path: Path) -> None:
        """Reconciles the part of the model that `path` contributes."""
        await self._sync_file(path, resync_declaring_file=True)

    async def _sync_file(self, path: Path, resync_declaring_file: bool) -> None:
        bound_log = log.bind(path=str(path))
        runnables = await self._runnables_in_file(path)

        if not runnables:
            removed = self.tree.remove_nodes_defined_in(path)
            bound_log.debug("File holds no runnables", removed_modules=removed)
            return

        modules = sorted((r for r in runnables if r.test_kind is NodeKind.TEST_MODULE), key=sort_key)
        first = modules[0] if modules else min(runnables, key=sort_key)
        nearest = self.tree.find_nearest_node(first)

        match nearest:
            case WorkspaceNode():
                bound_log.info(
                    "Package is not part of the workspace metadata, waiting for the next refresh",
                    package=first.package_name,
                )
                return
            case TestNode():
                invariant(False, f"Runnable '{first.label}' resolves below a test")
            case PackageNode() if first.is_root_marker:
                target = TargetNode(nearest, first.target_kind, first.target_name, first.path)
                bound_log.debug("Target created lazily", target=target.name, package=nearest.name)
                await self._reconcile(target.root_module, runnables)
                return
            case TestModuleNode():
                owner = self._file_owner(nearest, path)
                if owner is not None:
                    await self._reconcile(owner, runnables)
                    return
                # The module backed by `path` is not modeled yet. Its declaration
                # only shows up in the declaring file once `path` holds tests.
                declaring = self._enclosing_file_owner(nearest)
                if resync_declaring_file and declaring.definition_path != path:
                    bound_log.debug("Re-reading declaring file", declaring_file=str(declaring.definition_path))
                    await self._sync_file(declaring.definition_path, resync_declaring_file=False)
                    return

        await self._fetch_falsy_leaves(collect_falsy_leaves(nearest))

    async def fetch_children(self, module: TestModuleNode) -> None:
        """Populates an empty module from the runnables of its definition file."""
        invariant(not module.children, "A module must be empty before its children are fetched")
        invariant(
            module.is_root == (not module.is_declared_elsewhere),
            "Only root modules and declared modules are fetched from their own file",
        )
        runnables = await self._runnables_in_file(module.definition_path)
        if not runnables:
            log.debug("Definition file holds no tests, removing module", path=str(module.definition_path))
            remove_recursively(module)
            return
        await self._reconcile(module, runnables)

    def remove_file(self, path: Path) -> int:
        """Drops everything defined in a deleted file."""
        return self.tree.remove_nodes_defined_in(path)

    # --- Internals ---
    async def _runnables_in_file(self, path: Path) -> list[Runnable]:
        raw = await self.runnable_provider.runnables_in_file(path)
        return decode_runnables(raw)

    async def _module_definition(self, runnable: Runnable) -> TestLocation:
        locations = await self.definition_resolver.module_definition(runnable.location)
        invariant(
            len(locations) == 1,
            f"Module declaration '{runnable.label}' must resolve to exactly one definition, got {len(locations)}",
        )
        return locations[0]

    async def _fetch_falsy_leaves(self, leaves: Iterable[TestModuleNode]) -> None:
        """Expands empty modules that own a file; empty inline modules are dropped."""
        for module in leaves:
            if not is_attached(module) or module.children:
                continue
            if module.is_root or module.is_declared_elsewhere:
                await self.fetch_children(module)
            else:
                remove_recursively(module)

    @staticmethod
    def _enclosing_file_owner(node: TestModuleNode) -> TestModuleNode:
        """The module whose definition file contains the body of `node`."""
        while not (node.is_root or node.is_declared_elsewhere):
            node = node.parent
        return node

    def _file_owner(self, node: TestModuleNode, path: Path) -> TestModuleNode | None:
        """The closest module at or above `node` whose own file is `path`."""
        current: TestModuleNode | TargetNode = node
        while isinstance(current, TestModuleNode):
            if current.definition_path == path and (current.is_root or current.is_declared_elsewhere):
                return current
            current = current.parent
        return None

    def _nodes_in_file(self, owner: TestModuleNode) -> dict[MatchKey, TestLikeNode]:
        """Tests and modules below `owner` that are written in the owner's file."""
        found: dict[MatchKey, TestLikeNode] = {}
        pending: list[TestModuleNode] = [owner]
        while pending:
            module = pending.pop()
            for child in module.children:
                found[(child.kind, child.test_path)] = child
                if isinstance(child, TestModuleNode) and not child.is_declared_elsewhere:
                    pending.append(child)
        return found

    def _belongs_under(self, owner: TestModuleNode, runnable: Runnable) -> bool:
        target = target_of(owner)
        prefix = owner.test_path
        return (
            runnable.target_kind is target.target_kind
            and runnable.target_name == target.name
            and runnable.package_name == target.parent.name
            and len(runnable.test_paths) > len(prefix)
            and runnable.test_paths[: len(prefix)] == prefix
        )

    async def _reconcile(self, owner: TestModuleNode, runnables: Iterable[Runnable]) -> None:
        """
        Diffs the file-scoped children of `owner` against fresh runnables.

        Nodes whose kind and test path reappear are kept and updated in place,
        so their identity survives the edit. New runnables become nodes, and
        nodes without a runnable are removed with the cascading rule. An owner
        left without children is removed too; for a root module that drops the
        whole target.
        """
        target = target_of(owner)
        runnables = list(runnables)
        for runnable in runnables:
            if owner.is_root and runnable.is_root_marker:
                self._runnables[owner] = runnable

        # File-definition runnables stand for the owner itself
        wanted = {
            (r.test_kind, r.test_paths): r
            for r in runnables
            if not r.is_file_definition and not r.is_root_marker and self._belongs_under(owner, r)
        }

        existing = self._nodes_in_file(owner)
        # A module switching between `mod x;` and `mod x { ... }` is replaced
        reshaped = [
            node
            for key, node in existing.items()
            if isinstance(node, TestModuleNode)
            and key in wanted
            and node.is_declared_elsewhere != wanted[key].is_declaration
        ]
        if reshaped:
            for module in reshaped:
                module.parent.remove_child(module)
            existing = self._nodes_in_file(owner)

        for key in wanted.keys() & existing.keys():
            self._update(existing[key], wanted[key])

        added = sorted(
            (wanted[key] for key in wanted.keys() - existing.keys()),
            key=lambda r: (len(r.test_paths), r.label),
        )
        declared: list[TestModuleNode] = []
        for runnable in added:
            node = await self._add(target, runnable)
            if isinstance(node, TestModuleNode) and node.is_declared_elsewhere:
                declared.append(node)

        # Deepest first, so a cascade never walks into a node still to be visited
        stale = sorted(
            (node for key, node in existing.items() if key not in wanted),
            key=lambda n: len(n.test_path),
            reverse=True,
        )
        for node in stale:
            if is_attached(node):
                remove_recursively(node)

        for module in declared:
            if is_attached(module) and not module.children:
                await self.fetch_children(module)

        for module in self._nodes_in_file(owner).values():
            if isinstance(module, TestModuleNode) and not module.children and is_attached(module):
                remove_recursively(module)

        if not owner.children and is_attached(owner):
            log.debug("File no longer contributes tests", path=str(owner.definition_path), target=target.name)
            remove_recursively(owner)
            return

        log.debug(
            "File reconciled",
            path=str(owner.definition_path),
            target=target.name,
            kept=len(wanted.keys() & existing.keys()),
            added=len(added),
            removed=len(stale),
            reshaped=len(reshaped),
        )

    def _update(self, node: TestLikeNode, runnable: Runnable) -> None:
        self._runnables[node] = runnable
        if isinstance(node, TestNode):
            node.location = runnable.to_test_location()
        else:
            node.declaration = runnable.to_test_location()

    async def _add(self, target: TargetNode, runnable: Runnable) -> TestLikeNode:
        parent_path = runnable.test_paths[:-1]
        parent = self.tree.find_module(target, parent_path)
        invariant(
            parent is not None,
            f"Parent module '{'::'.join(parent_path)}' of '{runnable.label}' is not in the model",
        )

        node: TestLikeNode
        if runnable.test_kind is NodeKind.TEST:
            node = TestNode(parent, runnable.test_or_suite_name, runnable.to_test_location())
        elif runnable.is_declaration:
            definition = await self._module_definition(runnable)
            node = TestModuleNode(parent, runnable.test_or_suite_name, runnable.to_test_location(), definition.path)
        else:
            node = TestModuleNode(parent, runnable.test_or_suite_name, runnable.to_test_location(), runnable.path)

        self._runnables[node] = runnable
        return node
