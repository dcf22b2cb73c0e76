# src/cratewatch/model/workspace_tree.py

"""
The root of the test model and its structural queries and deletions.

This layer performs no I/O; the synchronizer drives it.
"""

from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from cratewatch.exceptions import invariant
from cratewatch.model.nodes import (
    NodeKind,
    PackageNode,
    TargetKind,
    TargetNode,
    TestLikeNode,
    TestModuleNode,
    TestNode,
    WorkspaceNode,
)
from cratewatch.model.traversal import collect_modules
from cratewatch.telemetry import StructLogger

if TYPE_CHECKING:
    from cratewatch.discovery.runnable import Runnable
    from cratewatch.protocols import CargoMetadata

log: StructLogger = structlog.get_logger("model.workspace_tree")


def _same_root(a: Path, b: Path) -> bool:
    return str(a).lower() == str(b).lower()


class WorkspaceTree:
    """Owns the workspace roots of the test model."""

    def __init__(self) -> None:
        self.roots: list[WorkspaceNode] = []

    def __iter__(self):
        return iter(self.roots)

    def clear(self) -> None:
        self.roots.clear()

    def init_by_metadata(self, metadata: Iterable["CargoMetadata"]) -> None:
        """
        Builds workspaces, packages and targets from metadata.

        Afterwards every target has its (empty) root module but no tests.
        """
        for workspace_metadata in metadata:
            invariant(
                all(p.id in workspace_metadata.workspace_members for p in workspace_metadata.packages),
                "Metadata must not contain dependency packages",
            )
            workspace = WorkspaceNode(workspace_metadata.workspace_root)
            for package_metadata in workspace_metadata.packages:
                package = PackageNode(workspace, package_metadata.name, package_metadata.manifest_path)
                for target_metadata in package_metadata.targets:
                    target_kind = TargetKind.from_cargo_kinds(target_metadata.kind)
                    if target_kind is None:
                        continue
                    TargetNode(package, target_kind, target_metadata.name, target_metadata.src_path)
            self.roots.append(workspace)
            log.debug(
                "Workspace added to model",
                workspace_root=str(workspace.workspace_root),
                packages=len(workspace.members),
            )

    def find_workspace(self, workspace_root: Path) -> WorkspaceNode | None:
        return next((w for w in self.roots if _same_root(w.workspace_root, workspace_root)), None)

    def find_nearest_node(
        self, runnable: "Runnable"
    ) -> WorkspaceNode | PackageNode | TestModuleNode | TestNode:
        """The deepest existing node on the path the runnable implies."""
        workspace = self.find_workspace(runnable.workspace_root)
        invariant(workspace is not None, f"No workspace is modeled for '{runnable.workspace_root}'")

        package = next((p for p in workspace.members if p.name == runnable.package_name), None)
        if package is None:
            return workspace

        target = next(
            (
                t
                for t in package.targets
                if t.name == runnable.target_name and t.target_kind is runnable.target_kind
            ),
            None,
        )
        if target is None:
            return package

        return self.find_test_like_node_under_target(target, runnable.test_kind, runnable.test_paths)

    def find_test_like_node_under_target(
        self, target: TargetNode, kind: NodeKind, test_paths: Sequence[str]
    ) -> TestLikeNode:
        """
        Walks `test_paths` below the target's root module.

        Returns the node for the full path, or the deepest module reached
        when a segment is missing. The final segment is matched against
        `kind`, every earlier one against test modules.
        """
        module = target.root_module
        for index, name in enumerate(test_paths):
            is_last = index == len(test_paths) - 1
            wanted = kind if is_last else NodeKind.TEST_MODULE
            candidate = next(
                (c for c in module.children if c.kind is wanted and c.name == name),
                None,
            )
            if candidate is None:
                return module
            if is_last:
                return candidate
            module = candidate
        return module

    def find_module(self, target: TargetNode, test_paths: Sequence[str]) -> TestModuleNode | None:
        """The test module at exactly `test_paths`, or None."""
        node = self.find_test_like_node_under_target(target, NodeKind.TEST_MODULE, test_paths)
        if isinstance(node, TestModuleNode) and node.test_path == tuple(test_paths):
            return node
        return None

    def resolve_exact(self, target: TargetNode, test_paths: Sequence[str]) -> TestLikeNode | None:
        """
        The test or test module at exactly `test_paths`, or None.

        A test wins over a module of the same name.
        """
        wanted = tuple(test_paths)
        for kind in (NodeKind.TEST, NodeKind.TEST_MODULE):
            node = self.find_test_like_node_under_target(target, kind, wanted)
            if node.kind is kind and node.test_path == wanted:
                return node
        return None

    def remove_nodes_defined_in(self, path: Path) -> int:
        """
        Removes every test module whose body lives in `path`.

        Returns how many modules matched.
        """
        matched = collect_modules(
            self.roots,
            lambda module: module.definition_path == path,
            stop_at_match=True,
        )
        for module in matched:
            remove_recursively(module)
        if matched:
            log.debug("Removed modules defined in file", path=str(path), count=len(matched))
        return len(matched)


def remove_recursively(node: TestLikeNode) -> None:
    """
    Detaches `node` and every ancestor module it leaves empty.

    The cascade stops at the first module that still has children or at a
    target's root module. Removing a root module itself means the target's
    source file no longer holds tests, so the target is dropped from its
    package. Packages and workspaces are never removed here.
    """
    current: TestLikeNode = node
    while True:
        parent = current.parent
        if isinstance(parent, TargetNode):
            parent.parent.remove_target(parent)
            log.debug("Target removed", target=parent.name, package=parent.parent.name)
            return
        parent.remove_child(current)
        if parent.children or parent.is_root:
            return
        current = parent


def is_attached(node: TestLikeNode | TargetNode) -> bool:
    """True while every link from `node` up to its workspace is still in place."""
    current: TestLikeNode | TargetNode | PackageNode = node
    while not isinstance(current, WorkspaceNode):
        parent = current.parent
        if isinstance(parent, TargetNode):
            linked = parent.root_module is current
        elif isinstance(parent, TestModuleNode):
            linked = current in parent.children
        elif isinstance(parent, PackageNode):
            linked = current in parent.targets
        else:
            linked = current in parent.members
        if not linked:
            return False
        current = parent
    return True
