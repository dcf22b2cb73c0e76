# src/cratewatch/discovery/presentation.py

"""
Mirrors the test model into a tree of display items.

Single-member levels are flattened away and empty workspaces or packages are
hidden, so the item tree is usually shallower than the model.
"""

from pathlib import Path

import structlog
from attrs import define, field
from rich.text import Text
from rich.tree import Tree

from cratewatch.exceptions import invariant
from cratewatch.model import (
    Node,
    PackageNode,
    Range,
    TargetKind,
    TargetNode,
    TestLikeNode,
    TestModuleNode,
    TestNode,
    VisitHandlers,
    VisitResult,
    WorkspaceNode,
    WorkspaceTree,
    target_of,
    walk,
)
from cratewatch.state import TestOutcome
from cratewatch.telemetry import StructLogger

log: StructLogger = structlog.get_logger("discovery.presentation")

WORKSPACE_ICON = "$(project)"
PACKAGE_ICON = "$(package)"
MODULE_ICON = "$(symbol-module)"
TEST_ICON = "$(symbol-method)"
TARGET_ICONS: dict[TargetKind, str] = {
    TargetKind.BINARY: "$(run)",
    TargetKind.LIBRARY: "$(library)",
    TargetKind.INTEGRATION_TEST: "$(beaker)",
}

# Terminal glyphs for the icon classes above
ICON_GLYPHS: dict[str, str] = {
    WORKSPACE_ICON: "🗂️",
    PACKAGE_ICON: "📦",
    "$(run)": "▶️",
    "$(library)": "📚",
    "$(beaker)": "🧪",
    MODULE_ICON: "📁",
    TEST_ICON: "🔹",
}


@define(eq=False)
class TestItem:
    """One entry of the display tree."""

    __test__ = False

    id: str
    label: str
    icon: str
    path: Path
    range: Range | None = None
    children: list["TestItem"] = field(factory=list, repr=False)

    @property
    def display_label(self) -> str:
        return f"{self.icon}{self.label}"


def _target_id(target: TargetNode) -> str:
    return f"{target.parent.manifest_path}#{target.target_kind.name.lower()}:{target.name}"


def _display_order(item: "TestItem") -> tuple[bool, str]:
    return (item.icon != MODULE_ICON, item.label)


def _is_package_empty(package: PackageNode) -> bool:
    return not package.targets


def _is_workspace_empty(workspace: WorkspaceNode) -> bool:
    return all(_is_package_empty(p) for p in workspace.members)


class TestItemTreeBuilder:
    """
    Builds display items from the model and remembers which node made which item.

    Both lookup tables are keyed by identity and rebuilt on every `build`.
    """

    __test__ = False

    def __init__(self) -> None:
        self._item_by_node: dict[Node, TestItem] = {}
        self._node_by_item: dict[TestItem, Node] = {}
        self.roots: list[TestItem] = []

    def build(self, tree: WorkspaceTree) -> list[TestItem]:
        self._item_by_node.clear()
        self._node_by_item.clear()
        roots: list[TestItem] = []
        single_workspace = len(tree.roots) == 1

        def attach(node: Node, item: TestItem) -> None:
            self._item_by_node[node] = item
            self._node_by_item[item] = node
            parent_item = self._nearest_parent_item(node)
            if parent_item is None:
                roots.append(item)
            else:
                parent_item.children.append(item)

        def on_workspace(node: WorkspaceNode) -> VisitResult | None:
            if _is_workspace_empty(node):
                return VisitResult.SKIP_CHILDREN
            if single_workspace:
                return None
            attach(
                node,
                TestItem(str(node.workspace_root), str(node.workspace_root), WORKSPACE_ICON, node.manifest_path),
            )
            return None

        def on_package(node: PackageNode) -> VisitResult | None:
            if _is_package_empty(node):
                return VisitResult.SKIP_CHILDREN
            if len(node.parent.members) == 1:
                return None
            attach(node, TestItem(str(node.manifest_path), node.name, PACKAGE_ICON, node.manifest_path))
            return None

        def on_target(node: TargetNode) -> None:
            if len(node.parent.targets) == 1:
                return
            attach(
                node,
                TestItem(
                    _target_id(node),
                    node.name,
                    TARGET_ICONS[node.target_kind],
                    node.src_path,
                ),
            )

        def on_test_module(node: TestModuleNode) -> None:
            # The root module is represented by its target
            if node.is_root:
                return
            attach(
                node,
                TestItem(
                    self._test_like_id(node),
                    node.name,
                    MODULE_ICON,
                    node.declaration.path,
                    node.declaration.range,
                ),
            )

        def on_test(node: TestNode) -> None:
            attach(
                node,
                TestItem(self._test_like_id(node), node.name, TEST_ICON, node.location.path, node.location.range),
            )

        walk(
            tree.roots,
            VisitHandlers(
                workspace=on_workspace,
                package=on_package,
                target=on_target,
                test_module=on_test_module,
                test=on_test,
            ),
        )

        # Child sets have no order; names give a stable display
        for item in self._node_by_item:
            item.children.sort(key=_display_order)
        roots.sort(key=_display_order)

        self.roots = roots
        log.debug("Test items rebuilt", roots=len(roots), items=len(self._node_by_item))
        return roots

    def _nearest_parent_item(self, node: Node) -> TestItem | None:
        current = node.parent
        while current is not None:
            item = self._item_by_node.get(current)
            if item is not None:
                return item
            current = current.parent
        return None

    @staticmethod
    def _test_like_id(node: TestLikeNode) -> str:
        target = target_of(node)
        return f"{_target_id(target)}::{'::'.join(node.test_path)}"

    def item_for(self, node: Node) -> TestItem | None:
        return self._item_by_node.get(node)

    def node_for(self, item: TestItem) -> Node:
        node = self._node_by_item.get(item)
        invariant(node is not None, f"Item '{item.id}' was not produced by the last build")
        return node


def render(
    items: list[TestItem],
    title: str = "Tests",
    outcomes: dict[str, TestOutcome] | None = None,
) -> Tree:
    """A rich tree of `items`, optionally decorated with run outcomes keyed by item id."""
    outcomes = outcomes or {}
    root = Tree(Text(title, style="bold"))

    def add(branch: Tree, item: TestItem) -> None:
        label = Text(f"{ICON_GLYPHS.get(item.icon, '')} {item.label}")
        outcome = outcomes.get(item.id)
        if outcome is not None:
            label.append(f"  {outcome.emoji} {outcome.name.lower()}", style=outcome.style)
        child_branch = branch.add(label)
        for child in item.children:
            add(child_branch, child)

    for item in items:
        add(root, item)
    return root
