# src/cratewatch/model/traversal.py

"""
Depth-first traversal over the test model.

Consumers pass a `VisitHandlers` struct instead of subclassing a visitor.
Any handler may return `VisitResult.SKIP_CHILDREN` to stop descent below the
node it was called for. Iteration order inside a child set is unspecified.
"""

from collections.abc import Callable, Iterable
from enum import Enum, auto
from typing import TypeVar

from attrs import frozen

from cratewatch.model.nodes import (
    Node,
    PackageNode,
    TargetNode,
    TestModuleNode,
    TestNode,
    WorkspaceNode,
)


class VisitResult(Enum):
    CONTINUE = auto()
    SKIP_CHILDREN = auto()


N = TypeVar("N")
Handler = Callable[[N], "VisitResult | None"]


@frozen
class VisitHandlers:
    """Optional per-kind callbacks. A missing handler means 'continue'."""

    workspace: Handler[WorkspaceNode] | None = None
    package: Handler[PackageNode] | None = None
    target: Handler[TargetNode] | None = None
    test_module: Handler[TestModuleNode] | None = None
    test: Handler[TestNode] | None = None


def _skip(handler: Handler | None, node: Node) -> bool:
    return handler is not None and handler(node) is VisitResult.SKIP_CHILDREN


def walk(start: Node | Iterable[WorkspaceNode], handlers: VisitHandlers) -> None:
    """Visits `start` (a node, or the workspace roots) and everything below it."""
    if isinstance(start, WorkspaceNode | PackageNode | TargetNode | TestModuleNode | TestNode):
        _visit(start, handlers)
        return
    for workspace in list(start):
        _visit(workspace, handlers)


def _visit(node: Node, handlers: VisitHandlers) -> None:
    # Child collections are copied so handlers may detach nodes while walking
    match node:
        case WorkspaceNode():
            if not _skip(handlers.workspace, node):
                for package in list(node.members):
                    _visit(package, handlers)
        case PackageNode():
            if not _skip(handlers.package, node):
                for target in list(node.targets):
                    _visit(target, handlers)
        case TargetNode():
            if not _skip(handlers.target, node):
                _visit(node.root_module, handlers)
        case TestModuleNode():
            if not _skip(handlers.test_module, node):
                for child in list(node.children):
                    _visit(child, handlers)
        case TestNode():
            if handlers.test is not None:
                handlers.test(node)


def collect_modules(
    start: Node | Iterable[WorkspaceNode],
    predicate: Callable[[TestModuleNode], bool],
    *,
    stop_at_match: bool = False,
) -> list[TestModuleNode]:
    """
    Every test module below `start` satisfying `predicate`.

    With `stop_at_match` the walk does not descend into a matching module.
    """
    result: list[TestModuleNode] = []

    def on_module(module: TestModuleNode) -> VisitResult | None:
        if predicate(module):
            result.append(module)
            if stop_at_match:
                return VisitResult.SKIP_CHILDREN
        return None

    walk(start, VisitHandlers(test_module=on_module))
    return result


def collect_falsy_leaves(start: Node | Iterable[WorkspaceNode]) -> list[TestModuleNode]:
    """Test modules that currently have no children and may need fetching."""
    return collect_modules(start, lambda module: not module.children)


def collect_tests(start: Node | Iterable[WorkspaceNode]) -> list[TestNode]:
    """Every test (true leaf) below `start`, in pre-order."""
    result: list[TestNode] = []
    walk(start, VisitHandlers(test=result.append))
    return result
