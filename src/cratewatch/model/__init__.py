#
# src/cratewatch/model/__init__.py
#
"""
The hierarchical test model: workspace → package → target → module → test.
"""
from .nodes import (
    Node,
    NodeKind,
    PackageNode,
    Position,
    Range,
    TargetKind,
    TargetNode,
    TestLikeNode,
    TestLocation,
    TestModuleNode,
    TestNode,
    WorkspaceNode,
    package_of,
    target_of,
    workspace_of,
)
from .traversal import (
    VisitHandlers,
    VisitResult,
    collect_falsy_leaves,
    collect_modules,
    collect_tests,
    walk,
)
from .workspace_tree import WorkspaceTree, is_attached, remove_recursively

__all__ = [
    "Node",
    "NodeKind",
    "PackageNode",
    "Position",
    "Range",
    "TargetKind",
    "TargetNode",
    "TestLikeNode",
    "TestLocation",
    "TestModuleNode",
    "TestNode",
    "VisitHandlers",
    "VisitResult",
    "WorkspaceNode",
    "WorkspaceTree",
    "collect_falsy_leaves",
    "collect_modules",
    "collect_tests",
    "is_attached",
    "package_of",
    "remove_recursively",
    "target_of",
    "walk",
    "workspace_of",
]
