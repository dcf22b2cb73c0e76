#
# tests/unit/test_model.py
#
"""
Tests for the node hierarchy, traversal and structural tree operations.
"""

from pathlib import Path

import pytest

from cratewatch.exceptions import InvariantViolation
from cratewatch.model import (
    NodeKind,
    PackageNode,
    Range,
    TargetKind,
    TargetNode,
    TestLocation,
    TestModuleNode,
    TestNode,
    VisitHandlers,
    VisitResult,
    WorkspaceNode,
    WorkspaceTree,
    collect_falsy_leaves,
    collect_tests,
    is_attached,
    package_of,
    remove_recursively,
    target_of,
    walk,
    workspace_of,
)
from tests.conftest import INNER_RS, LIB_RS, WORKSPACE_ROOT, hello_metadata


@pytest.fixture
def target() -> TargetNode:
    workspace = WorkspaceNode(WORKSPACE_ROOT)
    package = PackageNode(workspace, "hello-world", WORKSPACE_ROOT / "Cargo.toml")
    return TargetNode(package, TargetKind.LIBRARY, "hello-world", LIB_RS)


def _module(parent, name: str, definition: Path = LIB_RS) -> TestModuleNode:
    return TestModuleNode(parent, name, TestLocation(LIB_RS, Range.of(1, 4, 1, 9)), definition)


def _test(parent, name: str) -> TestNode:
    return TestNode(parent, name, TestLocation(LIB_RS, Range.of(3, 7, 3, 12)))


class TestTargetKind:
    @pytest.mark.parametrize(
        ("kinds", "expected"),
        [
            (["bin"], TargetKind.BINARY),
            (["lib"], TargetKind.LIBRARY),
            (["proc-macro"], TargetKind.LIBRARY),
            (["test"], TargetKind.INTEGRATION_TEST),
            (["cdylib", "rlib"], TargetKind.LIBRARY),
            (["example"], None),
            (["bench"], None),
            (["custom-build"], None),
        ],
    )
    def test_from_cargo_kinds(self, kinds, expected):
        assert TargetKind.from_cargo_kinds(kinds) is expected

    def test_unknown_kind_is_invariant_violation(self):
        with pytest.raises(InvariantViolation):
            TargetKind.from_cargo_kinds(["wasm-thing"])

    def test_mixed_non_library_kinds_are_rejected(self):
        with pytest.raises(InvariantViolation):
            TargetKind.from_cargo_kinds(["lib", "bin"])


class TestNodeConstruction:
    def test_construction_attaches_to_parent(self, target: TargetNode):
        package = target.parent
        assert target in package.targets
        assert package in package.parent.members
        assert target.root_module.parent is target

        inner = _module(target.root_module, "inner")
        case = _test(inner, "case1")
        assert inner in target.root_module.children
        assert case in inner.children

    def test_root_module_matches_target(self, target: TargetNode):
        root = target.root_module
        assert root.is_root
        assert root.test_path == ()
        assert root.definition_path == target.src_path
        assert not root.is_declared_elsewhere

    def test_path_derivation(self, target: TargetNode):
        inner = _module(target.root_module, "inner")
        deeper = _module(inner, "deeper")
        case = _test(deeper, "case1")
        assert inner.test_path == ("inner",)
        assert case.test_path == (*deeper.test_path, "case1")
        assert case.test_path == ("inner", "deeper", "case1")

    def test_duplicate_sibling_is_invariant_violation(self, target: TargetNode):
        _test(target.root_module, "case1")
        with pytest.raises(InvariantViolation):
            _test(target.root_module, "case1")

    def test_test_and_module_may_share_a_name(self, target: TargetNode):
        _test(target.root_module, "same")
        _module(target.root_module, "same")
        assert len(target.root_module.children) == 2

    def test_duplicate_target_is_invariant_violation(self, target: TargetNode):
        with pytest.raises(InvariantViolation):
            TargetNode(target.parent, TargetKind.LIBRARY, "hello-world", LIB_RS)
        # Same name, different kind is fine
        TargetNode(target.parent, TargetKind.BINARY, "hello-world", WORKSPACE_ROOT / "src" / "main.rs")

    def test_nodes_hash_by_identity(self, target: TargetNode):
        first = _test(target.root_module, "case1")
        target.root_module.remove_child(first)
        second = _test(target.root_module, "case1")
        assert first is not second
        assert first != second
        assert second in target.root_module.children
        assert first not in target.root_module.children

    def test_declared_elsewhere(self, target: TargetNode):
        declared = _module(target.root_module, "inner", definition=INNER_RS)
        assert declared.is_declared_elsewhere

    def test_ancestor_helpers(self, target: TargetNode):
        case = _test(_module(target.root_module, "inner"), "case1")
        assert target_of(case) is target
        assert package_of(case) is target.parent
        assert workspace_of(case) is target.parent.parent


class TestCascadingRemoval:
    def test_removes_empty_ancestors_up_to_non_empty_module(self, target: TargetNode):
        inner = _module(target.root_module, "inner")
        deeper = _module(inner, "deeper")
        case = _test(deeper, "case1")
        sibling = _test(inner, "sibling")

        remove_recursively(case)

        assert deeper not in inner.children
        assert inner in target.root_module.children
        assert sibling in inner.children

    def test_stops_at_root_module(self, target: TargetNode):
        inner = _module(target.root_module, "inner")
        case = _test(inner, "case1")

        remove_recursively(case)

        assert not target.root_module.children
        assert target in target.parent.targets

    def test_removing_root_module_drops_only_the_target(self, target: TargetNode):
        package = target.parent
        remove_recursively(target.root_module)
        assert target not in package.targets
        assert package in package.parent.members

    def test_is_attached(self, target: TargetNode):
        inner = _module(target.root_module, "inner")
        case = _test(inner, "case1")
        assert is_attached(case)
        target.root_module.remove_child(inner)
        assert not is_attached(case)
        assert is_attached(target.root_module)


class TestTraversal:
    def test_walk_visits_every_kind(self, target: TargetNode):
        inner = _module(target.root_module, "inner")
        _test(inner, "case1")
        seen: list[NodeKind] = []

        walk(
            [target.parent.parent],
            VisitHandlers(
                workspace=lambda n: seen.append(n.kind),
                package=lambda n: seen.append(n.kind),
                target=lambda n: seen.append(n.kind),
                test_module=lambda n: seen.append(n.kind),
                test=lambda n: seen.append(n.kind),
            ),
        )

        assert seen == [
            NodeKind.WORKSPACE,
            NodeKind.PACKAGE,
            NodeKind.TARGET,
            NodeKind.TEST_MODULE,
            NodeKind.TEST_MODULE,
            NodeKind.TEST,
        ]

    def test_skip_children_stops_descent(self, target: TargetNode):
        _test(_module(target.root_module, "inner"), "case1")
        tests: list[TestNode] = []

        walk(
            target,
            VisitHandlers(
                test_module=lambda m: VisitResult.SKIP_CHILDREN if m.name == "inner" else None,
                test=tests.append,
            ),
        )

        assert tests == []

    def test_collect_tests_and_falsy_leaves(self, target: TargetNode):
        inner = _module(target.root_module, "inner")
        empty = _module(target.root_module, "empty", definition=INNER_RS)
        case = _test(inner, "case1")

        assert collect_tests(target) == [case]
        assert collect_falsy_leaves(target) == [empty]


class TestWorkspaceTree:
    def test_init_by_metadata_builds_targets_with_empty_roots(self, tree: WorkspaceTree):
        tree.init_by_metadata([hello_metadata(with_binary=True).without_dependencies()])

        (workspace,) = tree.roots
        (package,) = workspace.members
        assert package.name == "hello-world"
        kinds = sorted(t.target_kind.name for t in package.targets)
        # The build script is not modeled
        assert kinds == ["BINARY", "LIBRARY"]
        assert all(not t.root_module.children for t in package.targets)

    def test_init_by_metadata_rejects_dependencies(self, tree: WorkspaceTree):
        with pytest.raises(InvariantViolation):
            tree.init_by_metadata([hello_metadata()])

    def test_find_module_and_resolve_exact(self, tree: WorkspaceTree):
        tree.init_by_metadata([hello_metadata().without_dependencies()])
        target = next(iter(tree.roots[0].members[0].targets))
        inner = _module(target.root_module, "inner")
        case = _test(inner, "case1")
        same_named_module = _module(inner, "case1")

        assert tree.find_module(target, ("inner",)) is inner
        assert tree.find_module(target, ("missing",)) is None
        assert tree.resolve_exact(target, ("inner", "case1")) is case
        target_children = tree.find_test_like_node_under_target(target, NodeKind.TEST_MODULE, ("inner", "case1"))
        assert target_children is same_named_module
        assert tree.resolve_exact(target, ("inner", "nope")) is None
        # A missing segment answers with the deepest module reached
        assert tree.find_test_like_node_under_target(target, NodeKind.TEST, ("inner", "x", "y")) is inner

    def test_remove_nodes_defined_in(self, tree: WorkspaceTree):
        tree.init_by_metadata([hello_metadata().without_dependencies()])
        target = next(iter(tree.roots[0].members[0].targets))
        declared = _module(target.root_module, "inner", definition=INNER_RS)
        _test(declared, "case1")
        keeper = _test(target.root_module, "keeper")

        removed = tree.remove_nodes_defined_in(INNER_RS)

        assert removed == 1
        assert target.root_module.children == {keeper}
