#
# tests/unit/test_synchronizer.py
#
"""
Tests for applying runnables to the test model, file by file.
"""

import pytest
import pytest_asyncio

from cratewatch.discovery.synchronizer import TestModelSynchronizer
from cratewatch.exceptions import InvariantViolation
from cratewatch.model import TargetKind, TargetNode, TestLocation, TestModuleNode, TestNode, WorkspaceTree, collect_tests
from tests.conftest import (
    INNER_RS,
    LIB_RS,
    MAIN_RS,
    FakeDefinitionResolver,
    FakeMetadataProvider,
    FakeRunnableProvider,
    RunnableFactory,
    hello_metadata,
)


def _package(tree: WorkspaceTree):
    (workspace,) = tree.roots
    (package,) = workspace.members
    return package


def _target(tree: WorkspaceTree, kind: TargetKind = TargetKind.LIBRARY) -> TargetNode | None:
    return next((t for t in _package(tree).targets if t.target_kind is kind), None)


def _paths(target: TargetNode) -> set[tuple[str, ...]]:
    return {test.test_path for test in collect_tests(target)}


@pytest.mark.asyncio
class TestRefresh:
    async def test_refresh_populates_targets_from_source_files(
        self,
        synchronizer: TestModelSynchronizer,
        tree: WorkspaceTree,
        runnable_provider: FakeRunnableProvider,
        raw: RunnableFactory,
    ):
        runnable_provider.files[LIB_RS] = [raw.root(), raw.inline_module("inner"), raw.test("inner::case1")]

        await synchronizer.refresh()

        target = _target(tree)
        assert target is not None
        assert _paths(target) == {("inner", "case1")}
        # Dependencies and build scripts never reach the model
        assert [p.name for w in tree for p in w.members] == ["hello-world"]
        assert runnable_provider.calls == [LIB_RS]

    async def test_targets_without_tests_are_pruned(
        self,
        tree: WorkspaceTree,
        runnable_provider: FakeRunnableProvider,
        definition_resolver: FakeDefinitionResolver,
        raw: RunnableFactory,
    ):
        metadata = FakeMetadataProvider([hello_metadata(with_binary=True)])
        synchronizer = TestModelSynchronizer(tree, metadata, runnable_provider, definition_resolver)
        runnable_provider.files[LIB_RS] = [raw.root(), raw.test("case1")]

        await synchronizer.refresh()

        assert _target(tree, TargetKind.BINARY) is None
        assert _paths(_target(tree)) == {("case1",)}

    async def test_refresh_without_metadata_leaves_empty_model(
        self, tree: WorkspaceTree, runnable_provider: FakeRunnableProvider, definition_resolver: FakeDefinitionResolver
    ):
        synchronizer = TestModelSynchronizer(tree, FakeMetadataProvider([]), runnable_provider, definition_resolver)
        await synchronizer.refresh()
        assert tree.roots == []

    async def test_refresh_continues_after_a_broken_file(
        self,
        tree: WorkspaceTree,
        runnable_provider: FakeRunnableProvider,
        definition_resolver: FakeDefinitionResolver,
        raw: RunnableFactory,
    ):
        metadata = FakeMetadataProvider([hello_metadata(with_binary=True)])
        synchronizer = TestModelSynchronizer(tree, metadata, runnable_provider, definition_resolver)
        bin_flag = ("--bin", "hello-world")
        # `mod broken;` resolves to no definition at all
        runnable_provider.files[LIB_RS] = [raw.root(), raw.declared_module("broken")]
        runnable_provider.files[MAIN_RS] = [raw.root(MAIN_RS, bin_flag), raw.test("case", path=MAIN_RS, target_flag=bin_flag)]

        await synchronizer.refresh()

        assert _paths(_target(tree, TargetKind.BINARY)) == {("case",)}

    async def test_runnable_registry(
        self,
        synchronizer: TestModelSynchronizer,
        tree: WorkspaceTree,
        runnable_provider: FakeRunnableProvider,
        raw: RunnableFactory,
    ):
        runnable_provider.files[LIB_RS] = [raw.root(), raw.inline_module("inner"), raw.test("inner::case1")]
        await synchronizer.refresh()
        target = _target(tree)
        case = tree.resolve_exact(target, ("inner", "case1"))

        assert synchronizer.runnable_for(target).is_root_marker
        assert synchronizer.runnable_for(case).label == "test inner::case1"
        assert synchronizer.has_runnable(tree.find_module(target, ("inner",)))

        orphan = TestNode(target.root_module, "orphan", TestLocation(LIB_RS))
        assert not synchronizer.has_runnable(orphan)
        with pytest.raises(InvariantViolation):
            synchronizer.runnable_for(orphan)


@pytest.mark.asyncio
class TestFileChanges:
    @pytest_asyncio.fixture
    async def populated(self, synchronizer, runnable_provider, raw) -> TestModelSynchronizer:
        runnable_provider.files[LIB_RS] = [
            raw.root(),
            raw.inline_module("inner"),
            raw.test("inner::case1"),
            raw.test("top", line=30),
        ]
        await synchronizer.refresh()
        return synchronizer

    async def test_removed_test_cascades_to_empty_module(
        self, populated: TestModelSynchronizer, tree: WorkspaceTree, runnable_provider: FakeRunnableProvider, raw
    ):
        target = _target(tree)
        runnable_provider.files[LIB_RS] = [raw.root(), raw.inline_module("inner"), raw.test("top", line=30)]

        await populated.update_model_by_change_of_file(LIB_RS)

        assert tree.find_module(target, ("inner",)) is None
        assert _paths(target) == {("top",)}

    async def test_last_test_removed_drops_the_target(
        self, synchronizer: TestModelSynchronizer, tree: WorkspaceTree, runnable_provider: FakeRunnableProvider, raw
    ):
        runnable_provider.files[LIB_RS] = [raw.root(), raw.inline_module("inner"), raw.test("inner::case1")]
        await synchronizer.refresh()
        package = _package(tree)
        assert len(package.targets) == 1

        runnable_provider.files[LIB_RS] = [raw.root(), raw.inline_module("inner")]
        await synchronizer.update_model_by_change_of_file(LIB_RS)

        assert package.targets == set()
        assert package in tree.roots[0].members

    async def test_reapplying_same_runnables_keeps_identities(
        self, populated: TestModelSynchronizer, tree: WorkspaceTree
    ):
        target = _target(tree)
        before = {node.test_path: node for node in collect_tests(target)}
        inner = tree.find_module(target, ("inner",))

        await populated.update_model_by_change_of_file(LIB_RS)

        after = {node.test_path: node for node in collect_tests(target)}
        assert after.keys() == before.keys()
        assert all(after[path] is before[path] for path in before)
        assert tree.find_module(target, ("inner",)) is inner

    async def test_added_tests_keep_existing_nodes(
        self, populated: TestModelSynchronizer, tree: WorkspaceTree, runnable_provider: FakeRunnableProvider, raw
    ):
        target = _target(tree)
        case1 = tree.resolve_exact(target, ("inner", "case1"))
        runnable_provider.files[LIB_RS] = [
            raw.root(),
            raw.inline_module("inner"),
            raw.test("inner::case1", line=8),
            raw.test("inner::case2", line=12),
            raw.inline_module("inner::nested", line=14),
            raw.test("inner::nested::deep", line=15),
            raw.test("top", line=30),
        ]

        await populated.update_model_by_change_of_file(LIB_RS)

        assert _paths(target) == {("inner", "case1"), ("inner", "case2"), ("inner", "nested", "deep"), ("top",)}
        assert tree.resolve_exact(target, ("inner", "case1")) is case1
        # Matched nodes take the new location
        assert case1.location.range.start.line == 9

    async def test_removing_module_and_its_tests(
        self, populated: TestModelSynchronizer, tree: WorkspaceTree, runnable_provider: FakeRunnableProvider, raw
    ):
        target = _target(tree)
        runnable_provider.files[LIB_RS] = [raw.root(), raw.test("top", line=30)]

        await populated.update_model_by_change_of_file(LIB_RS)

        assert target.root_module.children == {tree.resolve_exact(target, ("top",))}

    async def test_file_without_runnables_removes_its_modules(
        self, populated: TestModelSynchronizer, tree: WorkspaceTree, runnable_provider: FakeRunnableProvider
    ):
        package = _package(tree)
        runnable_provider.files[LIB_RS] = []

        await populated.update_model_by_change_of_file(LIB_RS)

        assert package.targets == set()

    async def test_target_is_created_lazily(
        self, synchronizer: TestModelSynchronizer, tree: WorkspaceTree, runnable_provider: FakeRunnableProvider, raw
    ):
        await synchronizer.refresh()
        assert _target(tree) is None

        runnable_provider.files[LIB_RS] = [raw.root(), raw.test("first")]
        await synchronizer.update_model_by_change_of_file(LIB_RS)

        target = _target(tree)
        assert target is not None
        assert target.name == "hello-world"
        assert target.src_path == LIB_RS
        assert _paths(target) == {("first",)}

    async def test_unknown_package_is_ignored(
        self, synchronizer: TestModelSynchronizer, tree: WorkspaceTree, runnable_provider: FakeRunnableProvider
    ):
        other = RunnableFactory(package="not-a-member")
        path = LIB_RS.with_name("other.rs")
        runnable_provider.files[path] = [other.root(path), other.test("case", path=path)]
        await synchronizer.refresh()

        await synchronizer.update_model_by_change_of_file(path)

        assert [p.name for p in tree.roots[0].members] == ["hello-world"]

    async def test_runnables_of_other_targets_are_not_adopted(
        self, populated: TestModelSynchronizer, tree: WorkspaceTree, runnable_provider: FakeRunnableProvider, raw
    ):
        target = _target(tree)
        runnable_provider.files[LIB_RS] = [
            raw.root(),
            raw.inline_module("inner"),
            raw.test("inner::case1"),
            raw.test("top", line=30),
            raw.test("stray", path=LIB_RS, target_flag=("--bin", "elsewhere")),
        ]

        await populated.update_model_by_change_of_file(LIB_RS)

        assert ("stray",) not in _paths(target)


@pytest.mark.asyncio
class TestDeclaredModules:
    @pytest.fixture
    def declared_inner(self, runnable_provider, definition_resolver, raw):
        declaration = raw.declared_module("inner")
        definition_resolver.definitions[declaration.location] = [TestLocation(INNER_RS)]
        runnable_provider.files[LIB_RS] = [raw.root(), declaration, raw.test("top", line=30)]
        runnable_provider.files[INNER_RS] = [raw.file_module("inner", INNER_RS), raw.test("inner::case1", path=INNER_RS)]
        return declaration

    async def test_declared_module_is_expanded_from_its_file(
        self, synchronizer: TestModelSynchronizer, tree: WorkspaceTree, declared_inner, runnable_provider
    ):
        await synchronizer.refresh()

        target = _target(tree)
        inner = tree.find_module(target, ("inner",))
        assert inner.is_declared_elsewhere
        assert inner.definition_path == INNER_RS
        assert inner.declaration.path == LIB_RS
        assert _paths(target) == {("inner", "case1"), ("top",)}
        assert runnable_provider.calls == [LIB_RS, INNER_RS]

    async def test_editing_the_module_file(
        self, synchronizer: TestModelSynchronizer, tree: WorkspaceTree, declared_inner, runnable_provider, raw
    ):
        await synchronizer.refresh()
        target = _target(tree)
        case1 = tree.resolve_exact(target, ("inner", "case1"))
        runnable_provider.files[INNER_RS].append(raw.test("inner::case2", line=20, path=INNER_RS))

        await synchronizer.update_model_by_change_of_file(INNER_RS)

        assert _paths(target) == {("inner", "case1"), ("inner", "case2"), ("top",)}
        assert tree.resolve_exact(target, ("inner", "case1")) is case1

    async def test_editing_the_declaring_file_does_not_refetch_the_module(
        self, synchronizer: TestModelSynchronizer, tree: WorkspaceTree, declared_inner, runnable_provider
    ):
        await synchronizer.refresh()
        runnable_provider.calls.clear()

        await synchronizer.update_model_by_change_of_file(LIB_RS)

        assert runnable_provider.calls == [LIB_RS]
        assert ("inner", "case1") in _paths(_target(tree))

    async def test_deleting_the_module_file(
        self, synchronizer: TestModelSynchronizer, tree: WorkspaceTree, declared_inner
    ):
        await synchronizer.refresh()

        removed = synchronizer.remove_file(INNER_RS)

        assert removed == 1
        assert _paths(_target(tree)) == {("top",)}

    async def test_first_test_in_unmodeled_module_file(
        self, synchronizer: TestModelSynchronizer, tree: WorkspaceTree, declared_inner, runnable_provider, raw
    ):
        # inner.rs starts without tests, so rust-analyzer reports no `mod inner;` either
        runnable_provider.files[LIB_RS] = [raw.root(), raw.test("top", line=30)]
        saved_inner = runnable_provider.files.pop(INNER_RS)
        await synchronizer.refresh()
        assert _paths(_target(tree)) == {("top",)}

        runnable_provider.files[LIB_RS] = [raw.root(), declared_inner, raw.test("top", line=30)]
        runnable_provider.files[INNER_RS] = saved_inner
        await synchronizer.update_model_by_change_of_file(INNER_RS)

        assert _paths(_target(tree)) == {("inner", "case1"), ("top",)}

    async def test_inline_module_becoming_declared_is_replaced(
        self, synchronizer: TestModelSynchronizer, tree: WorkspaceTree, declared_inner, runnable_provider, raw
    ):
        runnable_provider.files[LIB_RS] = [raw.root(), raw.inline_module("inner"), raw.test("inner::case1")]
        await synchronizer.refresh()
        target = _target(tree)
        inline = tree.find_module(target, ("inner",))
        assert not inline.is_declared_elsewhere

        runnable_provider.files[LIB_RS] = [raw.root(), declared_inner]
        await synchronizer.update_model_by_change_of_file(LIB_RS)

        declared = tree.find_module(target, ("inner",))
        assert declared is not inline
        assert declared.is_declared_elsewhere
        case1 = tree.resolve_exact(target, ("inner", "case1"))
        assert case1.location.path == INNER_RS

    async def test_ambiguous_definition_is_invariant_violation(
        self, synchronizer: TestModelSynchronizer, definition_resolver: FakeDefinitionResolver, declared_inner
    ):
        await synchronizer.refresh()
        definition_resolver.definitions[declared_inner.location] = [TestLocation(INNER_RS), TestLocation(MAIN_RS)]
        synchronizer.remove_file(INNER_RS)

        with pytest.raises(InvariantViolation):
            await synchronizer.update_model_by_change_of_file(LIB_RS)

    async def test_fetch_children_requires_empty_module(
        self, synchronizer: TestModelSynchronizer, tree: WorkspaceTree, declared_inner
    ):
        await synchronizer.refresh()
        inner = tree.find_module(_target(tree), ("inner",))
        assert isinstance(inner, TestModuleNode)

        with pytest.raises(InvariantViolation):
            await synchronizer.fetch_children(inner)
