# src/cratewatch/model/nodes.py

"""
Attrs-based node types for the workspace test model.

Ownership is a strict tree: every node lives in exactly one child collection
of its parent. The `parent` attribute is a non-owning back-reference used for
upward queries only. Child collections are identity-keyed sets (nodes compare
by identity), so a node re-created with the same name is a different node.
"""

from collections.abc import Sequence
from enum import Enum, auto
from pathlib import Path
from typing import ClassVar, TypeAlias

import structlog
from attrs import define, field, frozen

from cratewatch.exceptions import invariant
from cratewatch.telemetry import StructLogger

log: StructLogger = structlog.get_logger("model.nodes")


class NodeKind(Enum):
    """The five levels of the test model."""

    WORKSPACE = auto()
    PACKAGE = auto()
    TARGET = auto()
    TEST_MODULE = auto()
    TEST = auto()


LIBRARY_LIKE_CARGO_KINDS = frozenset({"lib", "rlib", "dylib", "cdylib", "staticlib", "proc-macro"})
IGNORED_CARGO_KINDS = frozenset({"example", "bench", "custom-build"})


class TargetKind(Enum):
    """Kinds of compiled artifacts that can hold tests."""

    LIBRARY = auto()
    INTEGRATION_TEST = auto()
    BINARY = auto()

    @classmethod
    def from_cargo_kinds(cls, cargo_kinds: Sequence[str]) -> "TargetKind | None":
        """
        Maps the `kind` list of a cargo target onto a TargetKind.

        Returns None for examples, benchmarks and build scripts, which are
        excluded from the model.
        """
        if len(cargo_kinds) == 1:
            (cargo_kind,) = cargo_kinds
            if cargo_kind == "bin":
                return cls.BINARY
            if cargo_kind in LIBRARY_LIKE_CARGO_KINDS:
                return cls.LIBRARY
            if cargo_kind == "test":
                return cls.INTEGRATION_TEST
            if cargo_kind in IGNORED_CARGO_KINDS:
                return None
            invariant(False, f"Unknown cargo target kind: {cargo_kind!r}")

        invariant(
            bool(cargo_kinds) and all(k in LIBRARY_LIKE_CARGO_KINDS for k in cargo_kinds),
            f"Cannot determine the kind of a target with cargo kinds {list(cargo_kinds)}",
        )
        return cls.LIBRARY


@frozen
class Position:
    line: int
    character: int


@frozen
class Range:
    start: Position
    end: Position

    @classmethod
    def of(cls, start_line: int, start_char: int, end_line: int, end_char: int) -> "Range":
        return cls(Position(start_line, start_char), Position(end_line, end_char))

    @classmethod
    def empty(cls) -> "Range":
        return cls.of(0, 0, 0, 0)


@frozen
class TestLocation:
    """A file plus a range inside it."""

    __test__ = False  # keep pytest from collecting this class

    path: Path
    range: Range = field(factory=Range.empty)


@define(eq=False)
class WorkspaceNode:
    """One cargo workspace root."""

    kind: ClassVar[NodeKind] = NodeKind.WORKSPACE

    workspace_root: Path
    manifest_path: Path = field()
    members: list["PackageNode"] = field(factory=list, init=False, repr=False)

    @manifest_path.default
    def _default_manifest_path(self) -> Path:
        return self.workspace_root / "Cargo.toml"

    @property
    def parent(self) -> None:
        return None

    def _adopt(self, package: "PackageNode") -> None:
        invariant(
            all(p.name != package.name for p in self.members),
            f"Package '{package.name}' already exists in workspace '{self.workspace_root}'",
        )
        self.members.append(package)


@define(eq=False)
class PackageNode:
    """One buildable package, a member of a workspace."""

    kind: ClassVar[NodeKind] = NodeKind.PACKAGE

    parent: WorkspaceNode = field(repr=False)
    name: str
    manifest_path: Path
    targets: set["TargetNode"] = field(factory=set, init=False, repr=False)

    def __attrs_post_init__(self) -> None:
        self.parent._adopt(self)

    def _adopt(self, target: "TargetNode") -> None:
        invariant(
            all(t.name != target.name or t.target_kind is not target.target_kind for t in self.targets),
            f"Target '{target.name}' ({target.target_kind.name}) already exists in package '{self.name}'",
        )
        self.targets.add(target)

    def remove_target(self, target: "TargetNode") -> None:
        invariant(target in self.targets, "Target must be a child of the package it is removed from")
        self.targets.remove(target)


@define(eq=False)
class TargetNode:
    """One compiled artifact. Owns the synthetic root test module."""

    kind: ClassVar[NodeKind] = NodeKind.TARGET

    parent: PackageNode = field(repr=False)
    target_kind: TargetKind
    name: str
    src_path: Path
    root_module: "TestModuleNode" = field(init=False, repr=False)

    def __attrs_post_init__(self) -> None:
        self.parent._adopt(self)
        TestModuleNode(
            parent=self,
            name="",
            declaration=TestLocation(self.src_path),
            definition_path=self.src_path,
        )


@define(eq=False)
class TestModuleNode:
    """
    A namespace grouping tests and nested modules.

    `declaration` is where the module is referenced (e.g. `mod foo;`),
    `definition_path` is the file holding its body. They coincide for the
    root module of a target and for inline (`mod foo { ... }`) modules.
    """

    __test__ = False

    kind: ClassVar[NodeKind] = NodeKind.TEST_MODULE

    parent: "TargetNode | TestModuleNode" = field(repr=False)
    name: str
    declaration: TestLocation
    definition_path: Path
    children: set["TestLikeNode"] = field(factory=set, init=False, repr=False)

    def __attrs_post_init__(self) -> None:
        if isinstance(self.parent, TargetNode):
            invariant(self.name == "", "The root module of a target must be unnamed")
            self.parent.root_module = self
        else:
            self.parent._adopt(self)

    @property
    def is_root(self) -> bool:
        return isinstance(self.parent, TargetNode)

    @property
    def test_path(self) -> tuple[str, ...]:
        if isinstance(self.parent, TargetNode):
            return ()
        return (*self.parent.test_path, self.name)

    @property
    def is_declared_elsewhere(self) -> bool:
        """True when the module body lives in another file than its declaration."""
        return self.declaration.path != self.definition_path

    def _adopt(self, child: "TestLikeNode") -> None:
        invariant(
            all(c.kind is not child.kind or c.name != child.name for c in self.children),
            f"Duplicate {child.kind.name} '{child.name}' under module {'::'.join(self.test_path) or '<root>'}",
        )
        self.children.add(child)

    def remove_child(self, child: "TestLikeNode") -> None:
        invariant(child in self.children, "Node must be in the children of its parent")
        self.children.remove(child)


@define(eq=False)
class TestNode:
    """One runnable test case. Always a leaf."""

    __test__ = False

    kind: ClassVar[NodeKind] = NodeKind.TEST

    parent: TestModuleNode = field(repr=False)
    name: str
    location: TestLocation

    def __attrs_post_init__(self) -> None:
        self.parent._adopt(self)

    @property
    def test_path(self) -> tuple[str, ...]:
        return (*self.parent.test_path, self.name)


TestLikeNode: TypeAlias = TestModuleNode | TestNode
Node: TypeAlias = WorkspaceNode | PackageNode | TargetNode | TestModuleNode | TestNode


def workspace_of(node: Node) -> WorkspaceNode:
    while not isinstance(node, WorkspaceNode):
        node = node.parent
    return node


def package_of(node: PackageNode | TargetNode | TestLikeNode) -> PackageNode:
    while not isinstance(node, PackageNode):
        node = node.parent
    return node


def target_of(node: TargetNode | TestLikeNode) -> TargetNode:
    while not isinstance(node, TargetNode):
        node = node.parent
    return node
