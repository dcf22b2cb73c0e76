# src/cratewatch/discovery/runnable.py

"""
Decoding of raw runnable records into validated, typed descriptors.

A raw record is decoded exactly once; every projection (test kind, path,
target kind and name, package, module shape) is computed up front so later
stages never re-parse labels or argument lists.
"""

from collections.abc import Iterable, Sequence
from enum import Enum, auto
from pathlib import Path

import structlog
from attrs import define

from cratewatch.exceptions import RunnableDecodeError
from cratewatch.model.nodes import NodeKind, TargetKind, TestLocation
from cratewatch.protocols import RawRunnable, RunnableLocation
from cratewatch.telemetry import StructLogger

log: StructLogger = structlog.get_logger("discovery.runnable")

PATH_SEPARATOR = "::"
PACKAGE_FLAG = "--package"

TEST_KIND_TOKENS: dict[str, NodeKind] = {
    "test": NodeKind.TEST,
    "test-mod": NodeKind.TEST_MODULE,
}

TARGET_KIND_FLAGS: dict[str, TargetKind] = {
    "--lib": TargetKind.LIBRARY,
    "--test": TargetKind.INTEGRATION_TEST,
    "--bin": TargetKind.BINARY,
}


class ModuleShape(Enum):
    """How a test-module runnable appears in its file. Exactly one applies."""

    DECLARATION = auto()  # `mod foo;`, body lives in another file
    FILE_DEFINITION = auto()  # the runnable denotes a whole file
    WITH_ITEMS = auto()  # `mod foo { ... }`


def _flag_value(cargo_args: Sequence[str], flag: str, label: str) -> str:
    index = cargo_args.index(flag)
    if index + 1 >= len(cargo_args):
        raise RunnableDecodeError(f"Flag '{flag}' has no value", label=label)
    return cargo_args[index + 1]


def _classify_module(location: RunnableLocation) -> ModuleShape:
    full, selection = location.target_range, location.target_selection_range
    if full == selection:
        return ModuleShape.FILE_DEFINITION
    # A one-line inline module such as `mod m { #[test] fn t() {} }` also lands here
    if full.end.line == selection.end.line:
        return ModuleShape.DECLARATION
    return ModuleShape.WITH_ITEMS


@define(frozen=True, slots=True)
class Runnable:
    """A decoded runnable. Build instances with `Runnable.decode`."""

    origin: RawRunnable
    test_kind: NodeKind
    test_paths: tuple[str, ...]
    target_kind: TargetKind
    target_name: str
    package_name: str
    workspace_root: Path
    module_shape: ModuleShape | None

    @classmethod
    def decode(cls, raw: RawRunnable) -> "Runnable":
        label = raw.label
        kind_token, _, path_token = label.partition(" ")
        test_kind = TEST_KIND_TOKENS.get(kind_token)
        if test_kind is None:
            raise RunnableDecodeError(f"Unknown runnable kind token '{kind_token}'", label=label)

        test_paths = tuple(path_token.split(PATH_SEPARATOR)) if path_token else ()

        cargo_args = raw.args.cargo_args
        present = [flag for flag in TARGET_KIND_FLAGS if flag in cargo_args]
        if len(present) != 1:
            raise RunnableDecodeError(
                f"Expected exactly one of {list(TARGET_KIND_FLAGS)} in cargo args, found {present}",
                label=label,
            )
        target_kind = TARGET_KIND_FLAGS[present[0]]

        if PACKAGE_FLAG not in cargo_args:
            raise RunnableDecodeError("Runnable does not select a package", label=label)
        # The qualified name looks like `hello:1.2.3`
        package_name = _flag_value(cargo_args, PACKAGE_FLAG, label).split(":")[0]

        if target_kind is TargetKind.LIBRARY:
            target_name = package_name
        else:
            target_name = _flag_value(cargo_args, present[0], label)

        if raw.args.workspace_root is None:
            raise RunnableDecodeError("Runnable has no workspace root", label=label)

        module_shape = None
        if test_kind is NodeKind.TEST_MODULE:
            if raw.location is None:
                raise RunnableDecodeError("Test module runnable has no location", label=label)
            module_shape = _classify_module(raw.location)

        return cls(
            origin=raw,
            test_kind=test_kind,
            test_paths=test_paths,
            target_kind=target_kind,
            target_name=target_name,
            package_name=package_name,
            workspace_root=raw.args.workspace_root,
            module_shape=module_shape,
        )

    @property
    def label(self) -> str:
        return self.origin.label

    @property
    def test_or_suite_name(self) -> str:
        return self.test_paths[-1] if self.test_paths else ""

    @property
    def is_root_marker(self) -> bool:
        """The synthetic `test-mod ` runnable standing for a target's root module."""
        return self.test_kind is NodeKind.TEST_MODULE and not self.test_paths

    @property
    def is_declaration(self) -> bool:
        return self.module_shape is ModuleShape.DECLARATION

    @property
    def is_file_definition(self) -> bool:
        return self.module_shape is ModuleShape.FILE_DEFINITION

    @property
    def is_with_items(self) -> bool:
        return self.module_shape is ModuleShape.WITH_ITEMS

    @property
    def location(self) -> RunnableLocation:
        if self.origin.location is None:
            raise RunnableDecodeError("Runnable has no location", label=self.label)
        return self.origin.location

    @property
    def path(self) -> Path:
        return self.location.target_path

    @property
    def uri(self) -> str:
        return self.path.absolute().as_uri()

    def to_test_location(self) -> TestLocation:
        return TestLocation(self.path, self.location.target_selection_range)

    @property
    def dedupe_key(self) -> tuple[str, str, TargetKind, str, str]:
        return (str(self.workspace_root), self.package_name, self.target_kind, self.target_name, self.label)


def sort_key(runnable: Runnable) -> str:
    return runnable.label


def unique_runnables(runnables: Iterable[Runnable]) -> list[Runnable]:
    """
    Drops duplicated runnables, keeping the first occurrence.

    Copy-pasted tests can produce two runnables with the same label; the
    model can only hold one of them.
    """
    seen: dict[tuple, Runnable] = {}
    for runnable in runnables:
        if runnable.dedupe_key in seen:
            log.debug("Dropping duplicate runnable", label=runnable.label)
            continue
        seen[runnable.dedupe_key] = runnable
    return list(seen.values())


def decode_runnables(raw_runnables: Iterable[RawRunnable]) -> list[Runnable]:
    return unique_runnables(Runnable.decode(raw) for raw in raw_runnables)
