#
# src/cratewatch/protocols.py
#
"""
Collaborator protocols and the raw records they exchange with the core.

The core never talks to cargo or rust-analyzer directly; it only sees these
shapes. Concrete implementations live in `cratewatch.collaborators`.
"""
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

import attrs
from attrs import define, field

from cratewatch.model.nodes import Range, TestLocation


# --- Metadata collaborator records ---
@define(frozen=True, slots=True)
class CargoTargetMetadata:
    name: str
    src_path: Path
    kind: tuple[str, ...]


@define(frozen=True, slots=True)
class CargoPackageMetadata:
    id: str
    name: str
    manifest_path: Path
    targets: tuple[CargoTargetMetadata, ...] = field(factory=tuple)


@define(frozen=True, slots=True)
class CargoMetadata:
    """One `cargo metadata` document, restricted to what the model needs."""
    workspace_root: Path
    packages: tuple[CargoPackageMetadata, ...] = field(factory=tuple)
    workspace_members: tuple[str, ...] = field(factory=tuple)

    def without_dependencies(self) -> "CargoMetadata":
        """A copy keeping only the packages that are workspace members."""
        members = set(self.workspace_members)
        return attrs.evolve(self, packages=tuple(p for p in self.packages if p.id in members))


# --- Runnable-query collaborator records ---
@define(frozen=True, slots=True)
class RunnableLocation:
    """Where a runnable lives: the item's full range and its name's range."""
    target_path: Path
    target_range: Range
    target_selection_range: Range


@define(frozen=True, slots=True)
class RunnableArgs:
    workspace_root: Path | None
    cargo_args: tuple[str, ...] = field(factory=tuple)
    cargo_extra_args: tuple[str, ...] = field(factory=tuple)
    executable_args: tuple[str, ...] = field(factory=tuple)


@define(frozen=True, slots=True)
class RawRunnable:
    """A runnable exactly as reported by the symbol service."""
    label: str
    args: RunnableArgs
    location: RunnableLocation | None = None


@runtime_checkable
class MetadataProvider(Protocol):
    """Lists the packages and targets of each workspace root."""

    async def workspaces(self, roots: Sequence[Path]) -> list[CargoMetadata]:
        """
        Fetches metadata for every root.

        Roots whose metadata cannot be fetched are left out of the result.
        """
        ...


@runtime_checkable
class RunnableProvider(Protocol):
    """Answers "which tests and test modules does this file contain?"."""

    async def runnables_in_file(self, path: Path) -> list[RawRunnable]:
        ...


@runtime_checkable
class DefinitionResolver(Protocol):
    """Resolves a module declaration (`mod foo;`) to the file holding its body."""

    async def module_definition(self, location: RunnableLocation) -> list[TestLocation]:
        """
        Returns the definition locations of the declared module.

        The core requires exactly one; anything else is an invariant violation.
        """
        ...

# 🔼⚙️
