#
# src/cratewatch/collaborators/cargo.py
#
"""
Workspace metadata from `cargo metadata`.
"""
import asyncio
import json
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

import structlog

from cratewatch.exceptions import CollaboratorError
from cratewatch.protocols import (
    CargoMetadata,
    CargoPackageMetadata,
    CargoTargetMetadata,
)
from cratewatch.telemetry import StructLogger

log: StructLogger = structlog.get_logger("collaborators.cargo")

METADATA_ARGS = ("metadata", "--format-version", "1", "--no-deps")


def parse_metadata(document: Mapping[str, Any]) -> CargoMetadata:
    """Decodes a `cargo metadata` JSON document, keeping only what the model needs."""
    try:
        packages = tuple(
            CargoPackageMetadata(
                id=package["id"],
                name=package["name"],
                manifest_path=Path(package["manifest_path"]),
                targets=tuple(
                    CargoTargetMetadata(
                        name=target["name"],
                        src_path=Path(target["src_path"]),
                        kind=tuple(target["kind"]),
                    )
                    for target in package.get("targets", ())
                ),
            )
            for package in document["packages"]
        )
        return CargoMetadata(
            workspace_root=Path(document["workspace_root"]),
            packages=packages,
            workspace_members=tuple(document.get("workspace_members", ())),
        )
    except (KeyError, TypeError) as e:
        raise CollaboratorError("Unexpected `cargo metadata` document shape", details=e) from e


def filter_out_dependencies(metadata: CargoMetadata) -> CargoMetadata:
    return metadata.without_dependencies()


class CargoMetadataProvider:
    """Runs `cargo metadata` once per workspace root."""

    def __init__(self, cargo: str = "cargo") -> None:
        self.cargo = cargo

    async def workspaces(self, roots: Sequence[Path]) -> list[CargoMetadata]:
        result: list[CargoMetadata] = []
        for root in roots:
            try:
                metadata = await self.metadata_for(root)
            except CollaboratorError as e:
                log.error("Could not read workspace metadata", workspace_root=str(root), error=str(e))
                continue
            result.append(filter_out_dependencies(metadata))
        return result

    async def metadata_for(self, root: Path) -> CargoMetadata:
        command = [self.cargo, *METADATA_ARGS, "--manifest-path", str(root / "Cargo.toml")]
        log.debug("Fetching cargo metadata", workspace_root=str(root))
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=root,
            )
        except FileNotFoundError as e:
            raise CollaboratorError(f"Cargo executable not found: '{self.cargo}'", details=e) from e
        stdout, stderr = await process.communicate()

        if process.returncode != 0:
            raise CollaboratorError(
                f"`cargo metadata` exited with {process.returncode}: "
                f"{stderr.decode('utf-8', errors='replace').strip()}"
            )
        try:
            document = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise CollaboratorError("`cargo metadata` printed invalid JSON", details=e) from e
        return parse_metadata(document)

# 🔼⚙️
