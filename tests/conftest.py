#
# tests/conftest.py
#
from collections.abc import Sequence
from pathlib import Path

import pytest

from cratewatch.config import CratewatchConfig
from cratewatch.discovery.synchronizer import TestModelSynchronizer
from cratewatch.model import Range, TestLocation, WorkspaceTree
from cratewatch.protocols import (
    CargoMetadata,
    CargoPackageMetadata,
    CargoTargetMetadata,
    RawRunnable,
    RunnableArgs,
    RunnableLocation,
)

WORKSPACE_ROOT = Path("/work/hello-world")
PACKAGE_NAME = "hello-world"
LIB_RS = WORKSPACE_ROOT / "src" / "lib.rs"
MAIN_RS = WORKSPACE_ROOT / "src" / "main.rs"
INNER_RS = WORKSPACE_ROOT / "src" / "inner.rs"
IT_RS = WORKSPACE_ROOT / "tests" / "it.rs"


class FakeMetadataProvider:
    def __init__(self, metadata: Sequence[CargoMetadata] = ()) -> None:
        self.metadata = list(metadata)
        self.calls = 0

    async def workspaces(self, roots):
        self.calls += 1
        return list(self.metadata)


class FakeRunnableProvider:
    """Serves whatever the test stored for a path; missing paths have no runnables."""

    def __init__(self) -> None:
        self.files: dict[Path, list[RawRunnable]] = {}
        self.calls: list[Path] = []

    async def runnables_in_file(self, path: Path) -> list[RawRunnable]:
        self.calls.append(path)
        return list(self.files.get(path, []))


class FakeDefinitionResolver:
    def __init__(self) -> None:
        self.definitions: dict[RunnableLocation, list[TestLocation]] = {}
        self.calls: list[RunnableLocation] = []

    async def module_definition(self, location: RunnableLocation) -> list[TestLocation]:
        self.calls.append(location)
        return list(self.definitions.get(location, []))


class RunnableFactory:
    """Builds raw runnables the way rust-analyzer reports them for the hello-world package."""

    def __init__(self, workspace_root: Path = WORKSPACE_ROOT, package: str = PACKAGE_NAME) -> None:
        self.workspace_root = workspace_root
        self.package = package

    def args(self, target_flag: Sequence[str] = ("--lib",), executable_args: Sequence[str] = ()) -> RunnableArgs:
        return RunnableArgs(
            workspace_root=self.workspace_root,
            cargo_args=("test", "--package", f"{self.package}:0.1.0", *target_flag),
            executable_args=tuple(executable_args),
        )

    def _make(self, label, path, full, selection, target_flag, executable_args=()) -> RawRunnable:
        return RawRunnable(
            label=label,
            args=self.args(target_flag, executable_args),
            location=RunnableLocation(target_path=path, target_range=full, target_selection_range=selection),
        )

    def root(self, path: Path = LIB_RS, target_flag=("--lib",)) -> RawRunnable:
        whole = Range.of(0, 0, 40, 0)
        return self._make("test-mod ", path, whole, whole, target_flag, ("--exact",))

    def test(self, test_path: str, line: int = 5, path: Path = LIB_RS, target_flag=("--lib",)) -> RawRunnable:
        return self._make(
            f"test {test_path}",
            path,
            Range.of(line, 4, line + 3, 5),
            Range.of(line + 1, 7, line + 1, 7 + len(test_path.split("::")[-1])),
            target_flag,
            (test_path, "--exact", "--nocapture"),
        )

    def inline_module(
        self, test_path: str, line: int = 2, path: Path = LIB_RS, target_flag=("--lib",)
    ) -> RawRunnable:
        return self._make(
            f"test-mod {test_path}",
            path,
            Range.of(line, 0, line + 10, 1),
            Range.of(line, 4, line, 4 + len(test_path.split("::")[-1])),
            target_flag,
            (test_path,),
        )

    def declared_module(
        self, test_path: str, line: int = 1, path: Path = LIB_RS, target_flag=("--lib",)
    ) -> RawRunnable:
        name = test_path.split("::")[-1]
        return self._make(
            f"test-mod {test_path}",
            path,
            Range.of(line, 0, line, 5 + len(name)),
            Range.of(line, 4, line, 4 + len(name)),
            target_flag,
            (test_path,),
        )

    def file_module(self, test_path: str, path: Path, target_flag=("--lib",)) -> RawRunnable:
        whole = Range.of(0, 0, 20, 0)
        return self._make(f"test-mod {test_path}", path, whole, whole, target_flag, (test_path,))


def hello_metadata(*, with_binary: bool = False, with_integration_test: bool = False) -> CargoMetadata:
    targets = [CargoTargetMetadata(name=PACKAGE_NAME, src_path=LIB_RS, kind=("lib",))]
    if with_binary:
        targets.append(CargoTargetMetadata(name=PACKAGE_NAME, src_path=MAIN_RS, kind=("bin",)))
    if with_integration_test:
        targets.append(CargoTargetMetadata(name="it", src_path=IT_RS, kind=("test",)))
    targets.append(CargoTargetMetadata(name="build-script-build", src_path=WORKSPACE_ROOT / "build.rs", kind=("custom-build",)))
    package_id = f"path+file://{WORKSPACE_ROOT}#0.1.0"
    return CargoMetadata(
        workspace_root=WORKSPACE_ROOT,
        packages=(
            CargoPackageMetadata(
                id=package_id,
                name=PACKAGE_NAME,
                manifest_path=WORKSPACE_ROOT / "Cargo.toml",
                targets=tuple(targets),
            ),
            CargoPackageMetadata(
                id="registry+https://github.com/rust-lang/crates.io-index#serde@1.0.0",
                name="serde",
                manifest_path=Path("/registry/serde-1.0.0/Cargo.toml"),
                targets=(CargoTargetMetadata(name="serde", src_path=Path("/registry/serde-1.0.0/src/lib.rs"), kind=("lib",)),),
            ),
        ),
        workspace_members=(package_id,),
    )


@pytest.fixture
def raw() -> RunnableFactory:
    return RunnableFactory()


@pytest.fixture
def metadata_provider() -> FakeMetadataProvider:
    return FakeMetadataProvider([hello_metadata()])


@pytest.fixture
def runnable_provider() -> FakeRunnableProvider:
    return FakeRunnableProvider()


@pytest.fixture
def definition_resolver() -> FakeDefinitionResolver:
    return FakeDefinitionResolver()


@pytest.fixture
def tree() -> WorkspaceTree:
    return WorkspaceTree()


@pytest.fixture
def synchronizer(
    tree: WorkspaceTree,
    metadata_provider: FakeMetadataProvider,
    runnable_provider: FakeRunnableProvider,
    definition_resolver: FakeDefinitionResolver,
) -> TestModelSynchronizer:
    return TestModelSynchronizer(
        tree,
        metadata_provider,
        runnable_provider,
        definition_resolver,
        [WORKSPACE_ROOT],
    )


@pytest.fixture
def minimal_config(tmp_path: Path) -> CratewatchConfig:
    workspace = tmp_path / "hello-world"
    workspace.mkdir()
    return CratewatchConfig(workspaces=(workspace,), config_path=tmp_path / "cratewatch.conf")
