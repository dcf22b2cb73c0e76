#
# src/cratewatch/collaborators/rust_analyzer.py
#
"""
The runnable and definition collaborators, backed by rust-analyzer.

Transport, JSON-RPC and message typing are handled by pygls and lsprotocol.
Only what test discovery needs is used: the `experimental/runnables`
extension, `textDocument/definition` and the `experimental/serverStatus`
notification that tells when indexing is done.
"""
import asyncio
import os
from collections.abc import Awaitable, Mapping, Sequence
from pathlib import Path
from typing import Any, TypeVar
from urllib.parse import unquote, urlparse

import structlog
from lsprotocol import types
from pygls.exceptions import JsonRpcException
from pygls.lsp.client import LanguageClient

from cratewatch.exceptions import CollaboratorError
from cratewatch.model import Position, Range, TestLocation
from cratewatch.protocols import RawRunnable, RunnableArgs, RunnableLocation
from cratewatch.telemetry import StructLogger

log: StructLogger = structlog.get_logger("collaborators.rust_analyzer")

CLIENT_NAME = "cratewatch"
CLIENT_VERSION = "v1"
RUNNABLES_METHOD = "experimental/runnables"
SERVER_STATUS_METHOD = "experimental/serverStatus"
TEST_LABEL_PREFIXES = ("test ", "test-mod ")
DEFAULT_READY_TIMEOUT = 300.0
SHUTDOWN_TIMEOUT = 5.0

T = TypeVar("T")


# --- Conversions ---
def path_to_uri(path: Path) -> str:
    return Path(path).absolute().as_uri()


def uri_to_path(uri: str) -> Path:
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        raise CollaboratorError(f"Unsupported document URI: {uri}")
    path = unquote(parsed.path)
    # file:///c:/x on Windows
    if os.name == "nt" and path.startswith("/") and len(path) > 2 and path[2] == ":":
        path = path[1:]
    return Path(path)


def decode_range(raw: Mapping[str, Any]) -> Range:
    start, end = raw["start"], raw["end"]
    return Range(Position(start["line"], start["character"]), Position(end["line"], end["character"]))


def from_lsp_range(lsp_range: types.Range) -> Range:
    return Range(
        Position(lsp_range.start.line, lsp_range.start.character),
        Position(lsp_range.end.line, lsp_range.end.character),
    )


def to_lsp_position(position: Position) -> types.Position:
    return types.Position(line=position.line, character=position.character)


def decode_runnable(raw: Mapping[str, Any]) -> RawRunnable:
    """
    Decodes one entry of an `experimental/runnables` response.

    The extension has no lsprotocol type, so entries arrive as plain JSON objects.
    """
    try:
        args = raw.get("args") or {}
        workspace_root = args.get("workspaceRoot")
        location = None
        if raw.get("location"):
            loc = raw["location"]
            location = RunnableLocation(
                target_path=uri_to_path(loc["targetUri"]),
                target_range=decode_range(loc["targetRange"]),
                target_selection_range=decode_range(loc["targetSelectionRange"]),
            )
        return RawRunnable(
            label=raw["label"],
            args=RunnableArgs(
                workspace_root=Path(workspace_root) if workspace_root else None,
                cargo_args=tuple(args.get("cargoArgs", ())),
                cargo_extra_args=tuple(args.get("cargoExtraArgs", ())),
                executable_args=tuple(args.get("executableArgs", ())),
            ),
            location=location,
        )
    except (KeyError, TypeError, AttributeError) as e:
        raise CollaboratorError("Unexpected runnable shape from rust-analyzer", details=e) from e


def is_test_runnable(raw: Mapping[str, Any]) -> bool:
    return raw.get("kind", "cargo") == "cargo" and str(raw.get("label", "")).startswith(TEST_LABEL_PREFIXES)


def decode_definition(
    result: types.Location | Sequence[types.Location] | Sequence[types.LocationLink] | None,
) -> list[TestLocation]:
    if result is None:
        return []
    items = [result] if isinstance(result, types.Location) else result
    locations = []
    for item in items:
        if isinstance(item, types.LocationLink):
            locations.append(TestLocation(uri_to_path(item.target_uri), from_lsp_range(item.target_selection_range)))
        else:
            locations.append(TestLocation(uri_to_path(item.uri), from_lsp_range(item.range)))
    return locations


# --- Client ---
class RustAnalyzerClient:
    """Implements the runnable and definition collaborators on top of rust-analyzer."""

    def __init__(self, executable: str = "rust-analyzer", ready_timeout: float = DEFAULT_READY_TIMEOUT) -> None:
        self.executable = executable
        self.ready_timeout = ready_timeout
        self.client: LanguageClient | None = None
        self._ready = asyncio.Event()

    def _create_client(self) -> LanguageClient:
        client = LanguageClient(CLIENT_NAME, CLIENT_VERSION)
        client.feature(SERVER_STATUS_METHOD)(self._on_server_status)
        client.feature(types.WORKSPACE_CONFIGURATION)(self._on_configuration)
        client.feature(types.WINDOW_WORK_DONE_PROGRESS_CREATE)(self._on_progress_create)
        return client

    async def start(self, workspace_roots: Sequence[Path]) -> None:
        log.info("Starting rust-analyzer", executable=self.executable, roots=[str(r) for r in workspace_roots])
        client = self._create_client()
        try:
            await client.start_io(self.executable)
        except FileNotFoundError as e:
            raise CollaboratorError(f"rust-analyzer executable not found: '{self.executable}'", details=e) from e
        self.client = client

        folders = [types.WorkspaceFolder(uri=path_to_uri(root), name=root.name) for root in workspace_roots]
        params = types.InitializeParams(
            process_id=os.getpid(),
            root_uri=folders[0].uri if folders else None,
            workspace_folders=folders,
            capabilities=types.ClientCapabilities(
                text_document=types.TextDocumentClientCapabilities(
                    definition=types.DefinitionClientCapabilities(link_support=True),
                ),
                experimental={"serverStatusNotification": True},
            ),
            # No client-side watcher, let the server pick up edits itself
            initialization_options={"files": {"watcher": "server"}},
        )
        result = await self._call(client.initialize_async(params))
        log.debug("rust-analyzer initialized", server=result.server_info.name if result.server_info else None)
        client.initialized(types.InitializedParams())

    async def stop(self) -> None:
        if self.client is None:
            return
        client, self.client = self.client, None
        try:
            await asyncio.wait_for(client.shutdown_async(None), timeout=SHUTDOWN_TIMEOUT)
            client.exit(None)
        except (JsonRpcException, asyncio.TimeoutError, ConnectionError) as e:
            log.debug("rust-analyzer did not shut down cleanly", error=str(e))
        await client.stop()

    def _on_server_status(self, params: Mapping[str, Any]) -> None:
        if params.get("quiescent"):
            if not self._ready.is_set():
                log.info("rust-analyzer finished indexing", health=params.get("health"))
            self._ready.set()

    def _on_configuration(self, params: types.ConfigurationParams) -> list[None]:
        # Server defaults for every requested section
        return [None] * len(params.items)

    def _on_progress_create(self, params: types.WorkDoneProgressCreateParams) -> None:
        return None

    async def _call(self, request: Awaitable[T]) -> T:
        try:
            return await request
        except JsonRpcException as e:
            raise CollaboratorError(f"Language server error {e.code}: {e.message}", details=e) from e

    async def _ready_client(self) -> LanguageClient:
        if self.client is None:
            raise CollaboratorError("rust-analyzer is not running")
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=self.ready_timeout)
        except asyncio.TimeoutError as e:
            raise CollaboratorError("Timed out waiting for rust-analyzer to finish indexing") from e
        return self.client

    async def runnables_in_file(self, path: Path) -> list[RawRunnable]:
        client = await self._ready_client()
        result = await self._call(
            client.protocol.send_request_async(
                RUNNABLES_METHOD,
                {"textDocument": {"uri": path_to_uri(path)}, "position": None},
            )
        )
        runnables = [decode_runnable(raw) for raw in (result or []) if is_test_runnable(raw)]
        log.debug("Runnables fetched", path=str(path), count=len(runnables))
        return runnables

    async def module_definition(self, location: RunnableLocation) -> list[TestLocation]:
        client = await self._ready_client()
        params = types.DefinitionParams(
            text_document=types.TextDocumentIdentifier(uri=path_to_uri(location.target_path)),
            position=to_lsp_position(location.target_selection_range.start),
        )
        return decode_definition(await self._call(client.text_document_definition_async(params)))

# 🔼⚙️
