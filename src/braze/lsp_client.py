from __future__ import annotations

import itertools
import json
import logging
import os
import select
import subprocess
import threading
import time
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import Callable, Generic, Iterator, Sequence, TypeAlias, TypeVar

from lsprotocol import types as lsp
from lsprotocol.converters import get_converter

from braze.config import Options
from braze.exceptions import DiagnosticsTimeout, ToolError
from braze.invariants import never

logger = logging.getLogger(__name__)

JSONScalar: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
JSONObject: TypeAlias = dict[str, JSONValue]

FILE_STATUS = "textDocument/clangd.fileStatus"
IDLE_STATE = "idle"

_converter = get_converter()

T = TypeVar("T")
DiagnosticRecord: TypeAlias = lsp.Diagnostic


class LspClientError(ToolError):
    pass


UTF8 = "utf-8"
UTF16 = "utf-16"
UTF32 = "utf-32"

# Code units per character for encodings that differ from code points.
_UNIT_WIDTHS: dict[str, Callable[[str], int]] = {
    UTF8: lambda char: len(char.encode("utf-8")),
    UTF16: lambda char: 2 if ord(char) > 0xFFFF else 1,
}


def negotiated_encoding(result: JSONValue) -> str:
    """Position encoding chosen by the tool; LSP defaults to UTF-16."""
    if not isinstance(result, dict):
        return UTF16
    capabilities = result.get("capabilities")
    if not isinstance(capabilities, dict):
        return UTF16
    for key in ("positionEncoding", "offsetEncoding"):
        value = capabilities.get(key)
        if isinstance(value, str):
            return value
    return UTF16


def _code_point_column(line: str, units: int, encoding: str) -> int:
    width = _UNIT_WIDTHS.get(encoding)
    if width is None:
        return units
    consumed = 0
    for index, char in enumerate(line):
        if consumed >= units:
            return index
        consumed += width(char)
    return len(line)


def to_code_points(
    records: Sequence[DiagnosticRecord], text: str, encoding: str
) -> list[DiagnosticRecord]:
    """Rewrite record ranges so ``character`` counts code points of ``text``."""
    if encoding not in _UNIT_WIDTHS:
        return list(records)
    lines = text.split("\n")

    def _position(position: lsp.Position) -> lsp.Position:
        line = lines[position.line] if 0 <= position.line < len(lines) else ""
        return lsp.Position(
            line=position.line,
            character=_code_point_column(line, position.character, encoding),
        )

    return [
        lsp.Diagnostic(
            range=lsp.Range(start=_position(record.range.start), end=_position(record.range.end)),
            message=record.message,
            severity=record.severity,
            code=record.code,
            source=record.source,
        )
        for record in records
    ]


def _wait_readable(stream, deadline_ns: int) -> None:
    fileno = getattr(stream, "fileno", None)
    if fileno is None:
        if time.monotonic_ns() >= deadline_ns:
            raise LspClientError("LSP response timed out")
        return
    try:
        fd = fileno()
    except (OSError, ValueError):
        if time.monotonic_ns() >= deadline_ns:
            raise LspClientError("LSP response timed out")
        return
    remaining_ns = deadline_ns - time.monotonic_ns()
    timeout = max(0.0, remaining_ns / 1_000_000_000)
    ready, _, _ = select.select([fd], [], [], timeout)
    if not ready:
        raise LspClientError("LSP response timed out")


def _read_exact(stream, length: int, deadline_ns: int | None = None) -> bytes:
    body = bytearray()
    while len(body) < length:
        if deadline_ns is not None:
            _wait_readable(stream, deadline_ns)
        chunk = stream.read(length - len(body))
        if not chunk:
            raise LspClientError("LSP stream closed")
        body.extend(chunk)
    return bytes(body)


def _read_rpc(stream, deadline_ns: int | None = None) -> JSONObject:
    header = b""
    while b"\r\n\r\n" not in header:
        if deadline_ns is not None:
            _wait_readable(stream, deadline_ns)
        chunk = stream.read(1)
        if not chunk:
            raise LspClientError("LSP stream closed")
        header += chunk
    head, _, rest = header.partition(b"\r\n\r\n")
    length = 0
    for line in head.split(b"\r\n"):
        if line.lower().startswith(b"content-length:"):
            try:
                length = int(line.split(b":", 1)[1].strip())
            except ValueError:
                raise LspClientError("Invalid LSP Content-Length") from None
            break
    if length <= 0:
        raise LspClientError("Invalid LSP Content-Length")
    body = rest
    if len(body) < length:
        body += _read_exact(stream, length - len(body), deadline_ns)
    elif len(body) > length:
        body = body[:length]
    try:
        message = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise LspClientError(f"Invalid LSP message payload: {exc}") from exc
    if not isinstance(message, dict):
        raise LspClientError("Invalid LSP message payload")
    return message


def _write_rpc(stream, message: JSONObject) -> None:
    payload = json.dumps(message).encode("utf-8")
    header = f"Content-Length: {len(payload)}\r\n\r\n".encode("utf-8")
    stream.write(header + payload)
    stream.flush()


class OneShot(Generic[T]):
    """Single-assignment cell; the first ``resolve`` wins."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._value: T | None = None

    def resolve(self, value: T) -> bool:
        with self._lock:
            if self._event.is_set():
                return False
            self._value = value
            self._event.set()
            return True

    @property
    def resolved(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    @property
    def value(self) -> T:
        if not self._event.is_set():
            never("one-shot cell read before resolution")
        return self._value  # type: ignore[return-value]


class DiagnosticsSlot:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: list[DiagnosticRecord] = []

    def replace(self, records: Sequence[DiagnosticRecord]) -> None:
        with self._lock:
            self._records = list(records)

    def take(self) -> list[DiagnosticRecord]:
        with self._lock:
            return list(self._records)


NotificationHandler = Callable[[JSONValue], None]


class ToolSession:
    """One shim tool subprocess and the reader thread that serves it.

    Notification handlers run on the reader thread.
    """

    def __init__(self, process: subprocess.Popen, *, request_timeout_s: float = 10.0) -> None:
        if process.stdin is None or process.stdout is None:
            never("shim tool process must expose stdin and stdout")
        self._process = process
        self._request_timeout_s = request_timeout_s
        self._write_lock = threading.Lock()
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._handlers: dict[str, list[NotificationHandler]] = {}
        self._close_listeners: list[Callable[[ToolError], None]] = []
        self._pending: dict[int, OneShot[JSONObject]] = {}
        self._versions: dict[str, int] = {}
        self._open: dict[str, int] = {}
        self._closing = False
        self._closed = False
        self.failure: ToolError | None = None
        self.position_encoding = UTF16
        self._reader = threading.Thread(
            target=self._read_loop, name="braze-tool-reader", daemon=True
        )

    def start(self) -> None:
        self._reader.start()

    def __enter__(self) -> ToolSession:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def open_documents(self) -> dict[str, int]:
        with self._lock:
            return dict(self._open)

    def handler_count(self) -> int:
        with self._lock:
            return sum(len(items) for items in self._handlers.values()) + len(
                self._close_listeners
            )

    def _read_loop(self) -> None:
        stdout = self._process.stdout
        while True:
            try:
                message = _read_rpc(stdout)
            except (LspClientError, OSError, ValueError) as exc:
                if self._closing:
                    return
                self._fail(LspClientError(f"shim tool stream failed: {exc}"))
                return
            if not self._dispatch(message):
                return

    def _dispatch(self, message: JSONObject) -> bool:
        method = message.get("method")
        if isinstance(method, str):
            if "id" in message:
                # Requests from the tool (configuration, progress) get a null result.
                self._send_quietly({"jsonrpc": "2.0", "id": message["id"], "result": None})
                return True
            with self._lock:
                handlers = list(self._handlers.get(method, ()))
            for handler in handlers:
                try:
                    handler(message.get("params"))
                except Exception as exc:  # malformed notification params
                    self._fail(LspClientError(f"bad `{method}` notification: {exc}"))
                    return False
            return True
        request_id = message.get("id")
        with self._lock:
            cell = self._pending.pop(request_id, None) if isinstance(request_id, int) else None
        if cell is None:
            logger.debug("dropping unmatched shim tool response: %s", request_id)
        else:
            cell.resolve(message)
        return True

    def _fail(self, error: ToolError) -> None:
        with self._lock:
            if self.failure is not None:
                return
            self.failure = error
            listeners = list(self._close_listeners)
            pending = list(self._pending.values())
            self._pending.clear()
        logger.debug("shim tool session failed: %s", error)
        for cell in pending:
            cell.resolve({"error": {"message": str(error)}})
        for listener in listeners:
            listener(error)

    def _raise_if_failed(self) -> None:
        if self.failure is not None:
            raise LspClientError(str(self.failure))

    def _send(self, message: JSONObject) -> None:
        self._raise_if_failed()
        try:
            with self._write_lock:
                _write_rpc(self._process.stdin, message)
        except (OSError, ValueError) as exc:
            error = LspClientError(f"failed writing to shim tool: {exc}")
            self._fail(error)
            raise error from exc

    def _send_quietly(self, message: JSONObject) -> None:
        try:
            self._send(message)
        except LspClientError as exc:
            logger.debug("shim tool reply not delivered: %s", exc)

    def notify(self, method: str, params: JSONValue = None) -> None:
        self._send({"jsonrpc": "2.0", "method": method, "params": params})

    def request(self, method: str, params: JSONValue = None, timeout_s: float | None = None) -> JSONValue:
        request_id = next(self._ids)
        cell: OneShot[JSONObject] = OneShot()
        with self._lock:
            self._raise_if_failed()
            self._pending[request_id] = cell
        self._send({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params})
        if not cell.wait(self._request_timeout_s if timeout_s is None else timeout_s):
            with self._lock:
                self._pending.pop(request_id, None)
            raise LspClientError(f"LSP request `{method}` timed out")
        response = cell.value
        if response.get("error"):
            raise LspClientError(f"LSP error: {response['error']}")
        return response.get("result")

    @contextmanager
    def handler(self, method: str, fn: NotificationHandler) -> Iterator[None]:
        with self._lock:
            self._handlers.setdefault(method, []).append(fn)
        try:
            yield
        finally:
            with self._lock:
                handlers = self._handlers.get(method, [])
                if fn in handlers:
                    handlers.remove(fn)
                if not handlers:
                    self._handlers.pop(method, None)

    @contextmanager
    def closed_listener(self, fn: Callable[[ToolError], None]) -> Iterator[None]:
        with self._lock:
            self._close_listeners.append(fn)
            failure = self.failure
        if failure is not None:
            fn(failure)
        try:
            yield
        finally:
            with self._lock:
                if fn in self._close_listeners:
                    self._close_listeners.remove(fn)

    @contextmanager
    def open_document(self, uri: str, language_id: str, text: str) -> Iterator[int]:
        version = self._versions.get(uri, 0) + 1
        self._versions[uri] = version
        params = lsp.DidOpenTextDocumentParams(
            text_document=lsp.TextDocumentItem(
                uri=uri, language_id=language_id, version=version, text=text
            )
        )
        self.notify(lsp.TEXT_DOCUMENT_DID_OPEN, _converter.unstructure(params))
        with self._lock:
            self._open[uri] = version
        try:
            yield version
        finally:
            with self._lock:
                self._open.pop(uri, None)
            if self.failure is None and not self._closing:
                close_params = lsp.DidCloseTextDocumentParams(
                    text_document=lsp.TextDocumentIdentifier(uri=uri)
                )
                self.notify(lsp.TEXT_DOCUMENT_DID_CLOSE, _converter.unstructure(close_params))

    def initialize(self, root: Path | None = None) -> JSONValue:
        root_uri = (root or Path.cwd()).resolve().as_uri()
        params = lsp.InitializeParams(
            process_id=os.getpid(),
            root_uri=root_uri,
            capabilities=lsp.ClientCapabilities(
                general=lsp.GeneralClientCapabilities(
                    position_encodings=[
                        lsp.PositionEncodingKind.Utf32,
                        lsp.PositionEncodingKind.Utf16,
                    ],
                ),
                text_document=lsp.TextDocumentClientCapabilities(
                    publish_diagnostics=lsp.PublishDiagnosticsClientCapabilities(),
                ),
            ),
            initialization_options={"clangdFileStatus": True},
        )
        payload = _converter.unstructure(params)
        # clangd releases before LSP 3.17 negotiate through `offsetEncoding`.
        payload["capabilities"]["offsetEncoding"] = [UTF32, UTF16]
        result = self.request(lsp.INITIALIZE, payload)
        self.position_encoding = negotiated_encoding(result)
        self.notify(lsp.INITIALIZED, {})
        return result

    def close(self, timeout_s: float = 2.0) -> None:
        if self._closed:
            return
        self._closed = True
        if self.failure is None:
            try:
                self.request(lsp.SHUTDOWN, None, timeout_s)
                self._closing = True
                self.notify(lsp.EXIT, None)
            except LspClientError as exc:
                logger.debug("shim tool shutdown incomplete: %s", exc)
        self._closing = True
        try:
            self._process.stdin.close()
        except OSError as exc:
            logger.debug("closing shim tool stdin failed: %s", exc)
        try:
            self._process.wait(timeout=timeout_s)
        except subprocess.TimeoutExpired:
            self._process.kill()
            self._process.wait(timeout=timeout_s)
        self._reader.join(timeout_s)


def start_session(
    tool: Sequence[str],
    *,
    root: Path | None = None,
    process_factory: Callable[..., subprocess.Popen] = subprocess.Popen,
    request_timeout_s: float = 10.0,
) -> ToolSession:
    try:
        proc = process_factory(
            list(tool),
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            bufsize=0,
        )
    except OSError as exc:
        raise LspClientError(f"failed to start shim tool `{tool[0]}`: {exc}") from exc
    session = ToolSession(proc, request_timeout_s=request_timeout_s)
    session.start()
    try:
        session.initialize(root)
    except LspClientError:
        session.close()
        raise
    return session


def collect(
    session: ToolSession,
    uri: str,
    text: str,
    language_id: str,
    timeout_ms: int,
) -> list[DiagnosticRecord]:
    """Open ``text`` as ``uri`` and return its diagnostics once the tool is idle.

    Raises DiagnosticsTimeout if no idle status arrives within ``timeout_ms``
    and LspClientError if the tool fails first. Handlers and the document are
    released on every path.
    """
    if timeout_ms <= 0:
        never("invalid diagnostics timeout", timeout_ms=timeout_ms)
    slot = DiagnosticsSlot()
    idle: OneShot[bool] = OneShot()

    def _on_publish(params: JSONValue) -> None:
        published = _converter.structure(params, lsp.PublishDiagnosticsParams)
        if published.uri == uri:
            slot.replace(published.diagnostics)

    def _on_file_status(params: JSONValue) -> None:
        if not isinstance(params, dict):
            return
        if params.get("uri") == uri and params.get("state") == IDLE_STATE:
            idle.resolve(True)

    timer = threading.Timer(timeout_ms / 1000, idle.resolve, args=(False,))
    timer.daemon = True
    with ExitStack() as stack:
        stack.enter_context(session.handler(lsp.TEXT_DOCUMENT_PUBLISH_DIAGNOSTICS, _on_publish))
        stack.enter_context(session.handler(FILE_STATUS, _on_file_status))
        stack.enter_context(session.closed_listener(lambda _error: idle.resolve(False)))
        stack.enter_context(session.open_document(uri, language_id, text))
        timer.start()
        stack.callback(timer.cancel)
        idle.wait()
    if not idle.value:
        if session.failure is not None:
            raise LspClientError(str(session.failure))
        raise DiagnosticsTimeout(timeout_ms)
    return to_code_points(slot.take(), text, session.position_encoding)


def virtual_document_uri(options: Options, root: Path | None = None) -> str:
    return ((root or Path.cwd()).resolve() / options.virtual_file).as_uri()


def collect_diagnostics(
    options: Options,
    text: str,
    *,
    root: Path | None = None,
    process_factory: Callable[..., subprocess.Popen] = subprocess.Popen,
) -> list[DiagnosticRecord]:
    """Run one diagnostics round in a fresh tool session."""
    with start_session(options.tool, root=root, process_factory=process_factory) as session:
        return collect(
            session,
            virtual_document_uri(options, root),
            text,
            options.language_id,
            options.diagnostics_timeout_ms,
        )
