from __future__ import annotations

from pathlib import Path
from typing import Callable
from urllib.parse import unquote, urlparse

from pygls.lsp.server import LanguageServer
from lsprotocol import types as lsp

from braze.config import Options, load_options
from braze.environment import HostMessage, MessageSeverity
from braze.exceptions import ConfigError
from braze.frontend import elaborate_source
from braze.positions import UNKNOWN_POSITION

server = LanguageServer("braze", "0.1.0")

_SEVERITIES = {
    MessageSeverity.ERROR: lsp.DiagnosticSeverity.Error,
    MessageSeverity.WARNING: lsp.DiagnosticSeverity.Warning,
    MessageSeverity.INFORMATION: lsp.DiagnosticSeverity.Information,
}


def _uri_to_path(uri: str) -> Path:
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    return Path(uri)


def _lsp_position(line: int, column: int) -> lsp.Position:
    # Host positions are 1-based lines; the unknown position lands on line 0.
    return lsp.Position(line=max(line - 1, 0), character=max(column, 0))


def to_lsp_diagnostic(message: HostMessage) -> lsp.Diagnostic:
    return lsp.Diagnostic(
        range=lsp.Range(
            start=_lsp_position(*message.start),
            end=_lsp_position(*message.end),
        ),
        message=message.text,
        severity=_SEVERITIES[message.severity],
        source="braze",
    )


def diagnostics_for_source(
    source: str,
    path: Path,
    options: Options,
    *,
    diagnostics_requested: bool = True,
) -> list[lsp.Diagnostic]:
    env = elaborate_source(
        source,
        file_name=str(path),
        module_name=path.stem,
        options=options,
        root=path.parent,
        diagnostics_requested=diagnostics_requested,
    )
    return [to_lsp_diagnostic(message) for message in env.messages]


def _workspace_root(ls: LanguageServer) -> Path | None:
    root_path = getattr(ls.workspace, "root_path", None)
    return Path(root_path) if root_path else None


def _publish(ls: LanguageServer, uri: str, *, diagnostics_requested: bool) -> None:
    doc = ls.workspace.get_text_document(uri)
    path = _uri_to_path(uri)
    try:
        options = load_options(root=_workspace_root(ls) or path.parent)
    except ConfigError as exc:
        message = HostMessage(
            str(path), MessageSeverity.ERROR, UNKNOWN_POSITION, UNKNOWN_POSITION, str(exc)
        )
        diagnostics = [to_lsp_diagnostic(message)]
    else:
        diagnostics = diagnostics_for_source(
            doc.source, path, options, diagnostics_requested=diagnostics_requested
        )
    ls.text_document_publish_diagnostics(
        lsp.PublishDiagnosticsParams(uri=uri, diagnostics=diagnostics)
    )


@server.feature(lsp.TEXT_DOCUMENT_DID_OPEN)
def did_open(ls: LanguageServer, params: lsp.DidOpenTextDocumentParams) -> None:
    _publish(ls, params.text_document.uri, diagnostics_requested=True)


@server.feature(lsp.TEXT_DOCUMENT_DID_CHANGE)
def did_change(ls: LanguageServer, params: lsp.DidChangeTextDocumentParams) -> None:
    # Shim tool timeouts while typing are expected; they are not reported.
    _publish(ls, params.text_document.uri, diagnostics_requested=False)


@server.feature(lsp.TEXT_DOCUMENT_DID_SAVE)
def did_save(ls: LanguageServer, params: lsp.DidSaveTextDocumentParams) -> None:
    _publish(ls, params.text_document.uri, diagnostics_requested=True)


def start(start_fn: Callable[[], None] | None = None) -> None:
    """Serve host-file diagnostics over stdio."""
    (start_fn or server.start_io)()


if __name__ == "__main__":  # pragma: no cover
    start()  # pragma: no cover
