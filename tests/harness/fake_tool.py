"""Minimal stand-in for clangd used by the client tests.

Modes:
  idle     publish the diagnostics from --diagnostics, then report idle
  silent   accept the document and never report idle
  crash    exit as soon as a document is opened
  garbage  answer a document with an unparsable frame
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path


def _read(stream) -> dict | None:
    headers: dict[str, str] = {}
    while True:
        line = stream.readline()
        if not line:
            return None
        line = line.strip()
        if not line:
            break
        key, _, value = line.decode("ascii").partition(":")
        headers[key.strip().lower()] = value.strip()
    length = int(headers.get("content-length", "0"))
    return json.loads(stream.read(length).decode("utf-8"))


def _write(stream, message: dict) -> None:
    body = json.dumps(message).encode("utf-8")
    stream.write(f"Content-Length: {len(body)}\r\n\r\n".encode("ascii") + body)
    stream.flush()


def _notify(stream, method: str, params: dict) -> None:
    _write(stream, {"jsonrpc": "2.0", "method": method, "params": params})


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--mode", choices=("idle", "silent", "crash", "garbage"), default="idle")
    parser.add_argument("--diagnostics", type=Path)
    parser.add_argument("--position-encoding")
    args = parser.parse_args(argv)
    diagnostics = json.loads(args.diagnostics.read_text()) if args.diagnostics else []
    stdin, stdout = sys.stdin.buffer, sys.stdout.buffer
    while True:
        message = _read(stdin)
        if message is None:
            return 0
        method = message.get("method")
        if method == "initialize":
            capabilities = {}
            encoding = args.position_encoding
            if encoding == "client-first":
                offered = message["params"]["capabilities"]["general"]["positionEncodings"]
                encoding = offered[0]
            if encoding:
                capabilities["positionEncoding"] = encoding
            _write(stdout, {"jsonrpc": "2.0", "id": message["id"], "result": {"capabilities": capabilities}})
        elif method == "shutdown":
            _write(stdout, {"jsonrpc": "2.0", "id": message["id"], "result": None})
        elif method == "exit":
            return 0
        elif method == "textDocument/didOpen":
            uri = message["params"]["textDocument"]["uri"]
            if args.mode == "crash":
                return 3
            if args.mode == "garbage":
                stdout.write(b"Content-Length: 5\r\n\r\nnotjs")
                stdout.flush()
                continue
            if args.mode == "silent":
                continue
            _write(
                stdout,
                {
                    "jsonrpc": "2.0",
                    "id": "progress-1",
                    "method": "window/workDoneProgress/create",
                    "params": {"token": "backgroundIndexProgress"},
                },
            )
            _notify(stdout, "textDocument/clangd.fileStatus", {"uri": uri, "state": "parsing includes"})
            _notify(
                stdout,
                "textDocument/publishDiagnostics",
                {"uri": uri + ".other", "diagnostics": []},
            )
            _notify(stdout, "textDocument/publishDiagnostics", {"uri": uri, "diagnostics": diagnostics})
            _notify(stdout, "textDocument/clangd.fileStatus", {"uri": uri, "state": "idle"})


if __name__ == "__main__":
    sys.exit(main())
