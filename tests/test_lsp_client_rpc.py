from __future__ import annotations

import io
import json
import threading
import time

import pytest

from braze.exceptions import NeverThrown
from braze.lsp_client import (
    DiagnosticsSlot,
    LspClientError,
    OneShot,
    _read_exact,
    _read_rpc,
    _write_rpc,
)


def _rpc_message(payload: dict) -> bytes:
    body = json.dumps(payload).encode("utf-8")
    header = f"Content-Length: {len(body)}\r\n\r\n".encode("utf-8")
    return header + body


def test_read_rpc_invalid_length() -> None:
    stream = io.BytesIO(b"Content-Length: 0\r\n\r\n{}")
    try:
        _read_rpc(stream)
    except LspClientError as exc:
        assert "Content-Length" in str(exc)
    else:
        raise AssertionError("Expected LspClientError for invalid Content-Length")


def test_read_rpc_non_numeric_length() -> None:
    stream = io.BytesIO(b"Content-Length: many\r\n\r\n{}")
    with pytest.raises(LspClientError, match="Content-Length"):
        _read_rpc(stream)


def test_read_rpc_missing_content_length_header() -> None:
    stream = io.BytesIO(b"Foo: bar\r\n\r\n{}")
    try:
        _read_rpc(stream)
    except LspClientError as exc:
        assert "Content-Length" in str(exc)
    else:
        raise AssertionError("Expected LspClientError for missing Content-Length")


def test_read_rpc_stream_closed() -> None:
    stream = io.BytesIO(b"")
    try:
        _read_rpc(stream)
    except LspClientError as exc:
        assert "stream closed" in str(exc).lower()
    else:
        raise AssertionError("Expected LspClientError for closed stream")


def test_read_rpc_truncated_body() -> None:
    stream = io.BytesIO(b"Content-Length: 40\r\n\r\n{\"id\": 1}")
    with pytest.raises(LspClientError, match="stream closed"):
        _read_rpc(stream)


def test_read_rpc_rejects_non_object_payload() -> None:
    stream = io.BytesIO(_rpc_message([1, 2, 3]))  # type: ignore[arg-type]
    with pytest.raises(LspClientError, match="payload"):
        _read_rpc(stream)


def test_read_rpc_rejects_invalid_json() -> None:
    stream = io.BytesIO(b"Content-Length: 5\r\n\r\nnotjs")
    with pytest.raises(LspClientError, match="payload"):
        _read_rpc(stream)


def test_read_rpc_skips_non_content_length_headers() -> None:
    payload = {"jsonrpc": "2.0", "id": 1, "result": {}}
    body = json.dumps(payload).encode("utf-8")
    header = b"Foo: bar\r\nContent-Length: " + str(len(body)).encode("utf-8") + b"\r\n\r\n"
    stream = io.BytesIO(header + body)
    message = _read_rpc(stream, time.monotonic_ns() + 1_000_000_000)
    assert message["id"] == 1


def test_read_rpc_reads_consecutive_messages() -> None:
    stream = io.BytesIO(
        _rpc_message({"jsonrpc": "2.0", "method": "a"})
        + _rpc_message({"jsonrpc": "2.0", "method": "b"})
    )
    assert _read_rpc(stream)["method"] == "a"
    assert _read_rpc(stream)["method"] == "b"


def test_read_exact_accumulates_short_reads() -> None:
    class _Trickle:
        def __init__(self, data: bytes) -> None:
            self._data = data

        def read(self, size: int) -> bytes:
            chunk, self._data = self._data[:1], self._data[1:]
            return chunk

    assert _read_exact(_Trickle(b"abcdef"), 4) == b"abcd"


def test_read_exact_times_out_on_expired_deadline() -> None:
    class _Blank:
        def read(self, size: int) -> bytes:
            return b"x" * size

    with pytest.raises(LspClientError, match="timed out"):
        _read_exact(_Blank(), 3, time.monotonic_ns() - 1)


def test_write_rpc_frames_payload() -> None:
    stream = io.BytesIO()
    _write_rpc(stream, {"jsonrpc": "2.0", "method": "exit"})
    stream.seek(0)
    assert _read_rpc(stream) == {"jsonrpc": "2.0", "method": "exit"}


def test_one_shot_first_resolution_wins() -> None:
    cell: OneShot[bool] = OneShot()
    assert not cell.resolved
    assert cell.resolve(True)
    assert not cell.resolve(False)
    assert cell.value is True


def test_one_shot_resolved_from_other_thread() -> None:
    cell: OneShot[str] = OneShot()
    threading.Timer(0.05, cell.resolve, args=("done",)).start()
    assert cell.wait(5.0)
    assert cell.value == "done"


def test_one_shot_wait_times_out() -> None:
    cell: OneShot[int] = OneShot()
    assert not cell.wait(0.01)


def test_one_shot_value_before_resolution_is_a_bug() -> None:
    cell: OneShot[int] = OneShot()
    with pytest.raises(NeverThrown):
        _ = cell.value


def test_diagnostics_slot_replaces_rather_than_appends() -> None:
    slot = DiagnosticsSlot()
    slot.replace(["a", "b"])  # type: ignore[list-item]
    slot.replace(["c"])  # type: ignore[list-item]
    assert slot.take() == ["c"]
