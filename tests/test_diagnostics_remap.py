from __future__ import annotations

import textwrap
from pathlib import Path

import pytest
from lsprotocol import types as lsp

from conftest import lsp_diagnostic

from braze.config import Options
from braze.diagnostics import classify_severity, clean_message, report_diagnostics, report_from
from braze.environment import Environment, MessageSeverity
from braze.exceptions import DiagnosticsTimeout, ToolError
from braze.frontend import elaborate_source
from braze.positions import HostPosition
from braze.shim import push_shim_command


def _record(line: int, start: int, end: int, message: str, severity=lsp.DiagnosticSeverity.Warning):
    return lsp.Diagnostic(
        range=lsp.Range(
            start=lsp.Position(line=line, character=start),
            end=lsp.Position(line=line, character=end),
        ),
        message=message,
        severity=severity,
    )


def _three_commands(options: Options | None = None) -> Environment:
    env = Environment("host.py", options=options or Options())
    for column, text in ((10, "int a;"), (25, "int b;"), (40, "int c;")):
        push_shim_command(env, text, HostPosition(1, column))
    return env


def test_warning_maps_to_its_command() -> None:
    env = _three_commands()
    [message] = report_from(env, HostPosition(1, 10), [_record(1, 4, 5, "unused variable 'b'")])
    assert message.severity is MessageSeverity.WARNING
    assert message.start == HostPosition(1, 25)
    assert message.end == HostPosition(1, 25)
    assert env.messages == [message]


def test_warnings_as_errors_promotes_warnings() -> None:
    env = _three_commands(Options(warnings_as_errors=True))
    [message] = report_from(env, HostPosition(1, 10), [_record(1, 4, 5, "unused variable 'b'")])
    assert message.severity is MessageSeverity.ERROR


def test_note_pointing_into_shim_is_dropped() -> None:
    env = _three_commands()
    records = [_record(2, 0, 1, "nul:3:1: note (fix available)", lsp.DiagnosticSeverity.Information)]
    assert report_from(env, HostPosition(1, 10), records) == []
    assert env.messages == []


def test_records_ending_before_batch_are_stale() -> None:
    env = _three_commands()
    records = [_record(0, 0, 3, "already reported"), _record(2, 0, 3, "fresh")]
    messages = report_from(env, HostPosition(1, 25), records)
    assert [m.text for m in messages] == ["fresh"]
    assert messages[0].start == HostPosition(1, 40)


def test_batch_after_last_span_reports_nothing() -> None:
    env = _three_commands()
    assert report_from(env, HostPosition(2, 0), [_record(2, 0, 3, "late")]) == []


def test_record_spanning_commands_maps_both_ends() -> None:
    env = _three_commands()
    record = lsp.Diagnostic(
        range=lsp.Range(start=lsp.Position(line=0, character=0), end=lsp.Position(line=2, character=3)),
        message="spans",
        severity=lsp.DiagnosticSeverity.Error,
    )
    [message] = report_from(env, HostPosition(1, 10), [record])
    assert (message.start, message.end) == (HostPosition(1, 10), HostPosition(1, 40))
    assert message.severity is MessageSeverity.ERROR


@pytest.mark.parametrize(
    ("raw", "cleaned"),
    [
        ("unused variable (fix available)", "unused variable"),
        ("nul:3:1: note (fix available)", ""),
        ("unused variable 'x'\n\nnul:1:5: note: declared here", "unused variable 'x'"),
        ("  padded  ", "padded"),
    ],
)
def test_clean_message(raw: str, cleaned: str) -> None:
    assert clean_message(raw) == cleaned


def test_clean_message_honours_virtual_name() -> None:
    assert clean_message("shim.c:1:1: note\nreal", "shim.c") == "real"


def test_classify_severity() -> None:
    assert classify_severity(lsp.DiagnosticSeverity.Error) is MessageSeverity.ERROR
    assert classify_severity(lsp.DiagnosticSeverity.Warning) is MessageSeverity.WARNING
    assert classify_severity(lsp.DiagnosticSeverity.Hint) is MessageSeverity.INFORMATION
    assert classify_severity(None) is MessageSeverity.INFORMATION


def test_timeout_is_error_only_when_requested() -> None:
    def _slow(options, text, *, root=None):
        raise DiagnosticsTimeout(options.diagnostics_timeout_ms)

    requested = _three_commands()
    report_diagnostics(requested, HostPosition(1, 10), collector=_slow)
    assert [m.severity for m in requested.messages] == [MessageSeverity.ERROR]
    assert "1000ms" in requested.messages[0].text

    implicit = _three_commands()
    assert report_diagnostics(implicit, HostPosition(1, 10), requested=False, collector=_slow) == []
    assert implicit.messages == []


def test_tool_failure_is_a_warning() -> None:
    def _broken(options, text, *, root=None):
        raise ToolError("shim tool stream failed: LSP stream closed")

    env = _three_commands()
    report_diagnostics(env, HostPosition(1, 10), collector=_broken)
    [message] = env.messages
    assert message.severity is MessageSeverity.WARNING
    assert message.text.startswith("shim diagnostics unavailable")


def test_collector_sees_whole_shim() -> None:
    seen: list[str] = []

    def _collector(options, text, *, root=None):
        seen.append(text)
        return []

    env = _three_commands()
    report_diagnostics(env, HostPosition(1, 10), collector=_collector)
    assert seen == ["int a;\nint b;\nint c;\n"]


def test_section_reports_tool_diagnostics_at_host_positions(tmp_path: Path, fake_tool) -> None:
    source = textwrap.dedent(
        """\
        from braze import c

        c.section(
            "int a;",
            "int b;",
            "int c;",
        )
        """
    )
    tool = fake_tool("idle", [lsp_diagnostic(1, 4, 5, "unused variable 'b' (fix available)")])
    options = Options(diagnostics=True, diagnostics_timeout_ms=5000, tool=tool)
    env = elaborate_source(source, file_name="host.py", options=options, root=tmp_path)
    [message] = env.messages
    assert message.severity is MessageSeverity.WARNING
    assert message.start == HostPosition(5, 4)
    assert message.text == "unused variable 'b'"
    assert message.render() == "host.py:5:4: warning: unused variable 'b'"


def test_section_timeout_keeps_elaborating(tmp_path: Path, fake_tool) -> None:
    source = 'from braze import c\nc.section("int a;")\n"int b;"\n'
    options = Options(diagnostics=True, diagnostics_timeout_ms=200, tool=fake_tool("silent"))
    env = elaborate_source(source, options=options, root=tmp_path)
    assert [m.severity for m in env.messages] == [MessageSeverity.ERROR]
    assert env.messages[0].start == HostPosition(2, 0)
    assert "within 200ms" in env.messages[0].text
