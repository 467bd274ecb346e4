"""Shim tool diagnostics, relocated onto host positions."""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from lsprotocol import types as lsp

from braze.environment import Environment, HostMessage, MessageSeverity
from braze.exceptions import DiagnosticsTimeout, ToolError
from braze.lsp_client import DiagnosticRecord, collect_diagnostics
from braze.positions import HostPosition
from braze.shim import ShimBuffer, get_shim

logger = logging.getLogger(__name__)

FIX_AVAILABLE_SUFFIX = "(fix available)"

Collector = Callable[..., list[DiagnosticRecord]]


def clean_message(text: str, virtual_name: str = "nul") -> str:
    """Drop tool noise from a diagnostic message.

    Lines that point into the virtual shim file (``nul:3:1: ...``) only make
    sense inside the shim, and clangd's fix-it hint has no host counterpart.
    """
    marker = f"{virtual_name}:"
    lines: list[str] = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith(marker):
            continue
        if line.endswith(FIX_AVAILABLE_SUFFIX):
            line = line[: -len(FIX_AVAILABLE_SUFFIX)].rstrip()
        lines.append(line)
    return "\n".join(lines).strip()


def classify_severity(
    severity: lsp.DiagnosticSeverity | None, warnings_as_errors: bool = False
) -> MessageSeverity:
    if severity == lsp.DiagnosticSeverity.Error:
        return MessageSeverity.ERROR
    if severity == lsp.DiagnosticSeverity.Warning:
        return MessageSeverity.ERROR if warnings_as_errors else MessageSeverity.WARNING
    return MessageSeverity.INFORMATION


def report_from(
    env: Environment,
    host_start: HostPosition,
    records: Iterable[DiagnosticRecord],
    shim: ShimBuffer | None = None,
) -> list[HostMessage]:
    shim = shim if shim is not None else get_shim(env)
    position_map = shim.position_map
    cutoff = position_map.host_to_shim(host_start)
    messages: list[HostMessage] = []
    for record in records:
        start_offset = shim.offset_of(record.range.start.line, record.range.start.character)
        end_offset = shim.offset_of(record.range.end.line, record.range.end.character)
        # Anything ending before the batch was already reported by an earlier
        # round, or belongs to text no host command produced.
        if cutoff is None or end_offset < cutoff:
            continue
        start = position_map.shim_to_host(start_offset)
        end = position_map.shim_to_host(end_offset)
        if end < host_start:
            continue
        text = clean_message(record.message, env.options.virtual_file)
        if not text:
            continue
        severity = classify_severity(record.severity, env.options.warnings_as_errors)
        messages.append(env.log(severity, text, start, end))
    return messages


def report_diagnostics(
    env: Environment,
    host_start: HostPosition,
    *,
    requested: bool = True,
    collector: Collector = collect_diagnostics,
) -> list[HostMessage]:
    """Run one diagnostics round over the current shim and report it.

    Failures never abort elaboration: a timeout is a host error only when
    diagnostics were explicitly requested, and tool failures are warnings.
    """
    shim = get_shim(env)
    try:
        records = collector(env.options, shim.source_text(), root=env.root)
    except DiagnosticsTimeout as exc:
        if requested:
            env.error(f"shim diagnostics: {exc}", host_start)
        else:
            logger.debug("skipping shim diagnostics: %s", exc)
        return []
    except ToolError as exc:
        env.warning(f"shim diagnostics unavailable: {exc}", host_start)
        return []
    logger.debug("shim tool reported %d diagnostics", len(records))
    return report_from(env, host_start, records, shim)
