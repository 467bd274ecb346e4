from __future__ import annotations

import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
for entry in (ROOT, ROOT / "src"):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))


import pytest

FAKE_TOOL = ROOT / "tests" / "harness" / "fake_tool.py"


@pytest.fixture
def fake_tool(tmp_path: Path):
    def _command(
        mode: str = "idle",
        diagnostics: list[dict] | None = None,
        position_encoding: str | None = None,
    ) -> tuple[str, ...]:
        command = [sys.executable, str(FAKE_TOOL), "--mode", mode]
        if position_encoding is not None:
            command.extend(["--position-encoding", position_encoding])
        if diagnostics is not None:
            path = tmp_path / f"diagnostics-{mode}.json"
            path.write_text(json.dumps(diagnostics), encoding="utf-8")
            command.extend(["--diagnostics", str(path)])
        return tuple(command)

    return _command


def lsp_diagnostic(line: int, start: int, end: int, message: str, severity: int = 2) -> dict:
    return {
        "range": {
            "start": {"line": line, "character": start},
            "end": {"line": line, "character": end},
        },
        "severity": severity,
        "message": message,
    }
