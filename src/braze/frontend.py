from __future__ import annotations

from pathlib import Path

import libcst as cst
from libcst.metadata import MetadataWrapper, PositionProvider

from braze.config import Options
from braze.environment import Environment
from braze.positions import HostPosition
from braze.translator import elaborate


def index_positions(wrapper: MetadataWrapper) -> dict[object, HostPosition]:
    ranges = wrapper.resolve(PositionProvider)
    return {
        id(node): HostPosition(code_range.start.line, code_range.start.column)
        for node, code_range in ranges.items()
    }


def elaborate_source(
    source: str,
    *,
    file_name: str = "<string>",
    module_name: str = "__main__",
    options: Options | None = None,
    root: Path | None = None,
    diagnostics_requested: bool = True,
) -> Environment:
    """Parse a host module and elaborate it into a fresh environment."""
    env = Environment(
        file_name=file_name,
        module_name=module_name,
        options=options or Options(),
        root=root,
        diagnostics_requested=diagnostics_requested,
    )
    try:
        module = cst.parse_module(source)
    except cst.ParserSyntaxError as exc:
        env.error(f"syntax error: {exc.message}", HostPosition(exc.raw_line, exc.raw_column))
        return env
    wrapper = MetadataWrapper(module)
    env.positions.update(index_positions(wrapper))
    try:
        elaborate(env, wrapper.module)
    finally:
        # Keys are node ids, valid only while the tree is alive.
        env.positions.clear()
    return env


def elaborate_file(
    path: Path, options: Options | None = None, *, diagnostics_requested: bool = True
) -> Environment:
    source = path.read_text(encoding="utf-8")
    return elaborate_source(
        source,
        file_name=str(path),
        module_name=path.stem,
        options=options,
        root=path.resolve().parent,
        diagnostics_requested=diagnostics_requested,
    )
