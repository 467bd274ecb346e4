from __future__ import annotations

from dataclasses import dataclass, field
from functools import cached_property

from braze.environment import EnvExtension, Environment
from braze.exceptions import ReprintFailure
from braze.positions import HostPosition, PositionMap


@dataclass(frozen=True)
class ShimCommand:
    text: str
    origin: HostPosition
    kind: str = ""


@dataclass(frozen=True)
class ShimBuffer:
    """Append-only shim source plus the host positions of its spans.

    Buffers are values: ``push_command`` returns a new buffer, so a failed
    push leaves the environment's current buffer untouched.
    """

    text: str = ""
    position_map: PositionMap = field(default_factory=PositionMap)
    commands: tuple[ShimCommand, ...] = ()

    def push_command(
        self, text: str | None, origin: HostPosition, kind: str = ""
    ) -> ShimBuffer:
        if text is None:
            raise ReprintFailure(f"no shim text for `{kind or 'command'}`")
        if not text.endswith("\n"):
            text = text + "\n"
        start = len(self.text)
        return ShimBuffer(
            text=self.text + text,
            position_map=self.position_map.record(start, origin),
            commands=(*self.commands, ShimCommand(text, HostPosition(*origin), kind)),
        )

    def current_end_offset(self) -> int:
        return len(self.text)

    def source_text(self) -> str:
        return self.text

    @cached_property
    def _line_starts(self) -> tuple[int, ...]:
        starts = [0]
        for index, char in enumerate(self.text):
            if char == "\n":
                starts.append(index + 1)
        return tuple(starts)

    def offset_of(self, line: int, character: int) -> int:
        """Convert a 0-based LSP line/character into a text offset."""
        starts = self._line_starts
        if line < 0:
            return 0
        if line >= len(starts):
            return len(self.text)
        line_end = starts[line + 1] - 1 if line + 1 < len(starts) else len(self.text)
        return min(starts[line] + max(character, 0), line_end)


SHIM = EnvExtension[ShimBuffer]("braze.shim", ShimBuffer)


def get_shim(env: Environment) -> ShimBuffer:
    return SHIM.get(env)


def set_shim(env: Environment, shim: ShimBuffer) -> None:
    SHIM.set(env, shim)


def push_shim_command(
    env: Environment, text: str | None, origin: HostPosition, kind: str = ""
) -> ShimBuffer:
    return SHIM.modify(env, lambda shim: shim.push_command(text, origin, kind))
