from __future__ import annotations

from bisect import bisect_left, bisect_right
from dataclasses import dataclass
from typing import NamedTuple

from braze.exceptions import OrderingViolation


class HostPosition(NamedTuple):
    """A position in host source, in libcst coordinates.

    Lines are 1-based and columns 0-based, so the ``(0, 0)`` sentinel never
    collides with a real position.
    """

    line: int
    column: int


UNKNOWN_POSITION = HostPosition(0, 0)


@dataclass(frozen=True)
class PositionMap:
    """Ordered shim-offset -> host-position records.

    Each record marks the start of a span; a span runs until the next
    record's offset (or the end of the shim text).
    """

    offsets: tuple[int, ...] = ()
    positions: tuple[HostPosition, ...] = ()

    def __len__(self) -> int:
        return len(self.offsets)

    def record(self, shim_offset: int, host_position: HostPosition) -> PositionMap:
        if self.offsets and shim_offset < self.offsets[-1]:
            raise OrderingViolation(
                "shim span recorded out of order",
                env={"offset": shim_offset, "last_offset": self.offsets[-1]},
            )
        return PositionMap(
            offsets=(*self.offsets, shim_offset),
            positions=(*self.positions, HostPosition(*host_position)),
        )

    def shim_to_host(self, offset: int) -> HostPosition:
        index = bisect_right(self.offsets, offset) - 1
        if index < 0:
            return UNKNOWN_POSITION
        return self.positions[index]

    def host_to_shim(self, position: HostPosition) -> int | None:
        # Host positions are appended in elaboration order, so the positions
        # tuple is sorted as well.
        index = bisect_left(self.positions, tuple(position))
        if index >= len(self.positions):
            return None
        return self.offsets[index]
