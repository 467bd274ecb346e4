from __future__ import annotations

import re

from braze.invariants import never

_C_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

MANGLE_PREFIX = "l_"


def is_c_identifier(value: str) -> bool:
    return _C_IDENTIFIER.fullmatch(value) is not None


def _mangle_component(part: str) -> str:
    out: list[str] = []
    for char in part:
        if char.isascii() and char.isalnum():
            out.append(char)
        elif char == "_":
            out.append("__")
        elif ord(char) <= 0xFFFF:
            out.append(f"_u{ord(char):04x}")
        else:
            out.append(f"_U{ord(char):08x}")
    return "".join(out)


def mangle(full_name: str) -> str:
    """Mangle a dotted host name into a C identifier.

    ``_`` is doubled so the ``_`` joining components stays unambiguous:
    ``demo.my_type`` becomes ``l_demo_my__type``.
    """
    parts = [part for part in full_name.split(".") if part]
    if not parts:
        never("cannot mangle an empty name", name=full_name)
    return MANGLE_PREFIX + "_".join(_mangle_component(part) for part in parts)
