"""Shim commands as seen by the Python interpreter.

These calls do nothing at run time; ``braze`` reads them from the host
source and turns them into C shim text.
"""

from __future__ import annotations


def section(*commands: str) -> None:
    """Append each string to the shim as one C command."""


def include(header: str) -> str:
    """Emit ``#include <header>`` (or the quoted form when given one)."""
    header = header.strip()
    if not (header.startswith("<") or header.startswith('"')):
        header = f"<{header}>"
    return f"#include {header}"


def opaque_type(name: str, ctype: str = "void", **config: object) -> None:
    """Declare an opaque host type backed by a C pointer.

    ``finalize`` and ``foreach`` name the C callbacks; ``to_handle``,
    ``of_handle`` and ``external_class`` override the generated names.
    """
