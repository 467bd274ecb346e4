"""Error taxonomy for shim accumulation, translation and diagnostics."""

from __future__ import annotations


class BrazeError(RuntimeError):
    """Base class for errors surfaced to the host as compile messages."""


class NeverRaise(BrazeError):
    """Sentinel exception for code paths that must be unreachable.

    Reaching one of these means an internal invariant is broken; it is never
    demoted to a host message.
    """

    def __init__(self, message: str, *, env: dict[str, object] | None = None):
        super().__init__(message)
        self.env = dict(env or {})


class NeverThrown(NeverRaise):
    """Alias for NeverRaise used by the explicit never() marker."""


class OrderingViolation(NeverThrown):
    """A shim span was recorded below the end of the position map."""


class ReprintFailure(BrazeError):
    """No shim text could be produced for a command."""


class UnreprintableNode(ReprintFailure):
    def __init__(self, kind: str, detail: str = "") -> None:
        message = f"cannot reprint `{kind}` as shim text"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.kind = kind


class NameResolutionError(BrazeError):
    pass


class BoundaryConfigError(BrazeError):
    pass


class ConfigError(BrazeError):
    """An option from `braze.toml`, the environment or the command line is invalid."""


class ToolError(BrazeError):
    """The shim tool subprocess crashed or spoke malformed protocol."""


class DiagnosticsTimeout(BrazeError, TimeoutError):
    def __init__(self, timeout_ms: int) -> None:
        super().__init__(f"shim tool did not become idle within {timeout_ms}ms")
        self.timeout_ms = timeout_ms
