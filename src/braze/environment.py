"""Host compilation environment.

The environment is the only place mutable state lives during elaboration:
extension state (the shim buffer, the boundary table, ...), declared names,
import aliases, and the host message sink. It is threaded explicitly through
every operation and is never shared between compilation units.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Generic, TypeVar

from braze.config import Options
from braze.exceptions import NameResolutionError
from braze.positions import UNKNOWN_POSITION, HostPosition

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MessageSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFORMATION = "information"


@dataclass(frozen=True)
class HostMessage:
    file_name: str
    severity: MessageSeverity
    start: HostPosition
    end: HostPosition
    text: str

    def render(self) -> str:
        return (
            f"{self.file_name}:{self.start.line}:{self.start.column}: "
            f"{self.severity.value}: {self.text}"
        )


@dataclass(frozen=True)
class Declaration:
    full_name: str
    kind: str
    params: tuple[str, ...] = ()


@dataclass
class Environment:
    file_name: str
    module_name: str = "__main__"
    options: Options = field(default_factory=Options)
    root: Path | None = None
    diagnostics_requested: bool = True
    positions: dict[object, HostPosition] = field(default_factory=dict)
    extension_state: dict[str, object] = field(default_factory=dict)
    declarations: dict[str, Declaration] = field(default_factory=dict)
    aliases: dict[str, str] = field(default_factory=dict)
    open_namespaces: list[str] = field(default_factory=list)
    messages: list[HostMessage] = field(default_factory=list)

    def position_of(self, node: object) -> HostPosition | None:
        return self.positions.get(id(node))

    def log(
        self,
        severity: MessageSeverity,
        text: str,
        start: HostPosition = UNKNOWN_POSITION,
        end: HostPosition | None = None,
    ) -> HostMessage:
        message = HostMessage(
            file_name=self.file_name,
            severity=severity,
            start=start,
            end=start if end is None else end,
            text=text,
        )
        self.messages.append(message)
        logger.debug("host message: %s", message.render())
        return message

    def error(self, text: str, start: HostPosition = UNKNOWN_POSITION) -> HostMessage:
        return self.log(MessageSeverity.ERROR, text, start)

    def warning(self, text: str, start: HostPosition = UNKNOWN_POSITION) -> HostMessage:
        return self.log(MessageSeverity.WARNING, text, start)

    @property
    def has_errors(self) -> bool:
        return any(m.severity is MessageSeverity.ERROR for m in self.messages)

    def declare(self, name: str, kind: str, params: tuple[str, ...] = ()) -> str:
        full_name = f"{self.module_name}.{name}"
        existing = self.declarations.get(full_name)
        if existing is not None and existing.kind != kind:
            raise NameResolutionError(
                f"`{full_name}` is already declared as a {existing.kind}"
            )
        self.declarations[full_name] = Declaration(full_name, kind, tuple(params))
        return full_name

    def resolve_global_name(self, name: str) -> list[str]:
        candidates: list[str] = []
        for namespace in (self.module_name, *self.open_namespaces):
            full_name = f"{namespace}.{name}"
            if full_name in self.declarations and full_name not in candidates:
                candidates.append(full_name)
        if name in self.declarations and name not in candidates:
            candidates.append(name)
        return candidates

    def resolve_name(self, name: str) -> str:
        candidates = self.resolve_global_name(name)
        if not candidates:
            raise NameResolutionError(f"unknown declaration `{name}`")
        if len(candidates) > 1:
            raise NameResolutionError(
                f"ambiguous declaration `{name}`, candidates: {', '.join(candidates)}"
            )
        return candidates[0]


@dataclass(frozen=True)
class EnvExtension(Generic[T]):
    """Typed slot in ``Environment.extension_state``, created on first use."""

    key: str
    initial: Callable[[], T]

    def get(self, env: Environment) -> T:
        if self.key not in env.extension_state:
            env.extension_state[self.key] = self.initial()
        return env.extension_state[self.key]  # type: ignore[return-value]

    def set(self, env: Environment, value: T) -> None:
        env.extension_state[self.key] = value

    def modify(self, env: Environment, fn: Callable[[T], T]) -> T:
        value = fn(self.get(env))
        self.set(env, value)
        return value
