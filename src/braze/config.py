from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, replace
from datetime import date, datetime, time
from pathlib import Path
from typing import Mapping, TypeAlias
import tomllib

from braze.exceptions import ConfigError

DEFAULT_CONFIG_NAME = "braze.toml"
DEFAULT_TIMEOUT_MS = 1000
DEFAULT_TOOL = ("clangd", "--log=error")

TomlScalar: TypeAlias = str | int | float | bool | None | date | datetime | time
TomlValue: TypeAlias = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
TomlTable: TypeAlias = dict[str, TomlValue]


def _load_toml(path: Path) -> TomlTable:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        return {}
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def load_config(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    if config_path is None:
        base = root if root is not None else Path.cwd()
        config_path = base / DEFAULT_CONFIG_NAME
    return _load_toml(config_path)


def braze_defaults(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    data = load_config(root=root, config_path=config_path)
    section = data.get("braze", {})
    return section if isinstance(section, dict) else {}


def _as_bool(value: TomlValue) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return False


def _as_timeout_ms(value: TomlValue) -> int:
    try:
        ms = int(str(value).strip())
    except ValueError:
        raise ConfigError(f"invalid diagnostics timeout ms: {value!r}") from None
    if ms <= 0:
        raise ConfigError(f"invalid diagnostics timeout ms: {value!r}")
    return ms


def _as_command(value: TomlValue) -> tuple[str, ...]:
    if isinstance(value, str):
        parts = shlex.split(value)
    elif isinstance(value, list):
        parts = [str(item) for item in value if str(item).strip()]
    else:
        parts = []
    if not parts:
        raise ConfigError(f"empty shim tool command: {value!r}")
    return tuple(parts)


def merge_payload(payload: TomlTable, defaults: TomlTable) -> TomlTable:
    merged = dict(defaults)
    for key, value in payload.items():
        if value is None:
            continue
        merged[key] = value
    return merged


@dataclass(frozen=True)
class Options:
    diagnostics: bool = False
    diagnostics_timeout_ms: int = DEFAULT_TIMEOUT_MS
    warnings_as_errors: bool = False
    tool: tuple[str, ...] = DEFAULT_TOOL
    virtual_file: str = "nul"
    language_id: str = "c"

    @classmethod
    def from_table(cls, table: TomlTable) -> Options:
        options = cls()
        if "diagnostics" in table:
            options = replace(options, diagnostics=_as_bool(table["diagnostics"]))
        if "diagnostics_timeout_ms" in table:
            options = replace(
                options,
                diagnostics_timeout_ms=_as_timeout_ms(table["diagnostics_timeout_ms"]),
            )
        if "warnings_as_errors" in table:
            options = replace(
                options, warnings_as_errors=_as_bool(table["warnings_as_errors"])
            )
        if "tool" in table:
            options = replace(options, tool=_as_command(table["tool"]))
        if table.get("virtual_file"):
            options = replace(options, virtual_file=str(table["virtual_file"]))
        if table.get("language_id"):
            options = replace(options, language_id=str(table["language_id"]))
        return options


_ENV_KEYS = {
    "BRAZE_DIAGNOSTICS": "diagnostics",
    "BRAZE_DIAGNOSTICS_TIMEOUT_MS": "diagnostics_timeout_ms",
    "BRAZE_WARNINGS_AS_ERRORS": "warnings_as_errors",
    "BRAZE_TOOL": "tool",
}


def env_overrides(environ: Mapping[str, str] | None = None) -> TomlTable:
    environ = os.environ if environ is None else environ
    table: TomlTable = {}
    for env_key, option_key in _ENV_KEYS.items():
        raw = environ.get(env_key, "").strip()
        if raw:
            table[option_key] = raw
    return table


def load_options(
    root: Path | None = None,
    config_path: Path | None = None,
    overrides: TomlTable | None = None,
    environ: Mapping[str, str] | None = None,
) -> Options:
    """Resolve options from ``braze.toml``, then the environment, then overrides."""
    table = braze_defaults(root=root, config_path=config_path)
    table = merge_payload(env_overrides(environ), table)
    table = merge_payload(overrides or {}, table)
    return Options.from_table(table)
