"""Boundary code for opaque host types.

``c.opaque_type("Counter", "struct counter", finalize=..., foreach=...)``
declares ``Counter`` on the host side and emits into the shim a class handle,
a wrap function that registers the external class on first use, and an
unwrap function returning the payload pointer.
"""

from __future__ import annotations

import ast
import re
from dataclasses import dataclass
from typing import Optional

import libcst as cst
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from braze.environment import EnvExtension, Environment
from braze.exceptions import BoundaryConfigError, NameResolutionError
from braze.naming import is_c_identifier, mangle
from braze.positions import UNKNOWN_POSITION, HostPosition
from braze.shim import get_shim
from braze.translator import OPAQUE_TYPE, elaborate, register_translator

RUNTIME_PRELUDE = """\
typedef struct braze_external_class braze_external_class;
typedef struct braze_object braze_object;
typedef void (*braze_finalize_proc)(void *);
typedef void (*braze_foreach_proc)(void *, braze_object *);
extern braze_external_class *braze_register_external_class(braze_finalize_proc, braze_foreach_proc);
extern braze_object *braze_alloc_external(braze_external_class *, void *);
extern void *braze_get_external_data(braze_object *);
"""

_C_TYPE = re.compile(r"[A-Za-z_][A-Za-z0-9_ ]*\**")


class BoundaryConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    finalize: str
    foreach: str
    to_handle: Optional[str] = None
    of_handle: Optional[str] = None
    external_class: Optional[str] = None

    @field_validator("finalize", "foreach", "to_handle", "of_handle", "external_class")
    @classmethod
    def _c_identifier(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not is_c_identifier(value):
            raise ValueError(f"`{value}` is not a C identifier")
        return value


@dataclass(frozen=True)
class BoundaryNames:
    to_handle: str
    of_handle: str
    external_class: str


@dataclass(frozen=True)
class BoundaryEntry:
    names: BoundaryNames
    config: BoundaryConfig
    ctype: str


BOUNDARY_TABLE = EnvExtension[dict[str, BoundaryEntry]]("braze.boundary", dict)
RUNTIME_DECLARED = EnvExtension[bool]("braze.boundary.runtime", bool)


def derive_boundary_names(full_name: str, config: BoundaryConfig) -> BoundaryNames:
    mangled = mangle(full_name)
    return BoundaryNames(
        to_handle=config.to_handle or f"_braze_to_{mangled}",
        of_handle=config.of_handle or f"_braze_of_{mangled}",
        external_class=config.external_class or f"_braze_g_class_{mangled}",
    )


def boundary_names(env: Environment, name: str) -> BoundaryNames | None:
    candidates = env.resolve_global_name(name)
    if len(candidates) != 1:
        return None
    entry = BOUNDARY_TABLE.get(env).get(candidates[0])
    return entry.names if entry is not None else None


def render_boundary(names: BoundaryNames, config: BoundaryConfig, ctype: str) -> list[str]:
    pointer = f"{ctype} *"
    handle = names.external_class
    return [
        f"static braze_external_class *{handle} = NULL;",
        (
            f"static inline braze_object *{names.to_handle}({pointer}o) {{\n"
            f"  if ({handle} == NULL) {{\n"
            f"    {handle} = braze_register_external_class({config.finalize}, {config.foreach});\n"
            f"  }}\n"
            f"  return braze_alloc_external({handle}, o);\n"
            f"}}"
        ),
        (
            f"static inline {pointer}{names.of_handle}(braze_object *o) {{\n"
            f"  return ({pointer})(braze_get_external_data(o));\n"
            f"}}"
        ),
    ]


def _emit(env: Environment, text: str, ref: HostPosition) -> None:
    elaborate(env, cst.SimpleString(repr(text)), ref)


def _normalize_ctype(ctype: str | list[str] | tuple[str, ...]) -> str:
    if isinstance(ctype, (list, tuple)):
        ctype = " ".join(str(part) for part in ctype)
    ctype = " ".join(str(ctype).split())
    if not ctype or _C_TYPE.fullmatch(ctype) is None:
        raise BoundaryConfigError(f"`{ctype}` is not a C type specifier")
    return ctype


def _last_position(env: Environment) -> HostPosition:
    positions = get_shim(env).position_map.positions
    return positions[-1] if positions else UNKNOWN_POSITION


def generate(
    env: Environment,
    declared_name: str,
    config: BoundaryConfig,
    *,
    ctype: str | list[str] | tuple[str, ...] = "void",
    params: tuple[str, ...] = (),
    ref: HostPosition | None = None,
) -> BoundaryNames:
    """Declare ``declared_name`` and emit its boundary code once.

    Without ``ref`` the text is attributed to the last recorded host
    position, so the position map stays in host order.
    """
    ctype = _normalize_ctype(ctype)
    env.declare(declared_name, "opaque_type", params)
    # Resolution runs before any shim text is pushed, so an ambiguous name
    # leaves the buffer untouched.
    full_name = env.resolve_name(declared_name)
    names = derive_boundary_names(full_name, config)
    entry = BoundaryEntry(names, config, ctype)
    existing = BOUNDARY_TABLE.get(env).get(full_name)
    if existing is not None:
        if existing != entry:
            raise NameResolutionError(
                f"`{full_name}` is already declared with a different boundary"
            )
        return existing.names
    if ref is None:
        ref = _last_position(env)
    if not RUNTIME_DECLARED.get(env):
        _emit(env, RUNTIME_PRELUDE, ref)
        RUNTIME_DECLARED.set(env, True)
    for text in render_boundary(names, config, ctype):
        _emit(env, text, ref)
    BOUNDARY_TABLE.modify(env, lambda table: {**table, full_name: entry})
    return names


def _literal(node: cst.BaseExpression) -> object:
    source = cst.Module(body=[]).code_for_node(node)
    try:
        return ast.literal_eval(source)
    except (ValueError, SyntaxError) as exc:
        raise BoundaryConfigError(f"`{source}` is not a literal") from exc


@register_translator(OPAQUE_TYPE)
def _opaque_type(env: Environment, node: cst.CSTNode, ref: HostPosition) -> None:
    assert isinstance(node, cst.Call)
    positional: list[object] = []
    keywords: dict[str, object] = {}
    for arg in node.args:
        if arg.star:
            raise BoundaryConfigError("star arguments are not accepted")
        value = _literal(arg.value)
        if arg.keyword is None:
            positional.append(value)
        elif arg.keyword.value == "config":
            if not isinstance(value, dict) or not all(isinstance(key, str) for key in value):
                raise BoundaryConfigError("`config` must be a dict literal with string keys")
            keywords.update(value)
        else:
            keywords[arg.keyword.value] = value
    if not positional or not isinstance(positional[0], str) or len(positional) > 2:
        raise BoundaryConfigError("expected a type name and an optional C type")
    name = positional[0]
    ctype = positional[1] if len(positional) == 2 else "void"
    params = keywords.pop("params", ())
    if isinstance(params, str):
        params = (params,)
    try:
        config = BoundaryConfig(**keywords)
    except ValidationError as exc:
        raise BoundaryConfigError(f"invalid boundary config for `{name}`: {exc}") from exc
    generate(env, name, config, ctype=ctype, params=tuple(params), ref=ref)
