"""Host syntax to shim text dispatch.

Every host node goes through :func:`elaborate`: macros are expanded first,
grouping nodes recurse into their children in source order, registered
kinds run their handler, and anything else is reprinted verbatim into the
shim buffer. Command kinds for calls are the callee's dotted name resolved
through the file's imports, so ``c.section(...)`` after
``from braze import c`` has kind ``braze.c.section``.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Sequence

import libcst as cst
from libcst.helpers import get_full_name_for_node

from braze import c as commands
from braze.diagnostics import report_diagnostics
from braze.environment import Environment
from braze.exceptions import BrazeError, NeverRaise, ReprintFailure, UnreprintableNode
from braze.positions import UNKNOWN_POSITION, HostPosition
from braze.shim import push_shim_command

logger = logging.getLogger(__name__)

COMMAND_NAMESPACE = "braze.c"
SECTION = f"{COMMAND_NAMESPACE}.section"
INCLUDE = f"{COMMAND_NAMESPACE}.include"
OPAQUE_TYPE = f"{COMMAND_NAMESPACE}.opaque_type"

_MAX_MACRO_EXPANSIONS = 64

Handler = Callable[[Environment, cst.CSTNode, HostPosition], None]
Macro = Callable[[Environment, cst.CSTNode], cst.CSTNode]

_TRANSLATORS: dict[str, Handler] = {}
_MACROS: dict[str, Macro] = {}
_GROUPING: dict[str, Callable[[cst.CSTNode], Sequence[cst.CSTNode]]] = {
    "SimpleStatementLine": lambda node: node.body,
    "Expr": lambda node: (node.value,),
}


def register_translator(kind: str) -> Callable[[Handler], Handler]:
    def _register(handler: Handler) -> Handler:
        _TRANSLATORS[kind] = handler
        return handler

    return _register


def register_macro(kind: str) -> Callable[[Macro], Macro]:
    def _register(macro: Macro) -> Macro:
        _MACROS[kind] = macro
        return macro

    return _register


def resolve_command_name(env: Environment, dotted: str) -> str:
    head, _, rest = dotted.partition(".")
    target = env.aliases.get(head)
    if target is not None:
        return f"{target}.{rest}" if rest else target
    for namespace in env.open_namespaces:
        candidate = f"{namespace}.{dotted}"
        if candidate in _TRANSLATORS or candidate in _MACROS:
            return candidate
    return dotted


def node_kind(node: cst.CSTNode, env: Environment) -> str:
    if isinstance(node, cst.Call):
        dotted = get_full_name_for_node(node.func)
        if dotted:
            return resolve_command_name(env, dotted)
    return type(node).__name__


def reprint(node: cst.CSTNode, kind: str) -> str:
    """Render a node's surface syntax as shim text.

    Only string literals carry shim text verbatim; anything that would need
    evaluation (f-strings, names, calls) is rejected.
    """
    if isinstance(node, (cst.SimpleString, cst.ConcatenatedString)):
        value = node.evaluated_value
        if isinstance(value, str):
            return value
        if value is None:
            raise UnreprintableNode(kind, "formatted string literals need evaluation")
        raise UnreprintableNode(kind, "bytes literals are not shim text")
    if isinstance(node, cst.FormattedString):
        raise UnreprintableNode(kind, "formatted string literals need evaluation")
    raise UnreprintableNode(kind)


def _expand_macros(env: Environment, node: cst.CSTNode) -> tuple[cst.CSTNode, str]:
    kind = node_kind(node, env)
    expansions = 0
    while kind in _MACROS:
        if expansions >= _MAX_MACRO_EXPANSIONS:
            raise ReprintFailure(f"macro expansion of `{kind}` did not terminate")
        node = _MACROS[kind](env, node)
        kind = node_kind(node, env)
        expansions += 1
    return node, kind


def elaborate(env: Environment, node: cst.CSTNode, ref: HostPosition | None = None) -> None:
    # Macro output has no recorded position and inherits the call site's.
    origin = env.position_of(node) or ref or UNKNOWN_POSITION
    node, kind = _expand_macros(env, node)
    children = _GROUPING.get(kind)
    if children is not None:
        for child in children(node):
            elaborate(env, child, origin)
        return
    handler = _TRANSLATORS.get(kind)
    if handler is not None:
        handler(env, node, origin)
        return
    push_shim_command(env, reprint(node, kind), origin, kind)


def elaborate_commands(
    env: Environment, nodes: Iterable[cst.CSTNode], ref: HostPosition | None = None
) -> None:
    """Elaborate each node as an independent command.

    A failing command is reported as a host error and skipped; spans pushed
    by earlier commands stay in the buffer.
    """
    for node in nodes:
        try:
            elaborate(env, node, ref)
        except NeverRaise:
            raise
        except BrazeError as exc:
            env.error(str(exc), env.position_of(node) or ref or UNKNOWN_POSITION)


def _is_docstring(stmt: cst.CSTNode) -> bool:
    if not isinstance(stmt, cst.SimpleStatementLine) or len(stmt.body) != 1:
        return False
    expr = stmt.body[0]
    return isinstance(expr, cst.Expr) and isinstance(
        expr.value, (cst.SimpleString, cst.ConcatenatedString)
    )


_STRING_LITERALS = (cst.SimpleString, cst.ConcatenatedString, cst.FormattedString)


def is_shim_statement(env: Environment, node: cst.CSTNode) -> bool:
    """Whether a module-level small statement belongs to the shim.

    Imports feed command-name resolution; bare string literals and calls into
    a registered kind or the ``braze.c`` namespace are shim commands.
    Everything else is host code.
    """
    if isinstance(node, (cst.Import, cst.ImportFrom)):
        return True
    if not isinstance(node, cst.Expr):
        return False
    value = node.value
    if isinstance(value, _STRING_LITERALS):
        return True
    if isinstance(value, cst.Call):
        kind = node_kind(value, env)
        return (
            kind in _TRANSLATORS
            or kind in _MACROS
            or kind.startswith(f"{COMMAND_NAMESPACE}.")
        )
    return False


@register_translator("Module")
def _module(env: Environment, node: cst.CSTNode, ref: HostPosition) -> None:
    assert isinstance(node, cst.Module)
    body = list(node.body)
    # The module docstring documents the host file; it is not shim text.
    if body and _is_docstring(body[0]):
        body = body[1:]
    for stmt in body:
        if not isinstance(stmt, cst.SimpleStatementLine):
            logger.debug("leaving `%s` to the host", type(stmt).__name__)
            continue
        # Checked one at a time: an import earlier on the line can make a
        # later call a command.
        for small in stmt.body:
            if is_shim_statement(env, small):
                elaborate_commands(env, [small], env.position_of(stmt) or ref)
            else:
                logger.debug("leaving `%s` to the host", type(small).__name__)


def _module_name(expr: cst.BaseExpression | None) -> str | None:
    if expr is None:
        return None
    return get_full_name_for_node(expr)


@register_translator("Import")
def _import(env: Environment, node: cst.CSTNode, ref: HostPosition) -> None:
    assert isinstance(node, cst.Import)
    for alias in node.names:
        name = alias.evaluated_name
        if alias.asname is not None:
            env.aliases[alias.evaluated_alias] = name
        else:
            head = name.partition(".")[0]
            env.aliases.setdefault(head, head)


@register_translator("ImportFrom")
def _import_from(env: Environment, node: cst.CSTNode, ref: HostPosition) -> None:
    assert isinstance(node, cst.ImportFrom)
    module = _module_name(node.module)
    if node.relative or module is None:
        logger.debug("ignoring relative import at %s", ref)
        return
    if isinstance(node.names, cst.ImportStar):
        if module not in env.open_namespaces:
            env.open_namespaces.append(module)
        return
    for alias in node.names:
        local = alias.evaluated_alias or alias.evaluated_name
        env.aliases[local] = f"{module}.{alias.evaluated_name}"


def _positional_args(node: cst.Call, kind: str) -> list[cst.BaseExpression]:
    values: list[cst.BaseExpression] = []
    for arg in node.args:
        if arg.keyword is not None or arg.star:
            raise UnreprintableNode(kind, "only positional arguments are accepted")
        values.append(arg.value)
    return values


@register_translator(SECTION)
def _section(env: Environment, node: cst.CSTNode, ref: HostPosition) -> None:
    assert isinstance(node, cst.Call)
    fragments = _positional_args(node, SECTION)
    elaborate_commands(env, fragments, ref)
    if env.options.diagnostics:
        report_diagnostics(env, ref, requested=env.diagnostics_requested)


@register_macro(INCLUDE)
def _include(env: Environment, node: cst.CSTNode) -> cst.CSTNode:
    assert isinstance(node, cst.Call)
    args = _positional_args(node, INCLUDE)
    if len(args) != 1 or not isinstance(args[0], cst.SimpleString):
        raise UnreprintableNode(INCLUDE, "expected a single header string literal")
    header = args[0].evaluated_value
    if not isinstance(header, str):
        raise UnreprintableNode(INCLUDE, "bytes literals are not shim text")
    return cst.SimpleString(repr(commands.include(header)))
