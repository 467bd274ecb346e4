"""Embed C shim code in Python host modules and report clangd feedback at host positions."""

from braze.boundary import BoundaryConfig, BoundaryNames, boundary_names, generate
from braze.config import Options, load_options
from braze.environment import Environment, HostMessage, MessageSeverity
from braze.exceptions import (
    BrazeError,
    DiagnosticsTimeout,
    NameResolutionError,
    OrderingViolation,
    ToolError,
    UnreprintableNode,
)
from braze.frontend import elaborate_file, elaborate_source
from braze.positions import HostPosition, PositionMap
from braze.shim import ShimBuffer, get_shim

__all__ = [
    "BoundaryConfig",
    "BoundaryNames",
    "BrazeError",
    "DiagnosticsTimeout",
    "Environment",
    "HostMessage",
    "HostPosition",
    "MessageSeverity",
    "NameResolutionError",
    "Options",
    "OrderingViolation",
    "PositionMap",
    "ShimBuffer",
    "ToolError",
    "UnreprintableNode",
    "boundary_names",
    "elaborate_file",
    "elaborate_source",
    "generate",
    "get_shim",
    "load_options",
]
