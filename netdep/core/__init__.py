"""Core types and errors shared by every stage."""

from netdep.core.errors import (
    AnnotationError,
    ConfigurationError,
    EmptyScanError,
    EnvFileError,
    LoadError,
    MissingEntryError,
    NetDepError,
)
from netdep.core.types import (
    UNRESOLVED,
    CallTarget,
    DiscoveryAction,
    Resolution,
    TracePosition,
)

__all__ = [
    "AnnotationError",
    "CallTarget",
    "ConfigurationError",
    "DiscoveryAction",
    "EmptyScanError",
    "EnvFileError",
    "LoadError",
    "MissingEntryError",
    "NetDepError",
    "Resolution",
    "TracePosition",
    "UNRESOLVED",
]
