"""Core type definitions: discovery actions, call targets, trace positions."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import NamedTuple


class DiscoveryAction(Enum):
    """What the walker does when it meets a registered signature."""

    EMIT_CLIENT = "client"
    EMIT_ENDPOINT = "endpoint"
    SUBSTITUTE = "substitute"


class Resolution(NamedTuple):
    """Outcome of resolving an IR value to a string.

    ``value`` may hold partial text for an unresolved value; callers
    must check ``resolved`` before trusting it.
    """

    value: str
    resolved: bool


UNRESOLVED = Resolution("", False)


@dataclass(frozen=True)
class TracePosition:
    """One call site on the path from the entry point to a discovered call."""

    file_name: str  # relative, e.g. "service-1/main.go"
    line: int

    def __str__(self) -> str:
        return f"{self.file_name}:{self.line}"


@dataclass
class CallTarget:
    """A discovered client call or endpoint registration.

    Invariants: ``trace`` is non-empty, ``trace[-1]`` is the classified
    call itself, and ``is_resolved`` implies ``request_location != ""``.
    """

    package_name: str  # e.g. net/http
    method_name: str  # e.g. (*net/http.Client).Get
    service_name: str
    request_location: str = ""
    is_resolved: bool = False
    target_service: str | None = None
    trace: list[TracePosition] = field(default_factory=list)

    @property
    def location(self) -> TracePosition:
        """Position of the classified call (innermost trace entry)."""
        return self.trace[-1]

    def dedupe_key(self) -> tuple[str, str, tuple[TracePosition, ...]]:
        return (self.service_name, self.method_name, tuple(self.trace))
