"""Signature registry and analyser configuration.

The registry answers "what is this callee?" for the walker and resolver;
``AnalyserConfig`` bundles it with the limits and lookup tables of one run.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from netdep import config
from netdep.config import InterestingCall
from netdep.core.types import DiscoveryAction

# service -> (variable -> value)
EnvMap = dict[str, dict[str, str]]
# service -> ((file, line) -> annotation text after "netdep:")
AnnotationMap = dict[str, dict[tuple[str, int], str]]


class SignatureRegistry:
    """Lookup of interesting signatures and ignored packages.

    Args:
        calls: Signature -> registry row; defaults to ``config.INTERESTING_CALLS``
        formatters: Signature -> index of the format string argument
        request_builders: Signature -> index of the URL argument
        ignore_list: Package paths never descended into
    """

    def __init__(
        self,
        calls: dict[str, InterestingCall] | None = None,
        formatters: dict[str, int] | None = None,
        request_builders: dict[str, int] | None = None,
        ignore_list: frozenset[str] | set[str] | None = None,
    ) -> None:
        self.calls = dict(config.INTERESTING_CALLS if calls is None else calls)
        self.formatters = dict(config.FORMATTERS if formatters is None else formatters)
        self.request_builders = dict(
            config.REQUEST_BUILDERS if request_builders is None else request_builders
        )
        self.ignore_list = frozenset(config.IGNORE_LIST if ignore_list is None else ignore_list)

    def lookup(self, signature: str) -> InterestingCall | None:
        return self.calls.get(signature)

    def action(self, signature: str) -> DiscoveryAction | None:
        entry = self.calls.get(signature)
        return entry.action if entry is not None else None

    def formatter_index(self, signature: str) -> int | None:
        return self.formatters.get(signature)

    def request_builder_index(self, signature: str) -> int | None:
        return self.request_builders.get(signature)

    def is_ignored(self, package_path: str) -> bool:
        """True if the package or its first path segment is on the ignore list."""
        if not package_path:
            return False
        return package_path in self.ignore_list or package_path.split("/")[0] in self.ignore_list

    def signatures(self, action: DiscoveryAction) -> dict[str, int]:
        """Signature -> argument index for every row with ``action``."""
        return {
            signature: entry.argument_index
            for signature, entry in self.calls.items()
            if entry.action == action
        }


@dataclass
class AnalyserConfig:
    """Everything the walker and resolver need for one run.

    Attributes:
        registry: Interesting signatures and the ignore list
        max_recursion_depth: Maximum number of stacked frames
        max_trace_depth: Number of trace entries shown in verbose logs
        env: Environment variables per service
        annotations: Parsed ``//netdep:`` comments per service
        verbose: Log unresolved traces
        project_root: Absolute project directory, for display file names
    """

    registry: SignatureRegistry = field(default_factory=SignatureRegistry)
    max_recursion_depth: int = config.DEFAULT_MAX_RECURSION_DEPTH
    max_trace_depth: int | None = None
    env: EnvMap = field(default_factory=dict)
    annotations: AnnotationMap = field(default_factory=dict)
    verbose: bool = False
    project_root: str = ""

    def __post_init__(self) -> None:
        if self.max_trace_depth is None:
            self.max_trace_depth = self.max_recursion_depth

    @classmethod
    def default(
        cls,
        env: EnvMap | None = None,
        annotations: AnnotationMap | None = None,
        verbose: bool = False,
        project_root: str = "",
    ) -> AnalyserConfig:
        """Default registry and limits."""
        return cls(
            env=env or {},
            annotations=annotations or {},
            verbose=verbose,
            project_root=project_root,
        )

    @property
    def interesting_client(self) -> dict[str, int]:
        return self.registry.signatures(DiscoveryAction.EMIT_CLIENT)

    @property
    def interesting_endpoint(self) -> dict[str, int]:
        return self.registry.signatures(DiscoveryAction.EMIT_ENDPOINT)

    @property
    def substitute(self) -> dict[str, int]:
        return self.registry.signatures(DiscoveryAction.SUBSTITUTE)

    @property
    def ignore_list(self) -> frozenset[str]:
        return self.registry.ignore_list
