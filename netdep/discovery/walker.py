"""Call-graph walk from service entry points.

The walker does a depth-first traversal of basic blocks starting at
``main`` of every main package of a service. Calls to registered client or
endpoint signatures become ``CallTarget``s, with their interesting argument
resolved by ``ValueResolver``. Any other call into code with a body is
descended into with a new frame, bounded by ``max_recursion_depth`` and by
the functions already on the current path.

Handlers passed to endpoint registrations (``http.HandleFunc("/x", h)``,
``r.GET("/x", func(c *gin.Context) {...})``) are walked from the
registration site so the calls they make count for the registering service.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from netdep.config import InterestingCall
from netdep.core.errors import MissingEntryError
from netdep.core.types import UNRESOLVED, CallTarget, DiscoveryAction, Resolution, TracePosition
from netdep.discovery.frame import Frame
from netdep.discovery.registry import AnalyserConfig
from netdep.discovery.resolver import ValueResolver
from netdep.ssa.ir import (
    BasicBlock,
    Call,
    Conversion,
    FreeVar,
    Function,
    Global,
    MakeInterface,
    MethodValue,
    Package,
    Parameter,
    Phi,
    Program,
    Value,
)
from netdep.ssa.loader import relative_file_name

logger = logging.getLogger(__name__)

# a function value together with the receiver a method value is bound to
BoundFunction = tuple[Function, Value | None]

_MAX_VALUE_CHAIN = 32


class CallGraphWalker:
    """Discovers client and endpoint targets of the services of one program.

    Args:
        program: Program holding every loaded package
        config: Registry, limits and lookup tables of the run
    """

    def __init__(self, program: Program, config: AnalyserConfig) -> None:
        self.program = program
        self.config = config
        self.registry = config.registry
        self.resolver = ValueResolver(config)
        self._clients: list[CallTarget] = []
        self._endpoints: list[CallTarget] = []
        self._seen: set[tuple[str, str, tuple[TracePosition, ...]]] = set()
        self._service_dir = ""

    @property
    def clients(self) -> list[CallTarget]:
        return self._clients

    @property
    def endpoints(self) -> list[CallTarget]:
        return self._endpoints

    def discover(
        self, packages: list[Package], service_name: str, service_dir: str | Path | None = None
    ) -> tuple[list[CallTarget], list[CallTarget]]:
        """Walk every main package of a service.

        Args:
            packages: Clean packages of the service
            service_name: Name the targets are attributed to
            service_dir: Root the trace file names are taken from; the project
                root is used when omitted

        Returns:
            (client targets, endpoint targets) found for this service, in discovery order

        Raises:
            MissingEntryError: If a main package has no main function
        """
        self._service_dir = os.path.abspath(service_dir) if service_dir is not None else ""
        clients_before = len(self._clients)
        endpoints_before = len(self._endpoints)

        for package in packages:
            if package.name != "main":
                continue
            entry = package.func("main")
            if entry is None:
                raise MissingEntryError(package.path)
            logger.debug("walking_entry service=%s function=%s", service_name, entry.signature)
            self._walk_function(Frame(function=entry, config=self.config, service_name=service_name))

        return self._clients[clients_before:], self._endpoints[endpoints_before:]

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def _walk_function(self, frame: Frame) -> None:
        entry = frame.function.entry
        if entry is None:
            return
        # preorder DFS; successors are visited in declaration order
        stack: list[BasicBlock] = [entry]
        while stack:
            block = stack.pop()
            if block in frame.visited:
                continue
            frame.visited.add(block)
            for call in block.calls():
                self._visit_call(call, frame)
            stack.extend(reversed(block.succs))

    def _visit_call(self, call: Call, frame: Frame) -> None:
        bound = self._callee(call, frame)
        if bound is None:
            return
        callee, receiver = bound

        entry = self.registry.lookup(callee.signature)
        if entry is not None:
            if entry.action == DiscoveryAction.SUBSTITUTE:
                return  # resolved lazily by the resolver
            self._emit(call, callee, entry, frame)
            if entry.action == DiscoveryAction.EMIT_ENDPOINT:
                self._walk_handlers(call, entry, frame)
            return

        if not self._can_enter(callee, frame):
            return
        args = list(call.args) if receiver is None else [receiver, *call.args]
        self._walk_function(frame.descend(call, callee, args))

    def _can_enter(self, callee: Function, frame: Frame) -> bool:
        if callee.is_external or not callee.blocks:
            return False
        if self.registry.is_ignored(callee.package_path):
            return False
        if frame.depth >= self.config.max_recursion_depth:
            logger.debug("max_recursion_depth_reached function=%s", callee.signature)
            return False
        return not frame.on_path(callee)

    def _walk_handlers(self, call: Call, entry: InterestingCall, frame: Frame) -> None:
        """Walk every function-valued argument after the URL of an endpoint call."""
        for arg in call.args[entry.argument_index + 1 :]:
            handler = self._handler(arg, frame)
            if handler is None:
                continue
            function, _ = handler
            if not self._can_enter(function, frame):
                continue
            logger.debug("walking_handler service=%s handler=%s", frame.service_name, function.signature)
            self._walk_function(frame.enter_handler(call, function))

    # ------------------------------------------------------------------
    # Callee selection
    # ------------------------------------------------------------------

    def _callee(self, call: Call, frame: Frame) -> BoundFunction | None:
        static = call.static_callee()
        if static is not None:
            return static, None
        if call.is_invoke:
            concrete = self._concrete_type(call.receiver, frame, 0)
            if concrete is None:
                return None
            method = self.program.lookup_method(concrete, call.method or "")
            return (method, None) if method is not None else None
        return self._function_value(call.callee, frame, 0)

    def _handler(self, value: Value, frame: Frame) -> BoundFunction | None:
        bound = self._function_value(value, frame, 0)
        if bound is not None:
            return bound
        # a value whose type implements http.Handler
        concrete = self._concrete_type(value, frame, 0)
        if concrete is None:
            return None
        method = self.program.lookup_method(concrete, "ServeHTTP")
        if method is None or method.is_external:
            return None
        return method, value

    def _function_value(self, value: Value | None, frame: Frame, depth: int) -> BoundFunction | None:
        """The function a function-typed value refers to, following parameters back to callers."""
        if value is None or depth > _MAX_VALUE_CHAIN:
            return None
        depth += 1

        if isinstance(value, Function):
            return value, None
        if isinstance(value, MethodValue):
            return value.function, value.receiver
        if isinstance(value, (MakeInterface, Conversion)):
            return self._function_value(value.x, frame, depth)
        if isinstance(value, FreeVar):
            return self._function_value(value.outer, frame, depth)
        if isinstance(value, Global):
            if value.initializer is None or value.reassigned:
                return None
            return self._function_value(value.initializer, frame, depth)
        if isinstance(value, Parameter):
            owner = frame.owner_of(value)
            if owner is None or owner.parent is None or value not in owner.params:
                return None
            return self._function_value(owner.params[value], owner.parent, depth)
        if isinstance(value, Phi):
            found: BoundFunction | None = None
            for edge in value.edges:
                if edge is value or isinstance(edge, Phi):
                    continue
                candidate = self._function_value(edge, frame, depth)
                if candidate is None or (found is not None and candidate[0] is not found[0]):
                    return None
                found = candidate
            return found
        return None

    def _concrete_type(self, value: Value | None, frame: Frame, depth: int) -> str | None:
        """Dynamic type of an interface value, as far as it can be traced."""
        if value is None or depth > _MAX_VALUE_CHAIN:
            return None
        depth += 1

        if isinstance(value, MakeInterface):
            if value.x.type is not None and not self.program.is_interface(value.x.type):
                return value.x.type
            return self._concrete_type(value.x, frame, depth)
        if isinstance(value, Parameter):
            owner = frame.owner_of(value)
            if owner is not None and owner.parent is not None and value in owner.params:
                return self._concrete_type(owner.params[value], owner.parent, depth)
        elif isinstance(value, FreeVar):
            return self._concrete_type(value.outer, frame, depth)
        elif isinstance(value, Global) and value.initializer is not None and not value.reassigned:
            found = self._concrete_type(value.initializer, frame, depth)
            if found is not None:
                return found
        elif isinstance(value, Phi):
            types = {
                self._concrete_type(edge, frame, depth)
                for edge in value.edges
                if edge is not value and not isinstance(edge, Phi)
            }
            if len(types) == 1:
                return types.pop()
            return None

        if value.type is not None and not self.program.is_interface(value.type):
            return value.type
        return None

    # ------------------------------------------------------------------
    # Targets
    # ------------------------------------------------------------------

    def _emit(self, call: Call, callee: Function, entry: InterestingCall, frame: Frame) -> None:
        index = entry.argument_index
        result: Resolution
        if index < len(call.args):
            result = self.resolver.resolve(call.args[index], frame)
        elif entry.default is not None:
            result = Resolution(entry.default, True)
        else:
            result = UNRESOLVED

        # a target is only resolved with a non-empty location
        location = result.value if result.resolved else ""
        target = CallTarget(
            package_name=callee.package_path,
            method_name=callee.signature,
            service_name=frame.service_name,
            request_location=location,
            is_resolved=bool(location),
            trace=self._trace(call, frame),
        )

        key = target.dedupe_key()
        if key in self._seen:
            return
        self._seen.add(key)

        if entry.action == DiscoveryAction.EMIT_CLIENT:
            self._clients.append(target)
        else:
            self._endpoints.append(target)

        if self.config.verbose and not target.is_resolved:
            shown = target.trace[-(self.config.max_trace_depth or len(target.trace)) :]
            logger.info(
                "unresolved_target service=%s method=%s trace=%s",
                target.service_name,
                target.method_name,
                " -> ".join(str(p) for p in shown),
            )

    def _trace(self, call: Call, frame: Frame) -> list[TracePosition]:
        sites = [site for site, _ in frame.trace]
        sites.append(call)
        return [
            TracePosition(
                file_name=relative_file_name(
                    site.position.filename, frame.service_name, self.config.project_root, self._service_dir
                ),
                line=site.position.line,
            )
            for site in sites
        ]


def discover_service(
    program: Program,
    packages: list[Package],
    service_name: str,
    config: AnalyserConfig,
    service_dir: str | Path | None = None,
) -> tuple[list[CallTarget], list[CallTarget]]:
    """Walk one service with a fresh walker; see ``CallGraphWalker.discover``."""
    return CallGraphWalker(program, config).discover(packages, service_name, service_dir)
