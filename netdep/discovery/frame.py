"""Per-path walker state."""

from __future__ import annotations

from dataclasses import dataclass, field

from netdep.discovery.registry import AnalyserConfig
from netdep.ssa.ir import BasicBlock, Call, Function, Parameter, Value


@dataclass
class Frame:
    """One function activation on the path from a service entry point.

    ``trace`` holds the (call site, callee) pairs leading here, outermost
    first. ``params`` binds this function's parameters to the values supplied
    by the caller; those values belong to ``parent``. ``visited`` is copied
    on descent so sibling paths never share it.
    """

    function: Function
    config: AnalyserConfig
    service_name: str
    trace: list[tuple[Call, Function]] = field(default_factory=list)
    params: dict[Parameter, Value] = field(default_factory=dict)
    visited: set[BasicBlock] = field(default_factory=set)
    parent: Frame | None = None

    @property
    def depth(self) -> int:
        return len(self.trace)

    def on_path(self, function: Function) -> bool:
        """True if ``function`` is already active on this path."""
        if function is self.function:
            return True
        return any(callee is function for _, callee in self.trace)

    def descend(self, call: Call, callee: Function, args: list[Value]) -> Frame:
        """Frame for entering ``callee`` from ``call`` with ``args`` bound positionally."""
        return Frame(
            function=callee,
            config=self.config,
            service_name=self.service_name,
            trace=[*self.trace, (call, callee)],
            params={param: arg for param, arg in zip(callee.params, args)},
            visited=set(self.visited),
            parent=self,
        )

    def enter_handler(self, call: Call, handler: Function) -> Frame:
        """Frame for walking a handler registered at ``call``; nothing is bound."""
        return Frame(
            function=handler,
            config=self.config,
            service_name=self.service_name,
            trace=[*self.trace, (call, handler)],
            visited=set(self.visited),
            parent=self,
        )

    def owner_of(self, param: Parameter) -> Frame | None:
        """Nearest frame (this one or an ancestor) activating the function ``param`` belongs to."""
        frame: Frame | None = self
        while frame is not None:
            if frame.function is param.function:
                return frame
            frame = frame.parent
        return None
