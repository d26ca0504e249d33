"""Symbolic resolution of IR values to strings.

``ValueResolver.resolve`` follows constants, string concatenation, format
strings, environment lookups, merges and parameters across call
boundaries. Parameters are the subtle case: the value bound to a parameter
was supplied by the caller, so it is resolved in the caller's frame, and
the chain of frames is effectively the static call stack.

Resolution never raises. Whatever cannot be followed comes back as
``UNRESOLVED`` and the walker records the target as unresolved.
"""

from __future__ import annotations

import logging

from netdep.config import MAX_RESOLUTION_DEPTH
from netdep.core.types import UNRESOLVED, DiscoveryAction, Resolution
from netdep.discovery.frame import Frame
from netdep.discovery.registry import AnalyserConfig
from netdep.ssa.ir import (
    BinOp,
    Call,
    Const,
    Conversion,
    Extract,
    FreeVar,
    Function,
    Global,
    MakeInterface,
    Parameter,
    Phi,
    Value,
)

logger = logging.getLogger(__name__)


class ValueResolver:
    """Resolves values against the frames of the walker.

    Args:
        config: Registry and environment of the current run
        max_depth: Longest chain of values followed before giving up
    """

    def __init__(self, config: AnalyserConfig, max_depth: int = MAX_RESOLUTION_DEPTH) -> None:
        self.config = config
        self.registry = config.registry
        self.max_depth = max_depth

    def resolve(self, value: Value | None, frame: Frame) -> Resolution:
        """Resolve ``value`` as seen from ``frame``.

        Returns:
            Resolution(value, True) for a concrete string, otherwise UNRESOLVED
        """
        if value is None:
            return UNRESOLVED
        return self._resolve(value, frame, 0, frozenset(), integers=False)

    def _resolve(
        self,
        value: Value,
        frame: Frame,
        depth: int,
        active: frozenset[Phi],
        integers: bool,
    ) -> Resolution:
        if depth > self.max_depth:
            logger.debug("resolution_depth_exceeded value=%r", value)
            return UNRESOLVED
        depth += 1

        if isinstance(value, Const):
            if value.is_string:
                return Resolution(str(value.value), True)
            if integers and isinstance(value.value, int) and not isinstance(value.value, bool):
                return Resolution(str(value.value), True)
            return UNRESOLVED

        if isinstance(value, Parameter):
            owner = frame.owner_of(value)
            if owner is None or owner.parent is None or value not in owner.params:
                return UNRESOLVED
            return self._resolve(owner.params[value], owner.parent, depth, active, integers)

        if isinstance(value, FreeVar):
            return self._resolve(value.outer, frame, depth, active, integers)

        if isinstance(value, (MakeInterface, Conversion)):
            return self._resolve(value.x, frame, depth, active, integers)

        if isinstance(value, Global):
            if value.initializer is None or value.reassigned:
                return UNRESOLVED
            return self._resolve(value.initializer, frame, depth, active, integers)

        if isinstance(value, BinOp):
            if value.op != "+":
                return UNRESOLVED
            left = self._resolve(value.x, frame, depth, active, integers=False)
            right = self._resolve(value.y, frame, depth, active, integers=False)
            if left.resolved and right.resolved:
                return Resolution(left.value + right.value, True)
            return UNRESOLVED

        if isinstance(value, Phi):
            return self._resolve_phi(value, frame, depth, active, integers) or UNRESOLVED

        if isinstance(value, Extract):
            if isinstance(value.tuple, Call):
                return self._resolve_call(value.tuple, frame, depth, active, result_index=value.index)
            return UNRESOLVED

        if isinstance(value, Call):
            return self._resolve_call(value, frame, depth, active, result_index=0)

        return UNRESOLVED

    def _resolve_phi(
        self,
        phi: Phi,
        frame: Frame,
        depth: int,
        active: frozenset[Phi],
        integers: bool,
    ) -> Resolution | None:
        """All non-cyclic incoming values must resolve to the same string.

        Returns:
            None if every edge leads back into a phi being resolved
        """
        if depth > self.max_depth:
            return UNRESOLVED
        active = active | {phi}
        seen: set[str] = set()
        for edge in phi.edges:
            if edge is phi or edge in active:
                continue
            if isinstance(edge, Phi):
                nested = self._resolve_phi(edge, frame, depth + 1, active, integers)
                if nested is None:
                    continue
                result = nested
            else:
                result = self._resolve(edge, frame, depth, active, integers)
            if not result.resolved:
                return UNRESOLVED
            seen.add(result.value)
        if not seen:
            return None
        if len(seen) == 1:
            return Resolution(seen.pop(), True)
        return UNRESOLVED

    def _resolve_call(
        self,
        call: Call,
        frame: Frame,
        depth: int,
        active: frozenset[Phi],
        result_index: int,
    ) -> Resolution:
        callee = call.static_callee()
        if callee is None:
            return UNRESOLVED
        signature = callee.signature

        entry = self.registry.lookup(signature)
        if entry is not None and entry.action == DiscoveryAction.SUBSTITUTE and result_index == 0:
            return self._substitute(call, entry.argument_index, frame, depth, active)

        format_index = self.registry.formatter_index(signature)
        if format_index is not None and result_index == 0:
            return self._format(call, format_index, frame, depth, active)

        url_index = self.registry.request_builder_index(signature)
        if url_index is not None:
            # a request resolves to the URL it was built with
            if result_index != 0 or url_index >= len(call.args):
                return UNRESOLVED
            return self._resolve(call.args[url_index], frame, depth, active, integers=False)

        if not callee.is_external and callee.blocks:
            return self._resolve_returns(call, callee, frame, depth, active, result_index)

        return UNRESOLVED

    def _substitute(
        self,
        call: Call,
        index: int,
        frame: Frame,
        depth: int,
        active: frozenset[Phi],
    ) -> Resolution:
        """Environment lookup, e.g. ``os.Getenv("FOO")`` -> env[service]["FOO"]."""
        if index >= len(call.args):
            return UNRESOLVED
        name = self._resolve(call.args[index], frame, depth, active, integers=False)
        if not name.resolved:
            return UNRESOLVED
        variables = self.config.env.get(frame.service_name, {})
        if name.value in variables:
            return Resolution(variables[name.value], True)
        logger.debug("env_variable_missing service=%s name=%s", frame.service_name, name.value)
        return UNRESOLVED

    def _format(
        self,
        call: Call,
        format_index: int,
        frame: Frame,
        depth: int,
        active: frozenset[Phi],
    ) -> Resolution:
        """Evaluate a format call supporting ``%s``, ``%d`` and ``%%``."""
        if format_index >= len(call.args):
            return UNRESOLVED
        template = self._resolve(call.args[format_index], frame, depth, active, integers=False)
        if not template.resolved:
            return UNRESOLVED

        operands = call.args[format_index + 1 :]
        text = template.value
        out: list[str] = []
        next_operand = 0
        i = 0
        while i < len(text):
            ch = text[i]
            if ch != "%":
                out.append(ch)
                i += 1
                continue
            if i + 1 >= len(text):
                return UNRESOLVED
            verb = text[i + 1]
            i += 2
            if verb == "%":
                out.append("%")
                continue
            if verb not in ("s", "d") or next_operand >= len(operands):
                return UNRESOLVED
            result = self._resolve(
                operands[next_operand], frame, depth, active, integers=verb == "d"
            )
            next_operand += 1
            if not result.resolved:
                return UNRESOLVED
            out.append(result.value)
        return Resolution("".join(out), True)

    def _resolve_returns(
        self,
        call: Call,
        callee: Function,
        frame: Frame,
        depth: int,
        active: frozenset[Phi],
        result_index: int,
    ) -> Resolution:
        """Resolve a local call through its return statements; all must agree."""
        if frame.on_path(callee) or not callee.returns:
            return UNRESOLVED
        inner = frame.descend(call, callee, call.args)
        seen: set[str] = set()
        for values in callee.returns:
            if result_index >= len(values):
                return UNRESOLVED
            result = self._resolve(values[result_index], inner, depth, active, integers=False)
            if not result.resolved:
                return UNRESOLVED
            seen.add(result.value)
        if len(seen) == 1:
            return Resolution(seen.pop(), True)
        return UNRESOLVED
