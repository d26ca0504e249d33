"""Intermediate representation the resolver and walker operate on.

A small SSA-like form lowered from Go syntax trees: functions made of
basic blocks, blocks made of value-producing instructions, and phi nodes
where control flow merges. Only what the discovery stage inspects is
modelled; anything else lowers to ``Unknown``.

Values compare by identity, so they can key dictionaries and sets the way
SSA pointers do.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator

from netdep.ssa import library


@dataclass(frozen=True)
class Position:
    """Source position of an instruction."""

    filename: str  # absolute path
    line: int


@dataclass(eq=False, kw_only=True)
class Value:
    """Base of every IR value. ``type`` is a qualified Go type or None."""

    type: str | None = None


@dataclass(eq=False, kw_only=True)
class Const(Value):
    value: str | int | float | bool | None

    @property
    def is_string(self) -> bool:
        return isinstance(self.value, str)


@dataclass(eq=False, kw_only=True)
class Parameter(Value):
    name: str
    index: int
    function: Function = field(repr=False)


@dataclass(eq=False, kw_only=True)
class FreeVar(Value):
    """A variable of an enclosing function captured by a closure."""

    name: str
    outer: Value = field(repr=False)


@dataclass(eq=False, kw_only=True)
class Global(Value):
    """Package-level variable."""

    name: str
    package_path: str
    initializer: Value | None = field(default=None, repr=False)
    reassigned: bool = False


@dataclass(eq=False, kw_only=True)
class BinOp(Value):
    op: str
    x: Value
    y: Value


@dataclass(eq=False, kw_only=True)
class UnOp(Value):
    op: str
    x: Value


@dataclass(eq=False, kw_only=True)
class Phi(Value):
    """Merge of the values a variable holds on each incoming edge."""

    name: str
    edges: list[Value] = field(default_factory=list, repr=False)


@dataclass(eq=False, kw_only=True)
class MakeInterface(Value):
    """Conversion of a concrete value to an interface type."""

    x: Value


@dataclass(eq=False, kw_only=True)
class Conversion(Value):
    """Type conversion such as ``http.HandlerFunc(fn)`` or ``string(b)``."""

    x: Value


@dataclass(eq=False, kw_only=True)
class Alloc(Value):
    """Composite literal, optionally address-taken."""

    pass


@dataclass(eq=False, kw_only=True)
class Field(Value):
    """Field selection on a value; never resolved (heap tracking is out of scope)."""

    x: Value
    name: str


@dataclass(eq=False, kw_only=True)
class Extract(Value):
    """The ``index``-th result of a multi-value call."""

    tuple: Value
    index: int


@dataclass(eq=False, kw_only=True)
class Builtin(Value):
    name: str


@dataclass(eq=False, kw_only=True)
class MethodValue(Value):
    """A method bound to its receiver, e.g. ``srv.handle`` passed as a value."""

    function: Function = field(repr=False)
    receiver: Value = field(repr=False)


@dataclass(eq=False, kw_only=True)
class Unknown(Value):
    description: str = ""


@dataclass(eq=False, kw_only=True)
class Call(Value):
    """Function or method call.

    Static and dynamic calls set ``callee``. Interface invocations set
    ``method`` and ``receiver`` instead and leave ``callee`` as None. For
    method calls ``args[0]`` is the receiver, as in Go SSA.
    """

    callee: Value | None = field(default=None, repr=False)
    method: str | None = None
    receiver: Value | None = field(default=None, repr=False)
    args: list[Value] = field(default_factory=list, repr=False)
    position: Position
    mode: str = "call"  # "call", "go" or "defer"

    @property
    def is_invoke(self) -> bool:
        return self.callee is None and self.method is not None

    def static_callee(self) -> Function | None:
        if isinstance(self.callee, Function):
            return self.callee
        if isinstance(self.callee, MethodValue):
            return self.callee.function
        return None


@dataclass(eq=False)
class BasicBlock:
    index: int
    function: Function = field(repr=False)
    comment: str = ""
    instrs: list[Value] = field(default_factory=list, repr=False)
    succs: list[BasicBlock] = field(default_factory=list, repr=False)
    preds: list[BasicBlock] = field(default_factory=list, repr=False)

    def add_succ(self, block: BasicBlock) -> None:
        self.succs.append(block)
        block.preds.append(self)

    def calls(self) -> Iterator[Call]:
        for instr in self.instrs:
            if isinstance(instr, Call):
                yield instr

    def __repr__(self) -> str:
        return f"BasicBlock({self.function.name}#{self.index} {self.comment})"


@dataclass(eq=False, kw_only=True)
class Function(Value):
    """A Go function, method or closure.

    External functions (library code netdep has no source for) have no
    blocks and no package.
    """

    name: str
    package_path: str
    receiver: str | None = None  # e.g. "*net/http.Client"
    package: Package | None = field(default=None, repr=False)
    parent: Function | None = field(default=None, repr=False)
    params: list[Parameter] = field(default_factory=list, repr=False)
    result_types: list[str | None] = field(default_factory=list, repr=False)
    blocks: list[BasicBlock] = field(default_factory=list, repr=False)
    returns: list[list[Value]] = field(default_factory=list, repr=False)
    anon_funcs: list[Function] = field(default_factory=list, repr=False)
    position: Position | None = field(default=None, repr=False)

    @property
    def signature(self) -> str:
        """Fully qualified name used for registry lookups."""
        if self.parent is not None:
            return f"{self.parent.signature}${self.name}"
        if self.receiver:
            return f"({self.receiver}).{self.name}"
        return f"{self.package_path}.{self.name}"

    @property
    def is_external(self) -> bool:
        return self.package is None

    @property
    def entry(self) -> BasicBlock | None:
        return self.blocks[0] if self.blocks else None

    def new_block(self, comment: str = "") -> BasicBlock:
        block = BasicBlock(index=len(self.blocks), function=self, comment=comment)
        self.blocks.append(block)
        return block

    def __repr__(self) -> str:
        return f"Function({self.signature})"


@dataclass(eq=False)
class TypeInfo:
    """A named type declared in an analysed package."""

    name: str
    package_path: str
    kind: str  # "struct", "interface" or "named"
    methods: dict[str, Function] = field(default_factory=dict, repr=False)
    embedded: list[str] = field(default_factory=list)
    field_types: dict[str, str | None] = field(default_factory=dict, repr=False)

    @property
    def qualified_name(self) -> str:
        return f"{self.package_path}.{self.name}"


@dataclass(eq=False)
class Package:
    """A Go package: one directory of non-test source files."""

    path: str
    name: str
    directory: str
    files: list[str] = field(default_factory=list)
    members: dict[str, Value] = field(default_factory=dict, repr=False)
    types: dict[str, TypeInfo] = field(default_factory=dict, repr=False)
    errors: list[str] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def func(self, name: str) -> Function | None:
        member = self.members.get(name)
        if isinstance(member, Function):
            return member
        return None

    def functions(self) -> Iterator[Function]:
        """Every function with a body, closures included, in declaration order."""
        pending: list[Function] = [m for m in self.members.values() if isinstance(m, Function)]
        for info in self.types.values():
            pending.extend(info.methods.values())
        while pending:
            fn = pending.pop(0)
            yield fn
            pending[:0] = fn.anon_funcs


def split_type_name(type_name: str) -> tuple[str, str]:
    """Split ``*pkg/path.Type`` into (``pkg/path``, ``Type``)."""
    bare = type_name.lstrip("*")
    pkg_path, _, name = bare.rpartition(".")
    return pkg_path, name


class Program:
    """All packages of one project, plus stubs for library functions."""

    def __init__(self, root: str, module_path: str) -> None:
        self.root = root
        self.module_path = module_path
        self.packages: dict[str, Package] = {}
        self._external: dict[str, Function] = {}

    def add_package(self, package: Package) -> None:
        self.packages[package.path] = package

    def package(self, path: str) -> Package | None:
        return self.packages.get(path)

    def type_info(self, type_name: str | None) -> TypeInfo | None:
        if not type_name:
            return None
        pkg_path, name = split_type_name(type_name)
        package = self.packages.get(pkg_path)
        if package is None:
            return None
        return package.types.get(name)

    def is_interface(self, type_name: str | None) -> bool:
        if not type_name:
            return False
        info = self.type_info(type_name)
        if info is not None:
            return info.kind == "interface"
        return library.is_interface(type_name)

    def external_function(
        self, package_path: str, name: str, receiver: str | None = None
    ) -> Function:
        """Return the (cached) stub for a library function or method."""
        fn = Function(name=name, package_path=package_path, receiver=receiver)
        key = fn.signature
        cached = self._external.get(key)
        if cached is not None:
            return cached
        results = library.RETURN_TYPES.get(key, ())
        fn.result_types = list(results)
        fn.type = "func"
        self._external[key] = fn
        return fn

    def lookup_method(self, type_name: str | None, method: str, _depth: int = 0) -> Function | None:
        """Select ``method`` from the method set of ``type_name``.

        Local types are searched through their declared methods, then their
        embedded types. Library types go through the promotion table.
        """
        if not type_name or _depth > 8 or type_name in ("func", "interface{}", "any"):
            return None
        pkg_path, name = split_type_name(type_name)
        if not pkg_path:
            return None
        package = self.packages.get(pkg_path)
        if package is not None:
            info = package.types.get(name)
            if info is None or info.kind == "interface":
                return None
            if method in info.methods:
                return info.methods[method]
            for embedded in info.embedded:
                found = self.lookup_method(embedded, method, _depth + 1)
                if found is not None:
                    return found
            return None
        if library.is_interface(type_name):
            return None
        owner = library.method_owner(f"{pkg_path}.{name}", method)
        receiver = owner if owner in library.VALUE_RECEIVER_TYPES else f"*{owner}"
        owner_pkg, _ = split_type_name(owner)
        return self.external_function(owner_pkg, method, receiver)
