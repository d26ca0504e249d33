"""Lowering of tree-sitter Go syntax trees to the netdep IR.

``ProgramBuilder`` works in passes so that forward references across files
and packages resolve:

1. declarations: functions, methods, named types, constants and package
   variables are registered per package
2. signatures: import aliases, struct fields and parameter types are
   resolved once every local package is known
3. bodies: ``FunctionBuilder`` lowers each function body into basic blocks

Variables are renamed into SSA form while lowering. Every join point (after
``if``, ``switch`` and ``select``, and at loop headers) gets a ``Phi`` for each
variable whose definition differs between incoming edges.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import cast

import tree_sitter

from netdep.ssa import library
from netdep.ssa.ir import (
    Alloc,
    BasicBlock,
    BinOp,
    Builtin,
    Call,
    Const,
    Conversion,
    Extract,
    Field,
    FreeVar,
    Function,
    Global,
    MakeInterface,
    MethodValue,
    Package,
    Parameter,
    Phi,
    Position,
    Program,
    TypeInfo,
    UnOp,
    Unknown,
    Value,
)
from netdep.ssa.parsing import (
    GoSource,
    block_statements,
    case_statements,
    named_children,
    string_literal_value,
)

logger = logging.getLogger(__name__)

_VERSION_SUFFIX = re.compile(r"\.v\d+$")
_VERSION_SEGMENT = re.compile(r"^v\d+$")

_TYPE_NODES = frozenset(
    {
        "slice_type",
        "array_type",
        "map_type",
        "channel_type",
        "interface_type",
        "struct_type",
        "function_type",
    }
)

_COMPARISON_OPS = frozenset({"==", "!=", "<", "<=", ">", ">=", "&&", "||"})


def default_import_name(path: str) -> str:
    """Best guess at the package name of an import without an alias.

    ``github.com/nats-io/nats.go`` -> ``nats``, ``gopkg.in/yaml.v3`` -> ``yaml``,
    ``github.com/go-chi/chi/v5`` -> ``chi``.
    """
    segments = path.split("/")
    name = segments[-1]
    if _VERSION_SEGMENT.match(name) and len(segments) > 1:
        name = segments[-2]
    name = _VERSION_SUFFIX.sub("", name)
    if name.endswith(".go"):
        name = name[: -len(".go")]
    if name.startswith("go-"):
        name = name[len("go-") :]
    return name.replace("-", "_").replace(".", "_")


def _specs(node: tree_sitter.Node, kinds: tuple[str, ...]) -> list[tree_sitter.Node]:
    """Specs of a declaration, looking through ``*_spec_list`` wrappers."""
    specs: list[tree_sitter.Node] = []
    for child in named_children(node):
        if child.type in kinds:
            specs.append(child)
        elif child.type.endswith("_list"):
            specs.extend(c for c in named_children(child) if c.type in kinds)
    return specs


def _parse_int(text: str) -> int | None:
    digits = text.replace("_", "")
    try:
        return int(digits, 0)
    except ValueError:
        pass
    try:
        # legacy octal literal such as 0755
        return int(digits, 8)
    except ValueError:
        return None


class ProgramBuilder:
    """Builds the IR of every package added to a ``Program``."""

    def __init__(self, program: Program) -> None:
        self.program = program
        self._files: dict[str, list[GoSource]] = {}
        self._functions: list[tuple[Function, tree_sitter.Node, GoSource]] = []
        self._types: list[tuple[TypeInfo, tree_sitter.Node, GoSource]] = []
        self._vars: list[tuple[Package, tree_sitter.Node, GoSource]] = []
        # (package path, name) -> (value node, type node, file)
        self._consts: dict[
            tuple[str, str],
            tuple[tree_sitter.Node | None, tree_sitter.Node | None, GoSource],
        ] = {}
        self._evaluating: set[tuple[str, str]] = set()
        self._inits: dict[str, FunctionBuilder] = {}
        self._init_functions: dict[str, Function] = {}
        self._library_globals: dict[str, Global] = {}

    # ------------------------------------------------------------------
    # Pass 1: declarations
    # ------------------------------------------------------------------

    def add_package(self, package: Package, files: list[GoSource]) -> None:
        """Register a package and its top-level declarations."""
        self.program.add_package(package)
        self._files[package.path] = files
        package.files = [f.path for f in files]

        init = Function(name="init", package_path=package.path, package=package, type="func")
        package.members["init"] = init
        self._init_functions[package.path] = init

        for source in files:
            if source.has_error:
                package.errors.append(f"{source.path}: syntax error")
            self._declare(package, source)

    def _declare(self, package: Package, source: GoSource) -> None:
        for child in named_children(source.root):
            if child.type == "function_declaration":
                self._declare_function(package, child, source)
            elif child.type == "method_declaration":
                self._declare_method(package, child, source)
            elif child.type == "type_declaration":
                for spec in _specs(child, ("type_spec", "type_alias")):
                    self._declare_type(package, spec, source)
            elif child.type == "const_declaration":
                for spec in _specs(child, ("const_spec",)):
                    values = named_children(spec.child_by_field_name("value"))
                    type_node = spec.child_by_field_name("type")
                    for i, name_node in enumerate(spec.children_by_field_name("name")):
                        value_node = values[i] if i < len(values) else None
                        key = (package.path, source.text(name_node))
                        self._consts[key] = (value_node, type_node, source)
            elif child.type == "var_declaration":
                for spec in _specs(child, ("var_spec",)):
                    for name_node in spec.children_by_field_name("name"):
                        name = source.text(name_node)
                        if name != "_":
                            package.members[name] = Global(name=name, package_path=package.path)
                    self._vars.append((package, spec, source))

    def _declare_function(
        self, package: Package, node: tree_sitter.Node, source: GoSource
    ) -> None:
        name = source.text(node.child_by_field_name("name"))
        fn = Function(
            name=name,
            package_path=package.path,
            package=package,
            position=Position(source.path, source.line(node)),
            type="func",
        )
        if name == "init":
            # any number of init functions may exist; they run before main
            key = f"init#{sum(1 for k in package.members if k.startswith('init#')) + 1}"
            package.members[key] = fn
        else:
            package.members[name] = fn
        self._functions.append((fn, node, source))

    def _declare_method(self, package: Package, node: tree_sitter.Node, source: GoSource) -> None:
        receiver = node.child_by_field_name("receiver")
        decls = named_children(receiver)
        if not decls:
            return
        type_node = decls[0].child_by_field_name("type")
        pointer = type_node is not None and type_node.type == "pointer_type"
        while type_node is not None and type_node.type in ("pointer_type", "parenthesized_type"):
            inner = named_children(type_node)
            type_node = inner[0] if inner else None
        if type_node is not None and type_node.type == "generic_type":
            type_node = type_node.child_by_field_name("type")
        if type_node is None:
            return

        type_name = source.text(type_node)
        info = package.types.get(type_name)
        if info is None:
            info = TypeInfo(name=type_name, package_path=package.path, kind="named")
            package.types[type_name] = info

        name = source.text(node.child_by_field_name("name"))
        receiver_type = f"{'*' if pointer else ''}{package.path}.{type_name}"
        fn = Function(
            name=name,
            package_path=package.path,
            receiver=receiver_type,
            package=package,
            position=Position(source.path, source.line(node)),
            type="func",
        )
        info.methods[name] = fn
        self._functions.append((fn, node, source))

    def _declare_type(self, package: Package, spec: tree_sitter.Node, source: GoSource) -> None:
        name = source.text(spec.child_by_field_name("name"))
        type_node = spec.child_by_field_name("type")
        if type_node is None:
            return
        kind = {"struct_type": "struct", "interface_type": "interface"}.get(type_node.type, "named")
        info = package.types.get(name)
        if info is None:
            info = TypeInfo(name=name, package_path=package.path, kind=kind)
            package.types[name] = info
        else:
            info.kind = kind
        self._types.append((info, type_node, source))

    # ------------------------------------------------------------------
    # Pass 2: imports, types and signatures
    # ------------------------------------------------------------------

    def build(self) -> Program:
        """Run the remaining passes and return the finished program."""
        for files in self._files.values():
            for source in files:
                self._bind_imports(source)

        for info, type_node, source in self._types:
            self._resolve_type_decl(info, type_node, source)

        for fn, node, source in self._functions:
            self._declare_signature(fn, node, source)

        for package, spec, source in self._vars:
            self._lower_var_spec(package, spec, source)

        for package_path, name in list(self._consts):
            package = self.program.package(package_path)
            if package is not None:
                self.member(package, name)

        for fn, node, source in self._functions:
            body = node.child_by_field_name("body")
            if body is None:
                continue
            FunctionBuilder(self, fn, source).build(node)

        for builder in self._inits.values():
            builder.finish()

        return self.program

    def _bind_imports(self, source: GoSource) -> None:
        for alias, path in source.raw_imports:
            if alias in ("_", "."):
                continue
            if alias is None:
                local = self.program.package(path)
                alias = local.name if local is not None else default_import_name(path)
            source.imports[alias] = path

    def resolve_type(
        self, node: tree_sitter.Node | None, source: GoSource, package: Package
    ) -> str | None:
        """Qualified name of a type expression, e.g. ``*net/http.Client``."""
        if node is None:
            return None
        kind = node.type
        if kind == "type_identifier" or kind == "identifier":
            name = source.text(node)
            if name in library.BUILTIN_TYPES:
                return name
            return f"{package.path}.{name}"
        if kind == "qualified_type" or kind == "selector_expression":
            alias_node = node.child_by_field_name("package") or node.child_by_field_name("operand")
            name_node = node.child_by_field_name("name") or node.child_by_field_name("field")
            path = source.imports.get(source.text(alias_node))
            if path is None:
                return None
            return f"{path}.{source.text(name_node)}"
        if kind in ("pointer_type", "unary_expression"):
            inner = named_children(node)
            resolved = self.resolve_type(inner[-1] if inner else None, source, package)
            return f"*{resolved}" if resolved else None
        if kind == "generic_type":
            return self.resolve_type(node.child_by_field_name("type"), source, package)
        if kind in ("parenthesized_type", "parenthesized_expression"):
            inner = named_children(node)
            return self.resolve_type(inner[0] if inner else None, source, package)
        if kind == "interface_type":
            return "interface{}"
        if kind == "struct_type":
            return "struct{}"
        if kind == "function_type":
            return "func"
        if kind in ("slice_type", "array_type", "implicit_length_array_type"):
            elem = self.resolve_type(node.child_by_field_name("element"), source, package)
            return f"[]{elem or ''}"
        if kind == "map_type":
            return "map"
        if kind == "channel_type":
            return "chan"
        return None

    def _resolve_type_decl(self, info: TypeInfo, type_node: tree_sitter.Node, source: GoSource) -> None:
        package = self.program.package(info.package_path)
        if package is None:
            return
        if type_node.type == "struct_type":
            for decl in _field_declarations(type_node):
                field_type_node = decl.child_by_field_name("type")
                field_type = self.resolve_type(field_type_node, source, package)
                names = decl.children_by_field_name("name")
                if not names:
                    # embedded field; a leading '*' is an anonymous token
                    if field_type is None:
                        continue
                    if decl.children and decl.children[0].type == "*":
                        field_type = f"*{field_type}"
                    info.embedded.append(field_type)
                    info.field_types[field_type.lstrip("*").rpartition(".")[2]] = field_type
                    continue
                for name_node in names:
                    info.field_types[source.text(name_node)] = field_type
        elif info.kind == "named":
            underlying = self.resolve_type(type_node, source, package)
            if underlying is not None and self.program.is_interface(underlying):
                info.kind = "interface"

    def _declare_signature(self, fn: Function, node: tree_sitter.Node, source: GoSource) -> None:
        package = fn.package
        if package is None:
            return
        if node.type == "method_declaration":
            self._add_params(fn, node.child_by_field_name("receiver"), source, package, fn.receiver)
        self._add_params(fn, node.child_by_field_name("parameters"), source, package)
        fn.result_types = self.result_types(node.child_by_field_name("result"), source, package)

    def _add_params(
        self,
        fn: Function,
        params_node: tree_sitter.Node | None,
        source: GoSource,
        package: Package,
        forced_type: str | None = None,
    ) -> None:
        for decl in named_children(params_node):
            if decl.type not in ("parameter_declaration", "variadic_parameter_declaration"):
                continue
            param_type = forced_type or self.resolve_type(decl.child_by_field_name("type"), source, package)
            if decl.type == "variadic_parameter_declaration":
                param_type = f"[]{param_type or ''}"
            names = [source.text(n) for n in decl.children_by_field_name("name")] or [""]
            for name in names:
                index = len(fn.params)
                fn.params.append(
                    Parameter(name=name or f"_p{index}", index=index, function=fn, type=param_type)
                )

    def result_types(
        self, result_node: tree_sitter.Node | None, source: GoSource, package: Package
    ) -> list[str | None]:
        if result_node is None:
            return []
        if result_node.type != "parameter_list":
            return [self.resolve_type(result_node, source, package)]
        types: list[str | None] = []
        for decl in named_children(result_node):
            result_type = self.resolve_type(decl.child_by_field_name("type"), source, package)
            names = decl.children_by_field_name("name")
            types.extend([result_type] * max(1, len(names)))
        return types

    # ------------------------------------------------------------------
    # Package-level values
    # ------------------------------------------------------------------

    def init_builder(self, package: Package, source: GoSource) -> FunctionBuilder:
        """Builder of the synthetic ``init`` holding package initializers."""
        builder = self._inits.get(package.path)
        if builder is None:
            init = self._init_functions[package.path]
            builder = FunctionBuilder(self, init, source)
            builder.start()
            self._inits[package.path] = builder
        builder.file = source
        return builder

    def _lower_var_spec(self, package: Package, spec: tree_sitter.Node, source: GoSource) -> None:
        builder = self.init_builder(package, source)
        names = [source.text(n) for n in spec.children_by_field_name("name")]
        declared = self.resolve_type(spec.child_by_field_name("type"), source, package)
        value_nodes = named_children(spec.child_by_field_name("value"))
        values = builder.values(value_nodes, len(names)) if value_nodes else []

        for i, name in enumerate(names):
            member = package.members.get(name)
            if not isinstance(member, Global):
                continue
            value = values[i] if i < len(values) else builder.zero_value(declared)
            member.initializer = builder.to_type(value, declared)
            member.type = declared or value.type

    def member(self, package: Package, name: str) -> Value | None:
        """Package member by name, evaluating constants on first use."""
        key = (package.path, name)
        if key in self._consts and name not in package.members:
            if key in self._evaluating:
                return Unknown(description=f"cyclic constant {name}")
            self._evaluating.add(key)
            value_node, type_node, source = self._consts[key]
            builder = FunctionBuilder(self, self._init_functions[package.path], source)
            if value_node is None:
                value: Value = Unknown(description=f"implicit constant {name}")
            else:
                value = builder.expr(value_node)
            declared = self.resolve_type(type_node, source, package)
            if declared is not None and isinstance(value, Const):
                value = Const(value=value.value, type=declared)
            package.members[name] = value
            self._evaluating.discard(key)
        return package.members.get(name)

    def library_global(self, package_path: str, name: str) -> Global:
        qualified = f"{package_path}.{name}"
        global_value = self._library_globals.get(qualified)
        if global_value is None:
            global_value = Global(
                name=name,
                package_path=package_path,
                type=library.GLOBAL_TYPES.get(qualified),
            )
            self._library_globals[qualified] = global_value
        return global_value


def _field_declarations(struct_node: tree_sitter.Node) -> list[tree_sitter.Node]:
    decls: list[tree_sitter.Node] = []
    for child in named_children(struct_node):
        if child.type == "field_declaration_list":
            decls.extend(c for c in named_children(child) if c.type == "field_declaration")
    return decls


@dataclass(eq=False)
class _Var:
    """A source-level variable; ``FunctionBuilder.defs`` maps it to its current value."""

    name: str


@dataclass
class _JumpTarget:
    """Pending ``break``/``continue`` edges of an enclosing loop or switch."""

    is_loop: bool
    label: str | None = None
    breaks: list[tuple[BasicBlock, dict[_Var, Value]]] = field(default_factory=list)
    continues: list[tuple[BasicBlock, dict[_Var, Value]]] = field(default_factory=list)


class FunctionBuilder:
    """Lowers one function body (or a package initializer) to basic blocks."""

    def __init__(
        self,
        builder: ProgramBuilder,
        function: Function,
        file: GoSource,
        outer: FunctionBuilder | None = None,
    ) -> None:
        self.pb = builder
        self.program = builder.program
        self.fn = function
        self.file = file
        # every lowered function belongs to a package
        self.package = cast(Package, function.package)
        self.outer = outer
        self.block: BasicBlock | None = None
        self.scopes: list[dict[str, _Var]] = []
        self.defs: dict[_Var, Value] = {}
        self.targets: list[_JumpTarget] = []
        self.result_vars: list[_Var] = []
        self._pending_label: str | None = None

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.block = self.fn.new_block("entry")
        self._push()

    def finish(self) -> None:
        self._pop()

    def build(self, node: tree_sitter.Node) -> None:
        """Lower a function declaration, method declaration or literal."""
        self.start()
        for param in self.fn.params:
            self._declare(param.name, param)

        result_node = node.child_by_field_name("result")
        if result_node is not None and result_node.type == "parameter_list":
            for decl in named_children(result_node):
                result_type = self.pb.resolve_type(decl.child_by_field_name("type"), self.file, self.package)
                for name_node in decl.children_by_field_name("name"):
                    var = self._declare(self.file.text(name_node), self.zero_value(result_type))
                    if var is not None:
                        self.result_vars.append(var)

        self._statements(block_statements(node.child_by_field_name("body")))
        if self.block is not None and self.result_vars:
            self.fn.returns.append([self.defs[v] for v in self.result_vars])
        self.finish()

    # ------------------------------------------------------------------
    # Scopes and definitions
    # ------------------------------------------------------------------

    def _push(self) -> None:
        self.scopes.append({})

    def _pop(self) -> None:
        self.scopes.pop()

    def _declare(self, name: str, value: Value) -> _Var | None:
        if not name or name == "_":
            return None
        var = _Var(name)
        self.scopes[-1][name] = var
        self.defs[var] = value
        return var

    def _find_var(self, name: str) -> _Var | None:
        for scope in reversed(self.scopes):
            if name in scope:
                return scope[name]
        return None

    def _has_local(self, name: str) -> bool:
        if self._find_var(name) is not None:
            return True
        return self.outer is not None and self.outer._has_local(name)

    def _lookup_local(self, name: str) -> Value | None:
        var = self._find_var(name)
        if var is not None:
            value = self.defs.get(var)
            return value if value is not None else Unknown(description=name)
        if self.outer is not None:
            captured = self.outer._lookup_local(name)
            if captured is not None:
                return FreeVar(name=name, outer=captured, type=captured.type)
        return None

    def _assign(self, name: str, value: Value) -> None:
        if name == "_":
            return
        var = self._find_var(name)
        if var is not None:
            self.defs[var] = value
            return
        if self.outer is not None and self.outer._has_local(name):
            # writes to captured variables are not tracked
            return
        member = self.package.members.get(name)
        if isinstance(member, Global):
            member.reassigned = True

    def _is_import(self, name: str) -> bool:
        return name in self.file.imports and not self._has_local(name)

    def _emit(self, value: Value) -> Value:
        if self.block is not None:
            self.block.instrs.append(value)
        return value

    # ------------------------------------------------------------------
    # Control flow helpers
    # ------------------------------------------------------------------

    def _new_block(self, comment: str) -> BasicBlock:
        return self.fn.new_block(comment)

    def _ensure_block(self) -> BasicBlock:
        if self.block is None:
            # code after return/break: kept so its calls still lower, never reached
            self.block = self._new_block("unreachable")
        return self.block

    def _merge(self, ends: list[tuple[BasicBlock | None, dict[_Var, Value]]], comment: str) -> None:
        """Join the live ``ends`` into a new block, adding phis where definitions differ."""
        live = [(b, d) for b, d in ends if b is not None]
        if not live:
            self.block = None
            return

        join = self._new_block(comment)
        for block, _ in live:
            block.add_succ(join)

        merged: dict[_Var, Value] = {}
        first = live[0][1]
        for var, value in first.items():
            incoming = [d.get(var) for _, d in live]
            if any(v is None for v in incoming):
                continue  # declared inside only some branches
            if all(v is value for v in incoming):
                merged[var] = value
                continue
            phi = Phi(name=var.name, edges=list(incoming), type=value.type)  # type: ignore[arg-type]
            join.instrs.append(phi)
            merged[var] = phi

        self.block = join
        self.defs = merged

    def _find_target(self, label: str | None, loop_only: bool) -> _JumpTarget | None:
        for target in reversed(self.targets):
            if loop_only and not target.is_loop:
                continue
            if label is None or target.label == label:
                return target
        return None

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def _statements(self, nodes: list[tree_sitter.Node]) -> None:
        for node in nodes:
            self._statement(node)

    def _statement(self, node: tree_sitter.Node) -> None:
        kind = node.type
        if kind in ("comment", "empty_statement", "fallthrough_statement", "goto_statement"):
            return
        self._ensure_block()

        if kind == "expression_statement":
            for child in named_children(node):
                self.expr(child)
        elif kind == "short_var_declaration":
            self._short_var_declaration(node)
        elif kind == "assignment_statement":
            self._assignment(node)
        elif kind in ("inc_statement", "dec_statement"):
            operand = named_children(node)[0]
            current = self.expr(operand)
            op = "+" if kind == "inc_statement" else "-"
            updated = self._emit(BinOp(op=op, x=current, y=Const(value=1, type="int"), type=current.type))
            self._store(operand, updated)
        elif kind == "var_declaration":
            for spec in _specs(node, ("var_spec",)):
                self._var_spec(spec)
        elif kind == "const_declaration":
            for spec in _specs(node, ("const_spec",)):
                names = spec.children_by_field_name("name")
                values = named_children(spec.child_by_field_name("value"))
                for i, name_node in enumerate(names):
                    value = self.expr(values[i]) if i < len(values) else Unknown()
                    self._declare(self.file.text(name_node), value)
        elif kind == "return_statement":
            self._return(node)
        elif kind in ("go_statement", "defer_statement"):
            children = named_children(node)
            if children:
                target = children[0]
                if target.type == "call_expression":
                    self._call(target, mode="go" if kind == "go_statement" else "defer")
                else:
                    self.expr(target)
        elif kind == "if_statement":
            self._if(node)
        elif kind == "for_statement":
            self._for(node)
        elif kind in ("expression_switch_statement", "type_switch_statement", "select_statement"):
            self._switch(node)
        elif kind == "labeled_statement":
            label_node = node.child_by_field_name("label")
            inner = [c for c in named_children(node) if c != label_node]
            self._pending_label = self.file.text(label_node) if label_node is not None else None
            self._statements(inner)
            self._pending_label = None
        elif kind == "block":
            self._push()
            self._statements(block_statements(node))
            self._pop()
        elif kind == "break_statement":
            label = named_children(node)
            target = self._find_target(self.file.text(label[0]) if label else None, loop_only=False)
            if target is not None and self.block is not None:
                target.breaks.append((self.block, dict(self.defs)))
            self.block = None
        elif kind == "continue_statement":
            label = named_children(node)
            target = self._find_target(self.file.text(label[0]) if label else None, loop_only=True)
            if target is not None and self.block is not None:
                target.continues.append((self.block, dict(self.defs)))
            self.block = None
        elif kind == "send_statement":
            self.expr(node.child_by_field_name("channel"))
            self.expr(node.child_by_field_name("value"))
        elif kind == "receive_statement":
            self._receive(node)
        elif kind in ("type_declaration", "function_declaration"):
            return
        else:
            self.expr(node)

    def _short_var_declaration(self, node: tree_sitter.Node) -> None:
        left = named_children(node.child_by_field_name("left"))
        right = named_children(node.child_by_field_name("right"))
        values = self.values(right, len(left))
        for i, target in enumerate(left):
            value = values[i] if i < len(values) else Unknown()
            name = self.file.text(target)
            if name in self.scopes[-1]:
                # redeclaration in the same scope assigns
                self.defs[self.scopes[-1][name]] = value
            else:
                self._declare(name, value)

    def _assignment(self, node: tree_sitter.Node) -> None:
        left = named_children(node.child_by_field_name("left"))
        right = named_children(node.child_by_field_name("right"))
        operator = self.file.text(node.child_by_field_name("operator")) or "="

        if operator == "=":
            values = self.values(right, len(left))
            for i, target in enumerate(left):
                self._store(target, values[i] if i < len(values) else Unknown())
            return

        # compound assignment, e.g. url += "/path"
        op = operator[:-1]
        for target, value_node in zip(left, right):
            current = self.expr(target)
            operand = self.expr(value_node)
            self._store(target, self._binary(op, current, operand))

    def _store(self, target: tree_sitter.Node, value: Value) -> None:
        while target.type == "parenthesized_expression":
            target = named_children(target)[0]
        if target.type == "identifier":
            self._assign(self.file.text(target), value)
            return
        if target.type == "selector_expression":
            operand = target.child_by_field_name("operand")
            if operand is not None and operand.type == "identifier" and self._is_import(self.file.text(operand)):
                package = self.program.package(self.file.imports[self.file.text(operand)])
                if package is not None:
                    member = package.members.get(self.file.text(target.child_by_field_name("field")))
                    if isinstance(member, Global):
                        member.reassigned = True
                return
            self.expr(operand)
            return
        if target.type == "index_expression":
            self.expr(target.child_by_field_name("operand"))
            self.expr(target.child_by_field_name("index"))
            return
        if target.type == "unary_expression":
            self.expr(target.child_by_field_name("operand"))

    def _var_spec(self, spec: tree_sitter.Node) -> None:
        names = [self.file.text(n) for n in spec.children_by_field_name("name")]
        declared = self.pb.resolve_type(spec.child_by_field_name("type"), self.file, self.package)
        value_nodes = named_children(spec.child_by_field_name("value"))
        values = self.values(value_nodes, len(names)) if value_nodes else []
        for i, name in enumerate(names):
            value = values[i] if i < len(values) else self.zero_value(declared)
            self._declare(name, self.to_type(value, declared))

    def _return(self, node: tree_sitter.Node) -> None:
        children = named_children(node)
        if children and children[0].type == "expression_list":
            nodes = named_children(children[0])
        else:
            nodes = children
        if nodes:
            values = self.values(nodes, len(self.fn.result_types))
            values = [
                self.to_type(v, self.fn.result_types[i] if i < len(self.fn.result_types) else None)
                for i, v in enumerate(values)
            ]
        else:
            values = [self.defs[v] for v in self.result_vars]
        self.fn.returns.append(values)
        self.block = None

    def _receive(self, node: tree_sitter.Node) -> None:
        self.expr(node.child_by_field_name("right"))
        left = named_children(node.child_by_field_name("left"))
        declares = any(c.type == ":=" for c in node.children)
        for target in left:
            if declares:
                self._declare(self.file.text(target), Unknown(description="receive"))
            else:
                self._store(target, Unknown(description="receive"))

    def _branch(self, body: tree_sitter.Node | None) -> None:
        if body is None:
            return
        if body.type == "block":
            self._push()
            self._statements(block_statements(body))
            self._pop()
        else:
            self._statement(body)

    def _if(self, node: tree_sitter.Node) -> None:
        self._push()
        initializer = node.child_by_field_name("initializer")
        if initializer is not None:
            self._statement(initializer)
        self.expr(node.child_by_field_name("condition"))

        start = self._ensure_block()
        start_defs = dict(self.defs)

        self.block = self._new_block("if.then")
        start.add_succ(self.block)
        self._branch(node.child_by_field_name("consequence"))
        ends = [(self.block, self.defs)]

        alternative = node.child_by_field_name("alternative")
        if alternative is not None:
            self.block = self._new_block("if.else")
            start.add_succ(self.block)
            self.defs = dict(start_defs)
            self._branch(alternative)
            ends.append((self.block, self.defs))
        else:
            ends.append((start, start_defs))

        self._merge(ends, "if.done")
        self._pop()

    def _for(self, node: tree_sitter.Node) -> None:
        label, self._pending_label = self._pending_label, None
        self._push()

        body = node.child_by_field_name("body")
        clause = None
        condition = None
        for child in named_children(node):
            if child == body:
                continue
            if child.type in ("for_clause", "range_clause"):
                clause = child
            else:
                condition = child

        update = None
        range_left: list[tree_sitter.Node] = []
        range_declares = False
        if clause is not None and clause.type == "for_clause":
            initializer = clause.child_by_field_name("initializer")
            if initializer is not None:
                self._statement(initializer)
            condition = clause.child_by_field_name("condition")
            update = clause.child_by_field_name("update")
        elif clause is not None:
            self.expr(clause.child_by_field_name("right"))
            range_left = named_children(clause.child_by_field_name("left"))
            range_declares = any(c.type == ":=" for c in clause.children)

        pre = self._ensure_block()
        header = self._new_block("for.header")
        pre.add_succ(header)

        # every variable assigned in the loop gets a header phi; its back edges are added below
        phis: dict[_Var, Phi] = {}
        header_defs = dict(self.defs)
        for name in sorted(self._assigned_names(node)):
            var = self._find_var(name)
            if var is None or var not in header_defs:
                continue
            phi = Phi(name=name, edges=[header_defs[var]], type=header_defs[var].type)
            header.instrs.append(phi)
            header_defs[var] = phi
            phis[var] = phi

        self.block = header
        self.defs = dict(header_defs)
        if condition is not None:
            self.expr(condition)
        header = self._ensure_block()

        body_block = self._new_block("for.body")
        done = self._new_block("for.done")
        header.add_succ(body_block)
        header.add_succ(done)

        target = _JumpTarget(is_loop=True, label=label)
        self.targets.append(target)
        self.block = body_block
        self._push()
        for left in range_left:
            if range_declares:
                self._declare(self.file.text(left), Unknown(description="range"))
            else:
                self._store(left, Unknown(description="range"))
        self._statements(block_statements(body))
        self._pop()
        self.targets.pop()

        ends = [(self.block, self.defs), *target.continues]
        if update is not None:
            self._merge(ends, "for.post")
            if self.block is not None:
                self._statement(update)
            ends = [(self.block, self.defs)]

        for end_block, end_defs in ends:
            if end_block is None:
                continue
            end_block.add_succ(header)
            for var, phi in phis.items():
                phi.edges.append(end_defs.get(var, phi))
        for break_block, break_defs in target.breaks:
            break_block.add_succ(done)
            for var, phi in phis.items():
                phi.edges.append(break_defs.get(var, phi))

        self.block = done
        self.defs = header_defs
        self._pop()

    def _assigned_names(self, node: tree_sitter.Node) -> set[str]:
        """Identifiers assigned with ``=``, ``op=``, ``++`` or ``--`` anywhere below ``node``."""
        names: set[str] = set()
        stack = [node]
        while stack:
            current = stack.pop()
            if current.type == "func_literal":
                continue
            targets: list[tree_sitter.Node] = []
            if current.type == "assignment_statement":
                targets = named_children(current.child_by_field_name("left"))
            elif current.type in ("inc_statement", "dec_statement"):
                targets = named_children(current)
            elif current.type in ("range_clause", "receive_statement") and not any(
                c.type == ":=" for c in current.children
            ):
                targets = named_children(current.child_by_field_name("left"))
            for target in targets:
                if target.type == "identifier":
                    names.add(self.file.text(target))
            stack.extend(current.named_children)
        return names

    def _switch(self, node: tree_sitter.Node) -> None:
        label, self._pending_label = self._pending_label, None
        self._push()

        initializer = node.child_by_field_name("initializer")
        if initializer is not None:
            self._statement(initializer)
        tag: Value | None = None
        value_node = node.child_by_field_name("value")
        if value_node is not None:
            tag = self.expr(value_node)
        alias_names = [self.file.text(n) for n in named_children(node.child_by_field_name("alias"))]

        prefix = "select" if node.type == "select_statement" else "switch"
        start = self._ensure_block()
        start_defs = dict(self.defs)
        target = _JumpTarget(is_loop=False, label=label)
        self.targets.append(target)

        ends: list[tuple[BasicBlock | None, dict[_Var, Value]]] = []
        has_default = False
        for case in named_children(node):
            if case.type not in ("expression_case", "type_case", "default_case", "communication_case"):
                continue
            has_default = has_default or case.type == "default_case"
            self.block = self._new_block(f"{prefix}.case")
            start.add_succ(self.block)
            self.defs = dict(start_defs)
            self._push()
            if case.type == "expression_case":
                for value in named_children(case.child_by_field_name("value")):
                    self.expr(value)
            elif case.type == "communication_case":
                communication = case.child_by_field_name("communication")
                if communication is not None:
                    self._statement(communication)
            for name in alias_names:
                self._declare(name, tag if tag is not None else Unknown())
            self._statements(case_statements(case))
            self._pop()
            ends.append((self.block, self.defs))

        self.targets.pop()
        if not has_default:
            ends.append((start, start_defs))
        ends.extend(target.breaks)
        self._merge(ends, f"{prefix}.done")
        self._pop()

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def values(self, nodes: list[tree_sitter.Node], count: int) -> list[Value]:
        """Lower ``nodes``, splitting a single multi-value call into ``count`` extracts."""
        values = [self.expr(n) for n in nodes]
        if count > 1 and len(values) == 1:
            source = values[0]
            types = self._result_types_of(source)
            return [
                self._emit(Extract(tuple=source, index=i, type=types[i] if i < len(types) else None))
                for i in range(count)
            ]
        return values

    def _result_types_of(self, value: Value) -> list[str | None]:
        if isinstance(value, Call):
            callee = value.static_callee()
            if callee is not None:
                return list(callee.result_types)
        return []

    def zero_value(self, type_name: str | None) -> Value:
        if type_name is None:
            return Unknown(description="zero value")
        if type_name == "string":
            return Const(value="", type="string")
        if type_name == "bool":
            return Const(value=False, type="bool")
        if type_name in library.BUILTIN_TYPES:
            return Const(value=0, type=type_name)
        if type_name.startswith("*") or self.program.is_interface(type_name):
            return Const(value=None, type=type_name)
        return self._emit(Alloc(type=type_name))

    def to_type(self, value: Value, type_name: str | None) -> Value:
        """Wrap ``value`` in a ``MakeInterface`` when stored into an interface type."""
        if (
            type_name is not None
            and value.type is not None
            and self.program.is_interface(type_name)
            and not self.program.is_interface(value.type)
            and not (isinstance(value, Const) and value.value is None)
        ):
            return self._emit(MakeInterface(x=value, type=type_name))
        return value

    def expr(self, node: tree_sitter.Node | None) -> Value:
        if node is None:
            return Unknown()
        kind = node.type
        text = self.file.text

        if kind == "parenthesized_expression":
            children = named_children(node)
            return self.expr(children[0]) if children else Unknown()
        if kind in ("interpreted_string_literal", "raw_string_literal"):
            return Const(value=string_literal_value(text(node)), type="string")
        if kind == "int_literal":
            return Const(value=_parse_int(text(node)), type="int")
        if kind == "float_literal":
            try:
                return Const(value=float(text(node).replace("_", "")), type="float64")
            except ValueError:
                return Unknown(description=kind, type="float64")
        if kind in ("true", "false"):
            return Const(value=kind == "true", type="bool")
        if kind == "nil":
            return Const(value=None)
        if kind == "identifier":
            return self._identifier(text(node))
        if kind == "selector_expression":
            return self._selector(node)
        if kind == "call_expression":
            return self._call(node)
        if kind == "binary_expression":
            op = text(node.child_by_field_name("operator"))
            x = self.expr(node.child_by_field_name("left"))
            y = self.expr(node.child_by_field_name("right"))
            return self._binary(op, x, y)
        if kind == "unary_expression":
            return self._unary(node)
        if kind == "composite_literal":
            self._literal_elements(node.child_by_field_name("body"))
            literal_type = self.pb.resolve_type(node.child_by_field_name("type"), self.file, self.package)
            return self._emit(Alloc(type=literal_type))
        if kind == "func_literal":
            return self._closure(node)
        if kind == "type_assertion_expression":
            self.expr(node.child_by_field_name("operand"))
            asserted = self.pb.resolve_type(node.child_by_field_name("type"), self.file, self.package)
            return self._emit(Unknown(description="type assertion", type=asserted))
        if kind == "type_conversion_expression":
            converted = self.pb.resolve_type(node.child_by_field_name("type"), self.file, self.package)
            return self._emit(Conversion(x=self.expr(node.child_by_field_name("operand")), type=converted))
        if kind == "index_expression":
            self.expr(node.child_by_field_name("operand"))
            self.expr(node.child_by_field_name("index"))
            return Unknown(description="index")
        if kind == "slice_expression":
            self.expr(node.child_by_field_name("operand"))
            return Unknown(description="slice")
        if kind in ("rune_literal", "imaginary_literal", "iota"):
            return Unknown(description=kind)
        return Unknown(description=kind)

    def _identifier(self, name: str) -> Value:
        local = self._lookup_local(name)
        if local is not None:
            return local
        member = self.pb.member(self.package, name)
        if member is not None:
            return member
        if name in library.BUILTIN_FUNCTIONS:
            return Builtin(name=name)
        return Unknown(description=name)

    def _package_member(self, package_path: str, name: str) -> Value:
        package = self.program.package(package_path)
        if package is not None:
            member = self.pb.member(package, name)
            return member if member is not None else Unknown(description=f"{package_path}.{name}")
        qualified = f"{package_path}.{name}"
        if qualified in library.CONSTANTS:
            return Const(value=library.CONSTANTS[qualified], type="string")
        if qualified in library.GLOBAL_TYPES:
            return self.pb.library_global(package_path, name)
        if name[:1].isupper() and qualified not in library.TYPES:
            return self.program.external_function(package_path, name)
        return Unknown(description=qualified)

    def _selector(self, node: tree_sitter.Node) -> Value:
        operand = node.child_by_field_name("operand")
        name = self.file.text(node.child_by_field_name("field"))
        if operand is not None and operand.type == "identifier" and self._is_import(self.file.text(operand)):
            return self._package_member(self.file.imports[self.file.text(operand)], name)

        x = self.expr(operand)
        if x.type is not None and not self.program.is_interface(x.type):
            method = self.program.lookup_method(x.type, name)
            if method is not None:
                return self._emit(MethodValue(function=method, receiver=x, type="func"))
        info = self.program.type_info(x.type)
        field_type = info.field_types.get(name) if info is not None else None
        return self._emit(Field(x=x, name=name, type=field_type))

    def _binary(self, op: str, x: Value, y: Value) -> Value:
        if op == "+" and isinstance(x, Const) and isinstance(y, Const) and x.is_string and y.is_string:
            return Const(value=f"{x.value}{y.value}", type="string")
        result_type = "bool" if op in _COMPARISON_OPS else (x.type or y.type)
        return self._emit(BinOp(op=op, x=x, y=y, type=result_type))

    def _unary(self, node: tree_sitter.Node) -> Value:
        op = self.file.text(node.child_by_field_name("operator"))
        operand = self.expr(node.child_by_field_name("operand"))
        if op == "&":
            if isinstance(operand, Alloc) and operand.type and not operand.type.startswith("*"):
                operand.type = f"*{operand.type}"
                return operand
            return self._emit(UnOp(op=op, x=operand, type=f"*{operand.type}" if operand.type else None))
        if op == "*":
            pointee = operand.type[1:] if operand.type and operand.type.startswith("*") else None
            return self._emit(UnOp(op=op, x=operand, type=pointee))
        return self._emit(UnOp(op=op, x=operand, type=operand.type if op != "<-" else None))

    def _literal_elements(self, body: tree_sitter.Node | None) -> None:
        """Lower composite literal elements for their calls; field values are not tracked."""
        for element in named_children(body):
            if element.type in ("keyed_element", "literal_element"):
                parts = named_children(element)
                if element.type == "keyed_element":
                    parts = parts[-1:]
                for part in parts:
                    if part.type == "literal_element":
                        part = named_children(part)[0] if named_children(part) else part
                    if part.type == "literal_value":
                        self._literal_elements(part)
                    else:
                        self.expr(part)
            elif element.type == "literal_value":
                self._literal_elements(element)
            else:
                self.expr(element)

    def _closure(self, node: tree_sitter.Node) -> Function:
        closure = Function(
            name=str(len(self.fn.anon_funcs) + 1),
            package_path=self.fn.package_path,
            package=self.package,
            parent=self.fn,
            position=Position(self.file.path, self.file.line(node)),
            type="func",
        )
        self.fn.anon_funcs.append(closure)
        self.pb._add_params(closure, node.child_by_field_name("parameters"), self.file, self.package)
        closure.result_types = self.pb.result_types(node.child_by_field_name("result"), self.file, self.package)
        FunctionBuilder(self.pb, closure, self.file, outer=self).build(node)
        return closure

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    def _call(self, node: tree_sitter.Node, mode: str = "call") -> Value:
        fn_node = node.child_by_field_name("function")
        while fn_node is not None and fn_node.type == "parenthesized_expression":
            inner = named_children(fn_node)
            fn_node = inner[0] if inner else None
        if fn_node is None:
            return Unknown(description="call")

        args_node = node.child_by_field_name("arguments")
        arg_nodes: list[tree_sitter.Node] = []
        for arg in named_children(args_node):
            if arg.type == "variadic_argument":
                inner = named_children(arg)
                arg = inner[0] if inner else arg
            arg_nodes.append(arg)
        # the position of a call is its opening parenthesis
        position = Position(self.file.path, self.file.line(args_node if args_node is not None else node))

        callee: Value
        if fn_node.type == "identifier":
            name = self.file.text(fn_node)
            if not self._has_local(name):
                if name in self.package.types:
                    return self._conversion(f"{self.package.path}.{name}", arg_nodes)
                if name in library.BUILTIN_TYPES:
                    return self._conversion(name, arg_nodes)
                if name in ("new", "make"):
                    return self._allocation(name, arg_nodes)
            callee = self._identifier(name)
        elif fn_node.type == "selector_expression":
            operand = fn_node.child_by_field_name("operand")
            method = self.file.text(fn_node.child_by_field_name("field"))
            if operand is not None and operand.type == "identifier" and self._is_import(self.file.text(operand)):
                package_path = self.file.imports[self.file.text(operand)]
                local = self.program.package(package_path)
                if local is not None and method in local.types:
                    return self._conversion(f"{package_path}.{method}", arg_nodes)
                if local is None and f"{package_path}.{method}" in library.TYPES:
                    return self._conversion(f"{package_path}.{method}", arg_nodes)
                callee = self._package_member(package_path, method)
            else:
                receiver = self.expr(operand)
                return self._method_call(receiver, method, arg_nodes, position, mode)
        elif fn_node.type in _TYPE_NODES:
            return self._conversion(self.pb.resolve_type(fn_node, self.file, self.package), arg_nodes)
        else:
            callee = self.expr(fn_node)

        args = [self.expr(a) for a in arg_nodes]
        target = callee if isinstance(callee, Function) else None
        if isinstance(callee, MethodValue):
            target = callee.function
            args = [callee.receiver, *args]
        call = Call(
            callee=callee,
            args=self._bind_args(target, args),
            position=position,
            mode=mode,
            type=self._call_type(target),
        )
        return self._emit(call)

    def _method_call(
        self,
        receiver: Value,
        method: str,
        arg_nodes: list[tree_sitter.Node],
        position: Position,
        mode: str,
    ) -> Value:
        args = [receiver, *(self.expr(a) for a in arg_nodes)]
        target = None
        if receiver.type is not None and not self.program.is_interface(receiver.type):
            target = self.program.lookup_method(receiver.type, method)
        if target is None:
            # interface invoke, or a receiver whose type is unknown until walk time
            return self._emit(
                Call(method=method, receiver=receiver, args=args, position=position, mode=mode)
            )
        call = Call(
            callee=target,
            args=self._bind_args(target, args),
            position=position,
            mode=mode,
            type=self._call_type(target),
        )
        return self._emit(call)

    def _bind_args(self, target: Function | None, args: list[Value]) -> list[Value]:
        if target is None or not target.params:
            return args
        bound = list(args)
        for i, param in enumerate(target.params[: len(bound)]):
            bound[i] = self.to_type(bound[i], param.type)
        return bound

    def _call_type(self, target: Function | None) -> str | None:
        if target is not None and len(target.result_types) == 1:
            return target.result_types[0]
        return None

    def _conversion(self, type_name: str | None, arg_nodes: list[tree_sitter.Node]) -> Value:
        operand = self.expr(arg_nodes[0]) if arg_nodes else Unknown()
        if isinstance(operand, Const) and operand.is_string and type_name == "string":
            return operand
        return self._emit(Conversion(x=operand, type=type_name))

    def _allocation(self, builtin: str, arg_nodes: list[tree_sitter.Node]) -> Value:
        allocated = self.pb.resolve_type(arg_nodes[0], self.file, self.package) if arg_nodes else None
        for extra in arg_nodes[1:]:
            self.expr(extra)
        if builtin == "new":
            return self._emit(Alloc(type=f"*{allocated}" if allocated else None))
        return self._emit(Alloc(type=allocated))
