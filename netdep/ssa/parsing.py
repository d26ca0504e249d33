"""Go parsing helpers shared by the loader and the syntax-only scanners."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

import tree_sitter
import tree_sitter_go

# Directories never scanned for Go sources
SKIP_DIRS: set[str] = {
    "vendor",
    "testdata",
    "node_modules",
    ".git",
    "bin",
    "dist",
    "build",
}


def new_go_parser() -> tree_sitter.Parser:
    """Create a tree-sitter parser for Go."""
    parser = tree_sitter.Parser()
    parser.language = tree_sitter.Language(tree_sitter_go.language())
    return parser


def is_analysed_go_file(name: str) -> bool:
    """Non-test, non-generated Go sources."""
    return (
        name.endswith(".go")
        and not name.endswith("_test.go")
        and not name.endswith("pb.go")
    )


def walk_go_files(root: Path) -> Iterator[Path]:
    """Yield analysed Go files below ``root`` in a stable order."""
    if not root.is_dir():
        if root.is_file() and is_analysed_go_file(root.name):
            yield root
        return

    for entry in sorted(root.iterdir(), key=lambda p: p.name):
        if entry.is_dir():
            if entry.name not in SKIP_DIRS and not entry.name.startswith("."):
                yield from walk_go_files(entry)
        elif entry.is_file() and is_analysed_go_file(entry.name):
            yield entry


@dataclass
class GoSource:
    """A parsed Go file."""

    path: str
    source: bytes
    tree: tree_sitter.Tree
    package_name: str = ""
    # alias -> import path; explicit aliases are filled at parse time,
    # default aliases once every local package is known
    imports: dict[str, str] = field(default_factory=dict)
    raw_imports: list[tuple[str | None, str]] = field(default_factory=list)

    @property
    def root(self) -> tree_sitter.Node:
        return self.tree.root_node

    @property
    def has_error(self) -> bool:
        return self.tree.root_node.has_error

    def text(self, node: tree_sitter.Node | None) -> str:
        if node is None:
            return ""
        return self.source[node.start_byte : node.end_byte].decode(
            "utf-8", errors="replace"
        )

    def line(self, node: tree_sitter.Node) -> int:
        return node.start_point[0] + 1


def parse_go_file(parser: tree_sitter.Parser, path: Path) -> GoSource:
    """Parse a file and collect its package clause and imports."""
    source = path.read_bytes()
    parsed = GoSource(path=os.path.abspath(path), source=source, tree=parser.parse(source))

    for child in parsed.root.named_children:
        if child.type == "package_clause":
            for ident in child.named_children:
                if ident.type in ("package_identifier", "identifier"):
                    parsed.package_name = parsed.text(ident)
        elif child.type == "import_declaration":
            for spec in iter_descendants(child, "import_spec"):
                name_node = spec.child_by_field_name("name")
                path_node = spec.child_by_field_name("path")
                alias = parsed.text(name_node) if name_node is not None else None
                parsed.raw_imports.append((alias, string_literal_value(parsed.text(path_node))))

    return parsed


def iter_descendants(node: tree_sitter.Node, node_type: str) -> Iterator[tree_sitter.Node]:
    """Yield every descendant of ``node`` with the given type, in source order."""
    for child in node.named_children:
        if child.type == node_type:
            yield child
        else:
            yield from iter_descendants(child, node_type)


def iter_all(node: tree_sitter.Node, node_type: str) -> Iterator[tree_sitter.Node]:
    """Every node of ``node_type`` at or below ``node``, nested matches included."""
    for found in iter_descendants(node, node_type):
        yield found
        yield from iter_all(found, node_type)


def named_children(node: tree_sitter.Node | None) -> list[tree_sitter.Node]:
    """Named children without comments."""
    if node is None:
        return []
    return [c for c in node.named_children if c.type != "comment"]


def block_statements(node: tree_sitter.Node | None) -> list[tree_sitter.Node]:
    """Statements of a block, flattening ``statement_list`` wrappers."""
    statements: list[tree_sitter.Node] = []
    for child in named_children(node):
        if child.type == "statement_list":
            statements.extend(named_children(child))
        else:
            statements.append(child)
    return statements


def case_statements(node: tree_sitter.Node) -> list[tree_sitter.Node]:
    """Statements of a switch/select case: everything after the colon."""
    statements: list[tree_sitter.Node] = []
    after_colon = False
    for child in node.children:
        if not after_colon:
            after_colon = child.type == ":"
            continue
        if not child.is_named or child.type == "comment":
            continue
        if child.type == "statement_list":
            statements.extend(named_children(child))
        else:
            statements.append(child)
    return statements


_SIMPLE_ESCAPES = {
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "v": "\v",
    "\\": "\\",
    "'": "'",
    '"': '"',
}


def string_literal_value(text: str) -> str:
    """Decode a Go string literal (interpreted or raw) to its value."""
    if len(text) >= 2 and text[0] == "`" and text[-1] == "`":
        return text[1:-1].replace("\r", "")
    if len(text) >= 2 and text[0] == '"' and text[-1] == '"':
        text = text[1:-1]

    out: list[str] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch != "\\" or i + 1 >= len(text):
            out.append(ch)
            i += 1
            continue
        esc = text[i + 1]
        if esc in _SIMPLE_ESCAPES:
            out.append(_SIMPLE_ESCAPES[esc])
            i += 2
        elif esc == "x":
            out.append(chr(int(text[i + 2 : i + 4], 16)))
            i += 4
        elif esc == "u":
            out.append(chr(int(text[i + 2 : i + 6], 16)))
            i += 6
        elif esc == "U":
            out.append(chr(int(text[i + 2 : i + 10], 16)))
            i += 10
        elif esc.isdigit():
            out.append(chr(int(text[i + 1 : i + 4], 8)))
            i += 4
        else:
            out.append(esc)
            i += 2
    return "".join(out)
