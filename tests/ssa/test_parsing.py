"""Tests for the Go parsing helpers."""

from __future__ import annotations

from pathlib import Path

import pytest

from netdep.ssa.parsing import (
    is_analysed_go_file,
    new_go_parser,
    parse_go_file,
    string_literal_value,
    walk_go_files,
)


@pytest.mark.parametrize(
    "literal, expected",
    [
        ('"http://a/"', "http://a/"),
        ('"tab\\there"', "tab\there"),
        ('"quote \\" inside"', 'quote " inside'),
        ('"\\x41\\u00e9"', "Aé"),
        ('"\\101"', "A"),
        ("`raw\\n`", "raw\\n"),
        ('"100%"', "100%"),
    ],
)
def test_string_literal_value(literal: str, expected: str) -> None:
    assert string_literal_value(literal) == expected


@pytest.mark.parametrize(
    "name, analysed",
    [
        ("main.go", True),
        ("main_test.go", False),
        ("api.pb.go", False),
        ("README.md", False),
    ],
)
def test_is_analysed_go_file(name: str, analysed: bool) -> None:
    assert is_analysed_go_file(name) is analysed


class TestWalkGoFiles:
    def test_skips_vendor_hidden_and_tests(self, tmp_path: Path) -> None:
        for relative in (
            "main.go",
            "b/b.go",
            "a/a.go",
            "a/a_test.go",
            "vendor/lib/lib.go",
            ".git/hook.go",
            "testdata/fixture.go",
        ):
            path = tmp_path / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("package x\n", encoding="utf-8")

        found = [p.relative_to(tmp_path).as_posix() for p in walk_go_files(tmp_path)]
        assert found == ["a/a.go", "b/b.go", "main.go"]

    def test_single_file(self, tmp_path: Path) -> None:
        path = tmp_path / "main.go"
        path.write_text("package main\n", encoding="utf-8")
        assert list(walk_go_files(path)) == [path]

    def test_missing_root(self, tmp_path: Path) -> None:
        assert list(walk_go_files(tmp_path / "missing")) == []


class TestParseGoFile:
    def test_package_and_imports(self, tmp_path: Path) -> None:
        path = tmp_path / "main.go"
        path.write_text(
            'package main\n\nimport (\n\t"net/http"\n\tnats "github.com/nats-io/nats.go"\n\t_ "embed"\n)\n',
            encoding="utf-8",
        )
        source = parse_go_file(new_go_parser(), path)

        assert source.package_name == "main"
        assert source.raw_imports == [
            (None, "net/http"),
            ("nats", "github.com/nats-io/nats.go"),
            ("_", "embed"),
        ]
        assert not source.has_error

    def test_syntax_error(self, tmp_path: Path) -> None:
        path = tmp_path / "main.go"
        path.write_text("package main\n\nfunc main( {\n", encoding="utf-8")
        assert parse_go_file(new_go_parser(), path).has_error
