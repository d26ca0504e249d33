"""Tests for lowering Go syntax trees to the IR."""

from __future__ import annotations

import pytest

from netdep.ssa.builder import default_import_name
from netdep.ssa.ir import Call, Const, Function, Global, Phi, Program
from netdep.ssa.loader import Loader

USERS = "example.com/project/svc/users"
CLIENT = "example.com/project/shared/client"

CLIENT_PACKAGE = """
package client

import "net/http"

type Client struct {
	http *http.Client
	base string
}

func (c *Client) Get(path string) {
	c.http.Get(c.base + path)
}

func New(base string) *Client {
	return &Client{http: &http.Client{}, base: base}
}
"""


def build_program(make_project, services: dict, shared: dict | None = None) -> Program:
    project = make_project(services, shared)
    return Loader(project).program()


def calls_to(fn: Function, signature: str) -> list[Call]:
    found = []
    for block in fn.blocks:
        for call in block.calls():
            callee = call.static_callee()
            if callee is not None and callee.signature == signature:
                found.append(call)
    return found


@pytest.mark.parametrize(
    "path, expected",
    [
        ("net/http", "http"),
        ("github.com/nats-io/nats.go", "nats"),
        ("gopkg.in/yaml.v3", "yaml"),
        ("github.com/go-chi/chi/v5", "chi"),
        ("github.com/mattn/go-sqlite3", "sqlite3"),
        ("example.com/project/shared/event-bus", "event_bus"),
    ],
)
def test_default_import_name(path: str, expected: str) -> None:
    assert default_import_name(path) == expected


class TestDeclarations:
    """Functions, methods, closures and their signatures."""

    def test_function_and_method_signatures(self, make_project) -> None:
        program = build_program(
            make_project,
            {"users": "package main\n\nfunc main() {}\n"},
            {"shared/client/client.go": CLIENT_PACKAGE},
        )
        main = program.package(USERS).func("main")
        assert main.signature == f"{USERS}.main"

        info = program.package(CLIENT).types["Client"]
        assert info.kind == "struct"
        get = info.methods["Get"]
        assert get.signature == f"(*{CLIENT}.Client).Get"
        assert [p.name for p in get.params] == ["c", "path"]
        assert get.params[0].type == f"*{CLIENT}.Client"
        assert info.field_types["http"] == "*net/http.Client"

    def test_method_lookup_on_local_type(self, make_project) -> None:
        program = build_program(
            make_project,
            {"users": "package main\n\nfunc main() {}\n"},
            {"shared/client/client.go": CLIENT_PACKAGE},
        )
        assert program.lookup_method(f"*{CLIENT}.Client", "Get").signature == f"(*{CLIENT}.Client).Get"
        assert program.lookup_method(f"*{CLIENT}.Client", "Post") is None

    def test_library_call_in_method_body(self, make_project) -> None:
        program = build_program(
            make_project,
            {"users": "package main\n\nfunc main() {}\n"},
            {"shared/client/client.go": CLIENT_PACKAGE},
        )
        get = program.package(CLIENT).types["Client"].methods["Get"]
        assert len(calls_to(get, "(*net/http.Client).Get")) == 1

    def test_closures_are_numbered_per_parent(self, make_project) -> None:
        source = """
        package main

        func main() {
        	first := func() {}
        	second := func() {
        		inner := func() {}
        		inner()
        	}
        	first()
        	second()
        }
        """
        program = build_program(make_project, {"users": source})
        main = program.package(USERS).func("main")

        assert [c.signature for c in main.anon_funcs] == [f"{USERS}.main$1", f"{USERS}.main$2"]
        assert [c.signature for c in main.anon_funcs[1].anon_funcs] == [f"{USERS}.main$2$1"]
        assert main.anon_funcs[0].parent is main


class TestValues:
    """Constants, globals and merges."""

    def test_constants(self, make_project) -> None:
        source = """
        package main

        const (
        	base = "http://orders"
        	port = 8080
        	url  = base + "/orders"
        )

        func main() {}
        """
        program = build_program(make_project, {"users": source})
        members = program.package(USERS).members

        assert isinstance(members["base"], Const)
        assert members["base"].value == "http://orders"
        assert members["port"].value == 8080

    def test_reassigned_global(self, make_project) -> None:
        source = """
        package main

        var target = "http://a/"
        var fixed = "http://b/"

        func main() {
        	target = "http://c/"
        	_ = fixed
        }
        """
        program = build_program(make_project, {"users": source})
        members = program.package(USERS).members

        assert isinstance(members["target"], Global)
        assert members["target"].reassigned
        assert not members["fixed"].reassigned
        assert members["fixed"].initializer.value == "http://b/"

    def test_phi_at_if_join(self, make_project) -> None:
        source = """
        package main

        import (
        	"net/http"
        	"os"
        )

        func main() {
        	url := "http://a/"
        	if len(os.Args) > 1 {
        		url = "http://b/"
        	}
        	http.Get(url)
        }
        """
        program = build_program(make_project, {"users": source})
        (call,) = calls_to(program.package(USERS).func("main"), "net/http.Get")

        phi = call.args[0]
        assert isinstance(phi, Phi)
        assert {edge.value for edge in phi.edges} == {"http://a/", "http://b/"}

    def test_no_phi_when_branches_agree(self, make_project) -> None:
        source = """
        package main

        import (
        	"net/http"
        	"os"
        )

        func main() {
        	url := "http://a/"
        	if len(os.Args) > 1 {
        		os.Exit(1)
        	}
        	http.Get(url)
        }
        """
        program = build_program(make_project, {"users": source})
        (call,) = calls_to(program.package(USERS).func("main"), "net/http.Get")
        assert isinstance(call.args[0], Const)

    def test_package_types_in_expressions(self, make_project) -> None:
        source = """
        package main

        import "net/http"

        type Target string

        var (
        	base   Target = "http://orders"
        	client        = &http.Client{}
        )

        func urls() (first string, rest []string) {
        	rest = make([]string, 0)
        	return string(base) + "/a", rest
        }

        func main() {
        	var v interface{} = urls
        	_ = v.(func() (string, []string))
        	go func() { client.Get(string(base)) }()
        	first, _ := urls()
        	http.Get(first)
        }
        """
        program = build_program(
            make_project,
            {"users": {"main.go": source, "vars.go": 'package main\n\nvar extra = Target("http://x")\n'}},
        )
        package = program.package(USERS)
        main = package.func("main")

        assert not package.has_errors
        assert len(calls_to(main, "net/http.Get")) == 1
        assert len(main.anon_funcs) == 1
        assert isinstance(package.members["init"], Function)
        assert package.members["init"].blocks
        assert {"base", "client", "extra"} <= set(package.members)


class TestErrors:
    def test_syntax_errors_are_recorded(self, make_project) -> None:
        program = build_program(
            make_project,
            {"users": {"main.go": "package main\n\nfunc main() {}\n", "broken.go": "package main\n\nfunc broken( {\n"}},
        )
        package = program.package(USERS)
        assert package.has_errors
        assert package.errors[0].endswith("broken.go: syntax error")
