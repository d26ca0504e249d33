"""Tests for CallGraphWalker: discovery of client and endpoint targets."""

from __future__ import annotations

import logging

import pytest

from netdep.core.errors import MissingEntryError
from netdep.core.types import TracePosition
from netdep.discovery.registry import AnalyserConfig, SignatureRegistry
from netdep.discovery.walker import CallGraphWalker
from netdep.ssa.loader import Loader

BASIC_CALL = """
package main

import "net/http"

func main() {
	http.Get("http://example.com/")
}
"""

WRAPPED_CLIENT = """
package main

import "net/http"

func wrapped(c *http.Client, url string) {
	url2 := url + "endpoint"
	c.Get(url2)
}

func main() {
	c := &http.Client{}
	wrapped(c, "http://example.com/")
}
"""

ENV_VARIABLE = """
package main

import (
	"net/http"
	"os"
)

func main() {
	http.Get(os.Getenv("FOO"))
}
"""

MULTIPLE_CALLS = """
package main

import (
	"net/http"
	"net/url"
)

func main() {
	http.Get("http://example.com/")
	http.PostForm("http://example2.com/form", url.Values{"key": {"Value"}, "id": {"123"}})
}
"""

HANDLE_FUNC_CALLBACK = """
package main

import "net/http"

func handler(w http.ResponseWriter, r *http.Request) {
	http.Get("https://example.com/")
}

func main() {
	http.HandleFunc("/test", handler)
}
"""


class TestScenarios:
    """End-to-end discovery on small single-service projects."""

    def test_basic_call(self, make_project, analyse) -> None:
        project = make_project({"basic": BASIC_CALL})
        clients, endpoints = analyse(project, "basic")

        assert endpoints == []
        assert len(clients) == 1
        target = clients[0]
        assert target.method_name == "net/http.Get"
        assert target.package_name == "net/http"
        assert target.request_location == "http://example.com/"
        assert target.is_resolved
        assert target.service_name == "basic"
        assert target.trace == [TracePosition("basic/main.go", 6)]

    def test_wrapped_client(self, make_project, analyse) -> None:
        project = make_project({"wrapped_client": WRAPPED_CLIENT})
        clients, _ = analyse(project, "wrapped_client")

        assert len(clients) == 1
        target = clients[0]
        assert target.method_name == "(*net/http.Client).Get"
        assert target.request_location == "http://example.com/endpoint"
        assert target.is_resolved
        assert len(target.trace) >= 2
        assert target.trace == [
            TracePosition("wrapped_client/main.go", 12),
            TracePosition("wrapped_client/main.go", 7),
        ]

    def test_env_variable(self, make_project, analyse) -> None:
        project = make_project({"env_variable": ENV_VARIABLE})
        env = {"env_variable": {"FOO": "http://example.com/endpoint"}}
        clients, _ = analyse(project, "env_variable", env=env)

        assert len(clients) == 1
        assert clients[0].request_location == "http://example.com/endpoint"
        assert clients[0].is_resolved

    def test_env_variable_missing_stays_unresolved(self, make_project, analyse) -> None:
        project = make_project({"env_variable": ENV_VARIABLE})
        clients, _ = analyse(project, "env_variable", env={"other": {"FOO": "x"}})

        assert len(clients) == 1
        assert not clients[0].is_resolved
        assert clients[0].request_location == ""

    def test_multiple_calls_in_source_order(self, make_project, analyse) -> None:
        project = make_project({"multiple": MULTIPLE_CALLS})
        clients, _ = analyse(project, "multiple")

        assert [c.method_name for c in clients] == ["net/http.Get", "net/http.PostForm"]
        assert [c.request_location for c in clients] == [
            "http://example.com/",
            "http://example2.com/form",
        ]
        assert [c.location.line for c in clients] == [9, 10]

    def test_handle_func_callback(self, make_project, analyse) -> None:
        project = make_project({"callback": HANDLE_FUNC_CALLBACK})
        clients, endpoints = analyse(project, "callback")

        assert len(endpoints) == 1
        assert endpoints[0].method_name == "net/http.HandleFunc"
        assert endpoints[0].request_location == "/test"
        assert endpoints[0].service_name == "callback"

        assert len(clients) == 1
        assert clients[0].request_location == "https://example.com/"
        assert clients[0].service_name == "callback"
        # registration site, then the call inside the handler
        assert clients[0].trace == [
            TracePosition("callback/main.go", 10),
            TracePosition("callback/main.go", 6),
        ]


class TestResolutionThroughSource:
    """Values the resolver follows inside real Go code."""

    def test_sprintf_with_constant_and_integer(self, make_project, analyse) -> None:
        project = make_project(
            {
                "fmt_svc": """
                package main

                import (
                	"fmt"
                	"net/http"
                )

                const host = "users"

                func main() {
                	http.Get(fmt.Sprintf("http://%s:%d/api", host, 8080))
                }
                """
            }
        )
        clients, _ = analyse(project, "fmt_svc")
        assert clients[0].request_location == "http://users:8080/api"

    def test_package_variable(self, make_project, analyse) -> None:
        project = make_project(
            {
                "globals": """
                package main

                import "net/http"

                var baseURL = "http://users:8080"

                func main() {
                	http.Get(baseURL + "/users")
                }
                """
            }
        )
        clients, _ = analyse(project, "globals")
        assert clients[0].request_location == "http://users:8080/users"

    def test_reassigned_package_variable_is_unresolved(self, make_project, analyse) -> None:
        project = make_project(
            {
                "globals": """
                package main

                import "net/http"

                var baseURL = "http://users:8080"

                func configure() {
                	baseURL = "http://other:8080"
                }

                func main() {
                	configure()
                	http.Get(baseURL + "/users")
                }
                """
            }
        )
        clients, _ = analyse(project, "globals")
        assert not clients[0].is_resolved

    def test_branches_that_disagree_are_unresolved(self, make_project, analyse) -> None:
        project = make_project(
            {
                "branches": """
                package main

                import (
                	"net/http"
                	"os"
                )

                func main() {
                	url := "http://a:80/x"
                	if len(os.Args) > 1 {
                		url = "http://b:80/x"
                	}
                	http.Get(url)
                }
                """
            }
        )
        clients, _ = analyse(project, "branches")
        assert len(clients) == 1
        assert not clients[0].is_resolved
        assert clients[0].request_location == ""

    def test_branches_that_agree_are_resolved(self, make_project, analyse) -> None:
        project = make_project(
            {
                "branches": """
                package main

                import (
                	"net/http"
                	"os"
                )

                func main() {
                	url := "http://a:80/x"
                	if len(os.Args) > 1 {
                		url = "http://a:80/" + "x"
                	}
                	http.Get(url)
                }
                """
            }
        )
        clients, _ = analyse(project, "branches")
        assert clients[0].request_location == "http://a:80/x"

    def test_helper_returning_url(self, make_project, analyse) -> None:
        project = make_project(
            {
                "builder": """
                package main

                import "net/http"

                func endpoint(host string, path string) string {
                	return "http://" + host + path
                }

                func main() {
                	http.Get(endpoint("orders:8080", "/orders"))
                }
                """
            }
        )
        clients, _ = analyse(project, "builder")
        assert clients[0].request_location == "http://orders:8080/orders"

    def test_closure_captures_outer_variable(self, make_project, analyse) -> None:
        project = make_project(
            {
                "closure": """
                package main

                import "net/http"

                func main() {
                	base := "http://orders:8080"
                	http.HandleFunc("/x", func(w http.ResponseWriter, r *http.Request) {
                		http.Get(base + "/orders")
                	})
                }
                """
            }
        )
        clients, endpoints = analyse(project, "closure")
        assert [e.request_location for e in endpoints] == ["/x"]
        assert [c.request_location for c in clients] == ["http://orders:8080/orders"]

    def test_shared_package_outside_service(self, make_project, analyse) -> None:
        project = make_project(
            {
                "users": """
                package main

                import "example.com/project/shared/client"

                func main() {
                	client.Fetch("http://orders:8080/orders")
                }
                """
            },
            shared={
                "shared/client/client.go": """
                package client

                import "net/http"

                func Fetch(url string) {
                	http.Get(url)
                }
                """
            },
        )
        clients, _ = analyse(project, "users")

        assert len(clients) == 1
        assert clients[0].request_location == "http://orders:8080/orders"
        assert clients[0].trace == [
            TracePosition("users/main.go", 6),
            TracePosition("shared/client/client.go", 6),
        ]

    def test_nested_directory_named_like_the_service(self, make_project, analyse) -> None:
        project = make_project(
            {
                "users": {
                    "main.go": """
                    package main

                    import "example.com/project/svc/users/internal/users"

                    func main() {
                    	users.Fetch()
                    }
                    """,
                    "internal/users/fetch.go": """
                    package users

                    import "net/http"

                    func Fetch() {
                    	http.Get("http://orders:8080/orders")
                    }
                    """,
                }
            }
        )
        clients, _ = analyse(project, "users")

        assert clients[0].trace == [
            TracePosition("users/main.go", 6),
            TracePosition("users/internal/users/fetch.go", 6),
        ]


class TestCalleeSelection:
    """Interface invokes, method values and handler forms."""

    def test_interface_call_with_request_builder(self, make_project, analyse) -> None:
        project = make_project(
            {
                "iface": """
                package main

                import "net/http"

                type Doer interface {
                	Do(req *http.Request) (*http.Response, error)
                }

                func send(d Doer, url string) {
                	req, _ := http.NewRequest("GET", url, nil)
                	d.Do(req)
                }

                func main() {
                	send(&http.Client{}, "http://example.com/api")
                }
                """
            }
        )
        clients, _ = analyse(project, "iface")

        assert [c.method_name for c in clients] == [
            "net/http.NewRequest",
            "(*net/http.Client).Do",
        ]
        assert all(c.request_location == "http://example.com/api" for c in clients)

    def test_interface_call_to_local_implementation(self, make_project, analyse) -> None:
        project = make_project(
            {
                "local_iface": """
                package main

                import "net/http"

                type Fetcher interface {
                	Fetch()
                }

                type users struct{}

                func (u users) Fetch() {
                	http.Get("http://users:8080/u")
                }

                func run(f Fetcher) {
                	f.Fetch()
                }

                func main() {
                	run(users{})
                }
                """
            }
        )
        clients, _ = analyse(project, "local_iface")

        assert len(clients) == 1
        assert clients[0].request_location == "http://users:8080/u"
        assert [p.line for p in clients[0].trace] == [20, 16, 12]

    def test_gin_routes_and_run(self, make_project, analyse) -> None:
        project = make_project(
            {
                "gin_svc": """
                package main

                import (
                	"net/http"

                	"github.com/gin-gonic/gin"
                )

                func main() {
                	r := gin.Default()
                	r.GET("/users", func(c *gin.Context) {
                		http.Get("http://orders:8080/orders")
                	})
                	r.Run(":9000")
                }
                """
            }
        )
        clients, endpoints = analyse(project, "gin_svc")

        assert [e.method_name for e in endpoints] == [
            "(*github.com/gin-gonic/gin.RouterGroup).GET",
            "(*github.com/gin-gonic/gin.Engine).Run",
        ]
        assert [e.request_location for e in endpoints] == ["/users", ":9000"]
        assert [c.request_location for c in clients] == ["http://orders:8080/orders"]
        assert [p.line for p in clients[0].trace] == [11, 12]

    def test_gin_run_without_address_uses_default(self, make_project, analyse) -> None:
        project = make_project(
            {
                "gin_svc": """
                package main

                import "github.com/gin-gonic/gin"

                func main() {
                	gin.Default().Run()
                }
                """
            }
        )
        _, endpoints = analyse(project, "gin_svc")
        assert [e.request_location for e in endpoints] == [":8080"]
        assert endpoints[0].is_resolved

    def test_method_value_handler(self, make_project, analyse) -> None:
        project = make_project(
            {
                "methods": """
                package main

                import "net/http"

                type server struct{}

                func (s *server) health(w http.ResponseWriter, r *http.Request) {
                	http.Get("http://status:80/ping")
                }

                func main() {
                	s := &server{}
                	http.HandleFunc("/health", s.health)
                }
                """
            }
        )
        clients, endpoints = analyse(project, "methods")
        assert [e.request_location for e in endpoints] == ["/health"]
        assert [c.request_location for c in clients] == ["http://status:80/ping"]

    def test_serve_http_handler(self, make_project, analyse) -> None:
        project = make_project(
            {
                "handler_type": """
                package main

                import "net/http"

                type api struct{}

                func (a api) ServeHTTP(w http.ResponseWriter, r *http.Request) {
                	http.Get("http://backend:80/data")
                }

                func main() {
                	mux := http.NewServeMux()
                	mux.Handle("/api", api{})
                	http.ListenAndServe(":8081", mux)
                }
                """
            }
        )
        clients, endpoints = analyse(project, "handler_type")

        assert [e.method_name for e in endpoints] == [
            "(*net/http.ServeMux).Handle",
            "net/http.ListenAndServe",
        ]
        assert [e.request_location for e in endpoints] == ["/api", ":8081"]
        assert [c.request_location for c in clients] == ["http://backend:80/data"]


class TestDeduplication:
    """Targets are unique per (service, method, trace)."""

    def test_handler_reached_by_two_paths_gives_two_targets(self, make_project, analyse) -> None:
        project = make_project(
            {
                "twice": """
                package main

                import "net/http"

                func handler(w http.ResponseWriter, r *http.Request) {
                	http.Get("https://example.com/")
                }

                func main() {
                	http.HandleFunc("/test", handler)
                	handler(nil, nil)
                }
                """
            }
        )
        clients, _ = analyse(project, "twice")

        assert [[p.line for p in c.trace] for c in clients] == [[10, 6], [11, 6]]

    def test_shared_helper_reached_by_two_paths(self, make_project, analyse) -> None:
        project = make_project(
            {
                "paths": """
                package main

                import "net/http"

                func helper(url string) {
                	http.Get(url)
                }

                func one() {
                	helper("http://x/1")
                }

                func two() {
                	helper("http://x/2")
                }

                func main() {
                	one()
                	two()
                }
                """
            }
        )
        clients, _ = analyse(project, "paths")

        assert [c.request_location for c in clients] == ["http://x/1", "http://x/2"]
        assert [[p.line for p in c.trace] for c in clients] == [[18, 10, 6], [19, 14, 6]]

    def test_same_path_walked_again_gives_nothing_new(self, make_project) -> None:
        project = make_project({"basic": BASIC_CALL})
        program, packages = Loader(project).load(project / "svc" / "basic")
        walker = CallGraphWalker(program, AnalyserConfig.default(project_root=str(project)))

        first, _ = walker.discover(packages, "basic")
        second, _ = walker.discover(packages, "basic")

        assert len(first) == 1
        assert second == []
        assert len(walker.clients) == 1


class TestTraversalLimits:
    """Recursion, depth limit and entry point checks."""

    def test_recursive_function_terminates(self, make_project, analyse) -> None:
        project = make_project(
            {
                "recursive": """
                package main

                import "net/http"

                func loop(n int) {
                	if n > 0 {
                		loop(n - 1)
                	}
                	http.Get("http://a:80/")
                }

                func main() {
                	loop(3)
                }
                """
            }
        )
        clients, _ = analyse(project, "recursive")
        assert len(clients) == 1

    def test_max_recursion_depth_cuts_the_path(self, make_project, analyse) -> None:
        project = make_project(
            {
                "deep": """
                package main

                import "net/http"

                func inner() {
                	http.Get("http://deep:80/")
                }

                func outer() {
                	http.Get("http://shallow:80/")
                	inner()
                }

                func main() {
                	outer()
                }
                """
            }
        )
        config = AnalyserConfig(max_recursion_depth=1, project_root=str(project))
        clients, _ = analyse(project, "deep", config=config)
        assert [c.request_location for c in clients] == ["http://shallow:80/"]

    def test_main_package_without_main_raises(self, make_project, analyse) -> None:
        project = make_project(
            {
                "no_entry": """
                package main

                func helper() {}
                """
            }
        )
        with pytest.raises(MissingEntryError, match="no main function"):
            analyse(project, "no_entry")

    def test_ignored_packages_are_not_entered(self, make_project, analyse) -> None:
        project = make_project(
            {
                "users": """
                package main

                import "example.com/project/shared/client"

                func main() {
                	client.Fetch("http://orders:8080/orders")
                }
                """
            },
            shared={
                "shared/client/client.go": """
                package client

                import "net/http"

                func Fetch(url string) {
                	http.Get(url)
                }
                """
            },
        )
        registry = SignatureRegistry(ignore_list={"example.com/project/shared/client"})
        config = AnalyserConfig(registry=registry, project_root=str(project))
        clients, _ = analyse(project, "users", config=config)
        assert clients == []


class TestVerboseLogging:
    def test_unresolved_target_logs_its_trace(self, make_project, analyse, caplog) -> None:
        project = make_project({"env_variable": ENV_VARIABLE})
        config = AnalyserConfig(verbose=True, project_root=str(project))
        with caplog.at_level(logging.INFO, logger="netdep.discovery.walker"):
            analyse(project, "env_variable", config=config)

        messages = [r.getMessage() for r in caplog.records]
        assert any("unresolved_target" in m and "env_variable/main.go:9" in m for m in messages)
