"""Shared fixtures: small Go projects written to tmp_path."""

from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Callable

import pytest

from netdep.core.types import CallTarget
from netdep.discovery.registry import AnalyserConfig, EnvMap
from netdep.discovery.walker import CallGraphWalker
from netdep.ssa.loader import Loader

MODULE = "example.com/project"

ProjectFactory = Callable[..., Path]
Analyse = Callable[..., tuple[list[CallTarget], list[CallTarget]]]


def go_source(text: str) -> str:
    """Dedent Go source so that ``package`` sits on line 1."""
    return textwrap.dedent(text).lstrip("\n")


@pytest.fixture
def make_project(tmp_path: Path) -> ProjectFactory:
    """Write a Go module with services under ``svc/``.

    ``services`` maps a service name to the source of its ``main.go``, or
    to a mapping of relative file name to source. ``shared`` holds files
    outside ``svc/``, keyed by path relative to the project root.
    """

    def factory(
        services: dict[str, str | dict[str, str]],
        shared: dict[str, str] | None = None,
        module: str = MODULE,
    ) -> Path:
        (tmp_path / "go.mod").write_text(f"module {module}\n\ngo 1.21\n", encoding="utf-8")
        for name, files in services.items():
            if isinstance(files, str):
                files = {"main.go": files}
            for relative, text in files.items():
                path = tmp_path / "svc" / name / relative
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(go_source(text), encoding="utf-8")
        for relative, text in (shared or {}).items():
            path = tmp_path / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(go_source(text), encoding="utf-8")
        return tmp_path

    return factory


@pytest.fixture
def analyse() -> Analyse:
    """Walk one service of a project written by ``make_project``."""

    def run(
        project: Path,
        service: str,
        env: EnvMap | None = None,
        config: AnalyserConfig | None = None,
    ) -> tuple[list[CallTarget], list[CallTarget]]:
        if config is None:
            config = AnalyserConfig.default(env=env, project_root=str(project.resolve()))
        service_dir = project / "svc" / service
        program, packages = Loader(project).load(service_dir)
        return CallGraphWalker(program, config).discover(packages, service, service_dir)

    return run


SHOP_SERVICES = {
    "users": """
        package main

        import "net/http"

        func main() {
        	http.Get("http://orders:8080/orders")
        }
        """,
    "orders": """
        package main

        import (
        	"net/http"

        	"example.com/project/shared/events"
        )

        func handle(w http.ResponseWriter, r *http.Request) {}

        func main() {
        	bus := events.Connect()
        	bus.NotifyMsg(events.OrderCreatedSubject, nil)
        	http.HandleFunc("/orders", handle)
        	http.ListenAndServe(":8080", nil)
        }
        """,
    "billing": """
        package main

        import "example.com/project/shared/events"

        func main() {
        	bus := events.Connect()
        	bus.Subscribe(events.OrderCreatedSubject, func(data []byte) {})
        }
        """,
}

SHOP_SHARED = {
    "shared/events/events.go": """
        package events

        const OrderCreatedSubject = "orders.created"

        type Bus struct{}

        func Connect() *Bus { return &Bus{} }

        func (b *Bus) NotifyMsg(subject string, data []byte) {}

        func (b *Bus) Subscribe(subject string, handler func([]byte)) {}
        """,
}

# adjacency list of the shop project
SHOP_ADJACENCY = {
    "billing": [],
    "orders": [
        {
            "service": "billing",
            "calls": [
                {
                    "protocol": "NATS",
                    "url": "",
                    "methodName": "NotifyMsg",
                    "arguments": ["OrderCreatedSubject"],
                    "location": "orders/main.go:13",
                }
            ],
            "count": 1,
        }
    ],
    "users": [
        {
            "service": "orders",
            "calls": [
                {
                    "protocol": "HTTP",
                    "url": "http://orders:8080/orders",
                    "arguments": [],
                    "location": "users/main.go:6",
                }
            ],
            "count": 1,
        }
    ],
}


@pytest.fixture
def shop_project(make_project: ProjectFactory) -> Path:
    """Three services: users calls orders over HTTP, orders notifies billing."""
    return make_project(SHOP_SERVICES, SHOP_SHARED)


@pytest.fixture
def shop_adjacency() -> dict:
    return SHOP_ADJACENCY
