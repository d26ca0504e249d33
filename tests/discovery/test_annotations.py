"""Tests for //netdep: annotation scanning and the unresolved-target fallback."""

from __future__ import annotations

import logging

import pytest

from netdep.core.errors import AnnotationError
from netdep.core.types import CallTarget, TracePosition
from netdep.discovery.annotations import (
    annotation_suggestions,
    apply_annotations,
    describe_annotations,
    load_annotations,
    parse_annotation,
)

ANNOTATED = """
package main

import (
	"net/http"
	"os"
)

func main() {
	//netdep:client url=http://orders:8080/orders targetSvc=orders
	http.Get(os.Getenv("ORDERS_URL"))
	// an ordinary comment
	http.Get("http://example.com/")
}
"""


def unresolved(service: str, *positions: tuple[str, int]) -> CallTarget:
    return CallTarget(
        package_name="net/http",
        method_name="net/http.Get",
        service_name=service,
        trace=[TracePosition(file_name, line) for file_name, line in positions],
    )


class TestParseAnnotation:
    """Annotation grammar: kind followed by key=value pairs."""

    def test_client_with_url_and_target(self) -> None:
        annotation = parse_annotation("client url=http://orders:8080/x targetSvc=orders")
        assert annotation.kind == "client"
        assert annotation.url == "http://orders:8080/x"
        assert annotation.target_service == "orders"

    def test_endpoint_ignores_target_service(self) -> None:
        annotation = parse_annotation("endpoint url=/orders targetSvc=orders")
        assert annotation.kind == "endpoint"
        assert annotation.url == "/orders"
        assert annotation.target_service is None

    def test_unknown_keys_are_ignored(self) -> None:
        assert parse_annotation("client url=http://a/ owner=team").url == "http://a/"

    def test_kind_only(self) -> None:
        annotation = parse_annotation("client")
        assert annotation.url == ""

    @pytest.mark.parametrize("text", ["", "   ", "server url=/x", "client url"])
    def test_malformed(self, text: str) -> None:
        with pytest.raises(AnnotationError):
            parse_annotation(text)


class TestLoadAnnotations:
    def test_collects_annotation_comments(self, make_project) -> None:
        project = make_project({"users": ANNOTATED})
        annotations = load_annotations(project / "svc" / "users", "users")

        assert annotations == {
            "users": {
                ("users/main.go", 9): "client url=http://orders:8080/orders targetSvc=orders",
            }
        }

    def test_adds_to_existing_map(self, make_project) -> None:
        project = make_project({"users": ANNOTATED, "orders": "package main\n\nfunc main() {}\n"})
        annotations: dict = {}
        load_annotations(project / "svc" / "users", "users", annotations)
        load_annotations(project / "svc" / "orders", "orders", annotations)

        assert set(annotations) == {"users", "orders"}
        assert annotations["orders"] == {}


class TestApplyAnnotations:
    """Fallback for targets the resolver could not follow."""

    ANNOTATIONS = {
        "users": {
            ("users/main.go", 9): "client url=http://orders:8080/orders targetSvc=orders",
            ("users/api.go", 19): "client targetSvc=billing",
            ("users/bad.go", 4): "client url",
        }
    }

    def test_annotation_above_the_call(self) -> None:
        target = unresolved("users", ("users/main.go", 10))
        assert apply_annotations([target], self.ANNOTATIONS) == 1

        assert target.is_resolved
        assert target.request_location == "http://orders:8080/orders"
        assert target.target_service == "orders"

    def test_annotation_above_an_outer_trace_entry(self) -> None:
        target = unresolved("users", ("users/main.go", 10), ("shared/client.go", 30))
        apply_annotations([target], self.ANNOTATIONS)
        assert target.request_location == "http://orders:8080/orders"

    def test_innermost_annotation_wins(self) -> None:
        annotations = {
            "users": {
                ("users/main.go", 9): "client url=http://outer/",
                ("users/client.go", 4): "client url=http://inner/",
            }
        }
        target = unresolved("users", ("users/main.go", 10), ("users/client.go", 5))
        apply_annotations([target], annotations)
        assert target.request_location == "http://inner/"

    def test_target_service_alone_does_not_resolve(self) -> None:
        target = unresolved("users", ("users/api.go", 20))
        apply_annotations([target], self.ANNOTATIONS)

        assert target.target_service == "billing"
        assert not target.is_resolved
        assert target.request_location == ""

    def test_resolved_targets_are_untouched(self) -> None:
        target = unresolved("users", ("users/main.go", 10))
        target.request_location = "http://users:80/x"
        target.is_resolved = True

        assert apply_annotations([target], self.ANNOTATIONS) == 0
        assert target.request_location == "http://users:80/x"

    def test_other_service_annotations_do_not_apply(self) -> None:
        target = unresolved("orders", ("users/main.go", 10))
        assert apply_annotations([target], self.ANNOTATIONS) == 0
        assert not target.is_resolved

    def test_malformed_annotation_is_logged(self, caplog) -> None:
        target = unresolved("users", ("users/bad.go", 5))
        with caplog.at_level(logging.WARNING, logger="netdep.discovery.annotations"):
            assert apply_annotations([target], self.ANNOTATIONS) == 0

        assert not target.is_resolved
        assert any("invalid_annotation" in r.getMessage() for r in caplog.records)

    def test_end_to_end_with_walker(self, make_project, analyse) -> None:
        project = make_project({"users": ANNOTATED})
        clients, _ = analyse(project, "users")
        assert [c.is_resolved for c in clients] == [False, True]

        annotations = load_annotations(project / "svc" / "users", "users")
        apply_annotations(clients, annotations)

        assert clients[0].request_location == "http://orders:8080/orders"
        assert clients[0].target_service == "orders"
        assert clients[1].request_location == "http://example.com/"


class TestReporting:
    def test_describe_annotations(self) -> None:
        text = describe_annotations({"users": {("users/main.go", 9): "client url=http://a/"}})
        assert text.startswith("Discovered annotations:\n\n")
        assert "Service name: users" in text
        assert "Position: users/main.go:9" in text
        assert "Value: client url=http://a/" in text

    def test_describe_nothing(self) -> None:
        assert describe_annotations({"users": {}}) == ""

    def test_suggestions_for_unresolved_targets(self) -> None:
        resolved = unresolved("users", ("users/main.go", 4))
        resolved.request_location = "http://a/"
        resolved.is_resolved = True
        missing = unresolved("users", ("users/main.go", 7))

        suggestions = annotation_suggestions([resolved, missing])

        assert len(suggestions) == 1
        assert suggestions[0].startswith("users/main.go:7 couldn't be resolved")
