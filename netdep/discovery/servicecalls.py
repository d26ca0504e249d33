"""Internal service calls declared through a shared ``servicecalls`` package.

Every ``<service>-service.go`` file in that package declares the interfaces
a service exposes. Each interface method becomes an endpoint of the service.
A call ``x.<Method>(...)`` in a file that imports the package, whose name and
argument count match an interface method, becomes a client call to the
service owning the interface. Calls on a ``...DB`` field are skipped, since
database handles share method names with the interfaces.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import NamedTuple

import tree_sitter

from netdep.config import SERVICECALLS_PACKAGE
from netdep.core.errors import ConfigurationError
from netdep.core.types import CallTarget, TracePosition
from netdep.ssa.loader import relative_file_name
from netdep.ssa.parsing import GoSource, iter_all, iter_descendants, named_children, new_go_parser, parse_go_file, walk_go_files

logger = logging.getLogger(__name__)

SERVICE_FILE_SUFFIX = "-service.go"
IMPORT_MARKER = "servicecalls"
DB_SUFFIX = "DB"

METHOD_NODES = ("method_elem", "method_spec")


class InterfaceCall(NamedTuple):
    """Key of an interface method: its name and parameter count."""

    name: str
    param_count: int


ServiceCallMap = dict[InterfaceCall, str]


def count_parameters(parameters: tree_sitter.Node | None) -> int:
    """Number of parameters; ``a, b int`` counts as two."""
    count = 0
    for decl in named_children(parameters):
        if decl.type == "parameter_declaration":
            count += max(1, len(decl.children_by_field_name("name")))
        elif decl.type == "variadic_parameter_declaration":
            count += 1
    return count


def parse_interfaces(source: GoSource, service_name: str, display_name: str) -> tuple[ServiceCallMap, list[CallTarget]]:
    """Interface methods of one ``<service>-service.go`` file.

    Returns:
        (method key -> owning service, endpoint targets of the service)
    """
    calls: ServiceCallMap = {}
    endpoints: list[CallTarget] = []
    for interface in iter_descendants(source.root, "interface_type"):
        for method in named_children(interface):
            if method.type not in METHOD_NODES:
                continue
            name_node = method.child_by_field_name("name")
            if name_node is None:
                continue
            name = source.text(name_node)
            calls[InterfaceCall(name, count_parameters(method.child_by_field_name("parameters")))] = service_name
            endpoints.append(
                CallTarget(
                    package_name=SERVICECALLS_PACKAGE,
                    method_name=name,
                    service_name=service_name,
                    request_location=name,
                    is_resolved=True,
                    trace=[TracePosition(display_name, source.line(name_node))],
                )
            )
    return calls, endpoints


def parse_service_calls_package(servicecalls_dir: str | Path | None) -> tuple[ServiceCallMap, list[CallTarget]]:
    """Read the interface files at the top level of the servicecalls package.

    Args:
        servicecalls_dir: Package directory; nothing is read when empty

    Returns:
        (method key -> owning service, endpoint targets of every service)

    Raises:
        ConfigurationError: If the directory does not exist
    """
    calls: ServiceCallMap = {}
    endpoints: list[CallTarget] = []
    if not servicecalls_dir:
        return calls, endpoints

    directory = Path(servicecalls_dir)
    if not directory.is_dir():
        raise ConfigurationError(f"invalid servicecalls directory specified: {servicecalls_dir}")

    parser = new_go_parser()
    for path in sorted(directory.iterdir(), key=lambda p: p.name):
        if not path.is_file() or not path.name.endswith(SERVICE_FILE_SUFFIX):
            continue
        try:
            source = parse_go_file(parser, path)
        except OSError as e:
            logger.warning("servicecalls_scan_failed path=%s error=%s", path, e)
            continue
        if source.has_error:
            logger.warning("servicecalls_scan_skipped_unparsable path=%s", path)
            continue
        service_name = path.name[: -len(SERVICE_FILE_SUFFIX)]
        file_calls, file_endpoints = parse_interfaces(source, service_name, f"{directory.name}/{path.name}")
        calls.update(file_calls)
        endpoints.extend(file_endpoints)

    logger.info("parsed_servicecalls_package methods=%d services=%d", len(calls), len(set(calls.values())))
    return calls, endpoints


def imports_service_calls(source: GoSource) -> bool:
    return any(IMPORT_MARKER in path for _, path in source.raw_imports)


def scan_methods(source: GoSource, service_name: str, calls: ServiceCallMap, service_dir: str = "") -> list[CallTarget]:
    """Client targets for the interface method calls of one parsed file."""
    if not imports_service_calls(source):
        return []

    clients: list[CallTarget] = []
    file_name = relative_file_name(source.path, service_name, "", service_dir)
    for call in iter_all(source.root, "call_expression"):
        function = call.child_by_field_name("function")
        if function is None or function.type != "selector_expression":
            continue
        operand = function.child_by_field_name("operand")
        if operand is not None and operand.type == "selector_expression":
            if source.text(operand.child_by_field_name("field")).endswith(DB_SUFFIX):
                continue

        field_node = function.child_by_field_name("field")
        method = source.text(field_node)
        key = InterfaceCall(method, len(named_children(call.child_by_field_name("arguments"))))
        target_service = calls.get(key)
        if target_service is None:
            continue
        clients.append(
            CallTarget(
                package_name=SERVICECALLS_PACKAGE,
                method_name=method,
                service_name=service_name,
                request_location=method,
                is_resolved=True,
                target_service=target_service,
                trace=[TracePosition(file_name, source.line(field_node))],
            )
        )
    return clients


def load_service_calls(service_dir: str | Path, service_name: str, calls: ServiceCallMap) -> list[CallTarget]:
    """Client targets of one service for the methods in ``calls``.

    Files that fail to parse are skipped with a warning.
    """
    clients: list[CallTarget] = []
    if not calls:
        return clients

    parser = new_go_parser()
    root = os.path.abspath(service_dir)
    for path in walk_go_files(Path(service_dir)):
        try:
            source = parse_go_file(parser, path)
        except OSError as e:
            logger.warning("servicecalls_scan_failed path=%s error=%s", path, e)
            continue
        if source.has_error:
            logger.warning("servicecalls_scan_skipped_unparsable path=%s", path)
            continue
        clients.extend(scan_methods(source, service_name, calls, root))

    logger.debug("loaded_service_calls service=%s clients=%d", service_name, len(clients))
    return clients
