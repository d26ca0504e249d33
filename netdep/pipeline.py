"""End-to-end analysis: services -> targets -> graph -> adjacency list.

discover_all_calls  loads every service, walks it and adds internal service calls
run                 adds the message-bus scan, matches and serialises
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from netdep.boundary.graph import NodeGraph, create_dependency_graph
from netdep.boundary.output import (
    construct_adjacency_list,
    construct_unused_services_lists,
    describe_unused_services,
    serialize_adjacency_list,
)
from netdep.core.errors import ConfigurationError, EmptyScanError
from netdep.core.types import CallTarget
from netdep.discovery.annotations import (
    annotation_suggestions,
    apply_annotations,
    describe_annotations,
    load_annotations,
)
from netdep.discovery.envvars import load_env_file
from netdep.discovery.natsanalyzer import find_nats_calls
from netdep.discovery.registry import AnalyserConfig, AnnotationMap, EnvMap
from netdep.discovery.services import find_services
from netdep.discovery.servicecalls import load_service_calls, parse_service_calls_package
from netdep.discovery.walker import CallGraphWalker
from netdep.ssa.loader import Loader

logger = logging.getLogger(__name__)


@dataclass
class RunConfig:
    """User supplied options of one run."""

    project_dir: str = "./"
    service_dir: str = "./svc"
    env_file: str | None = None
    output_filename: str | None = None
    servicecalls_dir: str | None = None
    verbose: bool = False
    shallow: bool = False

    def validate(self) -> None:
        """Check every path before any analysis happens.

        Raises:
            ConfigurationError: Naming the first invalid path
        """
        if not Path(self.project_dir).is_dir():
            raise ConfigurationError(f"invalid project directory specified: {self.project_dir}")
        if not Path(self.service_dir).is_dir():
            raise ConfigurationError(f"invalid service directory: {self.service_dir}")
        if self.env_file and not Path(self.env_file).is_file():
            raise ConfigurationError(f"invalid environment variable file specified: {self.env_file}")
        if self.servicecalls_dir and not Path(self.servicecalls_dir).is_dir():
            raise ConfigurationError(f"invalid servicecalls directory specified: {self.servicecalls_dir}")
        if self.output_filename:
            parent = Path(self.output_filename).resolve().parent
            if not parent.is_dir():
                raise ConfigurationError(f"parent directory of json path does not exist: {parent}")


@dataclass
class DiscoveryResult:
    """Targets of every service, after the annotation fallback."""

    clients: list[CallTarget] = field(default_factory=list)
    endpoints: list[CallTarget] = field(default_factory=list)
    annotations: AnnotationMap = field(default_factory=dict)
    service_names: list[str] = field(default_factory=list)


def discover_all_calls(config: RunConfig) -> DiscoveryResult:
    """Walk every service under ``config.service_dir``.

    Shallow runs skip loading and walking, so only annotations, internal
    service calls and the message-bus scan contribute.

    Raises:
        ConfigurationError: If the service directory, servicecalls directory or env file is invalid
        EmptyScanError: If there are no services, or no packages in any of them
        LoadError: If every package of a service failed to parse
        MissingEntryError: If a main package lacks ``main``
    """
    services = find_services(config.service_dir)
    if not services:
        raise EmptyScanError()
    logger.info("Starting to analyse %d services.", len(services))

    env: EnvMap = load_env_file(config.env_file) if config.env_file else {}
    service_calls, service_call_endpoints = parse_service_calls_package(config.servicecalls_dir)
    annotations: AnnotationMap = {}
    for service_path in services:
        load_annotations(service_path, service_path.name, annotations)

    analyser = AnalyserConfig.default(
        env=env,
        annotations=annotations,
        verbose=config.verbose,
        project_root=str(Path(config.project_dir).resolve()),
    )
    loader = Loader(config.project_dir)
    result = DiscoveryResult(annotations=annotations)
    internal_clients: list[CallTarget] = []
    package_count = 0

    for service_path in services:
        result.service_names.append(service_path.name)
        internal_clients.extend(load_service_calls(service_path, service_path.name, service_calls))
        if config.shallow:
            continue

        program, packages = loader.load(service_path)
        package_count += len(packages)
        walker = CallGraphWalker(program, analyser)
        clients, endpoints = walker.discover(packages, service_path.name, service_path)
        logger.info(
            "analysed_service service=%s packages=%d clients=%d endpoints=%d",
            service_path.name,
            len(packages),
            len(clients),
            len(endpoints),
        )
        result.clients.extend(clients)
        result.endpoints.extend(endpoints)

    if not config.shallow and package_count == 0:
        raise EmptyScanError()

    result.clients.extend(internal_clients)
    result.endpoints.extend(service_call_endpoints)

    applied = apply_annotations(result.clients, annotations)
    applied += apply_annotations(result.endpoints, annotations)
    logger.info("applied_annotations count=%d", applied)

    if config.verbose:
        description = describe_annotations(annotations)
        if description:
            logger.info("%s", description)
        for suggestion in annotation_suggestions([*result.clients, *result.endpoints]):
            logger.info("%s", suggestion)

    return result


def build_graph(config: RunConfig) -> tuple[NodeGraph, DiscoveryResult]:
    """Discover every call, HTTP and message-bus, and match them."""
    result = discover_all_calls(config)
    consumers, producers = find_nats_calls(find_services(config.service_dir))
    graph = create_dependency_graph(result.clients, result.endpoints, consumers, producers)
    return graph, result


def run(config: RunConfig) -> str:
    """Analyse the project and return the serialised adjacency list.

    Raises:
        NetDepError: On any fatal configuration or loading error
    """
    config.validate()
    graph, result = build_graph(config)
    output = serialize_adjacency_list(construct_adjacency_list(graph))

    if config.verbose:
        unreferenced, isolated = construct_unused_services_lists(graph, result.service_names)
        logger.info("%s", describe_unused_services(unreferenced, isolated))

    return output
