"""Service dependency graph: matching client calls to endpoints.

Endpoints are indexed by ``http://<service><port><path>``, where the port
comes from the service's listen call (``":80"`` when it has none). A
resolved client URL that is exactly such a key becomes an edge to the
owning service. Anything else goes to a single ``UnknownService`` node.
Internal service calls match the service whose interface declares the
method. Message-bus producers are matched to consumers by subject.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import networkx as nx

from netdep.config import (
    DEFAULT_PORT,
    HTTP_PROTOCOL,
    SERVICECALLS_PACKAGE,
    SERVICECALLS_PROTOCOL,
    UNKNOWN_SERVICE_NAME,
)
from netdep.core.types import CallTarget
from netdep.discovery.natsanalyzer import NatsCall

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class ServiceNode:
    """A service in the dependency graph."""

    service_name: str
    is_unknown: bool = False
    is_referenced: bool = False
    is_referencing: bool = False


@dataclass
class NetworkCall:
    """One call carried by an edge."""

    protocol: str
    url: str = ""
    method_name: str = ""
    arguments: list[str] = field(default_factory=list)
    location: str = ""  # "<file>:<line>" of the innermost trace entry

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {"protocol": self.protocol, "url": self.url}
        if self.method_name:
            data["methodName"] = self.method_name
        data["arguments"] = list(self.arguments)
        data["location"] = self.location
        return data


@dataclass
class ConnectionEdge:
    """A directed dependency: ``source`` calls ``target``."""

    call: NetworkCall
    source: ServiceNode
    target: ServiceNode


class NodeGraph:
    """Nodes and edges of the service dependency graph.

    Edges are kept in insertion order and mirrored into a networkx
    MultiDiGraph, which answers the reference queries.
    """

    def __init__(self) -> None:
        self._graph: nx.MultiDiGraph = nx.MultiDiGraph()
        self._nodes: dict[str, ServiceNode] = {}
        self.edges: list[ConnectionEdge] = []

    @property
    def nodes(self) -> list[ServiceNode]:
        """Nodes sorted alphabetically by service name."""
        return sorted(self._nodes.values(), key=lambda n: n.service_name)

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def edge_count(self) -> int:
        return len(self.edges)

    def get(self, service_name: str) -> ServiceNode | None:
        return self._nodes.get(service_name)

    def node(self, service_name: str, is_unknown: bool = False) -> ServiceNode:
        """Return the node of a service, creating it on first use."""
        existing = self._nodes.get(service_name)
        if existing is not None:
            return existing
        created = ServiceNode(service_name=service_name, is_unknown=is_unknown)
        self._nodes[service_name] = created
        self._graph.add_node(service_name)
        return created

    def unknown(self) -> ServiceNode:
        return self.node(UNKNOWN_SERVICE_NAME, is_unknown=True)

    def add_edge(self, call: NetworkCall, source: ServiceNode, target: ServiceNode) -> bool:
        """Add an edge; self-edges are dropped.

        Returns:
            True if the edge was added
        """
        if source is target:
            logger.debug("self_edge_dropped service=%s location=%s", source.service_name, call.location)
            return False
        self.edges.append(ConnectionEdge(call=call, source=source, target=target))
        self._graph.add_edge(source.service_name, target.service_name, protocol=call.protocol)
        source.is_referencing = True
        target.is_referenced = True
        return True

    def is_referenced(self, service_name: str) -> bool:
        return self._graph.has_node(service_name) and self._graph.in_degree(service_name) > 0

    def is_referencing(self, service_name: str) -> bool:
        return self._graph.has_node(service_name) and self._graph.out_degree(service_name) > 0

    def edges_from(self, source: ServiceNode) -> list[ConnectionEdge]:
        return [edge for edge in self.edges if edge.source is source]

    def unused_services(self, all_services: list[str] | None = None) -> tuple[list[str], list[str]]:
        """Services nobody calls, and services with no calls in either direction.

        Args:
            all_services: Every analysed service; ones absent from the graph count as unused

        Returns:
            (unreferenced, unreferenced and not referencing), both sorted
        """
        unreferenced: list[str] = []
        isolated: list[str] = []
        for node in self.nodes:
            name = node.service_name
            if not self.is_referenced(name):
                unreferenced.append(name)
                if not self.is_referencing(name):
                    isolated.append(name)
        for name in all_services or []:
            if name not in self._nodes:
                unreferenced.append(name)
                isolated.append(name)
        return sorted(set(unreferenced)), sorted(set(isolated))


def build_port_map(endpoints: list[CallTarget]) -> dict[str, str]:
    """service -> ":port" from endpoint locations that start with ':'."""
    ports: dict[str, str] = {}
    for endpoint in endpoints:
        if endpoint.request_location.startswith(":"):
            ports[endpoint.service_name] = endpoint.request_location
    return ports


def build_endpoint_map(endpoints: list[CallTarget]) -> dict[str, str]:
    """``http://<service><port><path>`` -> service, for empty or '/'-rooted paths."""
    ports = build_port_map(endpoints)
    endpoint_map: dict[str, str] = {}
    for endpoint in endpoints:
        location = endpoint.request_location
        if endpoint.package_name == SERVICECALLS_PACKAGE or (location and not location.startswith("/")):
            continue
        port = ports.get(endpoint.service_name, DEFAULT_PORT)
        endpoint_map[f"http://{endpoint.service_name}{port}{location}"] = endpoint.service_name
    return endpoint_map


def build_service_call_map(endpoints: list[CallTarget]) -> dict[str, str]:
    """Interface method name -> owning service."""
    return {e.method_name: e.service_name for e in endpoints if e.package_name == SERVICECALLS_PACKAGE}


def create_dependency_graph(
    clients: list[CallTarget],
    endpoints: list[CallTarget],
    consumers: list[NatsCall] | None = None,
    producers: list[NatsCall] | None = None,
) -> NodeGraph:
    """Match clients to endpoints and producers to consumers.

    Args:
        clients: Client targets of every service
        endpoints: Endpoint targets of every service
        consumers: Message-bus subscriptions
        producers: Message-bus publications

    Returns:
        The dependency graph; edges follow the order of ``clients`` then ``producers``
    """
    graph = NodeGraph()
    consumers = consumers or []
    producers = producers or []

    for target in [*clients, *endpoints]:
        graph.node(target.service_name)
    for nats_call in [*producers, *consumers]:
        graph.node(nats_call.service_name)

    endpoint_map = build_endpoint_map(endpoints)
    service_call_map = build_service_call_map(endpoints)

    for client in clients:
        source = graph.node(client.service_name)
        is_service_call = client.package_name == SERVICECALLS_PACKAGE
        if client.target_service:
            target = graph.node(client.target_service)
        elif is_service_call and client.method_name in service_call_map:
            target = graph.node(service_call_map[client.method_name])
        elif not is_service_call and client.is_resolved and client.request_location in endpoint_map:
            target = graph.node(endpoint_map[client.request_location])
        else:
            target = graph.unknown()
        if is_service_call:
            call = NetworkCall(
                protocol=SERVICECALLS_PROTOCOL,
                method_name=client.method_name,
                location=str(client.location),
            )
        else:
            call = NetworkCall(
                protocol=HTTP_PROTOCOL,
                url=client.request_location,
                location=str(client.location),
            )
        graph.add_edge(call, source, target)

    subscribers: dict[str, list[str]] = {}
    for consumer in consumers:
        services = subscribers.setdefault(consumer.subject, [])
        if consumer.service_name not in services:
            services.append(consumer.service_name)

    for producer in producers:
        source = graph.node(producer.service_name)
        call = NetworkCall(
            protocol=producer.communication,
            method_name=producer.method_name,
            arguments=[producer.subject],
            location=producer.location,
        )
        targets = subscribers.get(producer.subject)
        if not targets:
            graph.add_edge(call, source, graph.unknown())
            continue
        for service in targets:
            graph.add_edge(call, source, graph.node(service))

    logger.info("built_dependency_graph nodes=%d edges=%d", graph.node_count, graph.edge_count)
    return graph
