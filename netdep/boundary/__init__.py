"""Service dependency graph and its output forms."""

from netdep.boundary.graph import ConnectionEdge, NetworkCall, NodeGraph, ServiceNode, create_dependency_graph
from netdep.boundary.output import (
    construct_adjacency_list,
    construct_unused_services_lists,
    serialize_adjacency_list,
    write_output,
)

__all__ = [
    "ConnectionEdge",
    "NetworkCall",
    "NodeGraph",
    "ServiceNode",
    "construct_adjacency_list",
    "construct_unused_services_lists",
    "create_dependency_graph",
    "serialize_adjacency_list",
    "write_output",
]
