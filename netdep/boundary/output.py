"""Adjacency list construction and serialisation."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from netdep.boundary.graph import NodeGraph

logger = logging.getLogger(__name__)

AdjacencyList = dict[str, list[dict[str, Any]]]


def construct_adjacency_list(graph: NodeGraph) -> AdjacencyList:
    """Map every node to its callees.

    Each peer entry is ``{"service", "calls", "count"}`` with the calls in
    edge order. Peers are sorted by service name. Nodes without outgoing
    edges map to an empty list.

    Args:
        graph: Output of the matcher

    Returns:
        The adjacency list, keyed in node order
    """
    adjacency: AdjacencyList = {}
    for node in graph.nodes:
        peers: dict[str, list[dict[str, Any]]] = {}
        for edge in graph.edges_from(node):
            peers.setdefault(edge.target.service_name, []).append(edge.call.to_dict())
        adjacency[node.service_name] = [
            {"service": peer, "calls": calls, "count": len(calls)}
            for peer, calls in sorted(peers.items())
        ]
    return adjacency


def serialize_adjacency_list(adjacency: AdjacencyList) -> str:
    """Pretty-printed JSON with sorted top-level keys."""
    ordered = {name: adjacency[name] for name in sorted(adjacency)}
    return json.dumps(ordered, indent=2)


def write_output(text: str, path: str | Path) -> None:
    """Write the serialised graph to ``path`` with owner-only permissions."""
    output_path = Path(path)
    with open(output_path, "w", encoding="utf-8", opener=_private_opener) as f:
        f.write(text)
    logger.info("wrote_output path=%s bytes=%d", output_path, len(text))


def _private_opener(path: str, flags: int) -> int:
    return os.open(path, flags, 0o600)


def construct_unused_services_lists(
    graph: NodeGraph, all_services: list[str] | None = None
) -> tuple[list[str], list[str]]:
    """Return (unreferenced services, services with no edges in or out)."""
    return graph.unused_services(all_services)


def describe_unused_services(unreferenced: list[str], isolated: list[str]) -> str:
    """Human-readable form of the unused-services report."""
    lines = ["Unreferenced services:"]
    lines.extend(f"  {name}" for name in unreferenced or ["(none)"])
    lines.append("Services with no references in or out:")
    lines.extend(f"  {name}" for name in isolated or ["(none)"])
    return "\n".join(lines)
