"""In-memory project dependency graph.

Stores one node per unit of code (identifier + source file), directed
dependency edges between known identifiers, the entry-point set, and the
per-node metadata (kind, description, methods, parameter links) produced by
static extraction and enrichment.

Insertion order is preserved everywhere: node iteration, edge sets and the
entry-point set all follow the order in which items were first added, which
keeps ambiguous look-ups and :meth:`ProjectGraph.analysis_order` stable.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict, deque
from collections.abc import Iterator, Mapping
from typing import Any

from domaingraph.core.graph.model import (
    MethodEnrichment,
    MethodInfo,
    MethodParameterLink,
    NodeInfo,
    NodeKind,
)

logger = logging.getLogger(__name__)


class ProjectGraph:
    """A directed graph of units of code and the dependencies between them.

    Mutating operations are idempotent and silently ignore references to
    unknown identifiers, so no edge, entry point or parameter link can ever
    point outside the node set.  The graph is not safe for concurrent
    mutation; build or reconcile it from a single thread, then publish it.
    """

    def __init__(self) -> None:
        self._nodes: dict[str, str] = {}
        # Ordered sets, kept as dict keys.
        self._outgoing: dict[str, dict[str, None]] = defaultdict(dict)
        self._incoming: dict[str, dict[str, None]] = defaultdict(dict)
        self._entry_points: dict[str, None] = {}

        self._class_ids: dict[str, str] = {}
        self._node_info: dict[str, NodeInfo] = {}
        self._methods: dict[str, list[MethodInfo]] = {}
        self._method_parameters: dict[str, dict[str, list[MethodParameterLink]]] = {}

    # ------------------------------------------------------------------
    # Nodes and edges
    # ------------------------------------------------------------------

    def add_node(self, identifier: str, source_file: str) -> None:
        """Add a node; a second call for the same identifier is a no-op."""
        if identifier not in self._nodes:
            self._nodes[identifier] = source_file

    def add_dependency(self, source: str, target: str) -> None:
        """Add an edge ``source -> target`` when both ends are known nodes."""
        if source == target or source not in self._nodes or target not in self._nodes:
            return
        self._outgoing[source][target] = None
        self._incoming[target][source] = None

    def remove_node(self, identifier: str) -> None:
        """Remove a node with its edges, metadata and the links pointing at it."""
        if identifier not in self._nodes:
            return
        del self._nodes[identifier]
        for target in self._outgoing.pop(identifier, {}):
            self._incoming[target].pop(identifier, None)
        for source in self._incoming.pop(identifier, {}):
            self._outgoing[source].pop(identifier, None)
        self._entry_points.pop(identifier, None)
        self._class_ids.pop(identifier, None)
        self._node_info.pop(identifier, None)
        self._methods.pop(identifier, None)
        self._method_parameters.pop(identifier, None)
        for methods in self._method_parameters.values():
            for name, links in methods.items():
                methods[name] = [link for link in links if link.target != identifier]

    def mark_as_entry_point(self, identifier: str) -> None:
        if identifier in self._nodes:
            self._entry_points[identifier] = None

    def contains(self, identifier: str) -> bool:
        return identifier in self._nodes

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def source_file(self, identifier: str) -> str | None:
        return self._nodes.get(identifier)

    def identifiers(self) -> list[str]:
        """Return every identifier in insertion order."""
        return list(self._nodes)

    def iter_nodes(self) -> Iterator[tuple[str, str]]:
        """Yield ``(identifier, source_file)`` pairs in insertion order."""
        return iter(self._nodes.items())

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def edge_count(self) -> int:
        return sum(len(targets) for targets in self._outgoing.values())

    @property
    def entry_point_count(self) -> int:
        return len(self._entry_points)

    def iter_edges(self) -> Iterator[tuple[str, str]]:
        for source in self._nodes:
            for target in self._outgoing.get(source, {}):
                yield source, target

    def dependencies(self, identifier: str) -> list[str]:
        """Return the identifiers *identifier* depends on (outgoing edges)."""
        return list(self._outgoing.get(identifier, {}))

    def dependents(self, identifier: str) -> list[str]:
        """Return the identifiers that depend on *identifier* (incoming edges)."""
        return list(self._incoming.get(identifier, {}))

    def resolve(self, identifier: str) -> set[str]:
        """Return the 1-hop neighbourhood: dependencies and dependents."""
        return set(self._outgoing.get(identifier, {})) | set(self._incoming.get(identifier, {}))

    def entry_points(self) -> list[str]:
        return list(self._entry_points)

    def is_entry_point(self, identifier: str) -> bool:
        return identifier in self._entry_points

    def analysis_order(self) -> list[str]:
        """Return a stable total order over all identifiers.

        Nodes reachable from entry points come first in breadth-first order
        along dependency edges; the remaining nodes follow in insertion order.
        """
        visited: dict[str, None] = {}
        queue: deque[str] = deque()
        for entry in self._entry_points:
            if entry not in visited:
                visited[entry] = None
                queue.append(entry)

        while queue:
            current = queue.popleft()
            for target in self._outgoing.get(current, {}):
                if target not in visited:
                    visited[target] = None
                    queue.append(target)

        for identifier in self._nodes:
            if identifier not in visited:
                visited[identifier] = None
        return list(visited)

    # ------------------------------------------------------------------
    # Record-id bindings
    # ------------------------------------------------------------------

    def bind_class_id(self, identifier: str, record_id: str) -> None:
        if identifier in self._nodes:
            self._class_ids[identifier] = record_id

    def class_id(self, identifier: str) -> str | None:
        return self._class_ids.get(identifier)

    def nodes_with_class_ids(self) -> dict[str, str]:
        return dict(self._class_ids)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def set_node_info(self, identifier: str, info: NodeInfo) -> None:
        if identifier in self._nodes:
            self._node_info[identifier] = info

    def node_info(self, identifier: str) -> NodeInfo | None:
        return self._node_info.get(identifier)

    def kind(self, identifier: str) -> NodeKind:
        info = self._node_info.get(identifier)
        return info.kind if info is not None else NodeKind.OTHER

    def description(self, identifier: str) -> str | None:
        info = self._node_info.get(identifier)
        return info.description if info is not None else None

    def add_method_info(self, identifier: str, method: MethodInfo) -> None:
        if identifier in self._nodes:
            self._methods.setdefault(identifier, []).append(method)

    def set_methods(self, identifier: str, methods: list[MethodInfo]) -> None:
        if identifier in self._nodes:
            self._methods[identifier] = list(methods)

    def methods(self, identifier: str) -> list[MethodInfo]:
        return list(self._methods.get(identifier, []))

    def all_endpoints(self) -> list[tuple[str, MethodInfo]]:
        """Return every ``(identifier, method)`` pair carrying an HTTP verb."""
        return [
            (identifier, method)
            for identifier in self._nodes
            for method in self._methods.get(identifier, [])
            if method.is_http_endpoint
        ]

    def add_method_parameter(
        self, identifier: str, method_name: str, position: int, target: str
    ) -> None:
        """Record that *method_name*'s resolved parameter at *position* is *target*."""
        if identifier not in self._nodes or target not in self._nodes:
            return
        links = self._method_parameters.setdefault(identifier, {}).setdefault(method_name, [])
        link = MethodParameterLink(method_name=method_name, position=position, target=target)
        if link not in links:
            links.append(link)

    def method_parameters(self, identifier: str) -> dict[str, list[MethodParameterLink]]:
        return {
            name: list(links)
            for name, links in self._method_parameters.get(identifier, {}).items()
        }

    def clear_method_parameters(self, identifier: str) -> None:
        self._method_parameters.pop(identifier, None)

    def has_metadata(self) -> bool:
        return bool(self._node_info or self._methods)

    def apply_enrichment(
        self,
        identifier: str,
        kind: NodeKind | None,
        description: str | None,
        methods: Mapping[str, MethodEnrichment],
    ) -> bool:
        """Apply enrichment output to a node in place.

        *kind* of ``None`` keeps the current kind.  Method entries whose name
        no longer exists on the node are skipped.

        Returns:
            ``True`` when the node exists and was updated.
        """
        if identifier not in self._nodes:
            logger.warning("Enrichment for unknown identifier %s ignored", identifier)
            return False

        current = self._node_info.get(identifier)
        resolved_kind = kind or (current.kind if current is not None else NodeKind.OTHER)
        self._node_info[identifier] = NodeInfo(kind=resolved_kind, description=description)

        existing = self._methods.get(identifier, [])
        known_names = {m.name for m in existing}
        for name, enrichment in methods.items():
            if name not in known_names:
                logger.debug("Enrichment for %s#%s has no matching method", identifier, name)
                continue
            for method in existing:
                if method.name == name:
                    method.description = enrichment.description
                    method.business_logic = list(enrichment.business_logic)
        return True

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        nodes: list[dict[str, Any]] = []
        for identifier, source_file in self._nodes.items():
            entry: dict[str, Any] = {"id": identifier, "sourceFile": source_file}
            if identifier in self._class_ids:
                entry["classId"] = self._class_ids[identifier]
            info = self._node_info.get(identifier)
            if info is not None:
                entry["kind"] = info.kind.name
                if info.description is not None:
                    entry["description"] = info.description
            entry["entryPoint"] = identifier in self._entry_points
            nodes.append(entry)

        return {
            "nodes": nodes,
            "edges": [{"from": s, "to": t} for s, t in self.iter_edges()],
            "entryPoints": list(self._entry_points),
            "methods": {
                identifier: [m.to_dict() for m in methods]
                for identifier, methods in self._methods.items()
            },
            "methodParameters": {
                identifier: {
                    name: [{"position": link.position, "target": link.target} for link in links]
                    for name, links in by_method.items()
                }
                for identifier, by_method in self._method_parameters.items()
            },
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProjectGraph:
        graph = cls()
        flagged: list[str] = []
        for node in data.get("nodes", []):
            identifier = node["id"]
            graph.add_node(identifier, node.get("sourceFile", ""))
            if node.get("classId") is not None:
                graph.bind_class_id(identifier, str(node["classId"]))
            if "kind" in node or "description" in node:
                graph.set_node_info(
                    identifier,
                    NodeInfo(
                        kind=NodeKind.from_string(node.get("kind")),
                        description=node.get("description"),
                    ),
                )
            if node.get("entryPoint"):
                flagged.append(identifier)

        for edge in data.get("edges", []):
            graph.add_dependency(edge["from"], edge["to"])

        for identifier in data.get("entryPoints", flagged):
            graph.mark_as_entry_point(identifier)

        for identifier, methods in data.get("methods", {}).items():
            graph.set_methods(identifier, [MethodInfo.from_dict(m) for m in methods])

        for identifier, by_method in data.get("methodParameters", {}).items():
            for name, links in by_method.items():
                for link in links:
                    graph.add_method_parameter(identifier, name, link["position"], link["target"])
        return graph

    @classmethod
    def from_json(cls, payload: str | bytes | Mapping[str, Any]) -> ProjectGraph:
        """Rebuild a graph from :meth:`to_json` output (or its parsed dict)."""
        if isinstance(payload, (str, bytes)):
            payload = json.loads(payload)
        return cls.from_dict(payload)

    def stats(self) -> dict[str, int]:
        """Return a summary of graph size."""
        return {
            "nodes": self.node_count,
            "edges": self.edge_count,
            "entry_points": self.entry_point_count,
            "methods": sum(len(m) for m in self._methods.values()),
        }
