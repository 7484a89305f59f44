"""Execution of graph queries against published project graphs.

Failures are returned as values: every call to
:meth:`GraphQueryService.execute` yields a :class:`QueryResult`, carrying a
:class:`QueryError` when the query is malformed or a project, class or
method cannot be found.

Class resolution is best-effort.  When several nodes share a simple name the
first one in graph insertion order wins; callers needing a specific node
should query by full identifier.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from domaingraph.core.errors import DomainError, ErrorKind
from domaingraph.core.graph.graph import ProjectGraph
from domaingraph.core.graph.model import MethodInfo
from domaingraph.core.graph.registry import GraphRegistry
from domaingraph.core.query.lexer import GraphQuery

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryError:
    kind: ErrorKind
    message: str


@dataclass
class QueryResult:
    result_type: str
    project: str
    count: int = 0
    results: list[dict[str, Any]] = field(default_factory=list)
    error: QueryError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def of(cls, result_type: str, project: str, results: list[dict[str, Any]]) -> QueryResult:
        return cls(result_type=result_type, project=project, count=len(results), results=results)

    @classmethod
    def failure(cls, project: str, kind: ErrorKind, message: str) -> QueryResult:
        return cls(result_type="error", project=project, error=QueryError(kind, message))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "resultType": self.result_type,
            "project": self.project,
            "count": self.count,
            "results": self.results,
        }
        if self.error is not None:
            data["error"] = {"kind": self.error.kind.value, "message": self.error.message}
        return data


def simple_name(identifier: str) -> str:
    return identifier.rpartition(".")[2]


def resolve_class_name(graph: ProjectGraph, name: str) -> str | None:
    """Resolve *name* to an identifier.

    Tries an exact identifier, then a case-insensitive simple-name match,
    then a case-insensitive substring of the identifier.
    """
    if graph.contains(name):
        return name
    lowered = name.lower()
    identifiers = graph.identifiers()
    for identifier in identifiers:
        if simple_name(identifier).lower() == lowered:
            return identifier
    for identifier in identifiers:
        if lowered in identifier.lower():
            return identifier
    return None


class GraphQueryService:
    """Runs parsed queries against the graphs held by a :class:`GraphRegistry`."""

    def __init__(self, registry: GraphRegistry) -> None:
        self._registry = registry

    def execute(self, query: str | GraphQuery) -> QueryResult:
        project = ""
        try:
            parsed = query if isinstance(query, GraphQuery) else GraphQuery.parse(query)
            project = parsed.project
            return self._execute(parsed)
        except DomainError as exc:
            logger.debug("Query %r failed: %s", query, exc)
            return QueryResult.failure(project, exc.kind, exc.message)

    def _execute(self, query: GraphQuery) -> QueryResult:
        graph = self._registry.get_by_name(query.project)
        if graph is None:
            raise DomainError(f"Project not found: {query.project}", ErrorKind.PROJECT_NOT_FOUND)

        target = query.first_navigation()
        match target.lower():
            case "endpoints":
                return self._endpoints(query, graph)
            case "classes":
                return self._classes(query, graph)
            case "entrypoints":
                return self._entrypoints(query, graph)
        return self._vertex(query, graph, target)

    # ------------------------------------------------------------------
    # Keywords
    # ------------------------------------------------------------------

    def _endpoints(self, query: GraphQuery, graph: ProjectGraph) -> QueryResult:
        include_logic = query.has_include("logic")
        results = []
        for identifier, method in graph.all_endpoints():
            item: dict[str, Any] = {
                "className": identifier,
                "classType": _kind_name(graph, identifier),
                "methodName": method.name,
                "httpMethod": method.http_method,
                "httpPath": method.http_path,
                "description": method.description,
            }
            if include_logic:
                item["businessLogic"] = list(method.business_logic)
            results.append(item)
        return QueryResult.of("endpoints", query.project, results)

    def _classes(self, query: GraphQuery, graph: ProjectGraph) -> QueryResult:
        include_deps = query.has_include("dependencies")
        include_dependents = query.has_include("dependents")
        include_methods = query.has_include("methods")
        results = []
        for identifier in graph.identifiers():
            item = _class_summary(graph, identifier)
            item["entryPoint"] = graph.is_entry_point(identifier)
            if include_deps:
                item["dependencies"] = graph.dependencies(identifier)
            if include_dependents:
                item["dependents"] = graph.dependents(identifier)
            if include_methods:
                item["methods"] = _method_summaries(graph, identifier, include_logic=False)
            results.append(item)
        return QueryResult.of("classes", query.project, results)

    def _entrypoints(self, query: GraphQuery, graph: ProjectGraph) -> QueryResult:
        include_logic = query.has_include("logic")
        results = []
        for identifier in graph.entry_points():
            endpoints = []
            for method in graph.methods(identifier):
                if not method.is_http_endpoint:
                    continue
                entry: dict[str, Any] = {
                    "methodName": method.name,
                    "httpEndpoint": method.http_endpoint,
                    "description": method.description,
                }
                if include_logic:
                    entry["businessLogic"] = list(method.business_logic)
                endpoints.append(entry)
            results.append(
                {
                    "className": identifier,
                    "classType": _kind_name(graph, identifier),
                    "description": graph.description(identifier),
                    "endpoints": endpoints,
                }
            )
        return QueryResult.of("entrypoints", query.project, results)

    # ------------------------------------------------------------------
    # Vertex navigation
    # ------------------------------------------------------------------

    def _vertex(self, query: GraphQuery, graph: ProjectGraph, target: str) -> QueryResult:
        identifier = resolve_class_name(graph, target)
        if identifier is None:
            raise DomainError(
                f"Class not found: {target} in project {query.project}", ErrorKind.CLASS_NOT_FOUND
            )

        if query.has_check():
            return self._check(query, graph, identifier)

        sub = query.navigations_from(1)
        if not sub:
            return self._overview(query, graph, identifier)

        match sub[0].lower():
            case "methods":
                return self._methods(query, graph, identifier)
            case "dependencies":
                return self._neighbours(query, graph, identifier, outgoing=True)
            case "dependents":
                return self._neighbours(query, graph, identifier, outgoing=False)
            case "method":
                return self._single_method(query, graph, identifier, sub[1])
        return self._overview(query, graph, identifier)

    def _overview(self, query: GraphQuery, graph: ProjectGraph, identifier: str) -> QueryResult:
        item = _class_summary(graph, identifier)
        item["entryPoint"] = graph.is_entry_point(identifier)
        item["dependencies"] = graph.dependencies(identifier)
        item["dependents"] = graph.dependents(identifier)
        item["methods"] = _method_summaries(
            graph, identifier, include_logic=query.has_include("logic")
        )
        return QueryResult.of("class", query.project, [item])

    def _methods(self, query: GraphQuery, graph: ProjectGraph, identifier: str) -> QueryResult:
        include_logic = query.has_include("logic")
        results = []
        for method in graph.methods(identifier):
            item: dict[str, Any] = {"methodName": method.name, "description": method.description}
            if include_logic:
                item["businessLogic"] = list(method.business_logic)
            item.update(_method_details(method))
            results.append(item)
        return QueryResult.of("methods", query.project, results)

    def _neighbours(
        self, query: GraphQuery, graph: ProjectGraph, identifier: str, outgoing: bool
    ) -> QueryResult:
        related = graph.dependencies(identifier) if outgoing else graph.dependents(identifier)
        results = [_class_summary(graph, neighbour) for neighbour in related]
        return QueryResult.of("dependencies" if outgoing else "dependents", query.project, results)

    def _single_method(
        self, query: GraphQuery, graph: ProjectGraph, identifier: str, method_name: str
    ) -> QueryResult:
        method = _find_method(graph, identifier, method_name)
        if method is None:
            raise DomainError(
                f"Method not found: {method_name} in class {identifier}",
                ErrorKind.METHOD_NOT_FOUND,
            )
        item: dict[str, Any] = {
            "className": identifier,
            "methodName": method.name,
            "description": method.description,
            "businessLogic": list(method.business_logic),
        }
        item.update(_method_details(method))
        return QueryResult.of("method", query.project, [item])

    def _check(self, query: GraphQuery, graph: ProjectGraph, identifier: str) -> QueryResult:
        value = query.check_value() or ""
        method = _find_method(graph, identifier, value)
        item: dict[str, Any] = {"className": identifier, "check": value, "exists": method is not None}
        if method is not None:
            item["methodName"] = method.name
            item["description"] = method.description
            if method.is_http_endpoint:
                item["httpEndpoint"] = method.http_endpoint
        return QueryResult.of("check", query.project, [item])


def _kind_name(graph: ProjectGraph, identifier: str) -> str | None:
    info = graph.node_info(identifier)
    return info.kind.name if info is not None else None


def _class_summary(graph: ProjectGraph, identifier: str) -> dict[str, Any]:
    return {
        "className": identifier,
        "classType": _kind_name(graph, identifier),
        "description": graph.description(identifier),
        "sourceFile": graph.source_file(identifier),
    }


def _find_method(graph: ProjectGraph, identifier: str, name: str) -> MethodInfo | None:
    wanted = name.lower()
    for method in graph.methods(identifier):
        if method.name.lower() == wanted:
            return method
    return None


def _method_details(method: MethodInfo) -> dict[str, Any]:
    details: dict[str, Any] = {"exceptions": list(method.exceptions)}
    if method.is_http_endpoint:
        details["httpMethod"] = method.http_method
        details["httpPath"] = method.http_path
    if method.line_number is not None:
        details["lineNumber"] = method.line_number
    return details


def _method_summaries(
    graph: ProjectGraph, identifier: str, include_logic: bool
) -> list[dict[str, Any]]:
    summaries = []
    for method in graph.methods(identifier):
        item: dict[str, Any] = {"methodName": method.name, "description": method.description}
        if method.is_http_endpoint:
            item["httpEndpoint"] = method.http_endpoint
        if include_logic:
            item["businessLogic"] = list(method.business_logic)
        summaries.append(item)
    return summaries
