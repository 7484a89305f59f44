"""Three-pass construction of a :class:`ProjectGraph` from a source tree.

1. Add a node for every discovered file.
2. With the complete identifier set known, resolve each file's dependencies.
3. Mark entry points.

Dependency resolution needs the full identifier universe up front, which is
why nodes are created in a pass of their own.  A file that fails to parse in
pass 2 or 3 is logged and contributes no edges or entry flag; it never
aborts the build.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from domaingraph.core.graph.graph import ProjectGraph
from domaingraph.core.graph.model import NodeInfo
from domaingraph.core.ingestion.walker import relative_posix
from domaingraph.core.parsers.base import SourceParser

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceUnit:
    """A discovered file and the identifier it maps to."""

    path: Path
    identifier: str


def build_graph(
    parser: SourceParser,
    repo_path: Path,
    progress_callback: Callable[[str, float], None] | None = None,
) -> ProjectGraph:
    """Parse *repo_path* with *parser* and return the populated graph.

    Returns an empty graph when no source files are found.
    """
    graph, _ = build_graph_with_units(parser, repo_path, progress_callback)
    return graph


def build_graph_with_units(
    parser: SourceParser,
    repo_path: Path,
    progress_callback: Callable[[str, float], None] | None = None,
) -> tuple[ProjectGraph, list[SourceUnit]]:
    """Like :func:`build_graph`, also returning the discovered units."""

    def report(phase: str, pct: float) -> None:
        if progress_callback is not None:
            progress_callback(phase, pct)

    graph = ProjectGraph()
    with parser.session():
        report("Discovering files", 0.0)
        source_root = parser.source_root(repo_path)
        files = parser.discover_files(repo_path)
        report("Discovering files", 1.0)
        if not files:
            logger.info("No %s source files found under %s", parser.language, source_root)
            return graph, []

        units = [SourceUnit(f, parser.extract_identifier(f, source_root)) for f in files]
        for unit in units:
            graph.add_node(unit.identifier, relative_posix(unit.path, repo_path))

        known = frozenset(graph.identifiers())
        total = len(units)
        for index, unit in enumerate(units):
            try:
                deps = parser.extract_dependencies(unit.path, source_root, known)
            except Exception:
                logger.warning("Failed to resolve dependencies of %s, skipping", unit.path, exc_info=True)
                continue
            for target in sorted(deps):
                graph.add_dependency(unit.identifier, target)
            report("Resolving dependencies", (index + 1) / total)

        for index, unit in enumerate(units):
            try:
                if parser.is_entry_point(unit.path):
                    graph.mark_as_entry_point(unit.identifier)
            except Exception:
                logger.warning("Failed to inspect entry point %s, skipping", unit.path, exc_info=True)
            report("Marking entry points", (index + 1) / total)

    logger.info(
        "Built %s graph: %d nodes, %d edges, %d entry points",
        parser.language,
        graph.node_count,
        graph.edge_count,
        graph.entry_point_count,
    )
    return graph, units


def populate_static_metadata(
    parser: SourceParser,
    graph: ProjectGraph,
    repo_path: Path,
    units: list[SourceUnit] | None = None,
    identifiers: set[str] | None = None,
) -> set[str]:
    """Attach statically inferred kinds, methods and parameter links.

    Args:
        parser: The parser that built *graph*.
        graph: Graph to annotate in place.
        repo_path: Repository root.
        units: Units returned by :func:`build_graph_with_units`; rediscovered
            when omitted.
        identifiers: Restrict extraction to these identifiers.

    Returns:
        The identifiers whose extraction failed; their previous metadata is
        left untouched.
    """
    failed: set[str] = set()
    with parser.session():
        source_root = parser.source_root(repo_path)
        if units is None:
            units = [
                SourceUnit(f, parser.extract_identifier(f, source_root))
                for f in parser.discover_files(repo_path)
            ]
        known = frozenset(graph.identifiers())

        for unit in units:
            if identifiers is not None and unit.identifier not in identifiers:
                continue
            if not graph.contains(unit.identifier):
                continue
            try:
                kind = parser.infer_class_type(unit.path)
                methods = parser.extract_methods(unit.path)
                parameters = parser.extract_method_parameters(unit.path, source_root, known)
            except Exception:
                logger.warning("Failed to extract methods of %s, skipping", unit.path, exc_info=True)
                failed.add(unit.identifier)
                continue

            current = graph.node_info(unit.identifier)
            graph.set_node_info(
                unit.identifier,
                NodeInfo(kind=kind, description=current.description if current else None),
            )
            graph.set_methods(unit.identifier, [m.to_method_info() for m in methods])
            graph.clear_method_parameters(unit.identifier)
            for method_name, targets in parameters.items():
                for position, target in enumerate(targets):
                    graph.add_method_parameter(unit.identifier, method_name, position, target)
    return failed
