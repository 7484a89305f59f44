"""Fresh-analysis orchestrator.

Runs a full parse of a repository, attaches static metadata, replaces the
project's stored records, enriches every unit and finally publishes the
graph to the registry.

Phases executed:
    1. Graph construction (nodes, dependency edges, entry points)
    2. Static metadata (kinds, methods, parameter links)
    3. Record persistence (classes, methods, parameter links)
    4. Enrichment (optional; per-unit failures are counted, not fatal)
    5. Publication (registry swap and state advance)

Nothing is published until every earlier phase has finished, and a failure
while writing records or persisting state puts the project's previous
records back, so a failed run leaves both the registry and the store as they
were.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from domaingraph.core.graph.graph import ProjectGraph
from domaingraph.core.graph.registry import GraphRegistry
from domaingraph.core.ingestion.builder import build_graph_with_units, populate_static_metadata
from domaingraph.core.parsers import detect_parser, get_parser
from domaingraph.core.parsers.base import SourceParser
from domaingraph.core.storage.base import ClassRecord, ClassStore
from domaingraph.core.storage.state import ProjectState
from domaingraph.core.sync.enrichment import Enricher, build_enrichment_input, run_enrichment
from domaingraph.core.sync.records import (
    link_records,
    method_records,
    restore_project,
    snapshot_project,
    write_back_enrichment,
)
from domaingraph.core.sync.vcs import VersionControl

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResult:
    """Summary of a fresh analysis run."""

    files: int = 0
    nodes: int = 0
    edges: int = 0
    entry_points: int = 0
    methods: int = 0
    endpoints: int = 0
    parse_failures: int = 0
    enriched: int = 0
    enrichment_failed: int = 0
    commit_hash: str | None = None
    duration_seconds: float = 0.0
    state: ProjectState | None = None


def run_analysis(
    repo_path: Path,
    store: ClassStore,
    registry: GraphRegistry,
    state: ProjectState,
    parser: SourceParser | None = None,
    vcs: VersionControl | None = None,
    enricher: Enricher | None = None,
    progress_callback: Callable[[str, float], None] | None = None,
    persist_state: Callable[[ProjectState], None] | None = None,
) -> tuple[ProjectGraph, AnalysisResult]:
    """Analyse *repo_path* from scratch and publish the result.

    Parameters
    ----------
    repo_path:
        Root directory of the repository to analyse.
    store:
        Record store; the project's previous records are replaced.
    registry:
        Registry the finished graph is published to under ``state.id``.
    state:
        The project's current state.  The advanced state is returned in
        :attr:`AnalysisResult.state`; it is persisted through *persist_state*
        when given.
    parser:
        Parser to use.  Defaults to ``state.language`` or marker detection.
    vcs:
        When given, HEAD is recorded as the new anchor.  A repository that is
        not under version control is analysed without an anchor.
    enricher:
        Optional enrichment collaborator.
    progress_callback:
        Optional ``(phase_name, progress)`` callback where *progress* is a
        float in ``[0.0, 1.0]``.
    persist_state:
        Optional callback saving the advanced state before the graph is
        published.  When it or any earlier write raises, the project's
        previous records are put back and the error propagates.

    Returns
    -------
    tuple[ProjectGraph, AnalysisResult]
        The published graph and a summary with counts and timings.
    """
    start = time.monotonic()
    result = AnalysisResult()

    def report(phase: str, pct: float) -> None:
        if progress_callback is not None:
            progress_callback(phase, pct)

    if parser is None:
        parser = get_parser(state.language) if state.language else detect_parser(repo_path)

    if vcs is not None:
        try:
            result.commit_hash = vcs.head(repo_path)
        except RuntimeError:
            logger.info("%s is not a git working copy; analysing without an anchor", repo_path)

    with parser.session():
        graph, units = build_graph_with_units(parser, repo_path, progress_callback)
        result.files = len(units)

        report("Extracting methods", 0.0)
        failed = populate_static_metadata(parser, graph, repo_path, units=units)
        result.parse_failures = len(failed)
        report("Extracting methods", 1.0)

    report("Saving records", 0.0)
    snapshot = snapshot_project(store, state.id)
    try:
        if snapshot.classes:
            store.delete_classes([r.id for r in snapshot.classes])

        classes: list[ClassRecord] = []
        for identifier, source_file in graph.iter_nodes():
            record = ClassRecord(
                id=store.new_id(),
                project=state.id,
                identifier=identifier,
                source_file=source_file,
                kind=graph.kind(identifier),
                commit_hash=result.commit_hash,
            )
            graph.bind_class_id(identifier, record.id)
            classes.append(record)
        store.save_classes(classes)
        store.save_methods(
            [
                method
                for record in classes
                for method in method_records(store, record.id, graph.methods(record.identifier))
            ]
        )
        store.save_parameter_links([link for r in classes for link in link_records(graph, r.identifier)])
        report("Saving records", 1.0)

        if enricher is not None:
            report("Enriching", 0.0)
            inputs = []
            for identifier in graph.analysis_order():
                unit = build_enrichment_input(graph, repo_path, identifier, parser.language)
                if unit is not None:
                    inputs.append(unit)
            outcome = run_enrichment(enricher, inputs)
            not_stored = write_back_enrichment(graph, store, outcome.succeeded)
            result.enriched = len(outcome.succeeded) - len(not_stored)
            result.enrichment_failed = len(outcome.failed) + len(not_stored)
            report("Enriching", 1.0)

        result.state = state.advance(result.commit_hash, graph.to_json())
        if persist_state is not None:
            persist_state(result.state)
    except Exception:
        logger.error("Analysis of %s failed, restoring its previous records", state.name)
        try:
            restore_project(store, snapshot)
        except Exception:
            logger.error("Could not restore records of %s", state.name, exc_info=True)
        raise
    registry.put(state.id, state.name, graph)

    result.nodes = graph.node_count
    result.edges = graph.edge_count
    result.entry_points = graph.entry_point_count
    result.methods = graph.stats()["methods"]
    result.endpoints = len(graph.all_endpoints())
    result.duration_seconds = time.monotonic() - start
    logger.info(
        "Analysed %s: %d nodes, %d edges in %.2fs",
        state.name,
        result.nodes,
        result.edges,
        result.duration_seconds,
    )
    return graph, result
