"""Commit-to-commit incremental synchronisation of a project graph.

One sync attempt ends in exactly one of three states:

* ``SKIPPED``: HEAD equals the recorded anchor; nothing is touched.
* ``COMPLETED``: the graph was rebuilt, records reconciled, the graph
  published and the anchor advanced.
* ``FAILED``: an unrecoverable error; the previous anchor, the stored
  records and the published graph stay as they were.

Every file is re-parsed on each sync (dependency resolution needs the full
identifier set), but only added and updated identifiers get new records and
go through enrichment.  Unchanged identifiers get their metadata back from
the store.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path

from domaingraph.core.errors import ErrorKind
from domaingraph.core.graph.graph import ProjectGraph
from domaingraph.core.graph.model import NodeInfo
from domaingraph.core.graph.registry import GraphRegistry
from domaingraph.core.ingestion.builder import build_graph_with_units, populate_static_metadata
from domaingraph.core.parsers import detect_parser, get_parser
from domaingraph.core.parsers.base import SourceParser
from domaingraph.core.storage.base import ClassRecord, ClassStore, MethodRecord
from domaingraph.core.storage.state import ProjectState
from domaingraph.core.sync.enrichment import Enricher, build_enrichment_input, run_enrichment
from domaingraph.core.sync.partition import SyncPartition, partition
from domaingraph.core.sync.records import (
    ProjectSnapshot,
    link_records,
    method_records,
    restore_from_store,
    restore_project,
    snapshot_project,
    write_back_enrichment,
)
from domaingraph.core.sync.vcs import VersionControl

logger = logging.getLogger(__name__)


class SyncStatus(Enum):
    SKIPPED = "skipped"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class SyncResult:
    """Outcome of one sync attempt."""

    status: SyncStatus
    project: str
    commit_hash: str | None = None
    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    enriched: int = 0
    enrichment_failed: int = 0
    full_resync: bool = False
    error: str | None = None
    error_kind: ErrorKind | None = None
    state: ProjectState | None = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status is not SyncStatus.FAILED

    def counts(self) -> dict[str, int]:
        return {
            "added": len(self.added),
            "updated": len(self.updated),
            "deleted": len(self.deleted),
            "unchanged": len(self.unchanged),
            "enriched": self.enriched,
            "enrichment_failed": self.enrichment_failed,
        }


@dataclass
class SyncSummary:
    results: list[SyncResult] = field(default_factory=list)

    def _count(self, status: SyncStatus) -> int:
        return sum(1 for r in self.results if r.status is status)

    @property
    def completed(self) -> int:
        return self._count(SyncStatus.COMPLETED)

    @property
    def skipped(self) -> int:
        return self._count(SyncStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(SyncStatus.FAILED)


def _default_parser(state: ProjectState) -> SourceParser:
    if state.language:
        return get_parser(state.language)
    return detect_parser(Path(state.repo_path))


class IncrementalSyncEngine:
    """Reconciles stored records and the published graph with a new commit.

    At most one sync runs per project at a time; a concurrent attempt for the
    same project fails fast with :attr:`ErrorKind.SYNC_ANOMALY`.
    """

    def __init__(
        self,
        store: ClassStore,
        registry: GraphRegistry,
        vcs: VersionControl,
        enricher: Enricher | None = None,
        persist_state: Callable[[ProjectState], None] | None = None,
        parser_factory: Callable[[ProjectState], SourceParser] | None = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._vcs = vcs
        self._enricher = enricher
        self._persist_state = persist_state
        self._parser_factory = parser_factory or _default_parser
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _project_lock(self, project_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(project_id, threading.Lock())

    def sync_all(self, states: Iterable[ProjectState]) -> SyncSummary:
        summary = SyncSummary()
        for state in states:
            summary.results.append(self.sync(state))
        logger.info(
            "Synced %d project(s): %d completed, %d skipped, %d failed",
            len(summary.results),
            summary.completed,
            summary.skipped,
            summary.failed,
        )
        return summary

    def sync(self, state: ProjectState) -> SyncResult:
        """Bring *state*'s project up to the repository HEAD.

        Never raises; failures are reported through :class:`SyncResult`.
        """
        lock = self._project_lock(state.id)
        if not lock.acquire(blocking=False):
            logger.warning("Sync of %s already in progress, rejecting", state.name)
            return SyncResult(
                status=SyncStatus.FAILED,
                project=state.name,
                error=f"A sync of {state.name} is already in progress",
                error_kind=ErrorKind.SYNC_ANOMALY,
                state=state,
            )

        start = time.monotonic()
        try:
            result = self._sync(state)
        except Exception as exc:
            logger.error("Sync of %s failed", state.name, exc_info=True)
            result = SyncResult(
                status=SyncStatus.FAILED,
                project=state.name,
                error=str(exc),
                error_kind=ErrorKind.SYNC_FAILED,
                state=self._record_failure(state, str(exc)),
            )
        finally:
            lock.release()
        result.duration_seconds = time.monotonic() - start
        return result

    def _record_failure(self, state: ProjectState, error: str) -> ProjectState:
        failed = state.failed(error)
        if self._persist_state is not None:
            try:
                self._persist_state(failed)
            except Exception:
                logger.error("Could not record failure state of %s", state.name, exc_info=True)
        return failed

    def _roll_back(self, state: ProjectState, snapshot: ProjectSnapshot) -> None:
        try:
            restore_project(self._store, snapshot)
        except Exception:
            logger.error("Could not roll back records of %s", state.name, exc_info=True)
        else:
            logger.warning("Rolled back records of %s", state.name)

    def _sync(self, state: ProjectState) -> SyncResult:
        repo_path = Path(state.repo_path)
        head = self._vcs.head(repo_path)
        if state.anchor is not None and head == state.anchor:
            logger.info("%s is up to date at %s", state.name, head[:12])
            if self._registry.get(state.id) is None:
                self._registry.reload(state)
            return SyncResult(
                status=SyncStatus.SKIPPED, project=state.name, commit_hash=head, state=state
            )

        diff = self._vcs.diff(repo_path, state.anchor, head)
        if diff.full_resync_required:
            logger.info("Full resync of %s at %s", state.name, head[:12])

        parser = self._parser_factory(state)
        with parser.session():
            graph, units = build_graph_with_units(parser, repo_path)
            records = {r.identifier: r for r in self._store.find_by_project(state.id)}
            plan = partition(records, graph, diff.changed_files, diff.full_resync_required)
            logger.info("Partition for %s: %s", state.name, plan.counts())

            paths = {unit.identifier: unit.path for unit in units}
            for identifier in list(plan.added):
                if paths.get(identifier) is None or not paths[identifier].is_file():
                    logger.info("Skipping %s: source file disappeared", identifier)
                    graph.remove_node(identifier)
                    plan.drop(identifier)
            present_adds = list(plan.added)

            failed = populate_static_metadata(
                parser,
                graph,
                repo_path,
                units=units,
                identifiers=set(plan.updated) | set(present_adds),
            )

        for identifier in list(plan.updated):
            if identifier in failed:
                logger.warning("Re-extraction of %s failed, keeping its previous data", identifier)
                plan.demote(identifier)

        class_ids_to_identifiers = {r.id: r.identifier for r in records.values()}
        for identifier in plan.unchanged:
            restore_from_store(graph, self._store, records[identifier], class_ids_to_identifiers)

        updated_records, new_records = self._stage_classes(
            state, graph, records, plan, present_adds, head
        )
        staged = updated_records + new_records
        staged_methods = self._stage_methods(graph, staged)

        result = SyncResult(
            status=SyncStatus.COMPLETED,
            project=state.name,
            commit_hash=head,
            added=list(plan.added),
            updated=list(plan.updated),
            deleted=list(plan.deleted),
            unchanged=list(plan.unchanged),
            full_resync=diff.full_resync_required,
        )
        snapshot = snapshot_project(self._store, state.id)
        try:
            deleted_ids = [records[i].id for i in plan.deleted]
            if deleted_ids:
                self._store.delete_classes(deleted_ids)
            if updated_records:
                self._store.delete_methods_and_links([r.id for r in updated_records])
            self._store.save_classes(staged)
            self._store.save_methods(staged_methods)
            self._store.save_parameter_links(
                [link for record in staged for link in link_records(graph, record.identifier)]
            )

            if self._enricher is not None and staged:
                self._enrich(graph, repo_path, [r.identifier for r in staged], parser.language, result)

            new_state = state.advance(head, graph.to_json())
            if self._persist_state is not None:
                self._persist_state(new_state)
        except Exception:
            self._roll_back(state, snapshot)
            raise
        self._registry.put(state.id, state.name, graph)
        result.state = new_state
        logger.info("Synced %s to %s: %s", state.name, head[:12], result.counts())
        return result

    def _stage_classes(
        self,
        state: ProjectState,
        graph: ProjectGraph,
        records: dict[str, ClassRecord],
        plan: SyncPartition,
        present_adds: list[str],
        head: str,
    ) -> tuple[list[ClassRecord], list[ClassRecord]]:
        """Bind record ids and build the class rows to write.

        Updated nodes keep their record id and description; added nodes get
        fresh ids.
        """
        updated: list[ClassRecord] = []
        for identifier in plan.updated:
            old = records[identifier]
            graph.bind_class_id(identifier, old.id)
            graph.set_node_info(
                identifier, NodeInfo(kind=graph.kind(identifier), description=old.description)
            )
            self._carry_method_descriptions(graph, identifier, old.id)
            updated.append(
                replace(
                    old,
                    source_file=graph.source_file(identifier) or old.source_file,
                    kind=graph.kind(identifier),
                    commit_hash=head,
                )
            )

        added: list[ClassRecord] = []
        for identifier in present_adds:
            record = ClassRecord(
                id=self._store.new_id(),
                project=state.id,
                identifier=identifier,
                source_file=graph.source_file(identifier) or "",
                kind=graph.kind(identifier),
                commit_hash=head,
            )
            graph.bind_class_id(identifier, record.id)
            added.append(record)
        return updated, added

    def _carry_method_descriptions(self, graph: ProjectGraph, identifier: str, class_id: str) -> None:
        previous = {m.name: m for m in self._store.methods_for(class_id)}
        for method in graph.methods(identifier):
            old = previous.get(method.name)
            if old is not None and method.description is None:
                method.description = old.description
                method.business_logic = list(old.business_logic)

    def _stage_methods(self, graph: ProjectGraph, staged: list[ClassRecord]) -> list[MethodRecord]:
        return [
            method
            for record in staged
            for method in method_records(self._store, record.id, graph.methods(record.identifier))
        ]

    def _enrich(
        self,
        graph: ProjectGraph,
        repo_path: Path,
        identifiers: list[str],
        language: str,
        result: SyncResult,
    ) -> None:
        inputs = []
        for identifier in identifiers:
            unit = build_enrichment_input(graph, repo_path, identifier, language)
            if unit is not None:
                inputs.append(unit)
        outcome = run_enrichment(self._enricher, inputs)
        not_stored = write_back_enrichment(graph, self._store, outcome.succeeded)
        result.enriched = len(outcome.succeeded) - len(not_stored)
        result.enrichment_failed = len(outcome.failed) + len(not_stored)
