"""Tests for the fresh-analysis pipeline."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import pytest

from domaingraph.core.graph.graph import ProjectGraph
from domaingraph.core.graph.model import NodeKind
from domaingraph.core.graph.registry import GraphRegistry
from domaingraph.core.ingestion.pipeline import run_analysis
from domaingraph.core.storage.base import ClassRecord
from domaingraph.core.storage.memory import InMemoryClassStore
from domaingraph.core.storage.state import ProjectState, ProjectStatus
from domaingraph.core.sync.enrichment import EnrichmentInput, EnrichmentResult, MethodEnrichmentResult
from domaingraph.core.sync.vcs import DiffResult


def _write(root: Path, relative: str, content: str) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


class FakeVcs:
    def __init__(self, head: str | None = "c1") -> None:
        self.current = head

    def head(self, repo_path: Path) -> str:
        if self.current is None:
            raise RuntimeError("not a git repository")
        return self.current

    def diff(self, repo_path: Path, old_anchor: str | None, new_anchor: str) -> DiffResult:
        return DiffResult.full_resync(new_anchor)


class FakeEnricher:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.seen: list[str] = []

    def enrich(self, units: Sequence[EnrichmentInput]) -> dict[str, EnrichmentResult]:
        self.seen.extend(u.identifier for u in units)
        if self.fail:
            raise RuntimeError("enrichment backend down")
        return {
            u.identifier: EnrichmentResult(
                description=f"Describes {u.identifier}",
                methods=[MethodEnrichmentResult(m, f"Runs {m}", ["step one"]) for m in u.method_names],
            )
            for u in units
        }


class RejectingStore(InMemoryClassStore):
    """Refuses to save an enriched class row for one identifier."""

    def __init__(self, identifier: str) -> None:
        super().__init__()
        self.identifier = identifier

    def save_classes(self, records: list[ClassRecord]) -> None:
        if any(r.identifier == self.identifier and r.description for r in records):
            raise RuntimeError("row lock timeout")
        super().save_classes(records)


def _contents(store: InMemoryClassStore, project: str = "p1") -> dict:
    return {
        r.id: (r, store.methods_for(r.id), store.parameter_links_for(r.id))
        for r in store.find_by_project(project)
    }


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    _write(tmp_path, "pyproject.toml", "[project]\nname = 'shop'\n")
    _write(tmp_path, "app/__init__.py", "")
    _write(
        tmp_path,
        "app/api.py",
        """\
from fastapi import APIRouter

from app.service import OrderService

router = APIRouter()


@router.post("/orders")
def create_order(service: OrderService):
    return service.place()
""",
    )
    _write(
        tmp_path,
        "app/service.py",
        """\
from app.repository import OrderRepository


class OrderService:
    def place(self):
        return OrderRepository().save()
""",
    )
    _write(
        tmp_path,
        "app/repository.py",
        """\
class OrderRepository:
    def save(self):
        return True
""",
    )
    return tmp_path


@pytest.fixture
def state(repo: Path) -> ProjectState:
    return ProjectState(id="p1", name="shop", repo_path=str(repo), language="python")


@pytest.fixture
def store() -> InMemoryClassStore:
    return InMemoryClassStore()


@pytest.fixture
def registry() -> GraphRegistry:
    return GraphRegistry()


# ---------------------------------------------------------------------------
# Graph and counts
# ---------------------------------------------------------------------------


class TestRunAnalysis:
    def test_counts(self, repo, store, registry, state) -> None:
        graph, result = run_analysis(repo, store, registry, state, vcs=FakeVcs())
        assert graph.identifiers() == ["app", "app.api", "app.repository", "app.service"]
        assert result.files == 4
        assert result.nodes == 4
        assert result.edges == 2
        assert result.entry_points == 1
        assert result.methods == 3
        assert result.endpoints == 1
        assert result.parse_failures == 0
        assert result.commit_hash == "c1"
        assert result.duration_seconds >= 0

    def test_static_metadata(self, repo, store, registry, state) -> None:
        graph, _ = run_analysis(repo, store, registry, state)
        assert graph.kind("app.api") is NodeKind.CONTROLLER
        assert graph.kind("app.service") is NodeKind.SERVICE
        assert graph.kind("app.repository") is NodeKind.REPOSITORY
        ((owner, endpoint),) = graph.all_endpoints()
        assert owner == "app.api"
        assert endpoint.http_endpoint == "POST /orders"

    def test_records_are_saved(self, repo, store, registry, state) -> None:
        graph, _ = run_analysis(repo, store, registry, state, vcs=FakeVcs())
        records = {r.identifier: r for r in store.find_by_project("p1")}
        assert set(records) == set(graph.identifiers())
        assert all(r.commit_hash == "c1" for r in records.values())
        assert records["app.service"].kind is NodeKind.SERVICE

        service = records["app.service"]
        assert graph.class_id("app.service") == service.id
        assert [m.name for m in store.methods_for(service.id)] == ["OrderService.place"]

        (link,) = store.parameter_links_for(records["app.api"].id)
        assert link.method_name == "create_order"
        assert link.position == 0
        assert link.target_class_id == service.id

    def test_graph_is_published(self, repo, store, registry, state) -> None:
        graph, _ = run_analysis(repo, store, registry, state)
        assert registry.get("p1") is graph
        assert registry.get_by_name("SHOP") is graph

    def test_state_is_advanced(self, repo, store, registry, state) -> None:
        _, result = run_analysis(repo, store, registry, state, vcs=FakeVcs("abc123"))
        new_state = result.state
        assert new_state.anchor == "abc123"
        assert new_state.status is ProjectStatus.READY
        assert ProjectGraph.from_json(new_state.graph_json).node_count == 4
        # The caller's state is left alone.
        assert state.anchor is None
        assert state.status is ProjectStatus.NEW

    def test_not_a_repository(self, repo, store, registry, state) -> None:
        _, result = run_analysis(repo, store, registry, state, vcs=FakeVcs(head=None))
        assert result.commit_hash is None
        assert result.state.anchor is None
        assert result.state.status is ProjectStatus.READY

    def test_progress_phases(self, repo, store, registry, state) -> None:
        phases: list[str] = []
        run_analysis(repo, store, registry, state, progress_callback=lambda p, _: phases.append(p))
        assert "Extracting methods" in phases
        assert "Saving records" in phases
        assert "Enriching" not in phases

    def test_detects_parser_without_language(self, repo, store, registry) -> None:
        state = ProjectState(id="p2", name="shop", repo_path=str(repo))
        graph, _ = run_analysis(repo, store, registry, state)
        assert graph.contains("app.service")


# ---------------------------------------------------------------------------
# Re-analysis
# ---------------------------------------------------------------------------


class TestReanalysis:
    def test_previous_records_are_replaced(self, repo, store, registry, state) -> None:
        run_analysis(repo, store, registry, state)
        first_ids = {r.id for r in store.find_by_project("p1")}
        run_analysis(repo, store, registry, state)
        second = store.find_by_project("p1")
        assert len(second) == 4
        assert first_ids.isdisjoint(r.id for r in second)
        assert all(store.methods_for(i) == [] for i in first_ids)

    def test_other_projects_untouched(self, repo, store, registry, state) -> None:
        store.save_classes([ClassRecord("other", "p9", "x.Y", "x/Y.py")])
        run_analysis(repo, store, registry, state)
        assert store.get_class("other") is not None


# ---------------------------------------------------------------------------
# Enrichment
# ---------------------------------------------------------------------------


class TestEnrichment:
    def test_units_follow_analysis_order(self, repo, store, registry, state) -> None:
        enricher = FakeEnricher()
        run_analysis(repo, store, registry, state, enricher=enricher)
        assert enricher.seen == ["app.api", "app.service", "app.repository", "app"]

    def test_results_reach_graph_and_store(self, repo, store, registry, state) -> None:
        graph, result = run_analysis(repo, store, registry, state, enricher=FakeEnricher())
        assert result.enriched == 4
        assert result.enrichment_failed == 0

        assert graph.description("app.service") == "Describes app.service"
        (place,) = graph.methods("app.service")
        assert place.description == "Runs OrderService.place"
        assert place.business_logic == ["step one"]

        record = store.get_class(graph.class_id("app.service"))
        assert record.description == "Describes app.service"
        (method,) = store.methods_for(record.id)
        assert method.business_logic == ["step one"]

        # Enriched text is part of the published snapshot.
        restored = ProjectGraph.from_json(result.state.graph_json)
        assert restored.description("app.service") == "Describes app.service"

    def test_failing_enricher_does_not_fail_analysis(self, repo, store, registry, state) -> None:
        graph, result = run_analysis(repo, store, registry, state, enricher=FakeEnricher(fail=True))
        assert result.enriched == 0
        assert result.enrichment_failed == 4
        assert graph.description("app.service") is None
        assert registry.get("p1") is graph

    def test_failed_write_back_is_isolated(self, repo, registry, state) -> None:
        store = RejectingStore("app.service")
        graph, result = run_analysis(repo, store, registry, state, enricher=FakeEnricher())

        assert result.enriched == 3
        assert result.enrichment_failed == 1
        assert graph.description("app.service") is None
        assert graph.kind("app.service") is NodeKind.SERVICE
        (place,) = graph.methods("app.service")
        assert place.description is None
        record = store.get_class(graph.class_id("app.service"))
        assert record.description is None
        assert [m.description for m in store.methods_for(record.id)] == [None]

        assert graph.description("app.api") == "Describes app.api"
        assert registry.get("p1") is graph


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class TestPersistState:
    def test_receives_advanced_state(self, repo, store, registry, state) -> None:
        saved: list[ProjectState] = []
        _, result = run_analysis(repo, store, registry, state, vcs=FakeVcs(), persist_state=saved.append)
        assert saved == [result.state]
        assert saved[0].anchor == "c1"

    def test_failure_restores_previous_records(self, repo, store, registry, state) -> None:
        first, _ = run_analysis(repo, store, registry, state, enricher=FakeEnricher())
        before = _contents(store)

        def persist(new_state: ProjectState) -> None:
            raise OSError("disk full")

        _write(repo, "app/audit.py", "def record(event):\n    return event\n")
        with pytest.raises(OSError, match="disk full"):
            run_analysis(repo, store, registry, state, enricher=FakeEnricher(), persist_state=persist)

        assert _contents(store) == before
        assert registry.get("p1") is first

    def test_failure_leaves_other_projects_alone(self, repo, store, registry, state) -> None:
        store.save_classes([ClassRecord("other", "p9", "x.Y", "x/Y.py")])

        def persist(new_state: ProjectState) -> None:
            raise OSError("disk full")

        with pytest.raises(OSError):
            run_analysis(repo, store, registry, state, persist_state=persist)

        assert store.find_by_project("p1") == []
        assert store.get_class("other") is not None
        assert registry.get("p1") is None
