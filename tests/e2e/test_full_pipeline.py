"""End-to-end tests: analyse a git repository, query it, then sync a new commit.

Builds a small Spring service in a temp directory under git, runs a fresh
analysis, persists state the way the CLI does, reloads it into a fresh
registry and store, and checks that queries, stack-trace context and an
incremental sync all agree with the source tree.
"""

from __future__ import annotations

import shutil
import subprocess
from collections.abc import Sequence
from pathlib import Path

import pytest

from domaingraph.core.context import build_context, parse_stack_trace
from domaingraph.core.graph.graph import ProjectGraph
from domaingraph.core.graph.registry import GraphRegistry
from domaingraph.core.ingestion.pipeline import AnalysisResult, run_analysis
from domaingraph.core.query.service import GraphQueryService
from domaingraph.core.storage.memory import InMemoryClassStore
from domaingraph.core.storage.state import ProjectState, ProjectStateStore, ProjectStatus
from domaingraph.core.sync.engine import IncrementalSyncEngine, SyncStatus
from domaingraph.core.sync.enrichment import EnrichmentInput, EnrichmentResult, MethodEnrichmentResult
from domaingraph.core.sync.vcs import GitVersionControl

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")

PKG = "com.acme.shop"
BASE = "src/main/java/com/acme/shop"


def _write(root: Path, relative: str, content: str) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def _git(repo: Path, *args: str) -> str:
    return subprocess.run(
        ["git", *args], cwd=repo, capture_output=True, text=True, check=True
    ).stdout.strip()


def _commit(repo: Path, message: str) -> str:
    _git(repo, "add", "-A")
    _git(repo, "commit", "-q", "-m", message)
    return _git(repo, "rev-parse", "HEAD")


class ScriptedEnricher:
    """Describes classes and methods from their names."""

    def __init__(self) -> None:
        self.seen: list[str] = []

    def enrich(self, units: Sequence[EnrichmentInput]) -> dict[str, EnrichmentResult]:
        self.seen.extend(u.identifier for u in units)
        return {
            u.identifier: EnrichmentResult(
                description=f"{u.identifier.rpartition('.')[2]} component",
                methods=[
                    MethodEnrichmentResult(f"{m}()", f"Handles {m}", [f"{m} step"])
                    for m in u.method_names
                ],
            )
            for u in units
        }


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_repo(tmp_path: Path) -> Path:
    """Create a Spring service under git.

    Layout::

        shop/
        +-- pom.xml
        +-- src/main/java/com/acme/shop/
            +-- OrderController.java   POST /api/orders, GET /api/orders/{id}
            +-- Order.java             entity referenced from the same package
            +-- dto/OrderRequest.java  request body
            +-- service/OrderService.java
    """
    repo = tmp_path / "shop"
    _write(repo, "pom.xml", "<project/>\n")
    _write(repo, ".gitignore", ".domaingraph/\n")
    _write(
        repo,
        f"{BASE}/OrderController.java",
        """\
package com.acme.shop;

import com.acme.shop.service.OrderService;
import com.acme.shop.dto.OrderRequest;
import org.springframework.web.bind.annotation.*;

@RestController
@RequestMapping("/api/orders")
public class OrderController {
    private final OrderService orderService;

    public OrderController(OrderService orderService) {
        this.orderService = orderService;
    }

    @PostMapping
    public Order create(@RequestBody OrderRequest request) {
        return orderService.place(request);
    }

    @GetMapping("/{id}")
    public Order get(@PathVariable Long id) {
        return null;
    }
}
""",
    )
    _write(repo, f"{BASE}/Order.java", "package com.acme.shop;\n\npublic class Order {\n    private Long id;\n}\n")
    _write(
        repo,
        f"{BASE}/dto/OrderRequest.java",
        "package com.acme.shop.dto;\n\npublic record OrderRequest(String sku, int quantity) {}\n",
    )
    _write(
        repo,
        f"{BASE}/service/OrderService.java",
        """\
package com.acme.shop.service;

import com.acme.shop.Order;
import com.acme.shop.dto.OrderRequest;
import org.springframework.stereotype.Service;

@Service
public class OrderService {
    public Order place(OrderRequest request) {
        return new Order();
    }
}
""",
    )
    _git(repo, "init", "-q")
    _git(repo, "config", "user.email", "dev@example.com")
    _git(repo, "config", "user.name", "Dev")
    _git(repo, "config", "commit.gpgsign", "false")
    _commit(repo, "initial")
    return repo


@pytest.fixture()
def state_store(sample_repo: Path) -> ProjectStateStore:
    return ProjectStateStore(sample_repo / ".domaingraph")


@pytest.fixture()
def analysed(sample_repo: Path, state_store: ProjectStateStore) -> AnalysisResult:
    """Run a fresh analysis and persist state and records to disk."""
    store = InMemoryClassStore()
    state = ProjectState(id="shop-id", name="shop", repo_path=str(sample_repo), language="java")
    graph, result = run_analysis(
        sample_repo,
        store,
        GraphRegistry(),
        state,
        vcs=GitVersionControl(),
        enricher=ScriptedEnricher(),
    )
    state_store.save(result.state, stats=graph.stats())
    store.dump(state_store.records_path)
    return result


def _reload(state_store: ProjectStateStore) -> tuple[ProjectState, InMemoryClassStore, GraphRegistry]:
    state = state_store.load()
    registry = GraphRegistry()
    assert registry.reload(state)
    return state, InMemoryClassStore.load(state_store.records_path), registry


# ---------------------------------------------------------------------------
# Fresh analysis
# ---------------------------------------------------------------------------


class TestAnalysis:
    def test_counts(self, analysed: AnalysisResult, sample_repo: Path) -> None:
        assert analysed.files == 4
        assert analysed.nodes == 4
        assert analysed.entry_points == 1
        assert analysed.endpoints == 2
        assert analysed.enriched == 4
        assert analysed.enrichment_failed == 0
        assert analysed.commit_hash == _git(sample_repo, "rev-parse", "HEAD")

    def test_state_on_disk(self, analysed: AnalysisResult, state_store: ProjectStateStore) -> None:
        state = state_store.load()
        assert state.status is ProjectStatus.READY
        assert state.anchor == analysed.commit_hash
        assert state_store.load_meta()["stats"]["nodes"] == 4


class TestQueriesAfterReload:
    def test_endpoints(self, analysed: AnalysisResult, state_store: ProjectStateStore) -> None:
        _, _, registry = _reload(state_store)
        result = GraphQueryService(registry).execute("shop:endpoints:+logic")
        endpoints = {(i["httpMethod"], i["httpPath"]): i for i in result.results}
        assert set(endpoints) == {("POST", "/api/orders"), ("GET", "/api/orders/{id}")}
        create = endpoints[("POST", "/api/orders")]
        assert create["description"] == "Handles create"
        assert create["businessLogic"] == ["create step"]

    def test_dependents(self, analysed: AnalysisResult, state_store: ProjectStateStore) -> None:
        _, _, registry = _reload(state_store)
        result = GraphQueryService(registry).execute("shop:Order:dependents")
        assert {i["className"] for i in result.results} == {
            f"{PKG}.OrderController",
            f"{PKG}.service.OrderService",
        }

    def test_class_overview(self, analysed: AnalysisResult, state_store: ProjectStateStore) -> None:
        _, _, registry = _reload(state_store)
        (item,) = GraphQueryService(registry).execute("shop:OrderService").results
        assert item["description"] == "OrderService component"
        assert item["classType"] == "SERVICE"
        assert set(item["dependencies"]) == {f"{PKG}.Order", f"{PKG}.dto.OrderRequest"}

    def test_stack_trace_context(self, analysed: AnalysisResult, state_store: ProjectStateStore) -> None:
        state, _, registry = _reload(state_store)
        trace = (
            "java.lang.IllegalStateException: out of stock\n"
            "\tat com.acme.shop.service.OrderService.place(OrderService.java:10)\n"
            "\tat com.acme.shop.OrderController.create(OrderController.java:18)\n"
        )
        context = build_context(registry.get(state.id), parse_stack_trace(trace))
        assert all(e.found for e in context.execution_path)
        assert context.execution_path[1].http_endpoint == "POST /api/orders"
        assert {e.class_name for e in context.related} == {f"{PKG}.Order", f"{PKG}.dto.OrderRequest"}


# ---------------------------------------------------------------------------
# Incremental sync
# ---------------------------------------------------------------------------


class TestSync:
    def _engine(
        self, store: InMemoryClassStore, registry: GraphRegistry, state_store: ProjectStateStore
    ) -> IncrementalSyncEngine:
        def persist(state: ProjectState) -> None:
            store.dump(state_store.records_path)
            state_store.save(state, stats=ProjectGraph.from_json(state.graph_json).stats())

        return IncrementalSyncEngine(store, registry, GitVersionControl(), persist_state=persist)

    def test_up_to_date(self, analysed: AnalysisResult, state_store: ProjectStateStore) -> None:
        state, store, registry = _reload(state_store)
        result = self._engine(store, registry, state_store).sync(state)
        assert result.status is SyncStatus.SKIPPED

    def test_new_commit(
        self, analysed: AnalysisResult, sample_repo: Path, state_store: ProjectStateStore
    ) -> None:
        _write(
            sample_repo,
            f"{BASE}/service/OrderService.java",
            """\
package com.acme.shop.service;

import com.acme.shop.Order;
import com.acme.shop.dto.OrderRequest;
import org.springframework.stereotype.Service;

@Service
public class OrderService {
    private final AuditService audit;

    public OrderService(AuditService audit) {
        this.audit = audit;
    }

    public Order place(OrderRequest request) {
        audit.record("place");
        return new Order();
    }

    public void cancel(Long id) {
        audit.record("cancel");
    }
}
""",
        )
        _write(
            sample_repo,
            f"{BASE}/service/AuditService.java",
            """\
package com.acme.shop.service;

import org.springframework.stereotype.Service;

@Service
public class AuditService {
    public void record(String event) {}
}
""",
        )
        head = _commit(sample_repo, "audit orders")

        state, store, registry = _reload(state_store)
        result = self._engine(store, registry, state_store).sync(state)

        assert result.status is SyncStatus.COMPLETED, result.error
        assert result.added == [f"{PKG}.service.AuditService"]
        assert result.updated == [f"{PKG}.service.OrderService"]
        assert result.deleted == []
        assert set(result.unchanged) == {f"{PKG}.Order", f"{PKG}.OrderController", f"{PKG}.dto.OrderRequest"}

        # Everything below reads back from disk.
        state, store, registry = _reload(state_store)
        assert state.anchor == head
        service = GraphQueryService(registry)

        methods = {i["methodName"]: i for i in service.execute("shop:OrderService:methods").results}
        assert set(methods) == {"OrderService", "place", "cancel"}
        assert methods["place"]["description"] == "Handles place"
        assert methods["cancel"]["description"] is None

        (overview,) = service.execute("shop:OrderService").results
        assert overview["description"] == "OrderService component"
        assert f"{PKG}.service.AuditService" in overview["dependencies"]

        (controller,) = service.execute("shop:OrderController").results
        assert controller["description"] == "OrderController component"

        records = {r.identifier: r for r in store.find_by_project("shop-id")}
        assert len(records) == 5
        assert records[f"{PKG}.service.AuditService"].commit_hash == head
