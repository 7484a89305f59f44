"""Tests for the in-memory ProjectGraph."""

from __future__ import annotations

import json

import pytest

from domaingraph.core.graph.graph import ProjectGraph
from domaingraph.core.graph.model import MethodEnrichment, MethodInfo, NodeInfo, NodeKind


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def graph() -> ProjectGraph:
    """Return a fresh, empty ProjectGraph."""
    return ProjectGraph()


@pytest.fixture()
def chain() -> ProjectGraph:
    """A -> B, C -> A, with C as the only entry point."""
    g = ProjectGraph()
    g.add_node("A", "A.java")
    g.add_node("B", "B.java")
    g.add_node("C", "C.java")
    g.add_dependency("A", "B")
    g.add_dependency("C", "A")
    g.mark_as_entry_point("C")
    return g


# ---------------------------------------------------------------------------
# Nodes and edges
# ---------------------------------------------------------------------------


class TestNodes:
    def test_add_node(self, graph: ProjectGraph) -> None:
        graph.add_node("com.acme.User", "src/main/java/com/acme/User.java")
        assert graph.contains("com.acme.User")
        assert "com.acme.User" in graph
        assert graph.source_file("com.acme.User") == "src/main/java/com/acme/User.java"

    def test_add_node_twice_keeps_first_source(self, graph: ProjectGraph) -> None:
        graph.add_node("A", "a.py")
        graph.add_node("A", "other.py")
        assert graph.source_file("A") == "a.py"
        assert graph.node_count == 1

    def test_identifiers_keep_insertion_order(self, graph: ProjectGraph) -> None:
        for name in ("z", "a", "m"):
            graph.add_node(name, f"{name}.py")
        assert graph.identifiers() == ["z", "a", "m"]
        assert [i for i, _ in graph.iter_nodes()] == ["z", "a", "m"]

    def test_missing_node(self, graph: ProjectGraph) -> None:
        assert not graph.contains("nope")
        assert graph.source_file("nope") is None
        assert graph.dependencies("nope") == []
        assert graph.dependents("nope") == []
        assert graph.resolve("nope") == set()


class TestEdges:
    def test_dependency_and_dependent(self, chain: ProjectGraph) -> None:
        assert chain.dependencies("A") == ["B"]
        assert chain.dependents("A") == ["C"]
        assert chain.dependents("B") == ["A"]

    def test_edge_count(self, chain: ProjectGraph) -> None:
        assert chain.edge_count == 2

    def test_duplicate_edge_ignored(self, chain: ProjectGraph) -> None:
        chain.add_dependency("A", "B")
        assert chain.edge_count == 2

    def test_edge_to_unknown_node_ignored(self, chain: ProjectGraph) -> None:
        chain.add_dependency("A", "Missing")
        chain.add_dependency("Missing", "A")
        assert chain.edge_count == 2

    def test_self_edge_ignored(self, chain: ProjectGraph) -> None:
        chain.add_dependency("A", "A")
        assert "A" not in chain.dependencies("A")

    def test_iter_edges(self, chain: ProjectGraph) -> None:
        assert set(chain.iter_edges()) == {("A", "B"), ("C", "A")}

    def test_resolve_is_union_of_neighbours(self, chain: ProjectGraph) -> None:
        assert chain.resolve("A") == {"B", "C"}
        assert chain.resolve("B") == {"A"}


class TestEntryPoints:
    def test_marked_entry_point(self, chain: ProjectGraph) -> None:
        assert chain.entry_points() == ["C"]
        assert chain.is_entry_point("C")
        assert not chain.is_entry_point("A")
        assert chain.entry_point_count == 1

    def test_unknown_entry_point_ignored(self, chain: ProjectGraph) -> None:
        chain.mark_as_entry_point("Missing")
        assert chain.entry_points() == ["C"]


class TestAnalysisOrder:
    def test_entry_points_first_then_bfs(self, chain: ProjectGraph) -> None:
        assert chain.analysis_order() == ["C", "A", "B"]

    def test_unreachable_nodes_follow(self, chain: ProjectGraph) -> None:
        chain.add_node("D", "D.java")
        order = chain.analysis_order()
        assert order[-1] == "D"
        assert sorted(order) == ["A", "B", "C", "D"]

    def test_no_entry_points_is_insertion_order(self, graph: ProjectGraph) -> None:
        graph.add_node("x", "x.py")
        graph.add_node("y", "y.py")
        graph.add_dependency("y", "x")
        assert graph.analysis_order() == ["x", "y"]

    def test_cycle_terminates(self, graph: ProjectGraph) -> None:
        graph.add_node("a", "a.py")
        graph.add_node("b", "b.py")
        graph.add_dependency("a", "b")
        graph.add_dependency("b", "a")
        graph.mark_as_entry_point("a")
        assert graph.analysis_order() == ["a", "b"]


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


class TestMetadata:
    def test_kind_defaults_to_other(self, chain: ProjectGraph) -> None:
        assert chain.kind("A") is NodeKind.OTHER
        assert chain.description("A") is None
        assert chain.node_info("A") is None

    def test_set_node_info(self, chain: ProjectGraph) -> None:
        chain.set_node_info("A", NodeInfo(NodeKind.SERVICE, "Does things"))
        assert chain.kind("A") is NodeKind.SERVICE
        assert chain.description("A") == "Does things"
        assert chain.has_metadata()

    def test_methods_returns_copy(self, chain: ProjectGraph) -> None:
        chain.add_method_info("A", MethodInfo("run"))
        methods = chain.methods("A")
        methods.append(MethodInfo("other"))
        assert [m.name for m in chain.methods("A")] == ["run"]

    def test_all_endpoints_only_http_methods(self, chain: ProjectGraph) -> None:
        chain.set_methods(
            "C",
            [MethodInfo("create", http_method="POST", http_path="/users"), MethodInfo("helper")],
        )
        endpoints = chain.all_endpoints()
        assert [(i, m.name) for i, m in endpoints] == [("C", "create")]

    def test_method_parameters_require_known_target(self, chain: ProjectGraph) -> None:
        chain.add_method_parameter("A", "run", 0, "B")
        chain.add_method_parameter("A", "run", 1, "Missing")
        links = chain.method_parameters("A")
        assert [link.target for link in links["run"]] == ["B"]

    def test_clear_method_parameters(self, chain: ProjectGraph) -> None:
        chain.add_method_parameter("A", "run", 0, "B")
        chain.clear_method_parameters("A")
        assert chain.method_parameters("A") == {}

    def test_bind_class_id(self, chain: ProjectGraph) -> None:
        chain.bind_class_id("A", "rec-1")
        chain.bind_class_id("Missing", "rec-2")
        assert chain.class_id("A") == "rec-1"
        assert chain.nodes_with_class_ids() == {"A": "rec-1"}


class TestApplyEnrichment:
    def test_updates_kind_description_and_methods(self, chain: ProjectGraph) -> None:
        chain.set_methods("A", [MethodInfo("run")])
        applied = chain.apply_enrichment(
            "A",
            NodeKind.SERVICE,
            "Runs jobs",
            {"run": MethodEnrichment("Runs one job", ["load", "execute"])},
        )
        assert applied
        assert chain.kind("A") is NodeKind.SERVICE
        assert chain.description("A") == "Runs jobs"
        method = chain.methods("A")[0]
        assert method.description == "Runs one job"
        assert method.business_logic == ["load", "execute"]

    def test_none_kind_keeps_current(self, chain: ProjectGraph) -> None:
        chain.set_node_info("A", NodeInfo(NodeKind.REPOSITORY))
        chain.apply_enrichment("A", None, "Stores rows", {})
        assert chain.kind("A") is NodeKind.REPOSITORY

    def test_unknown_method_skipped(self, chain: ProjectGraph) -> None:
        chain.set_methods("A", [MethodInfo("run")])
        chain.apply_enrichment("A", None, None, {"gone": MethodEnrichment("x")})
        assert [m.name for m in chain.methods("A")] == ["run"]
        assert chain.methods("A")[0].description is None

    def test_unknown_identifier(self, chain: ProjectGraph) -> None:
        assert chain.apply_enrichment("Missing", None, "x", {}) is False


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


class TestSerialization:
    def test_json_round_trip_preserves_structure(self, chain: ProjectGraph) -> None:
        chain.bind_class_id("A", "rec-a")
        chain.set_node_info("A", NodeInfo(NodeKind.SERVICE, "Core"))
        chain.set_methods("C", [MethodInfo("get", http_method="GET", http_path="/x", line_number=4)])
        chain.add_method_parameter("A", "run", 0, "B")

        restored = ProjectGraph.from_json(chain.to_json())

        assert restored.identifiers() == ["A", "B", "C"]
        assert set(restored.iter_edges()) == set(chain.iter_edges())
        assert restored.entry_points() == ["C"]
        assert restored.class_id("A") == "rec-a"
        assert restored.kind("A") is NodeKind.SERVICE
        assert restored.description("A") == "Core"
        assert restored.methods("C")[0].http_endpoint == "GET /x"
        assert restored.methods("C")[0].line_number == 4
        assert restored.method_parameters("A")["run"][0].target == "B"

    def test_to_json_is_valid_json(self, chain: ProjectGraph) -> None:
        data = json.loads(chain.to_json())
        assert {n["id"] for n in data["nodes"]} == {"A", "B", "C"}
        assert data["entryPoints"] == ["C"]

    def test_from_dict_accepts_entry_flags(self) -> None:
        data = {"nodes": [{"id": "a", "sourceFile": "a.py", "entryPoint": True}]}
        graph = ProjectGraph.from_dict(data)
        assert graph.entry_points() == ["a"]

    def test_stats(self, chain: ProjectGraph) -> None:
        chain.set_methods("A", [MethodInfo("x"), MethodInfo("y")])
        assert chain.stats() == {"nodes": 3, "edges": 2, "entry_points": 1, "methods": 2}
