"""Tests for the GraphRegistry."""

from __future__ import annotations

from domaingraph.core.graph.graph import ProjectGraph
from domaingraph.core.graph.registry import GraphRegistry
from domaingraph.core.storage.state import ProjectState


def _graph(*identifiers: str) -> ProjectGraph:
    graph = ProjectGraph()
    for identifier in identifiers:
        graph.add_node(identifier, f"{identifier}.py")
    return graph


class TestGraphRegistry:
    def test_put_and_get(self) -> None:
        registry = GraphRegistry()
        graph = _graph("a")
        registry.put("p1", "shop", graph)
        assert registry.get("p1") is graph
        assert len(registry) == 1

    def test_get_by_name_is_case_insensitive(self) -> None:
        registry = GraphRegistry()
        graph = _graph("a")
        registry.put("p1", "Shop", graph)
        assert registry.get_by_name("shop") is graph
        assert registry.get_by_name("other") is None

    def test_put_replaces_snapshot(self) -> None:
        registry = GraphRegistry()
        registry.put("p1", "shop", _graph("a"))
        newer = _graph("a", "b")
        registry.put("p1", "shop", newer)
        assert registry.get("p1") is newer
        assert registry.project_names() == ["shop"]

    def test_remove(self) -> None:
        registry = GraphRegistry()
        registry.put("p1", "shop", _graph())
        assert registry.remove("p1")
        assert not registry.remove("p1")
        assert registry.get("p1") is None


class TestReload:
    def test_reload_from_state(self) -> None:
        registry = GraphRegistry()
        state = ProjectState(id="p1", name="shop", repo_path="/r", graph_json=_graph("a", "b").to_json())
        assert registry.reload(state)
        assert registry.get("p1").identifiers() == ["a", "b"]

    def test_reload_without_graph(self) -> None:
        registry = GraphRegistry()
        assert not registry.reload(ProjectState(id="p1", name="shop", repo_path="/r"))
        assert len(registry) == 0

    def test_reload_corrupt_graph(self) -> None:
        registry = GraphRegistry()
        state = ProjectState(id="p1", name="shop", repo_path="/r", graph_json="{not json")
        assert not registry.reload(state)

    def test_load_all_counts_loaded(self) -> None:
        registry = GraphRegistry()
        states = [
            ProjectState(id="p1", name="a", repo_path="/a", graph_json=_graph("x").to_json()),
            ProjectState(id="p2", name="b", repo_path="/b"),
        ]
        assert registry.load_all(states) == 1
