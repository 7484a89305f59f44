"""Tests for the Go source parser."""

from __future__ import annotations

from pathlib import Path

import pytest

from domaingraph.core.graph.model import NodeKind
from domaingraph.core.ingestion.builder import build_graph
from domaingraph.core.parsers.go_lang import GoSourceParser


def _write(root: Path, relative: str, content: str) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def parser() -> GoSourceParser:
    return GoSourceParser()


@pytest.fixture
def go_repo(tmp_path: Path) -> Path:
    _write(tmp_path, "go.mod", "module example.com/shop\n\ngo 1.22\n")
    _write(
        tmp_path,
        "cmd/server/main.go",
        """\
package main

import (
	"net/http"

	"example.com/shop/internal/handler"
)

func main() {
	mux := http.NewServeMux()
	mux.HandleFunc("/orders", handler.CreateOrder)
	http.ListenAndServe(":8080", mux)
}
""",
    )
    _write(
        tmp_path,
        "internal/handler/orders.go",
        """\
package handler

import (
	"encoding/json"
	"net/http"

	"example.com/shop/internal/service"
)

var svc = service.New()

func CreateOrder(w http.ResponseWriter, r *http.Request) {
	json.NewEncoder(w).Encode(svc.Place())
}
""",
    )
    _write(
        tmp_path,
        "internal/service/orders.go",
        """\
package service

import "example.com/shop/internal/store"

type OrderService struct {
	repo *store.Repository
}

func New() *OrderService { return &OrderService{} }

func (s *OrderService) Place() string {
	if s.repo == nil {
		panic("no repository")
	}
	return "ok"
}

func (s *OrderService) Attach(repo *store.Repository) {
	s.repo = repo
}
""",
    )
    _write(tmp_path, "internal/store/repository.go", "package store\n\ntype Repository struct{}\n")
    _write(tmp_path, "internal/store/repository_test.go", "package store\n")
    _write(tmp_path, "vendor/github.com/x/y.go", "package y\n")
    return tmp_path


class TestGraph:
    def test_one_node_per_file(self, parser: GoSourceParser, go_repo: Path) -> None:
        graph = build_graph(parser, go_repo)
        assert set(graph.identifiers()) == {
            "cmd.server.main",
            "internal.handler.orders",
            "internal.service.orders",
            "internal.store.repository",
        }

    def test_module_path(self, parser: GoSourceParser, go_repo: Path) -> None:
        assert parser.module_path(go_repo) == "example.com/shop"

    def test_in_module_imports_only(self, parser: GoSourceParser, go_repo: Path) -> None:
        graph = build_graph(parser, go_repo)
        assert graph.dependencies("cmd.server.main") == ["internal.handler.orders"]
        assert graph.dependencies("internal.handler.orders") == ["internal.service.orders"]
        assert graph.dependencies("internal.service.orders") == ["internal.store.repository"]

    def test_package_import_targets_every_file(self, parser: GoSourceParser, go_repo: Path) -> None:
        _write(go_repo, "internal/store/cache.go", "package store\n")
        graph = build_graph(parser, go_repo)
        assert set(graph.dependencies("internal.service.orders")) == {
            "internal.store.repository",
            "internal.store.cache",
        }

    def test_entry_points(self, parser: GoSourceParser, go_repo: Path) -> None:
        graph = build_graph(parser, go_repo)
        assert graph.entry_points() == ["cmd.server.main"]


class TestMetadata:
    @pytest.mark.parametrize(
        ("relative", "kind"),
        [
            ("internal/handler/orders.go", NodeKind.CONTROLLER),
            ("internal/service/orders.go", NodeKind.SERVICE),
            ("internal/store/repository.go", NodeKind.REPOSITORY),
            ("cmd/server/main.go", NodeKind.OTHER),
        ],
    )
    def test_infer_class_type(
        self, parser: GoSourceParser, go_repo: Path, relative: str, kind: NodeKind
    ) -> None:
        assert parser.infer_class_type(go_repo / relative) is kind

    def test_methods(self, parser: GoSourceParser, go_repo: Path) -> None:
        methods = parser.extract_methods(go_repo / "internal/service/orders.go")
        assert [m.name for m in methods] == ["New", "OrderService.Place", "OrderService.Attach"]
        assert methods[1].exceptions == ["panic"]
        assert methods[0].exceptions == []

    def test_handler_is_endpoint(self, parser: GoSourceParser, go_repo: Path) -> None:
        (handler,) = parser.extract_methods(go_repo / "internal/handler/orders.go")
        assert handler.name == "CreateOrder"
        assert handler.http_method == "GET"
        assert handler.http_path == ""

    def test_method_parameters(self, parser: GoSourceParser, go_repo: Path) -> None:
        graph = build_graph(parser, go_repo)
        with parser.session():
            params = parser.extract_method_parameters(
                go_repo / "internal/service/orders.go", go_repo, frozenset(graph.identifiers())
            )
        assert params == {"OrderService.Attach": ["internal.store.repository"]}
