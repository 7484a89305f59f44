"""Tests for the graph query lexer."""

from __future__ import annotations

import pytest

from domaingraph.core.errors import ErrorKind, InvalidQuery
from domaingraph.core.query.lexer import GraphQuery, Token, TokenType


class TestParse:
    def test_keyword_with_include(self) -> None:
        query = GraphQuery.parse("shop:endpoints:+logic")
        assert query.project == "shop"
        assert query.tokens == (
            Token(TokenType.NAVIGATE, "endpoints"),
            Token(TokenType.INCLUDE, "logic"),
        )

    def test_navigations_and_includes_are_separated(self) -> None:
        query = GraphQuery.parse("shop:UserService:methods:+logic")
        assert query.navigations() == ["UserService", "methods"]
        assert query.includes() == ["logic"]
        assert query.first_navigation() == "UserService"
        assert query.navigations_from(1) == ["methods"]

    def test_includes_are_order_independent(self) -> None:
        query = GraphQuery.parse("shop:UserService:+logic:methods")
        assert query.navigations() == ["UserService", "methods"]
        assert query.has_include("LOGIC")

    def test_check(self) -> None:
        query = GraphQuery.parse("shop:OrderController:?cancel")
        assert query.has_check()
        assert query.check_value() == "cancel"
        assert query.checks() == ["cancel"]

    def test_method_navigation(self) -> None:
        query = GraphQuery.parse("shop:UserService:method:register")
        assert query.navigations() == ["UserService", "method", "register"]

    def test_whitespace_and_empty_segments(self) -> None:
        query = GraphQuery.parse("  shop : UserService :: methods ")
        assert query.raw == "shop : UserService :: methods"
        assert query.project == "shop"
        assert query.navigations() == ["UserService", "methods"]

    def test_keyword_ignores_further_navigation(self) -> None:
        query = GraphQuery.parse("shop:classes:whatever")
        assert query.navigations() == ["classes", "whatever"]

    def test_token_str(self) -> None:
        assert str(Token(TokenType.INCLUDE, "logic")) == "+logic"
        assert str(Token(TokenType.CHECK, "save")) == "?save"
        assert str(Token(TokenType.NAVIGATE, "methods")) == "methods"


class TestInvalid:
    @pytest.mark.parametrize(
        "raw",
        [
            None,
            "",
            "   ",
            "shop",
            ":endpoints",
            "shop:",
            "shop:+logic",
            "shop:?foo",
            "shop:UserService:+",
            "shop:UserService:?",
            "shop:UserService:explode",
            "shop:UserService:method",
        ],
    )
    def test_rejected(self, raw: str | None) -> None:
        with pytest.raises(InvalidQuery) as excinfo:
            GraphQuery.parse(raw)
        assert excinfo.value.kind is ErrorKind.INVALID_QUERY

    def test_modifier_message(self) -> None:
        with pytest.raises(InvalidQuery, match="navigation target"):
            GraphQuery.parse("shop:+logic")

    def test_unknown_navigation_lists_valid_ones(self) -> None:
        with pytest.raises(InvalidQuery, match="dependencies, dependents, method, methods"):
            GraphQuery.parse("shop:UserService:explode")

    def test_method_name_required(self) -> None:
        with pytest.raises(InvalidQuery, match="Method name required"):
            GraphQuery.parse("shop:UserService:method")
