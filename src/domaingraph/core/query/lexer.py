"""Lexer for the colon-separated graph query language.

A query is ``project:token[:token...]`` where each token is one of:

* a bare segment (NAVIGATE): a keyword (``endpoints``, ``classes``,
  ``entrypoints``), a class to resolve, a sub-navigation word, or a method
  name following ``method``;
* ``+word`` (INCLUDE): an order-independent display flag;
* ``?word`` (CHECK): an existence check against the resolved class.

Examples::

    shop:endpoints:+logic
    shop:UserService:methods
    shop:UserService:method:register
    shop:OrderController:?cancel
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from domaingraph.core.errors import InvalidQuery

KEYWORDS: frozenset[str] = frozenset({"endpoints", "classes", "entrypoints"})
SUB_NAVIGATIONS: frozenset[str] = frozenset({"methods", "dependencies", "dependents", "method"})


class TokenType(Enum):
    NAVIGATE = "navigate"
    INCLUDE = "include"
    CHECK = "check"


@dataclass(frozen=True)
class Token:
    type: TokenType
    value: str

    def __str__(self) -> str:
        match self.type:
            case TokenType.INCLUDE:
                return f"+{self.value}"
            case TokenType.CHECK:
                return f"?{self.value}"
        return self.value


@dataclass(frozen=True)
class GraphQuery:
    """A lexed query: the project name and its ordered tokens."""

    raw: str
    project: str
    tokens: tuple[Token, ...]

    @classmethod
    def parse(cls, query: str | None) -> GraphQuery:
        """Lex *query* and validate its grammar.

        Raises:
            InvalidQuery: On an empty query or project, a missing target,
                an empty ``+``/``?`` value, a modifier in first position,
                an unknown sub-navigation, or ``method`` without a name.
        """
        if query is None or not query.strip():
            raise InvalidQuery("Query is required")

        trimmed = query.strip()
        parts = trimmed.split(":")
        if len(parts) < 2:
            raise InvalidQuery(f"Query must have at least project:target. Got: {trimmed}")

        project = parts[0].strip()
        if not project:
            raise InvalidQuery("Project name is required")

        tokens: list[Token] = []
        for part in parts[1:]:
            segment = part.strip()
            if not segment:
                continue
            if segment[0] in "+?":
                value = segment[1:].strip()
                if not value:
                    kind = "Include modifier (+)" if segment[0] == "+" else "Check (?)"
                    raise InvalidQuery(f"{kind} requires a value")
                token_type = TokenType.INCLUDE if segment[0] == "+" else TokenType.CHECK
                tokens.append(Token(token_type, value))
            else:
                tokens.append(Token(TokenType.NAVIGATE, segment))

        if not tokens:
            raise InvalidQuery("Query must have at least one target after project")
        if tokens[0].type is not TokenType.NAVIGATE:
            raise InvalidQuery(
                f"First segment after project must be a navigation target, not a modifier. Got: {tokens[0]}"
            )

        result = cls(raw=trimmed, project=project, tokens=tuple(tokens))
        result._validate_navigation()
        return result

    def _validate_navigation(self) -> None:
        navigations = self.navigations()
        if navigations[0].lower() in KEYWORDS or len(navigations) < 2:
            return
        sub = navigations[1].lower()
        if sub not in SUB_NAVIGATIONS:
            raise InvalidQuery(
                f"Unknown navigation: {navigations[1]}. "
                f"Valid navigations: {', '.join(sorted(SUB_NAVIGATIONS))}"
            )
        if sub == "method" and len(navigations) < 3:
            raise InvalidQuery(
                f"Method name required. Example: {self.project}:{navigations[0]}:method:name"
            )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def navigations(self) -> list[str]:
        return [t.value for t in self.tokens if t.type is TokenType.NAVIGATE]

    def first_navigation(self) -> str:
        return self.navigations()[0]

    def navigations_from(self, index: int) -> list[str]:
        return self.navigations()[index:]

    def includes(self) -> list[str]:
        return [t.value for t in self.tokens if t.type is TokenType.INCLUDE]

    def has_include(self, value: str) -> bool:
        wanted = value.lower()
        return any(v.lower() == wanted for v in self.includes())

    def checks(self) -> list[str]:
        return [t.value for t in self.tokens if t.type is TokenType.CHECK]

    def has_check(self) -> bool:
        return bool(self.checks())

    def check_value(self) -> str | None:
        checks = self.checks()
        return checks[0] if checks else None
