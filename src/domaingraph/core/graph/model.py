"""Data model for the project dependency graph.

Defines the coarse node kinds recognised across languages and the metadata
records (node info, method info, parameter links) attached to graph nodes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class NodeKind(Enum):
    """Coarse architectural role of a unit of code."""

    CONTROLLER = "Entry point that handles external requests (HTTP/messaging)"
    SERVICE = "Holds business logic and orchestrates operations"
    REPOSITORY = "Accesses persistent storage"
    ENTITY = "Domain model mapped to persistent storage"
    DTO = "Data transfer object used at API boundaries"
    CONFIGURATION = "Wires framework or application configuration"
    LISTENER = "Consumes events or messages"
    UTILITY = "Shared helper code"
    EXCEPTION = "Error type raised by the application"
    OTHER = "Unclassified"

    @property
    def description(self) -> str:
        return self.value

    @property
    def is_request_handler(self) -> bool:
        return self in (NodeKind.CONTROLLER, NodeKind.LISTENER)

    @property
    def contains_business_logic(self) -> bool:
        return self in (NodeKind.SERVICE, NodeKind.ENTITY)

    @classmethod
    def from_string(cls, value: str | None) -> NodeKind:
        """Parse a kind name case-insensitively; anything unknown maps to ``OTHER``."""
        if not value:
            return cls.OTHER
        try:
            return cls[value.strip().upper()]
        except KeyError:
            return cls.OTHER


@dataclass
class NodeInfo:
    """Kind and human description attached to a node."""

    kind: NodeKind = NodeKind.OTHER
    description: str | None = None


@dataclass
class MethodInfo:
    """A method of a node, statically extracted and optionally enriched."""

    name: str
    description: str | None = None
    business_logic: list[str] = field(default_factory=list)
    exceptions: list[str] = field(default_factory=list)
    http_method: str | None = None
    http_path: str | None = None
    line_number: int | None = None

    @property
    def is_http_endpoint(self) -> bool:
        return self.http_method is not None

    @property
    def http_endpoint(self) -> str | None:
        """Return ``"VERB /path"`` for endpoints, ``None`` otherwise."""
        if self.http_method is None:
            return None
        return f"{self.http_method} {self.http_path or ''}".rstrip()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "methodName": self.name,
            "businessLogic": list(self.business_logic),
            "exceptions": list(self.exceptions),
        }
        if self.description is not None:
            data["description"] = self.description
        if self.http_method is not None:
            data["httpMethod"] = self.http_method
        if self.http_path is not None:
            data["httpPath"] = self.http_path
        if self.line_number is not None:
            data["lineNumber"] = self.line_number
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MethodInfo:
        return cls(
            name=data["methodName"],
            description=data.get("description"),
            business_logic=list(data.get("businessLogic") or []),
            exceptions=list(data.get("exceptions") or []),
            http_method=data.get("httpMethod"),
            http_path=data.get("httpPath"),
            line_number=data.get("lineNumber"),
        )


@dataclass(frozen=True)
class MethodParameterLink:
    """A method parameter whose declared type resolves to another known node.

    ``position`` counts only the resolved parameters of the method, not the
    raw parameter index.
    """

    method_name: str
    position: int
    target: str


@dataclass
class MethodEnrichment:
    """Enriched description and business-logic steps for one method."""

    description: str | None = None
    business_logic: list[str] = field(default_factory=list)
