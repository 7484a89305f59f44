"""Persistence abstraction for class, method and parameter-link records.

Defines the :class:`ClassStore` protocol consulted by the sync engine and the
fresh-analysis pipeline, along with the record dataclasses it stores.  Record
ids are issued by the store and bound onto graph nodes with
:meth:`ProjectGraph.bind_class_id`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from domaingraph.core.graph.model import NodeKind


@dataclass
class ClassRecord:
    """A durably stored unit of code (one graph node)."""

    id: str
    project: str
    identifier: str
    source_file: str
    kind: NodeKind = NodeKind.OTHER
    description: str | None = None
    commit_hash: str | None = None


@dataclass
class MethodRecord:
    """A durably stored method belonging to a :class:`ClassRecord`."""

    id: str
    class_id: str
    name: str
    description: str | None = None
    business_logic: list[str] = field(default_factory=list)
    exceptions: list[str] = field(default_factory=list)
    http_method: str | None = None
    http_path: str | None = None
    line_number: int | None = None


@dataclass(frozen=True)
class ParameterLinkRecord:
    """A persisted method-parameter link between two class records."""

    class_id: str
    method_name: str
    position: int
    target_class_id: str


@runtime_checkable
class ClassStore(Protocol):
    """Protocol every class/method store must implement.

    Batch operations apply all-or-nothing per call; deleting a class cascades
    to its parameter links and methods.
    """

    def new_id(self) -> str:
        """Issue a fresh opaque record id."""
        ...

    def find_by_project(self, project: str) -> list[ClassRecord]:
        """Return every class record of *project*."""
        ...

    def get_class(self, class_id: str) -> ClassRecord | None:
        """Return one class record, or ``None``."""
        ...

    def methods_for(self, class_id: str) -> list[MethodRecord]:
        """Return the method records of a class in insertion order."""
        ...

    def parameter_links_for(self, class_id: str) -> list[ParameterLinkRecord]:
        """Return the parameter links owned by a class."""
        ...

    def save_classes(self, records: list[ClassRecord]) -> None:
        """Insert or replace a batch of class records."""
        ...

    def save_methods(self, records: list[MethodRecord]) -> None:
        """Insert or replace a batch of method records."""
        ...

    def save_parameter_links(self, records: list[ParameterLinkRecord]) -> None:
        """Insert a batch of parameter links."""
        ...

    def delete_methods_and_links(self, class_ids: list[str]) -> None:
        """Remove the methods and parameter links of the given classes."""
        ...

    def delete_classes(self, class_ids: list[str]) -> None:
        """Remove classes, cascading to parameter links then methods."""
        ...
