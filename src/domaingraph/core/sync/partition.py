"""Classification of identifiers into added / updated / deleted / unchanged."""

from __future__ import annotations

from collections.abc import Iterable, Set
from dataclasses import dataclass, field

from domaingraph.core.graph.graph import ProjectGraph


@dataclass
class SyncPartition:
    """Disjoint identifier sets covering old and new identifiers exactly once."""

    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)

    def demote(self, identifier: str) -> None:
        """Move an update candidate to *unchanged* (its re-extraction failed)."""
        self.updated.remove(identifier)
        self.unchanged.append(identifier)

    def drop(self, identifier: str) -> None:
        """Forget an added identifier that was removed from the new graph."""
        self.added.remove(identifier)

    @property
    def total(self) -> int:
        return len(self.added) + len(self.updated) + len(self.deleted) + len(self.unchanged)

    def counts(self) -> dict[str, int]:
        return {
            "added": len(self.added),
            "updated": len(self.updated),
            "deleted": len(self.deleted),
            "unchanged": len(self.unchanged),
        }


def partition(
    old_ids: Iterable[str],
    new_graph: ProjectGraph,
    changed_files: Set[str],
    full_resync: bool = False,
) -> SyncPartition:
    """Classify every identifier of ``old_ids`` and *new_graph*.

    An identifier present on both sides is *updated* when its source file
    (relative to the repository root) is in *changed_files*, or when a full
    resync is in effect; otherwise it is *unchanged*.  New identifiers keep
    the graph's insertion order, deleted ones the order of *old_ids*.
    """
    old = dict.fromkeys(old_ids)
    result = SyncPartition()

    for identifier in old:
        if not new_graph.contains(identifier):
            result.deleted.append(identifier)

    for identifier in new_graph.identifiers():
        if identifier not in old:
            result.added.append(identifier)
        elif full_resync or new_graph.source_file(identifier) in changed_files:
            result.updated.append(identifier)
        else:
            result.unchanged.append(identifier)
    return result
