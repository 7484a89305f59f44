"""Registry of published project graphs.

Graphs are populated by fresh analysis and sync, replaced atomically on
re-sync, and read by the query layer.  A published graph is treated as a
read-only snapshot: writers build a new :class:`ProjectGraph` and swap it in
with :meth:`GraphRegistry.put`.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass

from domaingraph.core.graph.graph import ProjectGraph
from domaingraph.core.storage.state import ProjectState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistryEntry:
    project_id: str
    name: str
    graph: ProjectGraph


class GraphRegistry:
    """Thread-safe mapping of project id to its current graph snapshot."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, RegistryEntry] = {}

    def put(self, project_id: str, name: str, graph: ProjectGraph) -> None:
        """Publish *graph* for the project, replacing any previous snapshot."""
        entry = RegistryEntry(project_id=project_id, name=name, graph=graph)
        with self._lock:
            self._entries[project_id] = entry
        logger.debug("Published graph for %s (%d nodes)", name, graph.node_count)

    def get(self, project_id: str) -> ProjectGraph | None:
        with self._lock:
            entry = self._entries.get(project_id)
        return entry.graph if entry is not None else None

    def get_by_name(self, name: str) -> ProjectGraph | None:
        """Return the graph of the first project named *name* (case-insensitive)."""
        wanted = name.lower()
        with self._lock:
            entries = list(self._entries.values())
        for entry in entries:
            if entry.name.lower() == wanted:
                return entry.graph
        return None

    def remove(self, project_id: str) -> bool:
        with self._lock:
            return self._entries.pop(project_id, None) is not None

    def project_names(self) -> list[str]:
        with self._lock:
            return [entry.name for entry in self._entries.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def reload(self, state: ProjectState) -> bool:
        """Rehydrate one project's graph from its serialized state.

        Returns:
            ``True`` when a graph was loaded, ``False`` when the state holds no
            graph or the payload could not be decoded.
        """
        if not state.graph_json:
            return False
        try:
            graph = ProjectGraph.from_json(state.graph_json)
        except (ValueError, KeyError, TypeError):
            logger.warning("Could not rehydrate graph for %s", state.name, exc_info=True)
            return False
        self.put(state.id, state.name, graph)
        return True

    def load_all(self, states: Iterable[ProjectState]) -> int:
        """Rehydrate every project with a saved graph; returns the number loaded."""
        loaded = sum(1 for state in states if self.reload(state))
        logger.info("Loaded %d project graph(s) into the registry", loaded)
        return loaded
