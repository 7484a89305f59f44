"""Per-project sync state: commit anchor, status and the serialized graph.

A project's state lives in a state directory (``.domaingraph`` inside the
repository by default) as two files: ``meta.json`` for the scalar fields and
``graph.json`` for the serialized :class:`ProjectGraph`.  Both are written to
a temporary file first and moved into place, so readers never observe a
half-written state.
"""

from __future__ import annotations

import json
import os
import shutil
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from domaingraph import __version__

META_FILE = "meta.json"
GRAPH_FILE = "graph.json"
RECORDS_FILE = "records.json"


class ProjectStatus(Enum):
    NEW = "new"
    READY = "ready"
    ERROR = "error"


@dataclass
class ProjectState:
    """Everything the sync engine needs to know about a project between runs."""

    id: str
    name: str
    repo_path: str
    language: str | None = None
    anchor: str | None = None
    status: ProjectStatus = ProjectStatus.NEW
    graph_json: str | None = None
    last_synced_at: str | None = None
    error: str | None = None

    def advance(self, anchor: str | None, graph_json: str) -> ProjectState:
        """Return a copy marking a successful sync at *anchor*."""
        return replace(
            self,
            anchor=anchor,
            graph_json=graph_json,
            status=ProjectStatus.READY,
            last_synced_at=datetime.now(tz=timezone.utc).isoformat(),
            error=None,
        )

    def failed(self, error: str) -> ProjectState:
        """Return a copy flagged as errored; anchor and graph are kept."""
        return replace(self, status=ProjectStatus.ERROR, error=error)


def _write_atomic(path: Path, text: str) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(text, encoding="utf-8")
    os.replace(tmp, path)


class ProjectStateStore:
    """Reads and writes one project's state inside *state_dir*."""

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = state_dir

    @property
    def meta_path(self) -> Path:
        return self.state_dir / META_FILE

    @property
    def graph_path(self) -> Path:
        return self.state_dir / GRAPH_FILE

    @property
    def records_path(self) -> Path:
        return self.state_dir / RECORDS_FILE

    def exists(self) -> bool:
        return self.meta_path.is_file()

    def load(self) -> ProjectState | None:
        """Return the saved state, or ``None`` when nothing has been saved yet."""
        if not self.exists():
            return None
        meta: dict[str, Any] = json.loads(self.meta_path.read_text(encoding="utf-8"))
        graph_json = None
        if self.graph_path.is_file():
            graph_json = self.graph_path.read_text(encoding="utf-8")
        return ProjectState(
            id=meta["id"],
            name=meta["name"],
            repo_path=meta["repo_path"],
            language=meta.get("language"),
            anchor=meta.get("anchor"),
            status=ProjectStatus(meta.get("status", ProjectStatus.NEW.value)),
            graph_json=graph_json,
            last_synced_at=meta.get("last_synced_at"),
            error=meta.get("error"),
        )

    def load_meta(self) -> dict[str, Any]:
        """Return the raw ``meta.json`` contents (empty when absent)."""
        if not self.exists():
            return {}
        return json.loads(self.meta_path.read_text(encoding="utf-8"))

    def save(self, state: ProjectState, stats: dict[str, int] | None = None) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        meta = asdict(state)
        meta.pop("graph_json")
        meta["status"] = state.status.value
        meta["version"] = __version__
        if stats is not None:
            meta["stats"] = stats
        if state.graph_json is not None:
            _write_atomic(self.graph_path, state.graph_json)
        _write_atomic(self.meta_path, json.dumps(meta, indent=2) + "\n")

    def clear(self) -> None:
        if self.state_dir.exists():
            shutil.rmtree(self.state_dir)
