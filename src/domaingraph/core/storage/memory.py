"""Dict-backed :class:`ClassStore` with optional JSON file persistence."""

from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import asdict
from pathlib import Path
from typing import Any

from domaingraph.core.graph.model import NodeKind
from domaingraph.core.storage.base import ClassRecord, MethodRecord, ParameterLinkRecord

logger = logging.getLogger(__name__)


class InMemoryClassStore:
    """Keeps class, method and parameter-link records in memory.

    All operations take an internal lock, so a store may be shared between
    the sync engine and concurrent readers.  :meth:`dump` and :meth:`load`
    write and read the whole store as a single JSON document.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._classes: dict[str, ClassRecord] = {}
        self._methods: dict[str, dict[str, MethodRecord]] = {}
        self._links: dict[str, list[ParameterLinkRecord]] = {}

    def new_id(self) -> str:
        return uuid.uuid4().hex

    def find_by_project(self, project: str) -> list[ClassRecord]:
        with self._lock:
            return [r for r in self._classes.values() if r.project == project]

    def get_class(self, class_id: str) -> ClassRecord | None:
        with self._lock:
            return self._classes.get(class_id)

    def methods_for(self, class_id: str) -> list[MethodRecord]:
        with self._lock:
            return list(self._methods.get(class_id, {}).values())

    def parameter_links_for(self, class_id: str) -> list[ParameterLinkRecord]:
        with self._lock:
            return list(self._links.get(class_id, []))

    def save_classes(self, records: list[ClassRecord]) -> None:
        with self._lock:
            for record in records:
                self._classes[record.id] = record

    def save_methods(self, records: list[MethodRecord]) -> None:
        with self._lock:
            unknown = [r.class_id for r in records if r.class_id not in self._classes]
            if unknown:
                raise KeyError(f"Methods reference unknown classes: {sorted(set(unknown))}")
            for record in records:
                self._methods.setdefault(record.class_id, {})[record.id] = record

    def save_parameter_links(self, records: list[ParameterLinkRecord]) -> None:
        with self._lock:
            for record in records:
                links = self._links.setdefault(record.class_id, [])
                if record not in links:
                    links.append(record)

    def delete_methods_and_links(self, class_ids: list[str]) -> None:
        with self._lock:
            for class_id in class_ids:
                self._links.pop(class_id, None)
                self._methods.pop(class_id, None)

    def delete_classes(self, class_ids: list[str]) -> None:
        with self._lock:
            doomed = set(class_ids)
            self.delete_methods_and_links(list(doomed))
            for owner, links in self._links.items():
                self._links[owner] = [l for l in links if l.target_class_id not in doomed]
            for class_id in doomed:
                self._classes.pop(class_id, None)

    # ------------------------------------------------------------------
    # File persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            classes = []
            for record in self._classes.values():
                data = asdict(record)
                data["kind"] = record.kind.name
                classes.append(data)
            return {
                "classes": classes,
                "methods": [asdict(m) for ms in self._methods.values() for m in ms.values()],
                "links": [asdict(l) for ls in self._links.values() for l in ls],
            }

    def dump(self, path: Path) -> None:
        """Write the store to *path* as JSON."""
        path.write_text(json.dumps(self.to_dict(), indent=2) + "\n", encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> InMemoryClassStore:
        """Read a store written by :meth:`dump`; a missing file yields an empty store."""
        store = cls()
        if not path.is_file():
            return store

        data = json.loads(path.read_text(encoding="utf-8"))
        for raw in data.get("classes", []):
            raw = dict(raw)
            raw["kind"] = NodeKind.from_string(raw.get("kind"))
            record = ClassRecord(**raw)
            store._classes[record.id] = record
        for raw in data.get("methods", []):
            record = MethodRecord(**raw)
            store._methods.setdefault(record.class_id, {})[record.id] = record
        for raw in data.get("links", []):
            store._links.setdefault(raw["class_id"], []).append(ParameterLinkRecord(**raw))
        logger.debug("Loaded %d class records from %s", len(store._classes), path)
        return store
