"""Base parser interface and shared data structures.

A :class:`SourceParser` turns the files of one source language into the
language-neutral vocabulary of the project graph: identifiers, dependencies,
entry-point flags, node kinds, methods and method-parameter links.  Parsers
never touch persisted state; every capability is a pure function of the
filesystem, so the graph builder and the sync engine can call them in any
order.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator, Set
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

from tree_sitter import Node

from domaingraph.core.graph.model import MethodInfo, NodeKind
from domaingraph.core.ingestion.walker import discover_source_files

T = TypeVar("T")


@dataclass
class StaticMethodInfo:
    """A method as extracted from source, before enrichment."""

    name: str
    line_number: int | None = None
    http_method: str | None = None
    http_path: str | None = None
    exceptions: list[str] = field(default_factory=list)

    def to_method_info(self) -> MethodInfo:
        return MethodInfo(
            name=self.name,
            exceptions=list(self.exceptions),
            http_method=self.http_method,
            http_path=self.http_path,
            line_number=self.line_number,
        )


def path_to_identifier(file_path: Path, source_root: Path) -> str:
    """Map ``<source_root>/a/b/C.ext`` to ``a.b.C``.

    Files outside *source_root* fall back to their bare stem.
    """
    try:
        relative = file_path.resolve().relative_to(source_root.resolve())
    except ValueError:
        return file_path.stem
    parts = list(relative.parts)
    parts[-1] = _strip_extension(parts[-1])
    return ".".join(parts)


def _strip_extension(filename: str) -> str:
    stem, dot, _ = filename.rpartition(".")
    return stem if dot else filename


def node_text(node: Node | None) -> str:
    """Return the UTF-8 text of a tree-sitter node, or ``""`` for ``None``."""
    if node is None or node.text is None:
        return ""
    return node.text.decode("utf8")


def strip_quotes(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'`":
        return value[1:-1]
    return value


def iter_descendants(node: Node, types: Set[str]) -> Iterator[Node]:
    """Yield every descendant of *node* whose type is in *types* (pre-order)."""
    stack = list(reversed(node.children))
    while stack:
        current = stack.pop()
        if current.type in types:
            yield current
        stack.extend(reversed(current.children))


class SourceParser(ABC):
    """Base interface for language-specific source parsers.

    Subclasses define :attr:`language`, :attr:`extensions`, and the
    extraction capabilities.  Expensive per-file analysis is memoised for
    the duration of a :meth:`session`; outside a session every call starts
    from the file on disk.
    """

    language: str = ""
    extensions: frozenset[str] = frozenset()
    excluded_dirs: frozenset[str] = frozenset()

    def __init__(self) -> None:
        self._cache: dict[tuple[str, Path], Any] | None = None

    # ------------------------------------------------------------------
    # Run scoping
    # ------------------------------------------------------------------

    @contextmanager
    def session(self) -> Iterator[SourceParser]:
        """Scope per-run resources (caches, external analyzers) to a block.

        Resources are released when the block exits, even if it raises.
        Nested sessions reuse the outer one.
        """
        if self._cache is not None:
            yield self
            return

        self._cache = {}
        self.open_session()
        try:
            yield self
        finally:
            self._cache = None
            self.close_session()

    def open_session(self) -> None:
        """Hook for subclasses acquiring per-run resources."""

    def close_session(self) -> None:
        """Hook for subclasses releasing per-run resources."""

    def _cached(self, namespace: str, file_path: Path, compute: Callable[[Path], T]) -> T:
        if self._cache is None:
            return compute(file_path)
        key = (namespace, file_path.resolve())
        if key not in self._cache:
            self._cache[key] = compute(file_path)
        return self._cache[key]

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    @abstractmethod
    def source_root(self, repo_path: Path) -> Path:
        """Return the directory identifiers are derived relative to."""

    def discover_files(self, repo_path: Path) -> list[Path]:
        """Return every analysable file of this language, in a stable order."""
        return discover_source_files(
            repo_path,
            self.source_root(repo_path),
            self.extensions,
            extra_dirs=self.excluded_dirs,
        )

    def extract_identifier(self, file_path: Path, source_root: Path) -> str:
        return path_to_identifier(file_path, source_root)

    @abstractmethod
    def extract_dependencies(
        self, file_path: Path, source_root: Path, known: Set[str]
    ) -> set[str]:
        """Return the internal identifiers *file_path* depends on.

        Only references that resolve to a member of *known* are returned;
        external and library references are dropped.
        """

    @abstractmethod
    def is_entry_point(self, file_path: Path) -> bool: ...

    @abstractmethod
    def infer_class_type(self, file_path: Path) -> NodeKind: ...

    @abstractmethod
    def extract_methods(self, file_path: Path) -> list[StaticMethodInfo]: ...

    @abstractmethod
    def extract_method_parameters(
        self, file_path: Path, source_root: Path, known: Set[str]
    ) -> dict[str, list[str]]:
        """Map method name to the known identifiers its parameter types resolve to.

        Parameters whose type does not resolve are skipped, so list positions
        count resolved parameters only.  Methods without any resolved
        parameter are omitted.
        """
