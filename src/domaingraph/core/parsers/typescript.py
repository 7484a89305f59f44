"""TypeScript / JavaScript module parser.

Identifiers are module paths under the framework's source root with the
extension stripped (``src/users/user.service.ts`` -> ``users.user.service``).
Only relative imports are resolved; a directory import resolves to its
``index`` module.  Per-file AST work is delegated to a
:class:`~domaingraph.core.parsers.ts_analyzer.FileAnalyzer`, acquired once
per parse session and released when the session closes.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterator, Set
from contextlib import contextmanager
from pathlib import Path

from domaingraph.core.graph.model import NodeKind
from domaingraph.core.ingestion.walker import read_source
from domaingraph.core.parsers.base import SourceParser, StaticMethodInfo
from domaingraph.core.parsers.ts_analyzer import (
    FileAnalysis,
    FileAnalyzer,
    FrameworkInfo,
    TreeSitterFileAnalyzer,
    detect_framework,
)

logger = logging.getLogger(__name__)

PACKAGE_JSON = "package.json"


class TypeScriptSourceParser(SourceParser):
    """Parses TypeScript and JavaScript projects.

    Args:
        analyzer_factory: Builds the per-file analyzer for a session.
            Defaults to the in-process :class:`TreeSitterFileAnalyzer`.
    """

    language = "typescript"
    extensions = frozenset({".ts", ".tsx", ".js", ".jsx"})
    excluded_dirs = frozenset(
        {"node_modules", "dist", ".next", "build", "coverage", "__tests__", "__mocks__"}
    )

    def __init__(self, analyzer_factory: Callable[[], FileAnalyzer] | None = None) -> None:
        super().__init__()
        self._analyzer_factory = analyzer_factory or TreeSitterFileAnalyzer
        self._analyzer: FileAnalyzer | None = None

    def open_session(self) -> None:
        self._analyzer = self._analyzer_factory()

    def close_session(self) -> None:
        analyzer, self._analyzer = self._analyzer, None
        if analyzer is not None:
            analyzer.close()

    @contextmanager
    def _acquire_analyzer(self) -> Iterator[FileAnalyzer]:
        if self._analyzer is not None:
            yield self._analyzer
            return
        analyzer = self._analyzer_factory()
        try:
            yield analyzer
        finally:
            analyzer.close()

    # ------------------------------------------------------------------
    # Project layout
    # ------------------------------------------------------------------

    def framework(self, project_root: Path) -> FrameworkInfo:
        """Return the framework detected from *project_root*'s ``package.json``."""
        return self._cached("framework", project_root, self._detect_framework)

    @staticmethod
    def _detect_framework(project_root: Path) -> FrameworkInfo:
        package_json = project_root / PACKAGE_JSON
        if not package_json.is_file():
            return FrameworkInfo()
        try:
            return detect_framework(package_json.read_text(encoding="utf-8"))
        except OSError:
            logger.warning("Could not read %s", package_json, exc_info=True)
            return FrameworkInfo()

    def source_root(self, repo_path: Path) -> Path:
        candidate = repo_path / self.framework(repo_path).source_root
        return candidate if candidate.is_dir() else repo_path

    @staticmethod
    def _project_root(file_path: Path) -> Path:
        """Return the nearest ancestor of *file_path* holding a ``package.json``."""
        resolved = file_path.resolve()
        for parent in resolved.parents:
            if (parent / PACKAGE_JSON).is_file():
                return parent
        return resolved.parent

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def extract_dependencies(
        self, file_path: Path, source_root: Path, known: Set[str]
    ) -> set[str]:
        analysis = self._analyze(file_path)
        deps: set[str] = set()
        for raw in analysis.imports:
            resolved = self.resolve_import(raw.source, file_path, source_root, known)
            if resolved is not None:
                deps.add(resolved)
        return deps

    def is_entry_point(self, file_path: Path) -> bool:
        return self._analyze(file_path).entry_point

    def infer_class_type(self, file_path: Path) -> NodeKind:
        return self._analyze(file_path).kind

    def extract_methods(self, file_path: Path) -> list[StaticMethodInfo]:
        return [
            StaticMethodInfo(
                name=m.name,
                line_number=m.line_number,
                http_method=m.http_method,
                http_path=m.http_path,
            )
            for m in self._analyze(file_path).methods
        ]

    def extract_method_parameters(
        self, file_path: Path, source_root: Path, known: Set[str]
    ) -> dict[str, list[str]]:
        analysis = self._analyze(file_path)
        type_map: dict[str, str] = {}
        for raw in analysis.imports:
            resolved = self.resolve_import(raw.source, file_path, source_root, known)
            if resolved is not None:
                type_map[raw.local_name] = resolved

        result: dict[str, list[str]] = {}
        for method in analysis.methods:
            targets = [type_map[t] for t in method.parameter_types if t in type_map]
            if targets:
                result[method.name] = targets
        return result

    def resolve_import(
        self, specifier: str, file_path: Path, source_root: Path, known: Set[str]
    ) -> str | None:
        """Resolve a relative import *specifier* to a known identifier.

        Tries the module itself first, then ``<module>.index`` for directory
        imports.  Non-relative (package) imports return ``None``.
        """
        if not specifier.startswith("."):
            return None

        target = Path(os.path.normpath(file_path.resolve().parent / specifier))
        try:
            relative = target.relative_to(source_root.resolve())
        except ValueError:
            return None

        parts = list(relative.parts)
        if not parts:
            return None
        stem, dot, suffix = parts[-1].rpartition(".")
        if dot and f".{suffix}" in self.extensions:
            parts[-1] = stem

        candidate = ".".join(parts)
        if candidate in known:
            return candidate
        index_candidate = f"{candidate}.index"
        if index_candidate in known:
            return index_candidate
        return None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _analyze(self, file_path: Path) -> FileAnalysis:
        return self._cached("analysis", file_path, self._run_analyzer)

    def _run_analyzer(self, file_path: Path) -> FileAnalysis:
        content = read_source(file_path)
        project_root = self._project_root(file_path)
        relative = file_path.resolve().relative_to(project_root).as_posix()
        framework = self.framework(project_root)
        with self._acquire_analyzer() as analyzer:
            return analyzer.analyze(content, relative, framework.name)
