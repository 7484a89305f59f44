"""Language source parsers and parser selection."""

from __future__ import annotations

from pathlib import Path

from domaingraph.config.languages import detect_language
from domaingraph.core.parsers.base import SourceParser, StaticMethodInfo

__all__ = ["SourceParser", "StaticMethodInfo", "detect_parser", "get_parser"]


def get_parser(language: str, analyzer_command: list[str] | None = None) -> SourceParser:
    """Build the parser for *language*.

    Args:
        language: One of ``"java"``, ``"typescript"``, ``"go"``, ``"python"``.
        analyzer_command: For typescript only, an external analyzer command;
            when given, per-file analysis runs in that subprocess instead of
            in process.

    Raises:
        ValueError: If *language* is not supported.
    """
    match language:
        case "java":
            from domaingraph.core.parsers.java_lang import JavaSourceParser

            return JavaSourceParser()
        case "typescript" | "javascript":
            from domaingraph.core.parsers.ts_analyzer import SubprocessFileAnalyzer
            from domaingraph.core.parsers.typescript import TypeScriptSourceParser

            if analyzer_command:
                return TypeScriptSourceParser(lambda: SubprocessFileAnalyzer(analyzer_command))
            return TypeScriptSourceParser()
        case "go":
            from domaingraph.core.parsers.go_lang import GoSourceParser

            return GoSourceParser()
        case "python":
            from domaingraph.core.parsers.python_lang import PythonSourceParser

            return PythonSourceParser()
    raise ValueError(f"Unsupported language: {language!r}")


def detect_parser(repo_path: Path, analyzer_command: list[str] | None = None) -> SourceParser:
    """Select the parser from the project markers found at *repo_path*.

    Raises:
        ValueError: If no known project marker is present.
    """
    language = detect_language(repo_path)
    if language is None:
        raise ValueError(f"No supported project marker found in {repo_path}")
    return get_parser(language, analyzer_command)
