"""Language detection from project markers and file extensions."""

from __future__ import annotations

from pathlib import Path

LANGUAGE_EXTENSIONS: dict[str, frozenset[str]] = {
    "java": frozenset({".java"}),
    "typescript": frozenset({".ts", ".tsx", ".js", ".jsx"}),
    "go": frozenset({".go"}),
    "python": frozenset({".py"}),
}

# Checked in order; the first language with a marker present wins.  Java
# comes before typescript so that JVM projects bundling a frontend
# ``package.json`` are still analysed as Java.
PROJECT_MARKERS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("java", ("pom.xml", "build.gradle", "build.gradle.kts")),
    ("go", ("go.mod",)),
    ("typescript", ("package.json",)),
    ("python", ("pyproject.toml", "setup.py", "setup.cfg", "requirements.txt")),
)


def detect_language(repo_path: Path) -> str | None:
    """Return the language whose project marker exists at *repo_path*, or ``None``."""
    for language, markers in PROJECT_MARKERS:
        if any((repo_path / marker).is_file() for marker in markers):
            return language
    return None


def get_language(file_path: str | Path) -> str | None:
    """Return the language name for *file_path* based on its extension."""
    suffix = Path(file_path).suffix
    for language, extensions in LANGUAGE_EXTENSIONS.items():
        if suffix in extensions:
            return language
    return None


def is_supported(file_path: str | Path) -> bool:
    return get_language(file_path) is not None
