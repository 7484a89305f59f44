"""Ignore rules for source discovery.

Build output, dependency and vendor directories, test directories and
generated or declaration-only files never become graph nodes.
"""

from __future__ import annotations

import fnmatch
from collections.abc import Iterable
from pathlib import Path

import pathspec

from domaingraph.config.settings import STATE_DIR_NAME

DEFAULT_IGNORE_DIRS: frozenset[str] = frozenset(
    {
        # VCS and tooling
        ".git",
        ".hg",
        ".svn",
        STATE_DIR_NAME,
        ".idea",
        ".vscode",
        # Build output
        "build",
        "dist",
        "out",
        "target",
        "bin",
        ".next",
        ".nuxt",
        ".gradle",
        "coverage",
        "htmlcov",
        # Dependencies and vendored code
        "node_modules",
        "vendor",
        "third_party",
        ".venv",
        "venv",
        "__pycache__",
        ".tox",
        ".mypy_cache",
        ".pytest_cache",
        # Tests
        "test",
        "tests",
        "__tests__",
        "__mocks__",
        "testdata",
    }
)

# Generated, declaration-only, bundled and test files.
DEFAULT_IGNORE_FILES: frozenset[str] = frozenset(
    {
        "*.d.ts",
        "*.min.js",
        "*.bundle.js",
        "*.spec.*",
        "*.test.*",
        "*_test.go",
        "*.pb.go",
        "*_generated.go",
        "*_gen.go",
        "test_*.py",
        "*_test.py",
        "conftest.py",
    }
)

_pathspec_cache: dict[tuple[str, ...], pathspec.PathSpec] = {}


def is_ignored_dir(name: str, extra_dirs: Iterable[str] = ()) -> bool:
    """Return ``True`` if a directory called *name* should not be descended into."""
    return name in DEFAULT_IGNORE_DIRS or name in extra_dirs


def is_ignored_file(name: str) -> bool:
    """Return ``True`` if a file called *name* is generated, declaration-only or a test."""
    return any(fnmatch.fnmatch(name, pattern) for pattern in DEFAULT_IGNORE_FILES)


def _matches_gitignore(path: Path, gitignore_patterns: list[str]) -> bool:
    cache_key = tuple(gitignore_patterns)
    spec = _pathspec_cache.get(cache_key)
    if spec is None:
        spec = pathspec.PathSpec.from_lines("gitwildmatch", gitignore_patterns)
        _pathspec_cache[cache_key] = spec
    return spec.match_file(path.as_posix())


def should_ignore(
    path: str | Path,
    gitignore_patterns: list[str] | None = None,
    extra_dirs: Iterable[str] = (),
) -> bool:
    """Return ``True`` if *path* should be skipped during file discovery.

    Parameters
    ----------
    path:
        A path relative to the repository root (e.g. ``src/main/java/App.java``).
    gitignore_patterns:
        Optional gitignore-style patterns loaded via :func:`load_gitignore`.
    extra_dirs:
        Additional directory names excluded by a specific language.
    """
    p = Path(path)
    extra = frozenset(extra_dirs)

    if any(is_ignored_dir(part, extra) for part in p.parts[:-1]):
        return True
    if is_ignored_file(p.name):
        return True
    if gitignore_patterns and _matches_gitignore(p, gitignore_patterns):
        return True
    return False


def load_gitignore(repo_path: Path) -> list[str]:
    """Read ``.gitignore`` from *repo_path* and return a list of patterns.

    Blank lines and comments are stripped.  Returns an empty list when the
    file does not exist.
    """
    gitignore = repo_path / ".gitignore"
    if not gitignore.is_file():
        return []

    lines: list[str] = []
    for raw_line in gitignore.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if line and not line.startswith("#"):
            lines.append(line)
    return lines
