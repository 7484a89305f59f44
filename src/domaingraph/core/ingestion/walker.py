"""File system walker for discovering and reading source files in a repository."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from pathlib import Path

from domaingraph.config.ignore import is_ignored_dir, load_gitignore, should_ignore
from domaingraph.config.settings import MAX_FILE_SIZE_BYTES
from domaingraph.core.errors import ParseFailure

logger = logging.getLogger(__name__)


def discover_source_files(
    repo_path: Path,
    source_root: Path,
    extensions: Iterable[str],
    extra_dirs: Iterable[str] = (),
    gitignore_patterns: list[str] | None = None,
    max_file_size: int = MAX_FILE_SIZE_BYTES,
) -> list[Path]:
    """Discover source files under *source_root*, sorted by path.

    Hidden directories and the default ignore set are pruned while walking,
    so large dependency trees such as ``node_modules`` are never entered.

    Parameters
    ----------
    repo_path:
        Repository root; ignore rules and ``.gitignore`` patterns are matched
        against paths relative to it.
    source_root:
        Directory to walk.  Returns an empty list when it does not exist.
    extensions:
        File suffixes to keep (e.g. ``{".java"}``).
    extra_dirs:
        Additional directory names excluded by the calling language.
    gitignore_patterns:
        Optional patterns; loaded from ``repo_path/.gitignore`` when ``None``.
    max_file_size:
        Files larger than this many bytes are skipped.

    Returns
    -------
    list[Path]
        Absolute paths of every discovered file.
    """
    repo_path = repo_path.resolve()
    source_root = source_root.resolve()
    if not source_root.is_dir():
        return []

    if gitignore_patterns is None:
        gitignore_patterns = load_gitignore(repo_path)
    wanted = frozenset(extensions)
    extra = frozenset(extra_dirs)
    discovered: list[Path] = []

    for dirpath, dirnames, filenames in os.walk(source_root):
        dirnames[:] = [
            d for d in dirnames if not d.startswith(".") and not is_ignored_dir(d, extra)
        ]
        for filename in filenames:
            file_path = Path(dirpath) / filename
            if file_path.suffix not in wanted:
                continue

            relative = file_path.relative_to(repo_path)
            if should_ignore(relative, gitignore_patterns, extra):
                continue

            try:
                size = file_path.stat().st_size
            except OSError:
                continue
            if size > max_file_size:
                logger.debug("Skipping %s (%d bytes exceeds size ceiling)", relative, size)
                continue

            discovered.append(file_path)

    discovered.sort()
    return discovered


def read_source(file_path: Path) -> str:
    """Return the UTF-8 content of *file_path*.

    Raises:
        ParseFailure: If the file cannot be read or decoded.
    """
    try:
        return file_path.read_text(encoding="utf-8")
    except (UnicodeDecodeError, OSError) as exc:
        raise ParseFailure(str(file_path), str(exc)) from exc


def relative_posix(path: Path, root: Path) -> str:
    """Return *path* relative to *root* with forward slashes."""
    return path.resolve().relative_to(root.resolve()).as_posix()
