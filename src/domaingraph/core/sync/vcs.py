"""Version-control collaborator: current HEAD and file-level diffs.

:class:`GitVersionControl` shells out to ``git``.  An unknown or
unresolvable previous anchor (first sync, rewritten history) is not an
error: the diff comes back with ``full_resync_required`` set and every file
is treated as changed.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiffResult:
    """Files changed between two anchors, relative to the repository root."""

    new_anchor: str
    changed_files: frozenset[str] = frozenset()
    deleted_files: frozenset[str] = frozenset()
    full_resync_required: bool = False

    @classmethod
    def full_resync(cls, new_anchor: str) -> DiffResult:
        return cls(new_anchor=new_anchor, full_resync_required=True)


@runtime_checkable
class VersionControl(Protocol):
    def head(self, repo_path: Path) -> str:
        """Return the commit hash checked out at *repo_path*."""
        ...

    def diff(self, repo_path: Path, old_anchor: str | None, new_anchor: str) -> DiffResult:
        """Return the files changed from *old_anchor* to *new_anchor*."""
        ...


def parse_name_status(output: str) -> tuple[set[str], set[str]]:
    """Parse ``git diff --name-status -M`` output into (changed, deleted) sets.

    Renames count the old path as deleted and the new path as changed.
    """
    changed: set[str] = set()
    deleted: set[str] = set()
    for line in output.splitlines():
        parts = line.split("\t")
        if len(parts) < 2 or not parts[0]:
            continue
        status = parts[0][0]
        match status:
            case "A" | "M" | "T":
                changed.add(parts[1])
            case "C":
                changed.add(parts[-1])
            case "D":
                deleted.add(parts[1])
            case "R":
                if len(parts) >= 3:
                    deleted.add(parts[1])
                    changed.add(parts[2])
            case _:
                logger.debug("Ignoring diff entry %r", line)
    return changed, deleted


class GitVersionControl:
    """Reads HEAD and diffs with the ``git`` command line."""

    def _run_git(self, repo_path: Path, *args: str) -> str:
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=repo_path,
                capture_output=True,
                text=True,
                check=True,
            )
        except FileNotFoundError as exc:
            raise RuntimeError("git executable not found") from exc
        except subprocess.CalledProcessError as exc:
            raise RuntimeError(f"git {' '.join(args)} failed: {exc.stderr.strip()}") from exc
        return result.stdout

    def head(self, repo_path: Path) -> str:
        return self._run_git(repo_path, "rev-parse", "HEAD").strip()

    def commit_exists(self, repo_path: Path, anchor: str) -> bool:
        try:
            self._run_git(repo_path, "cat-file", "-e", f"{anchor}^{{commit}}")
        except RuntimeError:
            return False
        return True

    def diff(self, repo_path: Path, old_anchor: str | None, new_anchor: str) -> DiffResult:
        if not old_anchor:
            return DiffResult.full_resync(new_anchor)
        if not self.commit_exists(repo_path, old_anchor):
            logger.warning(
                "Previous anchor %s is not resolvable in %s; falling back to full resync",
                old_anchor,
                repo_path,
            )
            return DiffResult.full_resync(new_anchor)

        output = self._run_git(repo_path, "diff", "--name-status", "-M", old_anchor, new_anchor)
        changed, deleted = parse_name_status(output)
        return DiffResult(
            new_anchor=new_anchor,
            changed_files=frozenset(changed),
            deleted_files=frozenset(deleted),
        )
