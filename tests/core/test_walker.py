"""Tests for domaingraph.core.ingestion.walker."""

from __future__ import annotations

from pathlib import Path

import pytest

from domaingraph.core.errors import ParseFailure
from domaingraph.core.ingestion.walker import discover_source_files, read_source, relative_posix


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def tmp_repo(tmp_path: Path) -> Path:
    """Create a small TypeScript repo structure for testing.

    Layout::

        tmp_repo/
        +-- src/
        |   +-- app.ts
        |   +-- users/service.ts
        |   +-- users/service.spec.ts   (test file, ignored)
        |   +-- types.d.ts              (declarations, ignored)
        |   +-- generated/client.ts     (gitignored)
        |   +-- .cache/tmp.ts           (hidden dir, ignored)
        +-- node_modules/pkg/index.ts   (ignored)
        +-- README.md                   (wrong extension)
        +-- .gitignore                  ("src/generated/")
    """
    src = tmp_path / "src"
    (src / "users").mkdir(parents=True)
    (src / "app.ts").write_text("export const app = 1;\n", encoding="utf-8")
    (src / "users" / "service.ts").write_text("export class S {}\n", encoding="utf-8")
    (src / "users" / "service.spec.ts").write_text("test()\n", encoding="utf-8")
    (src / "types.d.ts").write_text("declare const x: number;\n", encoding="utf-8")
    (src / "generated").mkdir()
    (src / "generated" / "client.ts").write_text("export {}\n", encoding="utf-8")
    (src / ".cache").mkdir()
    (src / ".cache" / "tmp.ts").write_text("export {}\n", encoding="utf-8")

    nm = tmp_path / "node_modules" / "pkg"
    nm.mkdir(parents=True)
    (nm / "index.ts").write_text("export {}\n", encoding="utf-8")

    (tmp_path / "README.md").write_text("# Hello", encoding="utf-8")
    (tmp_path / ".gitignore").write_text("src/generated/\n", encoding="utf-8")
    return tmp_path


# ---------------------------------------------------------------------------
# discover_source_files tests
# ---------------------------------------------------------------------------


class TestDiscoverSourceFiles:
    def test_finds_sources_only(self, tmp_repo: Path) -> None:
        files = discover_source_files(tmp_repo, tmp_repo / "src", {".ts"})
        relative = [relative_posix(f, tmp_repo) for f in files]
        assert relative == ["src/app.ts", "src/users/service.ts"]

    def test_walks_from_repo_root(self, tmp_repo: Path) -> None:
        files = discover_source_files(tmp_repo, tmp_repo, {".ts"})
        relative = {relative_posix(f, tmp_repo) for f in files}
        assert "node_modules/pkg/index.ts" not in relative
        assert "src/app.ts" in relative

    def test_explicit_gitignore_patterns(self, tmp_repo: Path) -> None:
        files = discover_source_files(tmp_repo, tmp_repo / "src", {".ts"}, gitignore_patterns=[])
        relative = {relative_posix(f, tmp_repo) for f in files}
        assert "src/generated/client.ts" in relative

    def test_extra_dirs(self, tmp_repo: Path) -> None:
        files = discover_source_files(tmp_repo, tmp_repo / "src", {".ts"}, extra_dirs={"users"})
        assert [f.name for f in files] == ["app.ts"]

    def test_size_ceiling(self, tmp_repo: Path) -> None:
        (tmp_repo / "src" / "big.ts").write_text("x" * 100, encoding="utf-8")
        files = discover_source_files(tmp_repo, tmp_repo / "src", {".ts"}, max_file_size=50)
        assert "big.ts" not in {f.name for f in files}

    def test_missing_source_root(self, tmp_repo: Path) -> None:
        assert discover_source_files(tmp_repo, tmp_repo / "absent", {".ts"}) == []

    def test_sorted_and_absolute(self, tmp_repo: Path) -> None:
        files = discover_source_files(tmp_repo, tmp_repo, {".ts"})
        assert files == sorted(files)
        assert all(f.is_absolute() for f in files)


class TestReadSource:
    def test_reads_utf8(self, tmp_path: Path) -> None:
        path = tmp_path / "a.py"
        path.write_text("name = 'héllo'\n", encoding="utf-8")
        assert read_source(path) == "name = 'héllo'\n"

    def test_missing_file_raises_parse_failure(self, tmp_path: Path) -> None:
        with pytest.raises(ParseFailure):
            read_source(tmp_path / "missing.py")

    def test_binary_file_raises_parse_failure(self, tmp_path: Path) -> None:
        path = tmp_path / "blob.py"
        path.write_bytes(b"\xff\xfe\x00\x80")
        with pytest.raises(ParseFailure):
            read_source(path)
