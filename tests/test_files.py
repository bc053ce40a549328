"""Tests for sdk_librarian.files."""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

import pytest

from sdk_librarian.files import (
    append_to_env_file,
    copy_global_allowlist,
    copy_librarian_dir,
    copy_library_files,
    copy_tree,
    fresh_dir,
)
from sdk_librarian.models import GlobalFile, LibrarianConfig, LibrarianState


class TestCopyTree:
    """Tests for copy_tree()."""

    def test_overlays_and_overwrites(
        self, tmp_path: Path, write_files: Callable[[Path, dict[str, str]], None]
    ) -> None:
        """Files are copied over existing ones; unrelated files stay."""
        src, dst = tmp_path / "src", tmp_path / "dst"
        write_files(src, {"a/one.txt": "new", "two.txt": "2"})
        write_files(dst, {"a/one.txt": "old", "keep.txt": "k"})

        count = copy_tree(src, dst)

        assert count == 2
        assert (dst / "a/one.txt").read_text() == "new"
        assert (dst / "keep.txt").read_text() == "k"

    def test_symlinks_are_recreated(self, tmp_path: Path) -> None:
        """Symlinks are copied as links with the same target."""
        src, dst = tmp_path / "src", tmp_path / "dst"
        src.mkdir()
        (src / "target.txt").write_text("t")
        os.symlink("target.txt", src / "link.txt")

        copy_tree(src, dst)

        assert (dst / "link.txt").is_symlink()
        assert os.readlink(dst / "link.txt") == "target.txt"

    def test_missing_source_copies_nothing(self, tmp_path: Path) -> None:
        assert copy_tree(tmp_path / "absent", tmp_path / "dst") == 0


class TestCopyLibraryFiles:
    """Tests for copy_library_files()."""

    def test_copies_only_source_roots(
        self,
        tmp_path: Path,
        sample_state: LibrarianState,
        write_files: Callable[[Path, dict[str, str]], None],
    ) -> None:
        src, dst = tmp_path / "src", tmp_path / "dst"
        write_files(src, {"packages/secretmanager/x.py": "x", "packages/core/y.py": "y"})

        copy_library_files(sample_state, dst, "secretmanager", src)

        assert (dst / "packages/secretmanager/x.py").exists()
        assert not (dst / "packages/core").exists()

    def test_unknown_library(self, tmp_path: Path, sample_state: LibrarianState) -> None:
        with pytest.raises(KeyError):
            copy_library_files(sample_state, tmp_path, "missing", tmp_path)


class TestCopyGlobalAllowlist:
    """Tests for copy_global_allowlist()."""

    @pytest.fixture
    def config(self) -> LibrarianConfig:
        return LibrarianConfig(
            global_files_allowlist=[
                GlobalFile(path="versions.txt", permissions="read-write"),
                GlobalFile(path="LICENSE", permissions="read-only"),
            ]
        )

    def test_read_only_included_on_the_way_in(
        self,
        tmp_path: Path,
        config: LibrarianConfig,
        write_files: Callable[[Path, dict[str, str]], None],
    ) -> None:
        src, dst = tmp_path / "src", tmp_path / "dst"
        write_files(src, {"versions.txt": "v", "LICENSE": "l"})

        copy_global_allowlist(config, dst, src, include_read_only=True)

        assert (dst / "versions.txt").exists()
        assert (dst / "LICENSE").exists()

    def test_read_only_skipped_on_the_way_back(
        self,
        tmp_path: Path,
        config: LibrarianConfig,
        write_files: Callable[[Path, dict[str, str]], None],
    ) -> None:
        src, dst = tmp_path / "src", tmp_path / "dst"
        write_files(src, {"versions.txt": "v", "LICENSE": "l"})

        copy_global_allowlist(config, dst, src, include_read_only=False)

        assert (dst / "versions.txt").exists()
        assert not (dst / "LICENSE").exists()

    def test_no_config_is_a_no_op(self, tmp_path: Path) -> None:
        copy_global_allowlist(None, tmp_path / "dst", tmp_path / "src", True)
        assert not (tmp_path / "dst").exists()


class TestMisc:
    """Tests for copy_librarian_dir(), append_to_env_file() and fresh_dir()."""

    def test_copy_librarian_dir(
        self, tmp_path: Path, write_files: Callable[[Path, dict[str, str]], None]
    ) -> None:
        src, dst = tmp_path / "src", tmp_path / "dst"
        write_files(src, {".librarian/state.yaml": "image: x", "other.txt": ""})

        copy_librarian_dir(dst, src)

        assert (dst / ".librarian/state.yaml").exists()
        assert not (dst / "other.txt").exists()

    def test_append_to_env_file(self, tmp_path: Path) -> None:
        """Each call appends one KEY=value line."""
        path = tmp_path / "out" / "env.txt"

        append_to_env_file(path, "_RELEASE_ID", "release-1")
        append_to_env_file(path, "_PR_NUMBER", "7")

        assert path.read_text() == "_RELEASE_ID=release-1\n_PR_NUMBER=7\n"

    def test_fresh_dir_discards_earlier_contents(
        self, tmp_path: Path, write_files: Callable[[Path, dict[str, str]], None]
    ) -> None:
        write_files(tmp_path, {"work/output/lib/stale.py": "", "work/output/old.txt": ""})

        path = fresh_dir(tmp_path / "work/output")

        assert path.is_dir()
        assert list(path.iterdir()) == []

    def test_fresh_dir_creates_parents(self, tmp_path: Path) -> None:
        assert fresh_dir(tmp_path / "a/b").is_dir()
