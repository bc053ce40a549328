"""Shared fixtures."""

from __future__ import annotations

import subprocess
from collections.abc import Callable
from pathlib import Path

import pytest

from sdk_librarian.config import Config
from sdk_librarian.models import API, LibrarianState, LibraryState


@pytest.fixture
def write_files() -> Callable[[Path, dict[str, str]], None]:
    """Write {relative path: content} under a root directory."""

    def _write(root: Path, files: dict[str, str]) -> None:
        for rel, content in files.items():
            path = root / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)

    return _write


@pytest.fixture
def sample_state() -> LibrarianState:
    """Two libraries: one generated from two APIs, one hand-written."""
    return LibrarianState(
        image="gcr.io/test/generator:1.0",
        libraries=[
            LibraryState(
                id="secretmanager",
                version="1.2.0",
                apis=[
                    API(path="google/cloud/secretmanager/v1"),
                    API(path="google/cloud/secretmanager/v1beta"),
                ],
                source_roots=["packages/secretmanager"],
                last_generated_commit="a" * 40,
            ),
            LibraryState(
                id="core",
                version="2.0.0",
                source_roots=["packages/core"],
            ),
        ],
    )


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., Config]:
    """Build a Config rooted in tmp_path, overriding any field."""

    def _make(command: str = "generate", **overrides: object) -> Config:
        values: dict[str, object] = {
            "repo": str(tmp_path / "repo"),
            "work_root": tmp_path / "work",
            "api_source": str(tmp_path / "apis"),
            "image": "gcr.io/test/generator:1.0",
        }
        values.update(overrides)
        return Config(command=command, **values)

    return _make


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """An initialised git repository with one commit on main."""
    repo = tmp_path / "gitrepo"
    repo.mkdir()

    def run(*args: str) -> None:
        subprocess.run(["git", *args], cwd=repo, check=True, capture_output=True)

    run("init", "--quiet", "--initial-branch=main")
    run("config", "user.email", "test@example.com")
    run("config", "user.name", "Test")
    run("config", "commit.gpgsign", "false")
    (repo / "README.md").write_text("readme\n")
    run("add", "--all")
    run("commit", "--quiet", "-m", "chore: initial commit")
    return repo
