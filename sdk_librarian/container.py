"""Run language container commands through docker.

Each command runs as ``docker run --rm`` with explicit bind mounts and the
current user's uid/gid, so files the container writes stay owned by the
caller. Commands that need library context receive it as a JSON request
file in the mounted ``.librarian`` directory; the file is removed when the
command finishes. Responses are left in the same directory for the caller
to read (see ``state.read_response``).
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from . import cleaner
from .config import Config
from .errors import ConfigError, ContainerError
from .models import LibrarianState
from .shell import run, warn
from .state import (
    BUILD_REQUEST,
    CONFIGURE_REQUEST,
    GENERATE_REQUEST,
    GENERATOR_INPUT_DIR,
    LIBRARIAN_DIR,
    RELEASE_INIT_REQUEST,
    write_request,
)


def resolve_image(cfg: Config, state: LibrarianState | None) -> str:
    """Pick the container image for a command.

    The --image option wins over the state's image. A bare image name
    (no registry) is prefixed with LIBRARIAN_IMAGE_REPOSITORY when set.

    Raises:
        ConfigError: If no image is configured anywhere.
    """
    image = cfg.image or (state.image if state else "")
    if not image:
        raise ConfigError("no container image: pass --image or set it in the state file")
    if "/" not in image and cfg.image_repository:
        image = f"{cfg.image_repository.rstrip('/')}/{image}"
    return image


@contextmanager
def _request_file(path: Path, payload: dict[str, Any]) -> Iterator[None]:
    write_request(path, payload)
    try:
        yield
    finally:
        try:
            path.unlink()
        except OSError as exc:
            warn(f"failed to remove {path}: {exc}")


class ContainerDriver:
    """Invokes one language container image."""

    def __init__(
        self,
        image: str,
        cfg: Config,
        uid: int | None = None,
        gid: int | None = None,
    ) -> None:
        self.image = image
        self.cfg = cfg
        self.uid = os.getuid() if uid is None else uid
        self.gid = os.getgid() if gid is None else gid

    def _relocate(self, mount: str) -> str:
        # Sibling containers in CI see host paths, not ours.
        if not self.cfg.host_mount:
            return mount
        local, host = self.cfg.host_mount.split(":", 1)
        if mount.startswith(local):
            return host + mount[len(local) :]
        return mount

    def _run(self, command: str, mounts: list[str], args: list[str]) -> None:
        argv = ["docker", "run", "--rm"]
        for mount in mounts:
            argv += ["-v", self._relocate(mount)]
        argv += ["--user", f"{self.uid}:{self.gid}", self.image, command, *args]
        print(f"  $ {' '.join(argv)}")
        result = run(*argv, check=False)
        if result.returncode != 0:
            raise ContainerError(
                f"container command {command!r} failed with exit code {result.returncode}"
            )

    def configure(
        self, state: LibrarianState, repo_dir: Path, api_root: Path
    ) -> None:
        """Ask the container to configure the library whose APIs are "new"."""
        librarian_dir = repo_dir / LIBRARIAN_DIR
        with _request_file(librarian_dir / CONFIGURE_REQUEST, state.model_dump(mode="json")):
            self._run(
                "configure",
                [
                    f"{librarian_dir}:/librarian",
                    f"{repo_dir / GENERATOR_INPUT_DIR}:/input",
                    f"{api_root}:/source:ro",
                ],
                ["--librarian=/librarian", "--input=/input", "--source=/source"],
            )

    def generate_library(
        self,
        state: LibrarianState,
        library_id: str,
        repo_dir: Path,
        api_root: Path,
        output_dir: Path,
        generator_input: Path,
    ) -> None:
        """Generate a configured library into ``output_dir``."""
        library = state.library_by_id(library_id)
        if library is None:
            raise ContainerError(f"library {library_id} not found in state")
        librarian_dir = repo_dir / LIBRARIAN_DIR
        with _request_file(librarian_dir / GENERATE_REQUEST, library.model_dump(mode="json")):
            self._run(
                "generate",
                [
                    f"{librarian_dir}:/librarian",
                    f"{generator_input}:/input",
                    f"{output_dir}:/output",
                    f"{api_root}:/source:ro",
                ],
                [
                    "--librarian=/librarian",
                    "--input=/input",
                    "--output=/output",
                    "--source=/source",
                ],
            )

    def generate_raw(self, api_root: Path, output_dir: Path, api_path: str) -> None:
        """Generate a single API with no repository context."""
        self._run(
            "generate",
            [f"{output_dir}:/output", f"{api_root}:/source:ro"],
            ["--output=/output", "--source=/source", f"--api={api_path}"],
        )

    def clean(self, state: LibrarianState, repo_dir: Path, library_id: str) -> None:
        """Remove a library's generated files from the repository.

        Runs in-process with the library's clean patterns.
        """
        cleaner.clean_library(state, repo_dir, library_id)

    def build_library(self, state: LibrarianState, library_id: str, repo_dir: Path) -> None:
        """Build and unit-test a library in place."""
        library = state.library_by_id(library_id)
        if library is None:
            raise ContainerError(f"library {library_id} not found in state")
        librarian_dir = repo_dir / LIBRARIAN_DIR
        with _request_file(librarian_dir / BUILD_REQUEST, library.model_dump(mode="json")):
            self._run(
                "build",
                [f"{librarian_dir}:/librarian", f"{repo_dir}:/repo"],
                ["--librarian=/librarian", "--repo=/repo"],
            )

    def build_raw(self, output_dir: Path, api_path: str) -> None:
        """Build the output of a raw generation."""
        self._run(
            "build",
            [f"{output_dir}:/repo"],
            ["--repo=/repo", f"--api={api_path}"],
        )

    def release_init(
        self,
        state: LibrarianState,
        partial_repo: Path,
        output_dir: Path,
        library_id: str = "",
        library_version: str = "",
    ) -> None:
        """Let the container update version files for the queued releases."""
        librarian_dir = partial_repo / LIBRARIAN_DIR
        args = ["--librarian=/librarian", "--repo=/repo", "--output=/output"]
        if library_id:
            args.append(f"--library={library_id}")
        if library_version:
            args.append(f"--library-version={library_version}")
        with _request_file(
            librarian_dir / RELEASE_INIT_REQUEST, state.model_dump(mode="json")
        ):
            self._run(
                "release-init",
                [
                    f"{librarian_dir}:/librarian",
                    f"{partial_repo}:/repo:ro",
                    f"{output_dir}:/output",
                ],
                args,
            )

    def integration_test_library(self, library_id: str, repo_dir: Path) -> None:
        self._run(
            "integration-test",
            [f"{repo_dir}:/repo"],
            ["--repo=/repo", f"--library={library_id}"],
        )

    def package_library(self, library_id: str, repo_dir: Path, output_dir: Path) -> None:
        """Create release artifacts for a library in ``output_dir``."""
        self._run(
            "package",
            [f"{repo_dir}:/repo", f"{output_dir}:/output"],
            ["--repo=/repo", "--output=/output", f"--library={library_id}"],
        )

    def publish_library(self, output_dir: Path, library_id: str, version: str) -> None:
        """Publish previously packaged artifacts to the package manager."""
        self._run(
            "publish",
            [f"{output_dir}:/output"],
            ["--output=/output", f"--library={library_id}", f"--version={version}"],
        )
