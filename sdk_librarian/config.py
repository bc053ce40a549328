"""Command configuration.

Every command builds a single frozen ``Config`` from its CLI options and
the environment, validates it once, and passes it to everything that
needs it.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from .errors import ConfigError

GITHUB_TOKEN_ENV = "LIBRARIAN_GITHUB_TOKEN"
SYNC_AUTH_TOKEN_ENV = "LIBRARIAN_SYNC_AUTH_TOKEN"
IMAGE_REPOSITORY_ENV = "LIBRARIAN_IMAGE_REPOSITORY"

DEFAULT_API_SOURCE_URL = "https://github.com/googleapis/googleapis"


class Config(BaseModel):
    """Immutable settings for one librarian command.

    Attributes:
        command: Name of the command being run, e.g. "generate".
        repo: Language repository, a local path or a remote URL.
        branch: Branch pull requests target.
        work_root: Scratch directory for outputs and partial repositories.
        api_source: Local checkout of the API definitions repository.
        api_source_url: Web URL of the API repository, for Source-Link trailers.
        api: Single API path to generate or configure.
        library: Restrict the command to one library ID.
        library_version: Explicit version for ``release init``.
        language: Language whose libraries ``configure`` sets up.
        image: Container image override.
        build: Run the build step during generation.
        push: Push branches and open pull requests.
        host_mount: "from:to" prefix rewrite for container mount sources.
        env_file: File to append ``KEY=value`` results to.
        pull_request: Release pull request URL.
        release_id: Release batch identifier.
        baseline_commit: Base-branch commit the release was created from.
        sync_url_prefix: URL prefix polled to confirm a merge has synced.
        github_token: Token for every GitHub write operation.
        sync_auth_token: Bearer token for the sync check.
        image_repository: Registry prefix for bare image names.
    """

    model_config = ConfigDict(frozen=True)

    command: str
    repo: str = "."
    branch: str = "main"
    work_root: Path = Path(".")
    api_source: str = ""
    api_source_url: str = DEFAULT_API_SOURCE_URL
    api: str = ""
    library: str = ""
    library_version: str = ""
    language: str = ""
    image: str = ""
    build: bool = False
    push: bool = False
    host_mount: str = ""
    env_file: str = ""
    pull_request: str = ""
    release_id: str = ""
    baseline_commit: str = ""
    sync_url_prefix: str = ""
    github_token: str = ""
    sync_auth_token: str = ""
    image_repository: str = ""

    @classmethod
    def from_env(cls, command: str, **options: object) -> Config:
        """Build a config from CLI options plus librarian's environment variables.

        Options that are None are left at their defaults.
        """
        values = {k: v for k, v in options.items() if v is not None}
        values.setdefault("github_token", os.environ.get(GITHUB_TOKEN_ENV, ""))
        values.setdefault("sync_auth_token", os.environ.get(SYNC_AUTH_TOKEN_ENV, ""))
        values.setdefault("image_repository", os.environ.get(IMAGE_REPOSITORY_ENV, ""))
        return cls(command=command, **values)

    @property
    def env_file_path(self) -> Path:
        """Where result variables go; defaults to env-vars.txt in the work root."""
        return Path(self.env_file) if self.env_file else self.work_root / "env-vars.txt"

    def validate_for_command(self) -> Config:
        """Check the options the current command requires.

        Returns:
            self, for chaining.

        Raises:
            ConfigError: Naming the first missing or invalid value.
        """
        required: dict[str, list[str]] = {
            "generate": ["api_source"],
            "configure": ["api_source", "language"],
            "release-init": [],
            "tag-and-release": ["github_token"],
            "publish": ["release_id", "baseline_commit"],
            "merge-release-pr": [
                "github_token",
                "pull_request",
                "release_id",
                "baseline_commit",
            ],
        }
        for name in required.get(self.command, []):
            if not getattr(self, name):
                raise ConfigError(f"{self.command}: {_flag(name)} is required")
        if self.push and not self.github_token:
            raise ConfigError(f"--push requires {GITHUB_TOKEN_ENV} to be set")
        if self.sync_url_prefix and not self.sync_auth_token:
            raise ConfigError(f"--sync-url-prefix requires {SYNC_AUTH_TOKEN_ENV} to be set")
        if self.host_mount and self.host_mount.count(":") != 1:
            raise ConfigError(f"--host-mount must be 'from:to', got {self.host_mount!r}")
        if self.library_version and not self.library:
            raise ConfigError("--library-version requires --library")
        return self


def _flag(name: str) -> str:
    if name == "github_token":
        return GITHUB_TOKEN_ENV
    return "--" + name.replace("_", "-")
