"""Data models for librarian.

These Pydantic models represent the persisted state and static
configuration of a language repository, along with the records that flow
between commands (pull request content, release records).
"""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .shell import warn


class AutomationLevel(str, Enum):
    """How much automation a library allows for generation or release."""

    NONE = "none"
    BLOCKED = "blocked"
    MANUAL_REVIEW = "manual-review"
    AUTOMATIC = "automatic"


class API(BaseModel):
    """An API that contributes to a library.

    Attributes:
        path: Path of the API within the API source repository,
              e.g. "google/cloud/secretmanager/v1".
        service_config: File name of the API's service config, relative
                        to ``path``.
        status: "new" while the API is being configured, "existing" after.
    """

    path: str
    service_config: str = ""
    status: Literal["existing", "new"] = "existing"


class Change(BaseModel):
    """A conventional commit recorded against a library for its next release."""

    type: str
    subject: str
    body: str = ""
    scope: str = ""
    footers: dict[str, str] = Field(default_factory=dict)
    is_breaking: bool = False
    is_nested: bool = False
    sha: str = ""
    library_id: str = ""


class LibraryState(BaseModel):
    """Generation and release state for a single library.

    Attributes:
        id: Stable library identifier, e.g. "google-cloud-secretmanager-v1".
        version: Current released (or about to be released) version.
        previous_version: Version before the pending release, if any.
        apis: APIs that generate into this library.
        source_roots: Repository-relative directories owned by the library.
        remove_regex: Clean patterns. Derived from source_roots when empty.
        preserve_regex: Paths that survive cleaning even if they match a
                        remove pattern.
        release_exclude_paths: Paths whose changes never trigger a release.
        tag_format: Release tag template with ``{id}`` and ``{version}``.
        last_generated_commit: API source commit last generated from.
        release_triggered: True when a release is queued for this library.
        changes: Conventional commits accumulated for the pending release.
    """

    # Hand-written YAML turns versions like 1.0 into numbers.
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    version: str = ""
    previous_version: str = ""
    apis: list[API] = Field(default_factory=list)
    source_roots: list[str] = Field(default_factory=list)
    remove_regex: list[str] = Field(default_factory=list)
    preserve_regex: list[str] = Field(default_factory=list)
    release_exclude_paths: list[str] = Field(default_factory=list)
    tag_format: str = ""
    last_generated_commit: str = ""
    release_triggered: bool = False
    changes: list[Change] = Field(default_factory=list)
    generation_automation_level: AutomationLevel = AutomationLevel.AUTOMATIC
    release_automation_level: AutomationLevel = AutomationLevel.AUTOMATIC

    def tag(self, version: str | None = None) -> str:
        """Format the release tag for this library.

        Examples:
            >>> LibraryState(id="secretmanager", version="1.2.0").tag()
            'secretmanager-1.2.0'
        """
        tag_format = self.tag_format or "{id}-{version}"
        return tag_format.replace("{id}", self.id).replace(
            "{version}", version if version is not None else self.version
        )


class LibrarianState(BaseModel):
    """Persisted state of a language repository.

    Attributes:
        image: Language container image, "registry/name:tag".
        libraries: Libraries in declaration order. IDs are unique.
    """

    image: str = ""
    libraries: list[LibraryState] = Field(default_factory=list)

    def library_by_id(self, library_id: str) -> LibraryState | None:
        for library in self.libraries:
            if library.id == library_id:
                return library
        return None

    def library_id_for_api_path(self, api_path: str) -> str | None:
        """Return the ID of the library that generates ``api_path``, if any."""
        for library in self.libraries:
            if any(api.path == api_path for api in library.apis):
                return library.id
        return None


class GlobalFile(BaseModel):
    """A repository-root file shared by all libraries.

    ``read-only`` files are copied into container workspaces but never back;
    ``write-only`` files are only ever copied back.
    """

    path: str
    permissions: Literal["read-only", "write-only", "read-write"] = "read-only"


class LibraryConfig(BaseModel):
    """Static per-library overrides."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    next_version: str = ""


class LibrarianConfig(BaseModel):
    """Static, hand-maintained configuration of a language repository.

    Attributes:
        global_files_allowlist: Repository-root files containers may see.
        max_pull_request_commits: Cap on commits per generated pull
                                  request. Zero means unlimited.
        libraries: Per-library overrides keyed by library ID.
    """

    global_files_allowlist: list[GlobalFile] = Field(default_factory=list)
    max_pull_request_commits: int = 0
    libraries: list[LibraryConfig] = Field(default_factory=list)

    def library_config_for(self, library_id: str) -> LibraryConfig | None:
        for library in self.libraries:
            if library.id == library_id:
                return library
        return None


class PullRequestContent(BaseModel):
    """Accumulated outcome of a batch run.

    Each success corresponds to exactly one commit, in commit order. Errors
    are sanitized one-liners safe to publish in a pull request.
    """

    successes: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    def add_success(self, message: str) -> None:
        self.successes.append(message)

    def add_error(self, library_id: str, error: Exception, action: str) -> None:
        """Record a failure for ``library_id``.

        The full error is only printed locally. The pull request gets a
        one-line description naming the action and the library.
        """
        warn(f"Error while {action} {library_id}: {error}")
        self.errors.append(f"Error while {action} {library_id}")

    def is_empty(self) -> bool:
        return not self.successes and not self.errors


class LibraryRelease(BaseModel):
    """A single library release, recovered from a release commit message."""

    library_id: str
    release_id: str
    version: str
    commit_hash: str
    release_notes: str = ""


class ReleaseNote(BaseModel):
    """A library release described in a release pull request body."""

    library: str
    version: str
    body: str


class GitHubRepo(BaseModel):
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class PullRequestMetadata(BaseModel):
    """Identifies a pull request on GitHub."""

    repo: GitHubRepo
    number: int

    def __str__(self) -> str:
        return f"https://github.com/{self.repo.full_name}/pull/{self.number}"
