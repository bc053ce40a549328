"""Load, save and validate the state and config documents.

Both documents live in the repository's ``.librarian`` directory and are
YAML, so repositories already managed by other librarian tooling load
unchanged. Container request and response artifacts are JSON files in the
same directory.
"""

from __future__ import annotations

import json
import re
from pathlib import Path, PurePosixPath
from typing import Any

import yaml
from pydantic import ValidationError

from .errors import ContainerError, StateError
from .models import LibrarianConfig, LibrarianState, LibraryState
from .shell import warn
from .versions import is_valid

LIBRARIAN_DIR = ".librarian"
STATE_FILE = "state.yaml"
CONFIG_FILE = "config.yaml"
GENERATOR_INPUT_DIR = f"{LIBRARIAN_DIR}/generator-input"

STATE_PATH = f"{LIBRARIAN_DIR}/{STATE_FILE}"
CONFIG_PATH = f"{LIBRARIAN_DIR}/{CONFIG_FILE}"

CONFIGURE_REQUEST = "configure-request.json"
CONFIGURE_RESPONSE = "configure-response.json"
GENERATE_REQUEST = "generate-request.json"
GENERATE_RESPONSE = "generate-response.json"
BUILD_REQUEST = "build-request.json"
BUILD_RESPONSE = "build-response.json"
RELEASE_INIT_REQUEST = "release-init-request.json"
RELEASE_INIT_RESPONSE = "release-init-response.json"

_LIBRARY_ID_RE = re.compile(r"^[A-Za-z0-9._/-]+$")


def _check_relative(path: str, what: str) -> None:
    pure = PurePosixPath(path)
    if not path or pure.is_absolute() or ".." in pure.parts:
        raise StateError(f"{what} must be a relative path without '..': {path!r}")


def validate_state(state: LibrarianState) -> None:
    """Check the invariants a state document must hold.

    Raises:
        StateError: Describing the first violation found.
    """
    if not state.image:
        raise StateError("state image must not be empty")
    seen: set[str] = set()
    for library in state.libraries:
        if not library.id or not _LIBRARY_ID_RE.match(library.id):
            raise StateError(f"invalid library id: {library.id!r}")
        if library.id in seen:
            raise StateError(f"duplicate library id: {library.id}")
        seen.add(library.id)
        for root in library.source_roots:
            _check_relative(root, f"source root of {library.id}")
        for api in library.apis:
            _check_relative(api.path, f"API path of {library.id}")


def validate_config(config: LibrarianConfig) -> None:
    """Check the invariants of the static configuration document."""
    for global_file in config.global_files_allowlist:
        _check_relative(global_file.path, "global allowlist entry")
    if config.max_pull_request_commits < 0:
        raise StateError("max_pull_request_commits must not be negative")
    for library in config.libraries:
        if library.next_version and not is_valid(library.next_version):
            raise StateError(
                f"next_version for {library.id} is not a valid version: "
                f"{library.next_version!r}"
            )


def parse_state_text(text: str) -> LibrarianState:
    """Parse and validate state document content.

    Raises:
        StateError: If the content is not valid YAML or not a valid state.
    """
    try:
        data = yaml.safe_load(text) or {}
        state = LibrarianState.model_validate(data)
    except (yaml.YAMLError, ValidationError) as exc:
        raise StateError(f"failed to parse state: {exc}") from exc
    validate_state(state)
    return state


def dump_state_text(state: LibrarianState) -> str:
    return yaml.safe_dump(
        state.model_dump(mode="json", exclude_none=True), sort_keys=False
    )


def load_state(repo_dir: Path) -> LibrarianState:
    """Load ``.librarian/state.yaml`` from a repository."""
    path = repo_dir / STATE_PATH
    if not path.exists():
        raise StateError(f"state file not found: {path}")
    return parse_state_text(path.read_text())


def save_state(repo_dir: Path, state: LibrarianState) -> None:
    """Validate and write ``state`` to ``.librarian/state.yaml``."""
    validate_state(state)
    path = repo_dir / STATE_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dump_state_text(state))


def load_librarian_config(repo_dir: Path) -> LibrarianConfig | None:
    """Load ``.librarian/config.yaml``, or None if the repository has none."""
    path = repo_dir / CONFIG_PATH
    if not path.exists():
        return None
    try:
        data = yaml.safe_load(path.read_text()) or {}
        config = LibrarianConfig.model_validate(data)
    except (yaml.YAMLError, ValidationError) as exc:
        raise StateError(f"failed to parse {path}: {exc}") from exc
    validate_config(config)
    return config


def write_request(path: Path, payload: dict[str, Any]) -> None:
    """Write a JSON request artifact for a container command."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2))


def read_response(path: Path) -> dict[str, Any] | None:
    """Read and delete a container's JSON response artifact.

    Returns:
        The decoded response, or None if the container wrote none.

    Raises:
        ContainerError: If the response is malformed or reports an error.
    """
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        raise ContainerError(f"malformed response {path.name}: {exc}") from exc
    finally:
        try:
            path.unlink()
        except OSError as exc:
            warn(f"failed to remove {path}: {exc}")
    if data.get("error"):
        raise ContainerError(f"{path.name} reported: {data['error']}")
    return data


def discard_response(path: Path) -> None:
    """Delete a response artifact without reading it, if one was written."""
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        warn(f"failed to remove {path}: {exc}")


def read_library_response(path: Path) -> LibraryState | None:
    """Read a response that describes a single library's updated state."""
    data = read_response(path)
    if not data:
        return None
    data.pop("error", None)
    try:
        return LibraryState.model_validate(data)
    except ValidationError as exc:
        raise ContainerError(f"invalid library in {path.name}: {exc}") from exc
