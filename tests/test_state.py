"""Tests for sdk_librarian.state."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from sdk_librarian.errors import ContainerError, StateError
from sdk_librarian.models import API, LibrarianState, LibraryState
from sdk_librarian.state import (
    CONFIG_PATH,
    STATE_PATH,
    dump_state_text,
    load_librarian_config,
    load_state,
    parse_state_text,
    read_library_response,
    read_response,
    save_state,
    validate_state,
)

STATE_YAML = """\
# Managed by librarian
image: gcr.io/test/generator:1.0
libraries:
  - id: secretmanager
    version: 1.2.0
    source_roots:
      - packages/secretmanager
    last_generated_commit: abc123
    apis:
      - path: google/cloud/secretmanager/v1
        service_config: secretmanager_v1.yaml
"""


class TestParseState:
    """Tests for parse_state_text() and validate_state()."""

    def test_parses_libraries(self) -> None:
        state = parse_state_text(STATE_YAML)

        assert state.image == "gcr.io/test/generator:1.0"
        library = state.libraries[0]
        assert library.id == "secretmanager"
        assert library.apis[0].path == "google/cloud/secretmanager/v1"
        assert library.apis[0].status == "existing"

    def test_invalid_yaml(self) -> None:
        with pytest.raises(StateError, match="failed to parse"):
            parse_state_text("image: [unterminated")

    def test_unquoted_numbers_load_as_strings(self) -> None:
        state = parse_state_text(
            "image: img\nlibraries:\n  - id: core\n    version: 1.0\n"
            "    last_generated_commit: 1234567\n"
        )

        assert state.libraries[0].version == "1.0"
        assert state.libraries[0].last_generated_commit == "1234567"

    def test_not_a_mapping(self) -> None:
        with pytest.raises(StateError, match="failed to parse"):
            parse_state_text("- just\n- a list\n")

    def test_missing_image(self) -> None:
        with pytest.raises(StateError, match="image"):
            validate_state(LibrarianState(libraries=[]))

    def test_duplicate_ids(self) -> None:
        state = LibrarianState(
            image="img", libraries=[LibraryState(id="a"), LibraryState(id="a")]
        )
        with pytest.raises(StateError, match="duplicate"):
            validate_state(state)

    @pytest.mark.parametrize("root", ["/abs/path", "../escape", "a/../../b"])
    def test_source_roots_must_stay_inside(self, root: str) -> None:
        state = LibrarianState(image="img", libraries=[LibraryState(id="a", source_roots=[root])])
        with pytest.raises(StateError, match="relative path"):
            validate_state(state)

    def test_invalid_api_path(self) -> None:
        state = LibrarianState(
            image="img", libraries=[LibraryState(id="a", apis=[API(path="/google")])]
        )
        with pytest.raises(StateError):
            validate_state(state)


class TestLoadSave:
    """Tests for load_state(), save_state() and load_librarian_config()."""

    def test_round_trip(self, tmp_path: Path, sample_state: LibrarianState) -> None:
        """A saved state loads back equal."""
        save_state(tmp_path, sample_state)

        assert (tmp_path / STATE_PATH).exists()
        assert load_state(tmp_path) == sample_state

    def test_saved_document_is_yaml(self, tmp_path: Path, sample_state: LibrarianState) -> None:
        save_state(tmp_path, sample_state)

        data = yaml.safe_load((tmp_path / ".librarian/state.yaml").read_text())
        assert data["image"] == sample_state.image
        assert data["libraries"][0]["id"] == sample_state.libraries[0].id

    def test_dump_omits_nothing_needed(self, sample_state: LibrarianState) -> None:
        assert parse_state_text(dump_state_text(sample_state)) == sample_state

    def test_missing_state_file(self, tmp_path: Path) -> None:
        with pytest.raises(StateError, match="not found"):
            load_state(tmp_path)

    def test_save_refuses_invalid_state(self, tmp_path: Path) -> None:
        with pytest.raises(StateError):
            save_state(tmp_path, LibrarianState(image=""))
        assert not (tmp_path / STATE_PATH).exists()

    def test_config_is_optional(self, tmp_path: Path) -> None:
        assert load_librarian_config(tmp_path) is None

    def test_config_parses(self, tmp_path: Path) -> None:
        path = tmp_path / CONFIG_PATH
        path.parent.mkdir(parents=True)
        path.write_text(
            "max_pull_request_commits: 3\n"
            "global_files_allowlist:\n"
            "  - path: versions.txt\n"
            "    permissions: read-write\n"
            "libraries:\n"
            "  - id: secretmanager\n"
            "    next_version: 2.0.0\n"
        )

        config = load_librarian_config(tmp_path)

        assert config is not None
        assert config.max_pull_request_commits == 3
        assert config.global_files_allowlist[0].permissions == "read-write"
        assert config.library_config_for("secretmanager").next_version == "2.0.0"

    def test_config_rejects_bad_next_version(self, tmp_path: Path) -> None:
        path = tmp_path / CONFIG_PATH
        path.parent.mkdir(parents=True)
        path.write_text("libraries:\n  - id: a\n    next_version: soon\n")

        with pytest.raises(StateError, match="next_version"):
            load_librarian_config(tmp_path)


class TestResponses:
    """Tests for read_response() and read_library_response()."""

    def test_missing_response(self, tmp_path: Path) -> None:
        assert read_response(tmp_path / "generate-response.json") is None

    def test_response_is_consumed(self, tmp_path: Path) -> None:
        """The response file is deleted once read."""
        path = tmp_path / "build-response.json"
        path.write_text("{}")

        assert read_response(path) == {}
        assert not path.exists()

    def test_error_field_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "generate-response.json"
        path.write_text(json.dumps({"error": "protoc exploded"}))

        with pytest.raises(ContainerError, match="protoc exploded"):
            read_response(path)
        assert not path.exists()

    def test_malformed_json(self, tmp_path: Path) -> None:
        path = tmp_path / "configure-response.json"
        path.write_text("{not json")

        with pytest.raises(ContainerError, match="malformed"):
            read_response(path)

    def test_library_response(self, tmp_path: Path) -> None:
        path = tmp_path / "configure-response.json"
        path.write_text(
            json.dumps(
                {
                    "id": "newlib",
                    "version": "0.1.0",
                    "apis": [{"path": "google/new/v1", "status": "new"}],
                    "source_roots": ["packages/newlib"],
                }
            )
        )

        library = read_library_response(path)

        assert library is not None
        assert library.id == "newlib"
        assert library.source_roots == ["packages/newlib"]
