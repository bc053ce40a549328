"""Tests for sdk_librarian.config."""

from __future__ import annotations

from pathlib import Path

import pytest

from sdk_librarian.config import GITHUB_TOKEN_ENV, Config
from sdk_librarian.errors import ConfigError


class TestFromEnv:
    """Tests for Config.from_env()."""

    def test_reads_tokens_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(GITHUB_TOKEN_ENV, "gh-token")
        monkeypatch.setenv("LIBRARIAN_IMAGE_REPOSITORY", "us-docker.pkg.dev/proj")

        cfg = Config.from_env("generate", api_source="/apis", image=None)

        assert cfg.github_token == "gh-token"
        assert cfg.image_repository == "us-docker.pkg.dev/proj"
        assert cfg.image == ""
        assert cfg.api_source == "/apis"

    def test_is_frozen(self) -> None:
        cfg = Config(command="generate")
        with pytest.raises(ValueError):
            cfg.repo = "elsewhere"  # type: ignore[misc]

    def test_env_file_default(self, tmp_path: Path) -> None:
        """Results go to env-vars.txt in the work root unless --env-file is set."""
        assert Config(command="x", work_root=tmp_path).env_file_path == tmp_path / "env-vars.txt"
        assert Config(command="x", env_file="/tmp/out.env").env_file_path == Path("/tmp/out.env")


class TestValidateForCommand:
    """Tests for Config.validate_for_command()."""

    @pytest.mark.parametrize(
        ("command", "missing"),
        [
            ("generate", "--api-source"),
            ("configure", "--api-source"),
            ("tag-and-release", GITHUB_TOKEN_ENV),
            ("publish", "--release-id"),
            ("merge-release-pr", GITHUB_TOKEN_ENV),
        ],
    )
    def test_required_values(self, command: str, missing: str) -> None:
        with pytest.raises(ConfigError, match=missing):
            Config(command=command).validate_for_command()

    def test_configure_needs_language(self) -> None:
        with pytest.raises(ConfigError, match="--language"):
            Config(command="configure", api_source="/apis").validate_for_command()

    def test_push_needs_token(self) -> None:
        with pytest.raises(ConfigError, match="--push"):
            Config(command="release-init", push=True).validate_for_command()

    def test_sync_prefix_needs_token(self) -> None:
        cfg = Config(
            command="merge-release-pr",
            github_token="t",
            pull_request="https://github.com/o/r/pull/1",
            release_id="r",
            baseline_commit="abc",
            sync_url_prefix="https://sync/",
        )
        with pytest.raises(ConfigError, match="--sync-url-prefix"):
            cfg.validate_for_command()

    def test_host_mount_format(self) -> None:
        with pytest.raises(ConfigError, match="from:to"):
            Config(command="release-init", host_mount="nocolon").validate_for_command()

    def test_library_version_needs_library(self) -> None:
        with pytest.raises(ConfigError, match="--library"):
            Config(command="release-init", library_version="2.0.0").validate_for_command()

    def test_valid_config_returns_self(self) -> None:
        cfg = Config(command="generate", api_source="/apis")
        assert cfg.validate_for_command() is cfg
