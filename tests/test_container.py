"""Tests for sdk_librarian.container."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from sdk_librarian.config import Config
from sdk_librarian.container import ContainerDriver, resolve_image
from sdk_librarian.errors import ConfigError, ContainerError
from sdk_librarian.models import LibrarianState


def docker_ok() -> MagicMock:
    return MagicMock(returncode=0)


class TestResolveImage:
    """Tests for resolve_image()."""

    def test_flag_overrides_state(self, sample_state: LibrarianState) -> None:
        cfg = Config(command="generate", image="my/image:dev")
        assert resolve_image(cfg, sample_state) == "my/image:dev"

    def test_state_image(self, sample_state: LibrarianState) -> None:
        cfg = Config(command="generate")
        assert resolve_image(cfg, sample_state) == "gcr.io/test/generator:1.0"

    def test_bare_name_gets_repository_prefix(self) -> None:
        cfg = Config(command="generate", image="generator:1.0", image_repository="reg.io/proj/")
        assert resolve_image(cfg, None) == "reg.io/proj/generator:1.0"

    def test_no_image(self) -> None:
        with pytest.raises(ConfigError, match="no container image"):
            resolve_image(Config(command="generate"), None)


class TestContainerDriver:
    """Tests for ContainerDriver command lines."""

    @pytest.fixture
    def driver(self, make_config: Callable[..., Config]) -> ContainerDriver:
        return ContainerDriver("img:1", make_config(), uid=1000, gid=1000)

    @patch("sdk_librarian.container.run")
    def test_generate_library(
        self,
        mock_run: MagicMock,
        driver: ContainerDriver,
        sample_state: LibrarianState,
        tmp_path: Path,
    ) -> None:
        """Generate mounts librarian, input, output and a read-only source."""
        seen: dict[str, object] = {}
        request = tmp_path / "repo/.librarian/generate-request.json"

        def fake_run(*argv: str, check: bool) -> MagicMock:
            seen["request"] = json.loads(request.read_text())
            return docker_ok()

        mock_run.side_effect = fake_run

        driver.generate_library(
            sample_state,
            "secretmanager",
            tmp_path / "repo",
            tmp_path / "apis",
            tmp_path / "out",
            tmp_path / "input",
        )

        argv = mock_run.call_args.args
        assert argv[:3] == ("docker", "run", "--rm")
        assert f"{tmp_path / 'apis'}:/source:ro" in argv
        assert f"{tmp_path / 'out'}:/output" in argv
        assert ("--user", "1000:1000") == argv[argv.index("--user") : argv.index("--user") + 2]
        assert argv[argv.index("img:1") + 1] == "generate"
        assert "--source=/source" in argv
        assert seen["request"]["id"] == "secretmanager"
        assert not request.exists()

    @patch("sdk_librarian.container.run")
    def test_failure_raises(
        self, mock_run: MagicMock, driver: ContainerDriver, tmp_path: Path
    ) -> None:
        mock_run.return_value = MagicMock(returncode=3)

        with pytest.raises(ContainerError, match="exit code 3"):
            driver.build_raw(tmp_path / "out", "google/x/v1")

    @patch("sdk_librarian.container.run")
    def test_release_init_passes_library_flags(
        self,
        mock_run: MagicMock,
        driver: ContainerDriver,
        sample_state: LibrarianState,
        tmp_path: Path,
    ) -> None:
        mock_run.return_value = docker_ok()

        driver.release_init(
            sample_state, tmp_path / "partial", tmp_path / "out", "secretmanager", "2.0.0"
        )

        argv = mock_run.call_args.args
        assert f"{tmp_path / 'partial'}:/repo:ro" in argv
        assert "--library=secretmanager" in argv
        assert "--library-version=2.0.0" in argv

    @patch("sdk_librarian.container.run")
    def test_host_mount_rewrites_sources(
        self,
        mock_run: MagicMock,
        make_config: Callable[..., Config],
        tmp_path: Path,
    ) -> None:
        """Mount sources under the local prefix are rewritten to the host prefix."""
        mock_run.return_value = docker_ok()
        cfg = make_config(host_mount=f"{tmp_path}:/host/work")
        driver = ContainerDriver("img:1", cfg, uid=0, gid=0)

        driver.publish_library(tmp_path / "artifacts/lib", "lib", "1.0.0")

        assert "/host/work/artifacts/lib:/output" in mock_run.call_args.args

    @patch("sdk_librarian.container.run")
    def test_unknown_library(
        self,
        mock_run: MagicMock,
        driver: ContainerDriver,
        sample_state: LibrarianState,
        tmp_path: Path,
    ) -> None:
        with pytest.raises(ContainerError, match="not found"):
            driver.build_library(sample_state, "missing", tmp_path)
        mock_run.assert_not_called()
