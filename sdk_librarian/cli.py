"""CLI entry point for librarian."""

from __future__ import annotations

import subprocess
import tempfile
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TypeVar

import click

from . import __version__
from .config import DEFAULT_API_SOURCE_URL, Config
from .configure import run_configure
from .errors import LibrarianError
from .generate import run_generation
from .merge import merge_release_pr
from .publish import run_publish, run_tag_and_release
from .release import run_release_init

F = TypeVar("F", bound=Callable[..., Any])


def make_work_root(work_root: str | None, now: datetime | None = None) -> Path:
    """Create the scratch directory for this run.

    Without --work-root a fresh ``$TMPDIR/librarian-<timestamp>`` is used;
    it must not exist yet.
    """
    if work_root:
        path = Path(work_root).resolve()
        path.mkdir(parents=True, exist_ok=True)
        return path
    now = now or datetime.now(timezone.utc)
    path = Path(tempfile.gettempdir()) / f"librarian-{now.strftime('%Y%m%dT%H%M%SZ')}"
    if path.exists():
        raise click.ClickException(f"working directory {path} already exists")
    path.mkdir(parents=True)
    return path


def common_options(f: F) -> F:
    """Options shared by every command."""
    options = [
        click.option("--repo", default=".", show_default=True,
                     help="Language repository: local path or remote URL."),
        click.option("--branch", default="main", show_default=True,
                     help="Branch pull requests target."),
        click.option("--work-root", type=click.Path(file_okay=False),
                     help="Scratch directory. Defaults to a fresh temp directory."),
        click.option("--image", help="Language container image."),
        click.option("--push", is_flag=True,
                     help="Push the branch and create a pull request."),
        click.option("--host-mount", help="'from:to' rewrite for container mounts."),
        click.option("--env-file", type=click.Path(dir_okay=False),
                     help="File to append KEY=value results to."),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def _config(command: str, work_root: str | None, **options: Any) -> Config:
    try:
        return Config.from_env(
            command, work_root=make_work_root(work_root), **options
        ).validate_for_command()
    except LibrarianError as exc:
        raise click.ClickException(str(exc)) from exc


def _invoke(action: Callable[[Config], Any], cfg: Config) -> Any:
    try:
        return action(cfg)
    except LibrarianError as exc:
        raise click.ClickException(str(exc)) from exc
    except subprocess.CalledProcessError as exc:
        cmd = " ".join(exc.cmd) if isinstance(exc.cmd, list) else str(exc.cmd)
        detail = (exc.stderr or "").strip() if isinstance(exc.stderr, str) else ""
        raise click.ClickException(f"'{cmd}' failed: {detail}".rstrip(": ")) from exc
    except OSError as exc:
        raise click.ClickException(str(exc)) from exc


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """Generate, release and publish client libraries from API definitions."""


@cli.command()
@common_options
@click.option("--api-source", required=True,
              help="Checkout (or URL) of the API definitions repository.")
@click.option("--api-source-url", default=DEFAULT_API_SOURCE_URL, show_default=True,
              help="Web URL of the API repository, for commit links.")
@click.option("--api", help="Generate only this API path, without committing.")
@click.option("--library", help="Regenerate only this library.")
@click.option("--build", is_flag=True, help="Build after generating --api.")
def generate(work_root: str | None, **options: Any) -> None:
    """Regenerate libraries whose APIs changed."""
    cfg = _config("generate", work_root, **options)
    _invoke(run_generation, cfg)


@cli.command()
@common_options
@click.option("--api-source", required=True,
              help="Checkout (or URL) of the API definitions repository.")
@click.option("--language", required=True, help="Language of the repository's libraries.")
@click.option("--api", help="Configure only this API path.")
def configure(work_root: str | None, **options: Any) -> None:
    """Onboard APIs that request a library but have none."""
    cfg = _config("configure", work_root, **options)
    _invoke(run_configure, cfg)


@cli.group()
def release() -> None:
    """Prepare, tag and publish releases."""


@release.command("init")
@common_options
@click.option("--library", help="Release only this library.")
@click.option("--library-version", help="Release --library at exactly this version.")
def release_init(work_root: str | None, **options: Any) -> None:
    """Open a release pull request for libraries with releasable changes."""
    cfg = _config("release-init", work_root, **options)
    _invoke(run_release_init, cfg)


@release.command("tag-and-release")
@common_options
@click.option("--pr", "pull_request", help="URL of a merged release pull request.")
def tag_and_release(work_root: str | None, **options: Any) -> None:
    """Tag merged release pull requests and create GitHub releases."""
    cfg = _config("tag-and-release", work_root, **options)
    _invoke(run_tag_and_release, cfg)


@release.command("publish")
@common_options
@click.option("--release-id", required=True, help="Release batch to publish.")
@click.option("--baseline-commit", required=True,
              help="Commit the release commits are based on.")
def publish(work_root: str | None, **options: Any) -> None:
    """Build, package and publish a merged release."""
    cfg = _config("publish", work_root, **options)
    _invoke(run_publish, cfg)


@cli.command("merge-release-pr")
@common_options
@click.option("--pr", "pull_request", required=True, help="Release pull request URL.")
@click.option("--release-id", required=True, help="Expected release ID of every commit.")
@click.option("--baseline-commit", required=True,
              help="Base-branch commit the release was prepared from.")
@click.option("--sync-url-prefix", help="Poll this URL prefix + SHA after merging.")
def merge_release_pr_command(work_root: str | None, **options: Any) -> None:
    """Wait for a release pull request to be ready, then merge it."""
    cfg = _config("merge-release-pr", work_root, **options)
    merge_commit = _invoke(merge_release_pr, cfg)
    click.echo(f"✓ Merged release as {merge_commit}")
