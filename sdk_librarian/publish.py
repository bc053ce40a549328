"""Post-merge release steps: GitHub releases and package publication."""

from __future__ import annotations

import json
import subprocess
from datetime import datetime, timedelta, timezone
from typing import Any

from .config import Config
from .container import ContainerDriver, resolve_image
from .errors import LibrarianError, ReleaseRecordError
from .files import fresh_dir
from .github import GitHubClient, parse_pull_request_url
from .gitrepo import Repository
from .models import LibrarianState, LibraryRelease
from .release_records import (
    DONE_LABEL,
    PENDING_LABEL,
    parse_commits_for_releases,
    parse_pull_request_body,
)
from .shell import step, warn
from .state import load_state

SEARCH_WINDOW = timedelta(days=30)


def is_prerelease(version: str) -> bool:
    """Releases before 1.0.0 and versions with a prerelease suffix."""
    return version.lstrip("v").startswith("0.") or "-" in version


def tag_and_release_pull_request(
    github: GitHubClient, state: LibrarianState, pr: dict[str, Any]
) -> int:
    """Create the tag and GitHub releases for one merged release pull request.

    The merge commit gets a ``release-please-<number>`` tag, and every
    library in the body gets a release tagged with the library's tag
    format. Finally ``release:pending`` is swapped for ``release:done``.

    Returns:
        Number of releases created.

    Raises:
        ReleaseRecordError: If the body names a library missing from the state.
    """
    number = pr["number"]
    notes = parse_pull_request_body(pr.get("body") or "")
    if not notes:
        warn(f"no release details found in pull request {number}, skipping")
        return 0

    sha = pr["merge_commit_sha"]
    github.create_tag(f"release-please-{number}", sha)
    for note in notes:
        library = state.library_by_id(note.library)
        if library is None:
            raise ReleaseRecordError(f"library {note.library} not found")
        tag = library.tag(note.version)
        github.create_release(
            tag, sha, f"{note.library} {note.version}", note.body, is_prerelease(note.version)
        )
        print(f"  Released {note.library} {note.version} as {tag}")

    labels = [label["name"] for label in pr.get("labels", [])]
    labels = [name for name in labels if name != PENDING_LABEL] + [DONE_LABEL]
    github.replace_labels(number, labels)
    return len(notes)


def run_tag_and_release(
    cfg: Config, github: GitHubClient | None = None, now: datetime | None = None
) -> None:
    """Tag and release merged release pull requests.

    With ``--pr`` only that pull request is processed. Otherwise every pull
    request labelled ``release:pending`` and merged in the last 30 days is.

    Raises:
        LibrarianError: After all pull requests were tried, if any failed.
    """
    step("Finding release pull requests")
    repo = Repository.clone_or_open(cfg.repo, cfg.work_root)
    state = load_state(repo.dir)
    if cfg.pull_request:
        metadata = parse_pull_request_url(cfg.pull_request)
        github = github or GitHubClient(cfg.github_token, metadata.repo)
        numbers = [metadata.number]
    else:
        github = github or GitHubClient(cfg.github_token, repo.github_repo())
        since = ((now or datetime.now(timezone.utc)) - SEARCH_WINDOW).strftime("%Y-%m-%d")
        numbers = github.search_merged_pull_requests(PENDING_LABEL, since)
    if not numbers:
        print("  No pull requests to process")
        return

    step("Creating releases")
    failed: list[int] = []
    for number in numbers:
        try:
            count = tag_and_release_pull_request(github, state, github.get_pull_request(number))
        except (LibrarianError, subprocess.CalledProcessError) as exc:
            warn(f"failed to process pull request {number}: {exc}")
            failed.append(number)
            continue
        print(f"  Processed pull request {number} ({count} releases)")
    if failed:
        raise LibrarianError(
            "failed to process pull requests: " + ", ".join(map(str, failed))
        )


def run_publish(cfg: Config) -> list[LibraryRelease]:
    """Build, test, package and publish every library in a merged release.

    Release commits are read from ``--baseline-commit`` to HEAD and must all
    belong to ``--release-id``. Artifacts go to ``<work_root>/artifacts/<id>``
    with a ``releases.json`` manifest next to them.

    Raises:
        ReleaseRecordError: If the commits are not a single release.
        ContainerError: If any container step fails.
    """
    step("Reading release commits")
    repo = Repository.open_clean(cfg.repo, cfg.work_root)
    state = load_state(repo.dir)
    commits = list(reversed(repo.commits_for_paths_since([], cfg.baseline_commit)))
    releases = parse_commits_for_releases(commits, cfg.release_id)
    if not releases:
        raise ReleaseRecordError(f"no release commits found for {cfg.release_id}")
    for release in releases:
        print(f"  {release.library_id} {release.version} at {release.commit_hash[:7]}")

    step("Building release artifacts")
    container = ContainerDriver(resolve_image(cfg, state), cfg)
    artifacts = fresh_dir(cfg.work_root / "artifacts")
    head = repo.head_hash()
    try:
        for release in releases:
            repo.checkout(release.commit_hash)
            container.build_library(state, release.library_id, repo.dir)
            container.integration_test_library(release.library_id, repo.dir)
            output_dir = artifacts / release.library_id
            output_dir.mkdir(exist_ok=True)
            container.package_library(release.library_id, repo.dir, output_dir)
    finally:
        repo.checkout(head)
    manifest = artifacts / "releases.json"
    manifest.write_text(
        json.dumps([release.model_dump(mode="json") for release in releases], indent=2)
    )

    step("Publishing packages")
    for release in releases:
        container.publish_library(
            artifacts / release.library_id, release.library_id, release.version
        )
    print(f"  Published {len(releases)} libraries")
    return releases
