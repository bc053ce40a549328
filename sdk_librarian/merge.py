"""Merge a release pull request once it is safe to do so.

The release PR is polled until it is ready:

1. It must be open, still carry ``do-not-merge`` and be mergeable
2. Every check run (except the label and commit-lint bots) succeeded
3. Every commit is a release commit for the expected release ID, and no
   release notes still start with FIXME
4. No library being released changed on the base branch since the release
   was prepared (its state entry and source roots are compared)
5. A member, owner, collaborator or contributor approved it, and nobody
   in those groups is requesting changes

Problems a human must fix are reported as a PR comment plus the
``merge-blocked-see-comments`` label. Polling continues, but every poll
just waits while the label is present. Once ready, ``do-not-merge`` is
removed and the PR is rebase-merged.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

import requests

from .config import Config
from .errors import ConfigError, MergeAbortedError, ReleaseRecordError
from .files import append_to_env_file
from .github import GitHubClient, parse_pull_request_url
from .gitrepo import Commit
from .models import LibrarianState, LibraryRelease
from .release_records import DO_NOT_MERGE_LABEL, parse_commits_for_releases
from .shell import step, warn
from .state import STATE_PATH, parse_state_text

MERGE_BLOCKED_LABEL = "merge-blocked-see-comments"
# Check runs from these apps are ours or advisory and never block a merge.
DO_NOT_MERGE_APP_ID = 91138
CONVENTIONAL_COMMITS_APP_ID = 37172
EXEMPT_APP_IDS = {DO_NOT_MERGE_APP_ID, CONVENTIONAL_COMMITS_APP_ID}
TRUSTED_ASSOCIATIONS = {"MEMBER", "OWNER", "COLLABORATOR", "CONTRIBUTOR"}

SLEEP_DELAY = 60
SYNC_TIMEOUT = timedelta(minutes=10)


class Readiness(str, Enum):
    READY = "ready"
    WAIT = "wait"
    BLOCKED = "blocked"


def report_blocking_reason(github: GitHubClient, number: int, description: str) -> Readiness:
    """Explain why the PR cannot be merged and mark it blocked."""
    warn(f"Blocking pull request {number}: {description}")
    github.add_comment(
        number,
        f"{description}\n\nAfter resolving the issue, please remove the "
        f"'{MERGE_BLOCKED_LABEL}' label.",
    )
    github.add_labels(number, [MERGE_BLOCKED_LABEL])
    return Readiness.BLOCKED


def _commit_from_api(data: dict[str, Any]) -> Commit:
    return Commit(
        sha=data["sha"],
        message=data["commit"]["message"],
        when=datetime.fromisoformat(data["commit"]["committer"]["date"].replace("Z", "+00:00")),
    )


def _changed_paths(commit: dict[str, Any]) -> list[str]:
    return [f["filename"] for f in commit.get("files", [])]


def _touches(paths: list[str], source_roots: list[str]) -> bool:
    return any(
        path == root or path.startswith(root + "/")
        for path in paths
        for root in source_roots
    )


def check_release(
    release: LibraryRelease,
    head_state: LibrarianState,
    baseline_state: LibrarianState,
    base_commits: list[dict[str, Any]],
) -> str | None:
    """Why ``release`` may be stale, or None if nothing changed under it.

    Args:
        release: A library release in the PR.
        head_state: State at the head of the base branch.
        baseline_state: State at the commit the release was prepared from.
        base_commits: Full base-branch commits since the baseline.
    """
    head_library = head_state.library_by_id(release.library_id)
    if head_library is None:
        return "Library does not exist in head pipeline state"
    baseline_library = baseline_state.library_by_id(release.library_id)
    if baseline_library is None:
        return "Library does not exist in baseline commit pipeline state"
    if head_library != baseline_library:
        return "Pipeline state has changed between baseline and head"
    changed = [
        commit["sha"]
        for commit in base_commits
        if _touches(_changed_paths(commit), head_library.source_roots)
    ]
    if changed:
        return "Library source changed in intervening commits: " + ", ".join(changed)
    return None


def check_approval(reviews: list[dict[str, Any]]) -> bool:
    """Whether the latest trusted reviews approve the PR.

    Only each user's most recent submitted review counts. A single
    outstanding change request outweighs any number of approvals.
    """
    latest: dict[int, dict[str, Any]] = {}
    for review in reviews:
        if review.get("author_association") not in TRUSTED_ASSOCIATIONS:
            continue
        if review.get("state") == "PENDING":
            continue
        user_id = review["user"]["id"]
        current = latest.get(user_id)
        if current is None or review["submitted_at"] > current["submitted_at"]:
            latest[user_id] = review
    states = [review["state"] for review in latest.values()]
    if "CHANGES_REQUESTED" in states:
        print("  Changes requested by at least one trusted reviewer")
        return False
    return "APPROVED" in states


def _fetch_state(github: GitHubClient, ref: str) -> LibrarianState:
    return parse_state_text(github.get_raw_content(STATE_PATH, ref))


def check_commits(
    github: GitHubClient, pr: dict[str, Any], cfg: Config
) -> Readiness:
    """Validate the PR's release commits and look for intervening changes."""
    number = pr["number"]
    base_ref = pr["base"]["ref"]
    head_state = _fetch_state(github, base_ref)
    baseline_state = _fetch_state(github, cfg.baseline_commit)

    commits = [_commit_from_api(c) for c in github.get_diff_commits(number)]
    try:
        releases = parse_commits_for_releases(commits, cfg.release_id)
    except ReleaseRecordError as exc:
        return report_blocking_reason(github, number, str(exc))
    for release in releases:
        if release.release_notes.startswith("FIXME"):
            return report_blocking_reason(
                github, number, f"Release notes for '{release.library_id}' need fixing"
            )

    base_commits = [
        github.get_commit(c["sha"])
        for c in github.compare_commits(cfg.baseline_commit, base_ref)
    ]
    print(
        f"  Checking {len(base_commits)} commits against {len(releases)} libraries "
        "for intervening changes"
    )
    suspects = []
    for release in releases:
        reason = check_release(release, head_state, baseline_state, base_commits)
        if reason:
            suspects.append(f"{release.library_id}: {reason}\n")
    if suspects:
        return report_blocking_reason(
            github,
            number,
            "At least one library being released may have changed since release "
            "PR creation:\n\n" + "".join(suspects),
        )
    return Readiness.READY


def check_readiness(
    github: GitHubClient,
    number: int,
    cfg: Config,
    sleep: Callable[[float], None] = time.sleep,
) -> Readiness:
    """Run one round of merge checks.

    Raises:
        MergeAbortedError: If the PR was merged, or closed and not reopened
                           within a minute.
    """
    pr = github.get_pull_request(number)
    if pr.get("merged"):
        raise MergeAbortedError("pull request already merged")
    if pr.get("closed_at"):
        print("  PR is closed; checking again in a minute")
        sleep(SLEEP_DELAY)
        pr = github.get_pull_request(number)
        if pr.get("closed_at"):
            raise MergeAbortedError("pull request closed")
        print("  PR has been reopened")

    labels = {label["name"] for label in pr.get("labels", [])}
    if MERGE_BLOCKED_LABEL in labels:
        print(f"  PR still has '{MERGE_BLOCKED_LABEL}' label; skipping other checks")
        return Readiness.WAIT
    if DO_NOT_MERGE_LABEL not in labels:
        return report_blocking_reason(
            github, number, f"Label '{DO_NOT_MERGE_LABEL}' has been removed already"
        )
    if not pr.get("mergeable"):
        return report_blocking_reason(
            github, number, "PR is not mergeable (e.g. there are conflicting commit)"
        )

    for check_run in github.get_check_runs(pr["head"]["sha"]):
        if (check_run.get("app") or {}).get("id") in EXEMPT_APP_IDS:
            continue
        if check_run.get("status") != "completed":
            print(f"  Check '{check_run['name']}' is not complete")
            return Readiness.WAIT
        if check_run.get("conclusion") != "success":
            return report_blocking_reason(
                github, number, f"Check '{check_run['name']}' failed"
            )

    commit_status = check_commits(github, pr, cfg)
    if commit_status != Readiness.READY:
        return commit_status

    if not check_approval(github.get_reviews(number)):
        print("  PR not yet approved")
        return Readiness.WAIT
    print("  All checks passed, ready to merge")
    return Readiness.READY


def wait_for_readiness(
    github: GitHubClient,
    number: int,
    cfg: Config,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Poll once a minute, indefinitely, until the PR is ready to merge."""
    while check_readiness(github, number, cfg, sleep) != Readiness.READY:
        print("  Sleeping before next check")
        sleep(SLEEP_DELAY)


def wait_for_sync(
    cfg: Config,
    merge_commit: str,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
) -> None:
    """Wait until the merge commit is visible at ``--sync-url-prefix``.

    Raises:
        LibrarianError: On an unexpected response or after ten minutes.
    """
    if not cfg.sync_url_prefix:
        return
    url = cfg.sync_url_prefix + merge_commit
    headers = {"Authorization": f"Bearer {cfg.sync_auth_token}"}
    deadline = clock() + SYNC_TIMEOUT
    while clock() < deadline:
        response = requests.get(url, headers=headers, timeout=30)
        if response.status_code == 200:
            print("  Merge commit has synchronized")
            return
        if response.status_code != 404:
            raise MergeAbortedError(
                f"unexpected status fetching commit: {response.status_code} - {response.text}"
            )
        print("  Merge commit has not yet synchronized; sleeping")
        sleep(SLEEP_DELAY)
    raise MergeAbortedError("timed out waiting for commit to sync")


def merge_release_pr(
    cfg: Config,
    github: GitHubClient | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """Wait for the release PR to become ready, merge it and wait for sync.

    Returns:
        The merge commit SHA, also written as ``_MERGED_RELEASE_COMMIT``.
    """
    if cfg.sync_url_prefix and not cfg.sync_auth_token:
        raise ConfigError("--sync-url-prefix specified, but no sync auth token present")
    metadata = parse_pull_request_url(cfg.pull_request)
    github = github or GitHubClient(cfg.github_token, metadata.repo)

    step(f"Waiting for {metadata} to be ready")
    wait_for_readiness(github, metadata.number, cfg, sleep)

    step("Merging release pull request")
    github.remove_label(metadata.number, DO_NOT_MERGE_LABEL)
    merge_commit = github.merge_pull_request(metadata.number)
    print(f"  Merged as {merge_commit}")
    append_to_env_file(cfg.env_file_path, "_MERGED_RELEASE_COMMIT", merge_commit)

    if cfg.sync_url_prefix:
        step("Waiting for merge commit to sync")
    wait_for_sync(cfg, merge_commit, sleep)
    return merge_commit
