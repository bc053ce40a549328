"""Turn the outcome of a batch run into a pull request.

Every batch command (generate, configure, release init) accumulates a
``PullRequestContent`` while it works and hands it here at the end. This
module enforces the per-PR commit cap, renders the description and pushes
the branch.
"""

from __future__ import annotations

from datetime import datetime, timezone

from .config import Config
from .errors import PullRequestError
from .github import GitHubClient
from .gitrepo import Repository
from .models import PullRequestContent, PullRequestMetadata
from .shell import step


def format_timestamp(now: datetime) -> str:
    """Format a time as used in PR titles and branch names, e.g. 20250131T093000Z."""
    return now.strftime("%Y%m%dT%H%M%SZ")


def format_list_as_markdown(title: str, items: list[str]) -> str:
    """Render a titled Markdown bullet list, or "" for an empty list."""
    if not items:
        return ""
    lines = "".join(f"- {item}\n" for item in items)
    return f"## {title}\n\n{lines}\n\n"


def apply_commit_limit(
    content: PullRequestContent, repo: Repository, max_commits: int
) -> list[str]:
    """Enforce the maximum number of commits per pull request.

    Successes beyond ``max_commits`` are removed from ``content`` and their
    commits are undone, newest first. Relies on each success matching
    exactly one commit, in order.

    Returns:
        The removed successes, for the "excess" section of the description.
    """
    if max_commits <= 0 or len(content.successes) <= max_commits:
        return []
    excess = content.successes[max_commits:]
    content.successes = content.successes[:max_commits]
    print(f"  {len(excess)} excess commits created; winding back the repository")
    repo.revert_commits(len(excess))
    return excess


def build_description(
    content: PullRequestContent, excess: list[str], suffix: str = ""
) -> str:
    text = (
        format_list_as_markdown("Changes in this PR", content.successes)
        + format_list_as_markdown("Errors", content.errors)
        + format_list_as_markdown("Excess changes not included", excess)
    )
    return (text + "\n" + suffix).strip()


def create_pull_request(
    content: PullRequestContent,
    *,
    repo: Repository,
    cfg: Config,
    title_prefix: str,
    branch_type: str,
    max_commits: int = 0,
    description_suffix: str = "",
    labels: list[str] | None = None,
    excess: list[str] | None = None,
    github: GitHubClient | None = None,
    now: datetime | None = None,
) -> PullRequestMetadata | None:
    """Create a pull request for the successes recorded in ``content``.

    Args:
        content: Outcome of the batch run. Trimmed in place by the commit cap.
        repo: Repository holding one commit per success.
        cfg: Command configuration (push flag, target branch, token).
        title_prefix: E.g. "feat: API regeneration".
        branch_type: Used in the branch name "librarian-{type}-{timestamp}".
        max_commits: Commit cap; zero means unlimited.
        description_suffix: Extra text appended to the description.
        labels: Labels to apply to the new pull request.
        excess: Successes the caller already dropped to honour the cap.
        github: Client to use; built from the repository remote by default.
        now: Timestamp for the title and branch name.

    Returns:
        The new pull request, or None if nothing was created because there
        was nothing to report or pushing was not requested.

    Raises:
        PullRequestError: If the run produced errors but no successes.
    """
    step("Creating pull request")
    excess = (excess or []) + apply_commit_limit(content, repo, max_commits)

    if content.is_empty():
        print("  No pull request to create, and no errors.")
        return None
    if not content.successes:
        for error in content.errors:
            print(f"  {error}")
        raise PullRequestError("errors encountered but no pull request to create")

    timestamp = format_timestamp(now or datetime.now(timezone.utc))
    title = f"{title_prefix}: {timestamp}"
    description = build_description(content, excess, description_suffix)

    if not cfg.push:
        print("  Push not specified; would have created a pull request with:")
        print(f"\n{title}\n\n{description}")
        return None

    if github is None:
        github = GitHubClient(cfg.github_token, repo.github_repo())
    branch = f"librarian-{branch_type}-{timestamp}"
    repo.push(branch)
    pr = github.create_pull_request(branch, cfg.branch, title, description)
    if labels:
        github.add_labels(pr.number, labels)
    print(f"  Created {pr}")
    return pr
