"""GitHub access through the gh CLI.

Every call goes through ``gh api`` so that requests, pagination and
authentication behave exactly as they do for a developer at a terminal.
"""

from __future__ import annotations

import json
import re
from typing import Any

from .errors import ConfigError
from .models import GitHubRepo, PullRequestMetadata
from .shell import gh

_PR_URL_RE = re.compile(r"^https://github\.com/([^/]+)/([^/]+)/pull/(\d+)/?$")


def parse_pull_request_url(url: str) -> PullRequestMetadata:
    """Parse "https://github.com/{owner}/{repo}/pull/{number}".

    Raises:
        ConfigError: If ``url`` is not a pull request URL.
    """
    match = _PR_URL_RE.match(url.strip())
    if not match:
        raise ConfigError(f"invalid pull request URL: {url!r}")
    owner, name, number = match.groups()
    return PullRequestMetadata(repo=GitHubRepo(owner=owner, name=name), number=int(number))


def _field_args(fields: dict[str, Any]) -> list[str]:
    args: list[str] = []
    for key, value in fields.items():
        if isinstance(value, list):
            for item in value:
                args += ["-f", f"{key}[]={item}"]
        elif isinstance(value, bool):
            args += ["-F", f"{key}={str(value).lower()}"]
        else:
            args += ["-f", f"{key}={value}"]
    return args


class GitHubClient:
    """Operations on one GitHub repository."""

    def __init__(self, token: str, repo: GitHubRepo) -> None:
        self.token = token
        self.repo = repo

    def _api(
        self,
        path: str,
        method: str = "GET",
        fields: dict[str, Any] | None = None,
        paginate: bool = False,
        raw: bool = False,
    ) -> Any:
        endpoint = path if path.startswith("search/") else f"repos/{self.repo.full_name}/{path}"
        args = ["api", "-X", method, endpoint, *_field_args(fields or {})]
        if paginate:
            args += ["--paginate", "--slurp"]
        if raw:
            args += ["-H", "Accept: application/vnd.github.raw"]
        out = gh(*args, token=self.token)
        if raw:
            return out
        if not out:
            return None
        data = json.loads(out)
        if paginate:
            # --slurp wraps each page in an outer list.
            return [item for page in data for item in page]
        return data

    def create_pull_request(
        self, head: str, base: str, title: str, body: str
    ) -> PullRequestMetadata:
        data = self._api(
            "pulls",
            "POST",
            {"head": head, "base": base, "title": title, "body": body},
        )
        return PullRequestMetadata(repo=self.repo, number=data["number"])

    def add_labels(self, number: int, labels: list[str]) -> None:
        self._api(f"issues/{number}/labels", "POST", {"labels": labels})

    def remove_label(self, number: int, label: str) -> None:
        self._api(f"issues/{number}/labels/{label}", "DELETE")

    def replace_labels(self, number: int, labels: list[str]) -> None:
        self._api(f"issues/{number}/labels", "PUT", {"labels": labels})

    def add_comment(self, number: int, body: str) -> None:
        self._api(f"issues/{number}/comments", "POST", {"body": body})

    def get_pull_request(self, number: int) -> dict[str, Any]:
        return self._api(f"pulls/{number}")

    def get_reviews(self, number: int) -> list[dict[str, Any]]:
        return self._api(f"pulls/{number}/reviews", paginate=True)

    def get_check_runs(self, ref: str) -> list[dict[str, Any]]:
        pages = self._api(f"commits/{ref}/check-runs", fields={"per_page": 100})
        return pages["check_runs"]

    def get_diff_commits(self, number: int) -> list[dict[str, Any]]:
        """Commits on the pull request branch, oldest first."""
        return self._api(f"pulls/{number}/commits", paginate=True)

    def get_commit(self, sha: str) -> dict[str, Any]:
        """Full commit, including the files it changed."""
        return self._api(f"commits/{sha}")

    def get_branch_head(self, branch: str) -> str:
        return self._api(f"branches/{branch}")["commit"]["sha"]

    def compare_commits(self, base: str, head: str) -> list[dict[str, Any]]:
        """Commits reachable from ``head`` but not from ``base``, oldest first."""
        return self._api(f"compare/{base}...{head}")["commits"]

    def get_raw_content(self, path: str, ref: str) -> str:
        return self._api(f"contents/{path}", fields={"ref": ref}, raw=True)

    def merge_pull_request(self, number: int) -> str:
        """Merge with the rebase strategy and return the merge commit SHA."""
        data = self._api(f"pulls/{number}/merge", "PUT", {"merge_method": "rebase"})
        return data["sha"]

    def create_release(
        self, tag: str, target: str, name: str, body: str, prerelease: bool
    ) -> dict[str, Any]:
        return self._api(
            "releases",
            "POST",
            {
                "tag_name": tag,
                "target_commitish": target,
                "name": name,
                "body": body,
                "prerelease": prerelease,
            },
        )

    def create_tag(self, tag: str, sha: str) -> None:
        """Create a lightweight tag pointing at ``sha``."""
        self._api("git/refs", "POST", {"ref": f"refs/tags/{tag}", "sha": sha})

    def search_merged_pull_requests(self, label: str, since: str) -> list[int]:
        """Numbers of merged pull requests with ``label`` merged after ``since``.

        Args:
            label: Label the pull requests must carry.
            since: ISO date, e.g. "2025-01-31".
        """
        query = (
            f"repo:{self.repo.full_name} is:pr is:merged "
            f'label:"{label}" merged:>={since}'
        )
        data = self._api("search/issues", fields={"q": query, "per_page": 100})
        return [item["number"] for item in data["items"]]
