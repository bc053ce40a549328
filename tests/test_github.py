"""Tests for sdk_librarian.github."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest

from sdk_librarian.errors import ConfigError
from sdk_librarian.github import GitHubClient, parse_pull_request_url
from sdk_librarian.models import GitHubRepo


@pytest.fixture
def client() -> GitHubClient:
    return GitHubClient("token", GitHubRepo(owner="octo", name="sdk"))


class TestParsePullRequestUrl:
    """Tests for parse_pull_request_url()."""

    def test_valid_url(self) -> None:
        pr = parse_pull_request_url("https://github.com/octo/sdk/pull/42")

        assert pr.repo == GitHubRepo(owner="octo", name="sdk")
        assert pr.number == 42
        assert str(pr) == "https://github.com/octo/sdk/pull/42"

    @pytest.mark.parametrize(
        "url",
        ["https://github.com/octo/sdk/issues/42", "https://github.com/octo/pull/1", "42"],
    )
    def test_invalid_url(self, url: str) -> None:
        with pytest.raises(ConfigError, match="invalid pull request URL"):
            parse_pull_request_url(url)


class TestGitHubClient:
    """Tests for GitHubClient, with gh mocked out."""

    @patch("sdk_librarian.github.gh")
    def test_create_pull_request(self, mock_gh: MagicMock, client: GitHubClient) -> None:
        mock_gh.return_value = json.dumps({"number": 7})

        pr = client.create_pull_request("librarian-regen-x", "main", "title", "body")

        assert pr.number == 7
        args = mock_gh.call_args.args
        assert args[:4] == ("api", "-X", "POST", "repos/octo/sdk/pulls")
        assert "head=librarian-regen-x" in args
        assert mock_gh.call_args.kwargs == {"token": "token"}

    @patch("sdk_librarian.github.gh")
    def test_labels_use_array_fields(self, mock_gh: MagicMock, client: GitHubClient) -> None:
        mock_gh.return_value = "[]"

        client.add_labels(7, ["release:pending", "do-not-merge"])

        args = mock_gh.call_args.args
        assert "labels[]=release:pending" in args
        assert "labels[]=do-not-merge" in args

    @patch("sdk_librarian.github.gh")
    def test_booleans_are_typed_fields(self, mock_gh: MagicMock, client: GitHubClient) -> None:
        mock_gh.return_value = json.dumps({"id": 1})

        client.create_release("lib-1.0.0", "abc", "lib 1.0.0", "notes", prerelease=True)

        args = list(mock_gh.call_args.args)
        assert args[args.index("prerelease=true") - 1] == "-F"

    @patch("sdk_librarian.github.gh")
    def test_paginated_results_are_flattened(
        self, mock_gh: MagicMock, client: GitHubClient
    ) -> None:
        mock_gh.return_value = json.dumps([[{"id": 1}], [{"id": 2}]])

        reviews = client.get_reviews(7)

        assert reviews == [{"id": 1}, {"id": 2}]
        assert "--paginate" in mock_gh.call_args.args

    @patch("sdk_librarian.github.gh")
    def test_raw_content(self, mock_gh: MagicMock, client: GitHubClient) -> None:
        mock_gh.return_value = 'image = "x"'

        text = client.get_raw_content(".librarian/state.yaml", "main")

        assert text == 'image = "x"'
        args = mock_gh.call_args.args
        assert "repos/octo/sdk/contents/.librarian/state.yaml" in args
        assert "Accept: application/vnd.github.raw" in args

    @patch("sdk_librarian.github.gh")
    def test_search_is_not_repo_scoped(
        self, mock_gh: MagicMock, client: GitHubClient
    ) -> None:
        mock_gh.return_value = json.dumps({"items": [{"number": 3}, {"number": 5}]})

        numbers = client.search_merged_pull_requests("release:pending", "2025-01-01")

        assert numbers == [3, 5]
        args = mock_gh.call_args.args
        assert args[3] == "search/issues"
        query = next(a for a in args if a.startswith("q="))
        assert "repo:octo/sdk" in query
        assert 'label:"release:pending"' in query

    @patch("sdk_librarian.github.gh")
    def test_create_tag(self, mock_gh: MagicMock, client: GitHubClient) -> None:
        mock_gh.return_value = "{}"

        client.create_tag("release-please-7", "abc123")

        args = mock_gh.call_args.args
        assert "repos/octo/sdk/git/refs" in args
        assert "ref=refs/tags/release-please-7" in args
        assert "sha=abc123" in args

    @patch("sdk_librarian.github.gh")
    def test_merge_uses_rebase(self, mock_gh: MagicMock, client: GitHubClient) -> None:
        mock_gh.return_value = json.dumps({"sha": "merged123"})

        assert client.merge_pull_request(7) == "merged123"
        assert "merge_method=rebase" in mock_gh.call_args.args
