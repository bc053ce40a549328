"""Language repository access through the git CLI.

``Repository`` wraps a working tree and exposes only the operations the
pipelines need: cleanliness checks, committing, branching, undoing
commits, and history queries scoped to paths.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel

from .errors import ConfigError
from .models import GitHubRepo
from .shell import git

# Field and record separators for `git log` output, and the format escapes
# git expands to them. NUL cannot appear in an argument.
_FS = "\x00"
_RS = "\x1e"
_LOG_FORMAT = "--format=%H%x00%ct%x00%B%x1e"


class Commit(BaseModel):
    sha: str
    message: str
    when: datetime


def _is_remote(repo: str) -> bool:
    return repo.startswith(("https://", "http://", "git@", "ssh://"))


def parse_remote(url: str) -> GitHubRepo | None:
    """Parse a GitHub remote URL into owner and name.

    Handles "https://github.com/owner/name(.git)" and
    "git@github.com:owner/name(.git)". Returns None for non-GitHub remotes.
    """
    for prefix in ("https://github.com/", "git@github.com:", "ssh://git@github.com/"):
        if url.startswith(prefix):
            parts = url[len(prefix) :].removesuffix("/").removesuffix(".git").split("/")
            if len(parts) == 2 and all(parts):
                return GitHubRepo(owner=parts[0], name=parts[1])
    return None


class Repository:
    """A local git working tree."""

    def __init__(self, path: Path) -> None:
        self.dir = path

    def _git(self, *args: str, check: bool = True) -> str:
        return git(*args, cwd=self.dir, check=check)

    @classmethod
    def clone_or_open(cls, repo: str, work_root: Path) -> Repository:
        """Open a local repository, or clone a remote one under ``work_root``."""
        if not _is_remote(repo):
            path = Path(repo).resolve()
            if not (path / ".git").exists():
                raise ConfigError(f"{repo} is not a git repository")
            return cls(path)
        name = repo.rstrip("/").rsplit("/", 1)[-1].removesuffix(".git")
        path = work_root / name
        if (path / ".git").exists():
            print(f"  Reusing clone at {path}")
        else:
            print(f"  Cloning {repo} into {path}")
            git("clone", repo, str(path))
        return cls(path)

    @classmethod
    def open_clean(cls, repo: str, work_root: Path) -> Repository:
        """Like clone_or_open, but require a working tree without changes.

        Raises:
            ConfigError: If the working tree has uncommitted changes.
        """
        repository = cls.clone_or_open(repo, work_root)
        if not repository.is_clean():
            raise ConfigError(f"repository {repository.dir} has uncommitted changes")
        return repository

    def is_clean(self) -> bool:
        return self._git("status", "--porcelain") == ""

    def add_all(self) -> None:
        self._git("add", "--all")

    def commit(self, message: str) -> None:
        self._git("commit", "--quiet", "-m", message)

    def commit_all(self, message: str) -> bool:
        """Stage everything and commit it.

        Returns:
            False, without committing, if there was nothing to commit.
        """
        self.add_all()
        if self.is_clean():
            print("  No changes to commit")
            return False
        self.commit(message)
        return True

    def create_branch(self, name: str) -> None:
        self._git("checkout", "-b", name)

    def push(self, branch: str) -> None:
        """Push HEAD to ``branch`` on origin."""
        self._git("push", "origin", f"HEAD:refs/heads/{branch}")

    def checkout(self, ref: str) -> None:
        self._git("checkout", "--quiet", ref)

    def clean_working_tree(self) -> None:
        """Discard every uncommitted change, including untracked files."""
        self._git("reset", "--hard", "--quiet", "HEAD")
        self._git("clean", "-fd", "--quiet")

    def revert_commits(self, count: int) -> None:
        """Drop the last ``count`` commits and any uncommitted changes."""
        if count <= 0:
            return
        self.clean_working_tree()
        self._git("reset", "--hard", "--quiet", f"HEAD~{count}")

    def head_hash(self) -> str:
        return self._git("rev-parse", "HEAD")

    def has_tag(self, tag: str) -> bool:
        ref = f"refs/tags/{tag}"
        return self._git("rev-parse", "-q", "--verify", ref, check=False) != ""

    def commits_for_paths_since(
        self, paths: list[str], since: str | None
    ) -> list[Commit]:
        """Commits touching any of ``paths`` after ``since``, newest first.

        With ``since`` None the whole history is searched. Commits are
        returned in git log order, which is newest first.
        """
        revision = f"{since}..HEAD" if since else "HEAD"
        out = self._git("log", _LOG_FORMAT, revision, "--", *paths)
        commits: list[Commit] = []
        for record in out.split(_RS):
            record = record.strip("\n")
            if not record:
                continue
            sha, timestamp, message = record.split(_FS, 2)
            commits.append(
                Commit(
                    sha=sha,
                    message=message.strip(),
                    when=datetime.fromtimestamp(int(timestamp), tz=timezone.utc),
                )
            )
        return commits

    def commits_for_paths_since_tag(self, paths: list[str], tag: str) -> list[Commit]:
        """Commits touching ``paths`` since ``tag``, or all of them if it is absent."""
        if not self.has_tag(tag):
            print(f"  Tag {tag} not found, using the full history")
            return self.commits_for_paths_since(paths, None)
        return self.commits_for_paths_since(paths, tag)

    def changed_files(self, sha: str) -> list[str]:
        out = self._git("diff-tree", "--no-commit-id", "--name-only", "-r", "--root", sha)
        return out.splitlines()

    def commit_message(self, sha: str) -> str:
        return self._git("log", "-1", "--format=%B", sha)

    def remote_urls(self) -> dict[str, str]:
        """Map of remote name to fetch URL."""
        remotes: dict[str, str] = {}
        for line in self._git("remote", "-v").splitlines():
            name, url, kind = line.split()
            if kind == "(fetch)":
                remotes[name] = url
        return remotes

    def github_repo(self) -> GitHubRepo:
        """The GitHub repository this clone pushes to.

        Prefers the "origin" remote; otherwise there must be exactly one
        GitHub remote.

        Raises:
            ConfigError: If no single GitHub remote can be identified.
        """
        remotes = self.remote_urls()
        if "origin" in remotes and (found := parse_remote(remotes["origin"])):
            return found
        candidates = [r for r in map(parse_remote, remotes.values()) if r]
        if len(candidates) != 1:
            raise ConfigError(
                f"expected exactly one GitHub remote in {self.dir}, found {len(candidates)}"
            )
        return candidates[0]
