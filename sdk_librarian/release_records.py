"""Read releases back out of release commits and release pull requests.

Release commits carry three trailers that tie them to a release batch::

    chore: Release library secretmanager version 1.3.0

    <release notes>

    Librarian-Release-Library: secretmanager
    Librarian-Release-Version: 1.3.0
    Librarian-Release-ID: release-20250131T093000Z

Release pull request bodies hold one ``<details>`` block per library, with
the summary ``<library>: <version>``.
"""

from __future__ import annotations

import re

from .errors import ReleaseRecordError
from .gitrepo import Commit
from .models import LibraryRelease, ReleaseNote
from .shell import warn

RELEASE_TITLE_PREFIX = "chore: Release library "
TRAILER_PREFIX = "Librarian-Release"
LIBRARY_TRAILER = "Librarian-Release-Library"
VERSION_TRAILER = "Librarian-Release-Version"
RELEASE_ID_TRAILER = "Librarian-Release-ID"

PENDING_LABEL = "release:pending"
DONE_LABEL = "release:done"
DO_NOT_MERGE_LABEL = "do-not-merge"

_DETAILS_RE = re.compile(r"<details><summary>(.*?)</summary>(.*?)</details>", re.DOTALL)
_SUMMARY_RE = re.compile(r"(.*?): (v?\d+\.\d+\.\d+(?:[-+][0-9A-Za-z.+-]*)?)")


def release_commit_message(
    library_id: str, version: str, release_id: str, notes: str
) -> str:
    """Build the commit message for one library's release."""
    return (
        f"{RELEASE_TITLE_PREFIX}{library_id} version {version}\n\n"
        f"{notes.strip()}\n\n"
        f"{LIBRARY_TRAILER}: {library_id}\n"
        f"{VERSION_TRAILER}: {version}\n"
        f"{RELEASE_ID_TRAILER}: {release_id}\n"
    )


def _trailer(key: str, lines: list[str]) -> str:
    prefix = f"{key}: "
    for line in lines:
        if line.startswith(prefix):
            return line[len(prefix) :].strip()
    raise ReleaseRecordError(f"unable to find metadata value for key '{key}'")


def parse_commit_message_for_release(message: str, sha: str) -> LibraryRelease:
    """Recover a release from a release commit message.

    A leading release title and the blank line after it are dropped. A
    title that was edited by hand is kept as part of the notes.

    Raises:
        ReleaseRecordError: If any of the three release trailers is missing.
    """
    lines = message.split("\n")
    if lines and lines[0].startswith(RELEASE_TITLE_PREFIX):
        lines = lines[1:]
        if lines and lines[0] == "":
            lines = lines[1:]
    notes = "\n".join(line for line in lines if not line.startswith(TRAILER_PREFIX))
    return LibraryRelease(
        library_id=_trailer(LIBRARY_TRAILER, lines),
        version=_trailer(VERSION_TRAILER, lines),
        release_id=_trailer(RELEASE_ID_TRAILER, lines),
        commit_hash=sha,
        release_notes=notes.strip(),
    )


def parse_commits_for_releases(
    commits: list[Commit], release_id: str
) -> list[LibraryRelease]:
    """Parse every commit as a release belonging to ``release_id``.

    Raises:
        ReleaseRecordError: If a commit is not a release commit, or belongs
                            to a different release.
    """
    releases: list[LibraryRelease] = []
    for commit in commits:
        release = parse_commit_message_for_release(commit.message, commit.sha)
        if release.release_id != release_id:
            raise ReleaseRecordError(
                f"commit {commit.sha} has release ID {release.release_id!r}, "
                f"expected {release_id!r}"
            )
        releases.append(release)
    return releases


def parse_pull_request_body(body: str) -> list[ReleaseNote]:
    """Extract per-library release notes from a release pull request body.

    Blocks are returned in document order. A block whose summary is not
    ``<library>: <version>`` is skipped with a warning.
    """
    notes: list[ReleaseNote] = []
    for summary, content in _DETAILS_RE.findall(body):
        match = _SUMMARY_RE.fullmatch(summary.strip())
        if not match:
            warn(f"skipping release notes block with summary {summary!r}")
            continue
        notes.append(
            ReleaseNote(
                library=match.group(1).strip(),
                version=match.group(2),
                body=content.strip(),
            )
        )
    return notes
