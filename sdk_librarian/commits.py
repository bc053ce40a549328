"""Conventional commit parsing.

Turns raw git commit messages into ``Change`` records. One git commit can
yield several changes: the message may be replaced wholesale by a
``BEGIN_COMMIT_OVERRIDE``/``END_COMMIT_OVERRIDE`` block, and may carry
extra changes in ``BEGIN_NESTED_COMMIT``/``END_NESTED_COMMIT`` blocks
(used when one squashed commit covers several logical changes).

Messages whose header does not follow the convention are skipped with a
warning rather than rejected.
"""

from __future__ import annotations

import re

from .models import Change
from .shell import warn
from .versions import ChangeLevel

BREAKING_CHANGE_KEY = "BREAKING CHANGE"

BEGIN_COMMIT_OVERRIDE = "BEGIN_COMMIT_OVERRIDE"
END_COMMIT_OVERRIDE = "END_COMMIT_OVERRIDE"
BEGIN_NESTED_COMMIT = "BEGIN_NESTED_COMMIT"
END_NESTED_COMMIT = "END_NESTED_COMMIT"

HEADER_RE = re.compile(
    r"^(?P<type>\w+)(?:\((?P<scope>.*)\))?(?P<breaking>!)?:\s(?P<description>.*)"
)
FOOTER_RE = re.compile(rf"^([A-Za-z-]+|{BREAKING_CHANGE_KEY}):\s(.*)")


def extract_override(message: str) -> str:
    """Return the override block of ``message``, or ``message`` itself.

    An unterminated override block is ignored.
    """
    begin = message.find(BEGIN_COMMIT_OVERRIDE)
    if begin == -1:
        return message
    after = message[begin + len(BEGIN_COMMIT_OVERRIDE) :]
    end = after.find(END_COMMIT_OVERRIDE)
    if end == -1:
        return message
    return after[:end].strip()


def split_nested(message: str) -> list[tuple[str, bool]]:
    """Split a message into (text, is_nested) parts.

    The text before the first nested block is the primary commit; each
    terminated nested block adds one more part.
    """
    pieces = message.split(BEGIN_NESTED_COMMIT)
    parts: list[tuple[str, bool]] = []
    if pieces[0].strip():
        parts.append((pieces[0].strip(), False))
    for piece in pieces[1:]:
        end = piece.find(END_NESTED_COMMIT)
        if end == -1:
            continue
        text = piece[:end].strip()
        if text:
            parts.append((text, True))
    return parts


def _separate_body_and_footers(lines: list[str]) -> tuple[list[str], list[str]]:
    # Footers start after the first blank line that is followed by a footer.
    for i, line in enumerate(lines):
        if line.strip():
            continue
        following = next((rest for rest in lines[i + 1 :] if rest.strip()), None)
        if following is not None and FOOTER_RE.match(following):
            return lines[:i], lines[i + 1 :]
    return lines, []


def _parse_footers(lines: list[str]) -> tuple[dict[str, str], bool]:
    footers: dict[str, str] = {}
    breaking = False
    last_key = ""
    for line in lines:
        match = FOOTER_RE.match(line)
        if not match:
            # Continuation of a multi-line footer value
            if last_key and line.strip():
                footers[last_key] += "\n" + line
            continue
        key, value = match.group(1).strip(), match.group(2).strip()
        footers[key] = value
        last_key = key
        if key == BREAKING_CHANGE_KEY:
            breaking = True
    return footers, breaking


def parse_change(
    text: str, *, sha: str = "", library_id: str = "", nested: bool = False
) -> Change | None:
    """Parse a single conventional commit message.

    Returns:
        The parsed change, or None if the header is not conventional.
    """
    lines = text.strip().split("\n")
    header = HEADER_RE.match(lines[0])
    if not header:
        warn(f"Invalid conventional commit message in {sha or 'commit'}: {lines[0]!r}")
        return None
    body_lines, footer_lines = _separate_body_and_footers(lines[1:])
    footers, footer_breaking = _parse_footers(footer_lines)
    return Change(
        type=header.group("type"),
        scope=header.group("scope") or "",
        subject=header.group("description"),
        body="\n".join(body_lines).strip(),
        footers=footers,
        is_breaking=header.group("breaking") == "!" or footer_breaking,
        is_nested=nested,
        sha=sha,
        library_id=library_id,
    )


def parse_commits(message: str, sha: str = "", library_id: str = "") -> list[Change]:
    """Parse a git commit message into zero or more changes.

    Args:
        message: Full commit message.
        sha: Commit hash recorded on each change.
        library_id: Library the commit is attributed to.

    Raises:
        ValueError: If the message is empty.
    """
    if not message.strip():
        raise ValueError(f"empty commit message for {sha or 'commit'}")
    changes: list[Change] = []
    for text, nested in split_nested(extract_override(message)):
        change = parse_change(text, sha=sha, library_id=library_id, nested=nested)
        if change is not None:
            changes.append(change)
    return changes


def change_level(change: Change) -> ChangeLevel:
    """The version bump a single change requires.

    Nested changes always count as a minor change, so that a generation
    commit bundling several API changes bumps at least the minor version.
    """
    if change.is_nested:
        return ChangeLevel.MINOR
    if change.is_breaking:
        return ChangeLevel.MAJOR
    if change.type == "feat":
        return ChangeLevel.MINOR
    if change.type == "fix":
        return ChangeLevel.PATCH
    return ChangeLevel.NONE


def highest_change(changes: list[Change]) -> ChangeLevel:
    """The largest bump required across ``changes``."""
    return max((change_level(c) for c in changes), default=ChangeLevel.NONE)
