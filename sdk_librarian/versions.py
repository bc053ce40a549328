"""Version parsing, comparison and bumping utilities.

Handles conversion between version strings and semver objects, with
special handling for incomplete version strings (e.g., "1.0" → "1.0.0").
Comparisons follow full semver precedence, prerelease tags included.
"""

from __future__ import annotations

import re
from enum import IntEnum

import semver

_SUFFIX = re.compile(r"[-+]")


class ChangeLevel(IntEnum):
    """The size of version bump a set of changes requires, ordered."""

    NONE = 0
    PATCH = 1
    MINOR = 2
    MAJOR = 3


def parse_version(version_str: str) -> semver.Version:
    """Parse a version string into a semver.Version object.

    Handles incomplete versions by padding with zeros:
    - "1" → "1.0.0"
    - "1.2" → "1.2.0"
    - "1.2.3-beta.1" → "1.2.3-beta.1"

    Raises:
        ValueError: If the string is not a valid (padded) semver version.
    """
    match = _SUFFIX.search(version_str)
    core, suffix = (
        (version_str[: match.start()], version_str[match.start() :])
        if match
        else (version_str, "")
    )
    parts = core.split(".")
    # Pad with zeros to ensure we have at least 3 parts
    while len(parts) < 3:
        parts.append("0")
    return semver.Version.parse(".".join(parts) + suffix)


def is_valid(version_str: str) -> bool:
    try:
        parse_version(version_str)
    except ValueError:
        return False
    return True


def compare_versions(a: str, b: str) -> int:
    """Compare two versions by semver precedence.

    Returns:
        -1, 0 or 1 as ``a`` is lower than, equal to or greater than ``b``.
    """
    return parse_version(a).compare(parse_version(b))


def max_version(*versions: str) -> str:
    """Return the highest of ``versions``, ignoring invalid ones.

    Returns "" if no valid version was given.
    """
    best = ""
    for candidate in versions:
        if not is_valid(candidate):
            continue
        if not best or compare_versions(candidate, best) > 0:
            best = candidate
    return best


def derive_next(level: ChangeLevel, current: str) -> str:
    """Compute the next version for a change of size ``level``.

    Prereleases only advance their prerelease number, whatever the level.
    Before 1.0.0, breaking changes and features bump the minor version.

    Examples:
        derive_next(ChangeLevel.PATCH, "1.2.0") → "1.2.1"
        derive_next(ChangeLevel.MAJOR, "1.2.0") → "2.0.0"
        derive_next(ChangeLevel.MAJOR, "0.4.1") → "0.5.0"
        derive_next(ChangeLevel.MINOR, "1.0.0-beta") → "1.0.0-beta.1"
        derive_next(ChangeLevel.MINOR, "1.0.0-beta.1") → "1.0.0-beta.2"
    """
    if level == ChangeLevel.NONE:
        return current
    version = parse_version(current)

    if version.prerelease:
        parts = version.prerelease.split(".")
        if parts[-1].isdigit():
            parts[-1] = str(int(parts[-1]) + 1)
        else:
            parts.append("1")
        return str(version.replace(prerelease=".".join(parts), build=None))

    if version.major == 0:
        if level >= ChangeLevel.MINOR:
            return str(version.bump_minor())
        return str(version.bump_patch())

    if level == ChangeLevel.MAJOR:
        return str(version.bump_major())
    if level == ChangeLevel.MINOR:
        return str(version.bump_minor())
    return str(version.bump_patch())
