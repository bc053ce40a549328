"""Remove a library's previously generated files from a repository.

Cleaning works on repository-relative, "/"-separated paths beneath the
library's source roots:

1. Enumerate every path under each source root (the root included).
2. Keep the paths matching at least one remove pattern.
3. Drop the paths matching any preserve pattern. Preserve always wins.
4. Delete files (symlinks included, never followed), then directories
   deepest first so each directory is empty by the time it is removed.

A directory that cannot be removed (usually because it still holds a
preserved file) only produces a warning.
"""

from __future__ import annotations

import os
import re
import stat
from pathlib import Path

from .errors import CleanError
from .models import LibrarianState
from .shell import warn

# The generator input directory survives every clean.
GLOBAL_PRESERVE_PATTERN = r"^\.librarian/generator-input(/.*)?$"


def default_remove_patterns(source_roots: list[str]) -> list[str]:
    """Patterns removing each source root and everything beneath it.

    Examples:
        >>> default_remove_patterns(["src", "docs/v1"])
        ['^src(/.*)?$', '^docs/v1(/.*)?$']
    """
    return [f"^{re.escape(root)}(/.*)?$" for root in source_roots]


def _compile(patterns: list[str]) -> list[re.Pattern[str]]:
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern))
        except re.error as exc:
            raise CleanError(f"invalid regex {pattern!r}: {exc}") from exc
    return compiled


def _enumerate(root_dir: Path, source_root: str) -> list[str]:
    """List ``source_root`` and every path beneath it, relative to root_dir."""
    start = root_dir / source_root
    if not os.path.lexists(start):
        print(f"  Source root {source_root} does not exist, skipping")
        return []
    paths = [Path(source_root).as_posix()]
    if start.is_symlink():
        return paths
    for dirpath, dirnames, filenames in os.walk(start):
        rel = Path(dirpath).relative_to(root_dir)
        for name in [*dirnames, *filenames]:
            paths.append((rel / name).as_posix())
    if len(paths) == 1:
        print(f"  Source root {source_root} is empty")
    return paths


def paths_to_remove(
    root_dir: Path,
    source_roots: list[str],
    remove_patterns: list[str],
    preserve_patterns: list[str],
) -> list[str]:
    """Compute which paths a clean would delete, without deleting anything."""
    remove = _compile(remove_patterns)
    preserve = _compile([*preserve_patterns, GLOBAL_PRESERVE_PATTERN])

    seen: set[str] = set()
    candidates: list[str] = []
    for source_root in source_roots:
        for path in _enumerate(root_dir, source_root):
            if path not in seen:
                seen.add(path)
                candidates.append(path)

    return [
        path
        for path in candidates
        if any(r.search(path) for r in remove)
        and not any(p.search(path) for p in preserve)
    ]


def clean(
    root_dir: Path,
    source_roots: list[str],
    remove_patterns: list[str],
    preserve_patterns: list[str],
) -> None:
    """Delete the paths selected by the remove and preserve patterns.

    Args:
        root_dir: Repository root all patterns are relative to.
        source_roots: Directories to search. Missing roots are skipped.
        remove_patterns: Regexes selecting paths to delete.
        preserve_patterns: Regexes selecting paths to keep regardless.

    Raises:
        CleanError: If a pattern is invalid or a file cannot be removed.
    """
    files: list[str] = []
    dirs: list[str] = []
    selected = paths_to_remove(root_dir, source_roots, remove_patterns, preserve_patterns)
    for path in selected:
        try:
            mode = os.lstat(root_dir / path).st_mode
        except FileNotFoundError:
            continue
        (dirs if stat.S_ISDIR(mode) else files).append(path)

    for path in files:
        try:
            (root_dir / path).unlink()
        except OSError as exc:
            raise CleanError(f"failed to remove {path}: {exc}") from exc

    for path in sorted(dirs, key=lambda d: d.count("/"), reverse=True):
        try:
            (root_dir / path).rmdir()
        except OSError as exc:
            warn(f"failed to remove directory {path}, it may not be empty: {exc}")


def clean_library(state: LibrarianState, repo_dir: Path, library_id: str) -> None:
    """Clean one library's generated files using its own or default patterns."""
    library = state.library_by_id(library_id)
    if library is None:
        raise CleanError(f"library {library_id} not found in state")
    if not library.source_roots:
        print(f"  {library_id}: no source roots, nothing to clean")
        return
    remove = library.remove_regex or default_remove_patterns(library.source_roots)
    clean(repo_dir, library.source_roots, remove, library.preserve_regex)
