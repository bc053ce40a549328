"""Copy library and shared files between repositories and workspaces.

Generated code moves in two directions: from a container's output
directory into the tracked repository, and from the repository into a
scratch "partial repository" handed to release containers and back. All
copies overwrite existing files and recreate symlinks as symlinks rather
than following them.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path

from .models import LibrarianConfig, LibrarianState
from .state import LIBRARIAN_DIR


def _copy_entry(src: Path, dst: Path) -> None:
    dst.parent.mkdir(parents=True, exist_ok=True)
    if src.is_symlink():
        target = os.readlink(src)
        if dst.is_symlink() or dst.exists():
            dst.unlink()
        os.symlink(target, dst)
        return
    if dst.is_symlink():
        dst.unlink()
    shutil.copyfile(src, dst)


def fresh_dir(path: Path) -> Path:
    """Create ``path`` as an empty directory, removing anything already there.

    Work roots can be reused between runs, so scratch directories must not
    carry files from an earlier run.
    """
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True)
    return path


def list_files(root: Path) -> list[Path]:
    """All files (and symlinks) beneath ``root``, relative to it.

    A missing ``root`` has no files.
    """
    if not root.exists():
        return []
    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        base = Path(dirpath)
        for name in filenames:
            found.append((base / name).relative_to(root))
        # Symlinked directories are copied as links, not descended into.
        for name in dirnames:
            if (base / name).is_symlink():
                found.append((base / name).relative_to(root))
    return sorted(found)


def copy_tree(src: Path, dst: Path) -> int:
    """Overlay every file under ``src`` onto ``dst``.

    Returns:
        Number of files copied.

    Raises:
        OSError: On any I/O failure. Callers treat this as fatal.
    """
    files = list_files(src)
    for rel in files:
        _copy_entry(src / rel, dst / rel)
    return len(files)


def copy_library_files(
    state: LibrarianState, dest_root: Path, library_id: str, src_root: Path
) -> None:
    """Copy a library's source roots from ``src_root`` to ``dest_root``.

    Raises:
        KeyError: If the library is not in the state.
        OSError: On any I/O failure.
    """
    library = state.library_by_id(library_id)
    if library is None:
        raise KeyError(f"library {library_id!r} not found")
    for source_root in library.source_roots:
        count = copy_tree(src_root / source_root, dest_root / source_root)
        print(f"  {library_id}: copied {count} files under {source_root}")


def copy_global_allowlist(
    config: LibrarianConfig | None, dst: Path, src: Path, include_read_only: bool
) -> None:
    """Copy the repository-root files listed in the global allowlist.

    Args:
        config: Static repository configuration. None copies nothing.
        dst: Destination repository root.
        src: Source repository root.
        include_read_only: Whether entries marked read-only are copied.
                           True when populating a container workspace,
                           False when pulling results back.
    """
    if config is None:
        return
    for global_file in config.global_files_allowlist:
        if global_file.permissions == "read-only" and not include_read_only:
            continue
        _copy_entry(src / global_file.path, dst / global_file.path)


def copy_librarian_dir(dst: Path, src: Path) -> None:
    """Copy the ``.librarian`` directory from ``src`` to ``dst``."""
    copy_tree(src / LIBRARIAN_DIR, dst / LIBRARIAN_DIR)


def append_to_env_file(path: Path, key: str, value: str) -> None:
    """Append ``key=value`` to ``path`` for downstream CI steps."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a") as f:
        f.write(f"{key}={value}\n")
