"""Release preparation.

``release init`` works out which libraries have releasable changes since
their last release tag, bumps their versions, lets the language container
update version files and changelogs, and opens a release pull request with
one commit per library:

1. Collect conventional commits under each library's source roots since
   its release tag
2. Derive the next version (explicit override > commits + config override)
3. Run the container's release-init against a partial copy of the repo
4. Copy the results back and commit each library with release trailers
5. Open the pull request labelled ``release:pending`` and ``do-not-merge``
"""

from __future__ import annotations

from datetime import datetime, timezone

from . import __version__
from .commits import highest_change, parse_commits
from .config import Config
from .container import ContainerDriver, resolve_image
from .errors import ConfigError, NothingToReleaseError
from .files import (
    append_to_env_file,
    copy_global_allowlist,
    copy_librarian_dir,
    copy_library_files,
    fresh_dir,
)
from .generate import max_commits
from .gitrepo import Repository
from .models import (
    AutomationLevel,
    Change,
    GitHubRepo,
    LibrarianConfig,
    LibraryState,
    PullRequestContent,
    PullRequestMetadata,
)
from .pullrequest import apply_commit_limit, create_pull_request, format_timestamp
from .release_records import DO_NOT_MERGE_LABEL, PENDING_LABEL, release_commit_message
from .shell import step
from .state import (
    LIBRARIAN_DIR,
    RELEASE_INIT_RESPONSE,
    load_librarian_config,
    load_state,
    read_response,
    save_state,
)
from .versions import compare_versions, derive_next, max_version

INITIAL_VERSION = "0.0.0"

# Only these commit types appear in release notes, in this order.
RELEASE_NOTE_HEADINGS = {
    "feat": "Features",
    "fix": "Bug Fixes",
    "perf": "Performance Improvements",
    "revert": "Reverts",
    "docs": "Documentation",
}


def should_exclude(files: list[str], exclude_paths: list[str]) -> bool:
    """True if every changed file lies under one of ``exclude_paths``."""
    return all(any(f.startswith(p) for p in exclude_paths) for f in files)


def commits_since_last_release(repo: Repository, library: LibraryState) -> list[Change]:
    """Conventional changes to ``library`` since its current release tag.

    Commits that only touch ``release_exclude_paths`` are ignored. If the
    release tag does not exist, the whole history counts.
    """
    changes: list[Change] = []
    for commit in repo.commits_for_paths_since_tag(library.source_roots, library.tag()):
        if should_exclude(repo.changed_files(commit.sha), library.release_exclude_paths):
            continue
        changes.extend(parse_commits(commit.message, sha=commit.sha, library_id=library.id))
    return changes


def determine_next_version(
    changes: list[Change], current: str, config_next_version: str = ""
) -> str:
    """Next version implied by ``changes``, raised to the configured next_version.

    Examples:
        feat change on 1.2.3                  → 1.3.0
        feat change on 1.2.3, config "2.0.0"  → 2.0.0
        feat change on 1.2.3, config "1.0.0"  → 1.3.0
    """
    from_commits = derive_next(highest_change(changes), current)
    if not config_next_version:
        return from_commits
    return max_version(from_commits, config_next_version)


def update_library_for_release(
    library: LibraryState,
    changes: list[Change],
    *,
    library_version: str = "",
    config_next_version: str = "",
    named: bool = False,
) -> bool:
    """Queue a release of ``library`` if there is one to make.

    Args:
        library: Library to update in place.
        changes: Changes since the last release.
        library_version: Explicit version to release. Must be greater than
                         the current version.
        config_next_version: ``next_version`` from the repository config.
        named: Whether the user asked for this library specifically.

    Returns:
        True if a release was queued, False if the library was skipped.

    Raises:
        ConfigError: If ``library_version`` is not greater than the current
                     version.
        NothingToReleaseError: If a named library has nothing to release.
    """
    current = library.version or INITIAL_VERSION
    if library_version:
        next_version = max_version(current, library_version)
        if compare_versions(next_version, current) <= 0:
            raise ConfigError(
                f"version {library_version} is not SemVer greater than the current "
                f"version {current} of {library.id}"
            )
    else:
        next_version = determine_next_version(changes, current, config_next_version)
        if compare_versions(next_version, current) <= 0:
            if not named:
                print(f"  {library.id}: no releasable changes")
                return False
            raise NothingToReleaseError(
                f"{library.id} has no releasable changes. "
                "Use the version flag to force a release"
            )

    library.previous_version = library.version
    library.changes = changes
    library.version = next_version
    library.release_triggered = True
    print(f"  {library.id}: {current} → {next_version}")
    return True


def format_release_notes(library: LibraryState, repo: GitHubRepo, date: str) -> str:
    """Render the Markdown release notes for a queued release.

    Example:
        ## [1.3.0](https://github.com/o/r/compare/lib-1.2.0...lib-1.3.0) (2025-01-31)

        ### Features

        * add Secret.tags ([abcdef0](https://github.com/o/r/commit/abcdef0...))
    """
    base = f"https://github.com/{repo.full_name}"
    previous_tag = library.tag(library.previous_version)
    new_tag = library.tag()
    lines = [f"## [{library.version}]({base}/compare/{previous_tag}...{new_tag}) ({date})"]
    for commit_type, heading in RELEASE_NOTE_HEADINGS.items():
        typed = [c for c in library.changes if c.type == commit_type]
        if not typed:
            continue
        lines += ["", f"### {heading}", ""]
        for change in typed:
            lines.append(f"* {change.subject} ([{change.sha[:7]}]({base}/commit/{change.sha}))")
    return "\n".join(lines)


def format_release_body(image: str, notes: list[tuple[LibraryState, str]]) -> str:
    """Render the release pull request body: one details block per library."""
    sections = [f"Librarian Version: {__version__}\nLanguage Image: {image}"]
    for library, text in notes:
        sections.append(
            f"<details><summary>{library.id}: {library.version}</summary>\n\n"
            f"{text}\n</details>"
        )
    return "\n\n".join(sections)


def _config_next_version(config: LibrarianConfig | None, library_id: str) -> str:
    if config is None:
        return ""
    library_config = config.library_config_for(library_id)
    return library_config.next_version if library_config else ""


def run_release_init(cfg: Config, now: datetime | None = None) -> PullRequestMetadata | None:
    """Queue releases for libraries with releasable changes and open a release PR.

    Result variables ``_BASELINE_COMMIT``, ``_RELEASE_ID`` and (when a pull
    request was created) ``_PR_NUMBER`` are appended to the env file for
    the merge step.

    Raises:
        ConfigError: If ``--library`` names an unknown library or
                     ``--library-version`` is not an upgrade.
        NothingToReleaseError: If the named library has nothing to release.
        ContainerError: If the release-init container fails.
    """
    now = now or datetime.now(timezone.utc)
    step("Opening repository")
    repo = Repository.open_clean(cfg.repo, cfg.work_root)
    state = load_state(repo.dir)
    config = load_librarian_config(repo.dir)
    baseline = repo.head_hash()
    release_id = f"release-{format_timestamp(now)}"

    step("Determining release versions")
    candidates = state.libraries
    if cfg.library:
        library = state.library_by_id(cfg.library)
        if library is None:
            raise ConfigError(f"unable to find library for release: {cfg.library}")
        candidates = [library]
    released: list[LibraryState] = []
    for library in candidates:
        if not cfg.library and library.release_automation_level == AutomationLevel.BLOCKED:
            print(f"  {library.id}: release blocked, skipping")
            continue
        changes = commits_since_last_release(repo, library)
        if update_library_for_release(
            library,
            changes,
            library_version=cfg.library_version,
            config_next_version=_config_next_version(config, library.id),
            named=bool(cfg.library),
        ):
            released.append(library)
    if not released:
        print("  No libraries need to be released")
        return None

    step("Running release-init container")
    partial_repo = fresh_dir(cfg.work_root / "release-init")
    output_dir = fresh_dir(cfg.work_root / "output")
    for library in released:
        copy_library_files(state, partial_repo, library.id, repo.dir)
    copy_librarian_dir(partial_repo, repo.dir)
    copy_global_allowlist(config, partial_repo, repo.dir, include_read_only=True)
    container = ContainerDriver(resolve_image(cfg, state), cfg)
    container.release_init(state, partial_repo, output_dir, cfg.library, cfg.library_version)
    read_response(partial_repo / LIBRARIAN_DIR / RELEASE_INIT_RESPONSE)

    step("Committing releases")
    github_repo = repo.github_repo()
    date = now.strftime("%Y-%m-%d")
    # Each commit records only its own library's release in the state file.
    persisted = load_state(repo.dir)
    content = PullRequestContent()
    notes: list[tuple[LibraryState, str]] = []
    for index, library in enumerate(released):
        copy_library_files(state, repo.dir, library.id, output_dir)
        if index == 0:
            copy_global_allowlist(config, repo.dir, output_dir, include_read_only=False)
        persisted.libraries = [
            library if lib.id == library.id else lib for lib in persisted.libraries
        ]
        save_state(repo.dir, persisted)
        text = format_release_notes(library, github_repo, date)
        repo.commit_all(release_commit_message(library.id, library.version, release_id, text))
        content.add_success(f"Release library {library.id} version {library.version}")
        notes.append((library, text))

    excess = apply_commit_limit(content, repo, max_commits(config))
    notes = notes[: len(content.successes)]

    append_to_env_file(cfg.env_file_path, "_BASELINE_COMMIT", baseline)
    append_to_env_file(cfg.env_file_path, "_RELEASE_ID", release_id)
    pr = create_pull_request(
        content,
        repo=repo,
        cfg=cfg,
        title_prefix="chore: Library release",
        branch_type="release",
        description_suffix=format_release_body(state.image, notes),
        labels=[PENDING_LABEL, DO_NOT_MERGE_LABEL],
        excess=excess,
        now=now,
    )
    if pr is not None:
        append_to_env_file(cfg.env_file_path, "_PR_NUMBER", str(pr.number))
    return pr
