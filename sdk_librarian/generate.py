"""Regeneration pipeline: generate → clean → copy → commit → build.

This module drives regeneration of the libraries recorded in a language
repository's state:

1. Skip libraries with nothing to do (no APIs, blocked, filtered out, or
   no new API commits since the last generation)
2. Generate each remaining library into a fresh output directory
3. Clean its previously generated files from the repository
4. Copy the new output over the repository
5. Record the newest API commit in the state and commit everything
6. Build the library; a failed build undoes the commit

Every library that reaches step 6 successfully contributes exactly one
commit. Failures in a container step are recorded against the library and
undone, so the batch can carry on with the next one. Failures that point
at a broken environment (copy errors, builds that modify the tree, state
errors) abort the whole run.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any
from pathlib import Path

from .config import Config
from .container import ContainerDriver, resolve_image
from .errors import BuildDriftError, CleanError, ContainerError, LibrarianError
from .files import copy_tree, fresh_dir
from .gitrepo import Commit, Repository
from .models import (
    API,
    AutomationLevel,
    LibrarianConfig,
    LibrarianState,
    LibraryState,
    PullRequestContent,
    PullRequestMetadata,
)
from .pullrequest import create_pull_request
from .shell import step
from .state import (
    BUILD_RESPONSE,
    CONFIGURE_RESPONSE,
    GENERATE_RESPONSE,
    GENERATOR_INPUT_DIR,
    LIBRARIAN_DIR,
    discard_response,
    load_librarian_config,
    load_state,
    read_library_response,
    read_response,
    save_state,
)

PIPER_PREFIX = "PiperOrigin-RevId: "


class Stage(str, Enum):
    """Where a library's pipeline run ended up (or currently is)."""

    SKIPPED = "skipped"
    CONFIGURING = "configuring"
    GENERATING = "generating"
    CLEANING = "cleaning"
    COPYING = "copying"
    BUILDING = "building"
    COMMITTED = "committed"
    FAILED_REVERTED = "failed-reverted"


def regeneration_commit_message(
    library_id: str, commits: list[Commit], api_source_url: str
) -> str:
    """Describe a regeneration covering ``commits`` (newest first).

    The body repeats each API commit message oldest first. PiperOrigin-RevId
    lines are hoisted out of the bodies and listed after them in the same
    order, followed by one Source-Link trailer per API commit.

    Example:
        regen: Regenerate secretmanager at API commit 1234567

        feat: add Secret.tags
        fix: correct field docs
        PiperOrigin-RevId: 111
        PiperOrigin-RevId: 222
        Source-Link: https://github.com/googleapis/googleapis/commit/abcdef0...
        Source-Link: https://github.com/googleapis/googleapis/commit/1234567...
    """
    lines = [f"regen: Regenerate {library_id} at API commit {commits[0].sha[:7]}", ""]
    rev_ids: list[str] = []
    source_links: list[str] = []
    for commit in reversed(commits):
        source_links.append(f"Source-Link: {api_source_url}/commit/{commit.sha}")
        for line in commit.message.split("\n"):
            if line.startswith(PIPER_PREFIX):
                rev_ids.append(line)
            else:
                lines.append(line)
    return "\n".join([*lines, *rev_ids, *source_links]) + "\n"


def skip_reason(library: LibraryState, library_filter: str) -> str | None:
    """Why ``library`` is not regenerated this run, or None if it is."""
    if library_filter and library.id != library_filter:
        return "not selected"
    if not library.apis:
        return "no APIs to generate"
    if library.generation_automation_level == AutomationLevel.BLOCKED:
        return "generation blocked"
    return None


class LibraryPipeline:
    """Runs the per-library stages against one repository.

    Each stage that can fail for content reasons has a paired undo action:

    ============  =========================================
    stage fails   undo
    ============  =========================================
    generating    nothing (the repository was not touched)
    cleaning      discard working tree changes
    building      revert the regeneration commit
    configuring   discard changes; after the configure
                  commit, revert it
    ============  =========================================

    Copy failures, build drift and state errors are not undone; they
    propagate and end the batch.
    """

    def __init__(
        self,
        *,
        cfg: Config,
        state: LibrarianState,
        repo: Repository,
        api_repo: Repository,
        container: ContainerDriver,
        content: PullRequestContent,
    ) -> None:
        self.cfg = cfg
        self.state = state
        self.repo = repo
        self.api_repo = api_repo
        self.container = container
        self.content = content
        self.stages: dict[str, Stage] = {}

    def _enter(self, key: str, stage: Stage) -> None:
        self.stages[key] = stage

    def _fail(
        self,
        key: str,
        error: Exception,
        action: str,
        undo: Callable[[], None] | None = None,
    ) -> Stage:
        self.content.add_error(key, error, action)
        if undo is not None:
            undo()
        self.stages[key] = Stage.FAILED_REVERTED
        return Stage.FAILED_REVERTED

    def _output_dir(self, library_id: str) -> Path:
        return fresh_dir(self.cfg.work_root / "output" / library_id)

    def _fresh_generator_input(self, library_id: str) -> Path:
        # Containers may modify their input, so each library gets its own copy.
        path = fresh_dir(self.cfg.work_root / "generator-input" / library_id)
        copy_tree(self.repo.dir / GENERATOR_INPUT_DIR, path)
        return path

    def _response(self, name: str) -> Path:
        return self.repo.dir / LIBRARIAN_DIR / name

    def _run_container(
        self, response: str, command: Callable[..., None], *args: Any
    ) -> dict[str, Any] | None:
        """Run a container command and consume its response artifact.

        The artifact is removed even when the command fails, so a failed
        command leaves no librarian files in the working tree.
        """
        try:
            command(*args)
        except ContainerError:
            discard_response(self._response(response))
            raise
        return read_response(self._response(response))

    def _generate(self, library: LibraryState) -> Path:
        """Generate ``library`` into a fresh output directory."""
        output_dir = self._output_dir(library.id)
        self._enter(library.id, Stage.GENERATING)
        self._run_container(
            GENERATE_RESPONSE,
            self.container.generate_library,
            self.state,
            library.id,
            self.repo.dir,
            self.api_repo.dir,
            output_dir,
            self._fresh_generator_input(library.id),
        )
        return output_dir

    def _build(self, library: LibraryState) -> ContainerError | None:
        """Build the library, returning the build failure if there was one.

        Raises:
            BuildDriftError: If the build left changes in the working tree.
        """
        self._enter(library.id, Stage.BUILDING)
        failure: ContainerError | None = None
        try:
            self._run_container(
                BUILD_RESPONSE,
                self.container.build_library,
                self.state,
                library.id,
                self.repo.dir,
            )
        except ContainerError as exc:
            failure = exc
        if not self.repo.is_clean():
            raise BuildDriftError(f"building {library.id} created changes in the repository")
        return failure

    def regenerate(self, library: LibraryState) -> Stage:
        """Regenerate one library and commit the result.

        Returns:
            The final stage: SKIPPED, COMMITTED or FAILED_REVERTED.

        Raises:
            OSError: If copying generated files fails.
            BuildDriftError: If the build modifies the working tree.
            StateError: If the state cannot be saved.
        """
        reason = skip_reason(library, self.cfg.library)
        if reason:
            if reason != "not selected":
                print(f"  {library.id}: skipping, {reason}")
            self._enter(library.id, Stage.SKIPPED)
            return Stage.SKIPPED

        since = library.last_generated_commit or None
        commits = self.api_repo.commits_for_paths_since(
            [api.path for api in library.apis], since
        )
        if not commits:
            print(f"  {library.id}: no API changes")
            self._enter(library.id, Stage.SKIPPED)
            return Stage.SKIPPED
        print(f"  {library.id}: regenerating with {len(commits)} new API commit(s)")

        try:
            output_dir = self._generate(library)
        except ContainerError as exc:
            return self._fail(library.id, exc, "generating")

        self._enter(library.id, Stage.CLEANING)
        try:
            self.container.clean(self.state, self.repo.dir, library.id)
        except (ContainerError, CleanError) as exc:
            return self._fail(library.id, exc, "cleaning", self.repo.clean_working_tree)

        self._enter(library.id, Stage.COPYING)
        copy_tree(output_dir, self.repo.dir)

        initial = not library.last_generated_commit
        previous = library.last_generated_commit
        library.last_generated_commit = commits[0].sha
        save_state(self.repo.dir, self.state)
        if initial:
            message = f"feat: Initial generation for {library.id}"
        else:
            message = regeneration_commit_message(
                library.id, commits, self.cfg.api_source_url
            )
        self.repo.commit_all(message)

        failure = self._build(library)
        if failure is not None:

            def undo() -> None:
                self.repo.revert_commits(1)
                library.last_generated_commit = previous

            return self._fail(library.id, failure, "building", undo)

        self._enter(library.id, Stage.COMMITTED)
        self.content.add_success(f"Generated {library.id}")
        return Stage.COMMITTED

    def configure(self, api_path: str, service_config: str = "") -> Stage:
        """Onboard a new API as a library, then prove it generates and builds.

        The configure container receives the state with the new API marked
        "new" and answers with the complete library. The library is added
        to the state and committed; the generated code is only used to
        check the library builds and is then discarded.
        """
        self._enter(api_path, Stage.CONFIGURING)
        candidate = LibraryState(
            id=api_path.replace("/", "-"),
            apis=[API(path=api_path, service_config=service_config, status="new")],
        )
        request_state = self.state.model_copy(
            update={"libraries": [*self.state.libraries, candidate]}
        )
        try:
            self.container.configure(request_state, self.repo.dir, self.api_repo.dir)
            library = read_library_response(self._response(CONFIGURE_RESPONSE))
            if library is None:
                raise ContainerError(f"configure returned no library for {api_path}")
        except ContainerError as exc:
            return self._fail(api_path, exc, "configuring", self.repo.clean_working_tree)

        for api in library.apis:
            api.status = "existing"
        self.state.libraries = [
            lib for lib in self.state.libraries if lib.id != library.id
        ] + [library]
        save_state(self.repo.dir, self.state)
        self.repo.commit_all(f"feat: Configured library {library.id} for API {api_path}")

        previous_libraries = request_state.libraries[:-1]

        def undo() -> None:
            self.repo.revert_commits(1)
            self.state.libraries = list(previous_libraries)

        try:
            output_dir = self._generate(library)
            self._enter(library.id, Stage.CLEANING)
            self.container.clean(self.state, self.repo.dir, library.id)
        except (ContainerError, CleanError) as exc:
            return self._fail(library.id, exc, self.stages[library.id].value, undo)

        self._enter(library.id, Stage.COPYING)
        copy_tree(output_dir, self.repo.dir)
        self._enter(library.id, Stage.BUILDING)
        try:
            self._run_container(
                BUILD_RESPONSE,
                self.container.build_library,
                self.state,
                library.id,
                self.repo.dir,
            )
        except ContainerError as exc:
            return self._fail(library.id, exc, "building", undo)

        self.repo.clean_working_tree()
        self._enter(library.id, Stage.COMMITTED)
        self.content.add_success(f"Configured library {library.id} for API {api_path}")
        return Stage.COMMITTED


def open_repositories(cfg: Config) -> tuple[Repository, Repository]:
    """Open the language repository (clean) and the API source repository."""
    repo = Repository.open_clean(cfg.repo, cfg.work_root)
    api_repo = Repository.clone_or_open(cfg.api_source, cfg.work_root)
    return repo, api_repo


def max_commits(config: LibrarianConfig | None) -> int:
    return config.max_pull_request_commits if config else 0


def run_generation(cfg: Config) -> PullRequestMetadata | None:
    """Regenerate every library with new API changes and open a pull request.

    With ``cfg.api`` set, only that API is generated (see
    ``generate_single_api``) and nothing is committed.
    """
    if cfg.api:
        generate_single_api(cfg)
        return None

    step("Opening repositories")
    repo, api_repo = open_repositories(cfg)
    state = load_state(repo.dir)
    config = load_librarian_config(repo.dir)
    container = ContainerDriver(resolve_image(cfg, state), cfg)
    api_was_clean = api_repo.is_clean()
    print(f"  {repo.dir}: {len(state.libraries)} libraries")

    step("Regenerating libraries")
    content = PullRequestContent()
    pipeline = LibraryPipeline(
        cfg=cfg,
        state=state,
        repo=repo,
        api_repo=api_repo,
        container=container,
        content=content,
    )
    for library in state.libraries:
        pipeline.regenerate(library)

    if api_was_clean:
        api_repo.clean_working_tree()

    return create_pull_request(
        content,
        repo=repo,
        cfg=cfg,
        title_prefix="feat: API regeneration",
        branch_type="regen",
        max_commits=max_commits(config),
    )


def generate_single_api(cfg: Config) -> str | None:
    """Generate one API without committing anything.

    If the API belongs to a library in the language repository, the
    library is generated with the repository's context (refined mode) and,
    with ``cfg.build``, cleaned, copied and built in place. Otherwise the
    API is generated on its own (raw mode) and optionally built in the
    output directory.

    Returns:
        The library ID in refined mode, None in raw mode.
    """
    step(f"Generating {cfg.api}")
    output_dir = fresh_dir(cfg.work_root / "output")
    api_root = Repository.clone_or_open(cfg.api_source, cfg.work_root).dir

    state: LibrarianState | None = None
    repo: Repository | None = None
    library_id: str | None = None
    try:
        repo = Repository.clone_or_open(cfg.repo, cfg.work_root)
        state = load_state(repo.dir)
        library_id = state.library_id_for_api_path(cfg.api)
    except LibrarianError as exc:
        print(f"  No usable language repository ({exc}); using raw generation")

    container = ContainerDriver(resolve_image(cfg, state), cfg)
    if state is None or repo is None or library_id is None:
        print(f"  No library configured for {cfg.api}; performing raw generation")
        container.generate_raw(api_root, output_dir, cfg.api)
        if cfg.build:
            container.build_raw(output_dir, cfg.api)
        print(f"  Output: {output_dir}")
        return None

    print(f"  Performing refined generation for library {library_id}")
    generator_input = fresh_dir(cfg.work_root / "generator-input" / library_id)
    copy_tree(repo.dir / GENERATOR_INPUT_DIR, generator_input)
    container.generate_library(
        state, library_id, repo.dir, api_root, output_dir, generator_input
    )
    read_response(repo.dir / LIBRARIAN_DIR / GENERATE_RESPONSE)
    if cfg.build:
        container.clean(state, repo.dir, library_id)
        copy_tree(output_dir, repo.dir)
        container.build_library(state, library_id, repo.dir)
        read_response(repo.dir / LIBRARIAN_DIR / BUILD_RESPONSE)
    print(f"  Output: {output_dir}")
    return library_id
