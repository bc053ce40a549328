"""Onboard APIs that want a library but have none yet."""

from __future__ import annotations

import os
from pathlib import Path

from .config import Config
from .container import ContainerDriver, resolve_image
from .errors import ConfigError
from .generate import LibraryPipeline, max_commits, open_repositories
from .models import LibrarianState, PullRequestContent, PullRequestMetadata
from .pullrequest import create_pull_request
from .service_config import load_service_config, requests_library
from .shell import step
from .state import load_librarian_config, load_state


def _configured_paths(state: LibrarianState) -> set[str]:
    return {api.path for library in state.libraries for api in library.apis}


def find_apis_to_configure(
    api_root: Path, state: LibrarianState, language: str, api: str = ""
) -> list[tuple[str, str]]:
    """Find unconfigured APIs whose service config requests a ``language`` library.

    An API is the directory containing a service config YAML (any
    ``*.yaml`` except ``*gapic.yaml``). With ``api`` set, only that
    directory is considered.

    Returns:
        ``(api_path, service_config_file)`` pairs, sorted by path.

    Raises:
        ConfigError: If ``api`` is already configured, or a service config
                     is malformed.
    """
    configured = _configured_paths(state)
    if api and api in configured:
        raise ConfigError(f"API {api} is already configured")

    found: dict[str, str] = {}
    search_root = api_root / api if api else api_root
    if not search_root.is_dir():
        raise ConfigError(f"API directory {search_root} does not exist")
    for dirpath, dirnames, filenames in os.walk(search_root):
        dirnames[:] = sorted(d for d in dirnames if d != ".git")
        if api:
            dirnames[:] = []
        rel_dir = Path(dirpath).relative_to(api_root).as_posix()
        if rel_dir in configured or rel_dir in found:
            continue
        for name in sorted(filenames):
            if not name.endswith(".yaml") or name.endswith("gapic.yaml"):
                continue
            path = Path(dirpath) / name
            service = load_service_config(path)
            if service is None:
                continue
            if requests_library(service, language, source=str(path)):
                found[rel_dir] = name
                break
    return sorted(found.items())


def run_configure(cfg: Config) -> PullRequestMetadata | None:
    """Configure every API that requests a library and open a pull request."""
    step("Opening repositories")
    repo, api_repo = open_repositories(cfg)
    state = load_state(repo.dir)
    config = load_librarian_config(repo.dir)
    container = ContainerDriver(resolve_image(cfg, state), cfg)
    api_was_clean = api_repo.is_clean()

    step("Finding APIs to configure")
    apis = find_apis_to_configure(api_repo.dir, state, cfg.language, cfg.api)
    for api_path, service_config in apis:
        print(f"  {api_path} ({service_config})")
    if not apis:
        print("  Nothing to configure")

    step("Configuring libraries")
    content = PullRequestContent()
    pipeline = LibraryPipeline(
        cfg=cfg,
        state=state,
        repo=repo,
        api_repo=api_repo,
        container=container,
        content=content,
    )
    for api_path, service_config in apis:
        pipeline.configure(api_path, service_config)

    if api_was_clean:
        api_repo.clean_working_tree()

    return create_pull_request(
        content,
        repo=repo,
        cfg=cfg,
        title_prefix="feat: API configuration",
        branch_type="config",
        max_commits=max_commits(config),
    )
