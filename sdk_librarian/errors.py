"""Exceptions raised by librarian commands.

The hierarchy mirrors how failures are handled:

- ``ContainerError`` and ``CleanError`` are recoverable per library during
  batch runs. The library's partial work is undone and the batch continues.
- ``BuildDriftError`` and ``StateError`` abort the whole batch.
- ``ConfigError``, ``PullRequestError``, ``NothingToReleaseError``,
  ``ReleaseRecordError`` and ``MergeAbortedError`` end the command. The
  merge gate turns ``ReleaseRecordError`` into a blocking comment instead.

Everything derives from ``LibrarianError`` so the CLI can report any of
them uniformly.
"""

from __future__ import annotations


class LibrarianError(RuntimeError):
    """Base class for all librarian failures."""


class ConfigError(LibrarianError):
    """Missing or invalid flags, tokens or repository preconditions."""


class StateError(LibrarianError):
    """The state or config document could not be read, written or validated."""


class ContainerError(LibrarianError):
    """A language container command failed or reported an error."""


class CleanError(LibrarianError):
    """Cleaning a library's files from the repository failed."""


class BuildDriftError(LibrarianError):
    """A build modified the repository working tree."""


class NothingToReleaseError(LibrarianError):
    """A library was explicitly named but has nothing to release."""


class PullRequestError(LibrarianError):
    """A run produced only errors, so no pull request can be created."""


class MergeAbortedError(LibrarianError):
    """The release pull request was merged or closed by someone else."""


class ReleaseRecordError(LibrarianError):
    """A release commit or pull request does not describe a valid release."""
