"""Exception taxonomy surfaced to the stream host."""

from __future__ import annotations


class CommitCoordinatorError(Exception):
    """Base class for commit coordination failures."""


class ManifestWriteError(CommitCoordinatorError):
    """A pending manifest could not be made durable; the snapshot must fail."""


class CorruptManifestError(CommitCoordinatorError):
    """A pending manifest exists but its file set cannot be reconstructed."""


class TableCommitConflict(CommitCoordinatorError):
    """The table moved underneath an append; retry against the latest version."""


class CommitRetriesExhaustedError(CommitCoordinatorError):
    """Conflicting table commits persisted past the configured retry budget."""

    def __init__(self, epoch: int, attempts: int) -> None:
        super().__init__(f"epoch {epoch}: table commit conflicted {attempts} time(s), giving up")
        self.epoch = epoch
        self.attempts = attempts


class InvalidStateError(CommitCoordinatorError):
    """A host callback arrived in a coordinator state that does not accept it."""


class InvalidEpochError(ValueError):
    """Epochs must be non-negative and strictly increasing per writer."""
