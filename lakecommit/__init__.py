"""Exactly-once commit coordination for streaming appends into versioned tables."""

from lakecommit.config import CommitterConfig, load_committer_config
from lakecommit.contracts import END_OF_INPUT_EPOCH, NO_COMMITTED_EPOCH
from lakecommit.coordinator import CommitCoordinator, open_coordinator
from lakecommit.errors import (
    CommitCoordinatorError,
    CommitRetriesExhaustedError,
    CorruptManifestError,
    InvalidEpochError,
    InvalidStateError,
    ManifestWriteError,
    TableCommitConflict,
)
from lakecommit.protocols import DataFileDescriptor, TaskContext
from lakecommit.state import CommitState, InlineFiles, ManifestReference, PendingCommit

__all__ = [
    "END_OF_INPUT_EPOCH",
    "NO_COMMITTED_EPOCH",
    "CommitCoordinator",
    "CommitCoordinatorError",
    "CommitRetriesExhaustedError",
    "CommitState",
    "CommitterConfig",
    "CorruptManifestError",
    "DataFileDescriptor",
    "InlineFiles",
    "InvalidEpochError",
    "InvalidStateError",
    "ManifestReference",
    "ManifestWriteError",
    "PendingCommit",
    "TableCommitConflict",
    "TaskContext",
    "load_committer_config",
    "open_coordinator",
]
