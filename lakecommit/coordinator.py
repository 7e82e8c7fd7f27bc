"""Checkpoint-coordinated two-phase commit of data files into a table.

The host runtime drives five callbacks, serialized per instance:

- `initialize_state`: restore checkpointed state and replay unfinished commits
- `process_element`: buffer one written data file for the current epoch
- `snapshot_state`: stage the epoch's files durably and return state to persist
- `notify_checkpoint_complete`: publish every staged epoch up to the notified one
- `end_input`: publish everything left and close

Exactly-once publication rests on the writer-scoped marker committed in the
same table snapshot as the files; it is consulted before every append.
"""

from __future__ import annotations

import logging

from lakecommit.accumulator import EpochAccumulator
from lakecommit.config import DEFAULT_MAX_COMMIT_RETRIES, CommitterConfig
from lakecommit.contracts import (
    END_OF_INPUT_EPOCH,
    NO_COMMITTED_EPOCH,
    STATE_ACCUMULATING,
    STATE_AWAITING_COMPLETION,
    STATE_CLOSED,
    STATE_IDLE,
)
from lakecommit.errors import (
    CommitRetriesExhaustedError,
    InvalidEpochError,
    InvalidStateError,
    ManifestWriteError,
    TableCommitConflict,
)
from lakecommit.idempotency import last_committed, record_commit
from lakecommit.manifest.store import PendingManifestStore
from lakecommit.protocols import DataFileDescriptor, TaskContext
from lakecommit.state import CommitState, InlineFiles, PendingCommit
from lakecommit.table.contracts import TableStore
from lakecommit.table.delta import DeltaTableStore

logger = logging.getLogger(__name__)


class CommitCoordinator:
    """Per-task commit state machine between the stream host and the table."""

    def __init__(
        self,
        table: TableStore,
        manifests: PendingManifestStore,
        context: TaskContext,
        *,
        max_commit_retries: int = DEFAULT_MAX_COMMIT_RETRIES,
        delete_manifests_on_commit: bool = True,
    ) -> None:
        if max_commit_retries < 1:
            raise ValueError("max_commit_retries must be >= 1")
        self.table = table
        self.manifests = manifests
        self.context = context
        self.max_commit_retries = max_commit_retries
        self.delete_manifests_on_commit = delete_manifests_on_commit

        self._accumulator = EpochAccumulator()
        self._commit_state = CommitState.empty(context.writer_identity)
        self._markers: dict[str, int] = {}
        self._last_snapshot_epoch: int | None = None
        self._started = False
        self._closed = False

    @property
    def state(self) -> str:
        if self._closed:
            return STATE_CLOSED
        if len(self._commit_state):
            return STATE_AWAITING_COMPLETION
        if len(self._accumulator):
            return STATE_ACCUMULATING
        return STATE_IDLE

    @property
    def commit_state(self) -> CommitState:
        return self._commit_state

    @property
    def max_committed_epoch(self) -> int:
        return self._markers.get(self.context.writer_identity, NO_COMMITTED_EPOCH)

    def _require_open(self, operation: str) -> None:
        if not self._started:
            raise InvalidStateError(f"{operation}: coordinator has not been initialized")
        if self._closed:
            raise InvalidStateError(f"{operation}: coordinator is closed")

    def _known_committed(self, writer_identity: str, *, refresh: bool = False) -> int:
        if refresh or writer_identity not in self._markers:
            self._markers[writer_identity] = last_committed(self.table, writer_identity)
        return self._markers[writer_identity]

    def _advance_marker(self, writer_identity: str, epoch: int) -> None:
        current = self._markers.get(writer_identity, NO_COMMITTED_EPOCH)
        self._markers[writer_identity] = max(current, epoch)

    def _release(self, commit: PendingCommit) -> None:
        manifest = commit.manifest
        if manifest is not None and self.delete_manifests_on_commit:
            self.manifests.delete(manifest)
        self._commit_state = self._commit_state.without(commit.epoch)

    def _load_files(self, commit: PendingCommit) -> list[DataFileDescriptor]:
        if isinstance(commit.location, InlineFiles):
            return list(commit.location.descriptors)
        return self.manifests.read(commit.location, epoch=commit.epoch)

    def _commit_one(self, writer_identity: str, commit: PendingCommit) -> bool:
        """Publish one epoch as one table snapshot; return False if already applied."""
        epoch = commit.epoch
        files: list[DataFileDescriptor] | None = None
        for attempt in range(1, self.max_commit_retries + 1):
            if self._known_committed(writer_identity) >= epoch:
                logger.warning(
                    f"Skipping epoch {epoch} for writer {writer_identity}: "
                    f"table already records epoch {self._markers[writer_identity]}"
                )
                return False

            if files is None:
                files = self._load_files(commit)
            transaction = self.table.new_append()
            for descriptor in files:
                transaction.append_file(descriptor)
            record_commit(transaction, writer_identity, epoch)

            try:
                version = transaction.commit()
            except TableCommitConflict as exc:
                logger.warning(
                    f"Commit of epoch {epoch} conflicted "
                    f"(attempt {attempt}/{self.max_commit_retries}): {exc}"
                )
                self._known_committed(writer_identity, refresh=True)
                continue

            self._advance_marker(writer_identity, epoch)
            logger.info(
                f"Committed epoch {epoch} for writer {writer_identity}: "
                f"{len(files)} file(s), {sum(f.record_count for f in files)} record(s), "
                f"table version {version}"
            )
            return True

        raise CommitRetriesExhaustedError(epoch, self.max_commit_retries)

    def _commit_through(self, epoch: int) -> int:
        """Commit queued epochs <= `epoch` in ascending order, stopping at the first failure."""
        writer_identity = self._commit_state.writer_identity
        committed = 0
        for commit in self._commit_state.pending_through(epoch):
            try:
                applied = self._commit_one(writer_identity, commit)
            except Exception:
                # The append may have landed before the failure surfaced.
                self._markers.pop(writer_identity, None)
                logger.error(
                    f"Commit of epoch {commit.epoch} failed; "
                    f"{len(self._commit_state)} epoch(s) remain queued",
                    exc_info=True,
                )
                raise
            self._advance_marker(writer_identity, commit.epoch)
            self._release(commit)
            committed += int(applied)
        return committed

    def initialize_state(self, blob: bytes | None) -> None:
        """Restore checkpointed state, then finish or discard what it left pending."""
        if self._started:
            raise InvalidStateError("initialize_state: coordinator is already initialized")

        if blob is not None:
            restored = CommitState.deserialize(blob)
            self._recover(restored)

        self._commit_state = CommitState.empty(self.context.writer_identity)
        committed = self._known_committed(self.context.writer_identity, refresh=True)
        self._started = True
        logger.info(
            f"Coordinator started for writer {self.context.writer_identity} "
            f"(task={self.context.task_index}, attempt={self.context.attempt}, "
            f"last committed epoch={committed})"
        )

    def _recover(self, restored: CommitState) -> None:
        writer_identity = restored.writer_identity
        self._commit_state = restored
        last = self._known_committed(writer_identity, refresh=True)

        for commit in restored.pending_through(last):
            logger.info(
                f"Discarding restored epoch {commit.epoch} for writer {writer_identity}: "
                f"already committed (marker={last})"
            )
            self._release(commit)

        remaining = restored.pending_after(last)
        if remaining:
            logger.info(
                f"Replaying {len(remaining)} uncommitted epoch(s) for writer {writer_identity} "
                f"(epochs {remaining[0].epoch}..{remaining[-1].epoch})"
            )
            self._commit_through(END_OF_INPUT_EPOCH)

    def process_element(self, descriptor: DataFileDescriptor) -> None:
        self._require_open("process_element")
        self._accumulator.add(descriptor)

    def snapshot_state(self, epoch: int) -> bytes:
        """Stage the current epoch and return the serialized state for the host checkpoint."""
        self._require_open("snapshot_state")
        if epoch < 0:
            raise InvalidEpochError(f"epoch must be >= 0, got {epoch}")
        if self._last_snapshot_epoch is not None and epoch <= self._last_snapshot_epoch:
            raise InvalidEpochError(
                f"epoch {epoch} must be greater than previous snapshot {self._last_snapshot_epoch}"
            )
        if epoch <= self.max_committed_epoch:
            raise InvalidEpochError(
                f"epoch {epoch} is not above last committed epoch {self.max_committed_epoch}"
            )

        files = self._accumulator.drain_and_reset()
        if files:
            try:
                reference = self.manifests.write(epoch, files)
            except ManifestWriteError:
                self._accumulator.restore(files)
                raise
            self._commit_state = self._commit_state.with_pending(
                PendingCommit(epoch=epoch, location=reference)
            )
        else:
            logger.debug(f"Epoch {epoch} has no data files; nothing to stage")

        self._last_snapshot_epoch = epoch
        return self._commit_state.serialize()

    def notify_checkpoint_complete(self, epoch: int) -> int:
        """Publish every staged epoch <= `epoch`; returns how many were appended."""
        if not self._started:
            raise InvalidStateError(
                "notify_checkpoint_complete: coordinator has not been initialized"
            )
        if not self._commit_state.pending_through(epoch):
            logger.debug(f"Completion of epoch {epoch}: nothing pending")
            return 0
        return self._commit_through(epoch)

    def end_input(self) -> None:
        """Commit all remaining files synchronously under the terminal epoch and close."""
        self._require_open("end_input")
        files = self._accumulator.drain_and_reset()
        if files:
            self._commit_state = self._commit_state.with_pending(
                PendingCommit(epoch=END_OF_INPUT_EPOCH, location=InlineFiles(tuple(files)))
            )
        self._commit_through(END_OF_INPUT_EPOCH)
        self._closed = True
        logger.info(f"Input ended for writer {self.context.writer_identity}")


def open_coordinator(config: CommitterConfig, context: TaskContext) -> CommitCoordinator:
    """Build a coordinator over a Delta table and a local manifest directory."""
    table = DeltaTableStore(config.table_uri, storage_options=config.storage_options)
    manifests = PendingManifestStore(config.manifest_dir, context)
    return CommitCoordinator(
        table,
        manifests,
        context,
        max_commit_retries=config.max_commit_retries,
        delete_manifests_on_commit=config.delete_manifests_on_commit,
    )
