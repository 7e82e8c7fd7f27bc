"""Writer-scoped "last committed epoch" markers in table snapshot summaries."""

from __future__ import annotations

from lakecommit.contracts import (
    MAX_COMMITTED_EPOCH_PREFIX,
    NO_COMMITTED_EPOCH,
    WRITER_IDENTITY_PROPERTY,
)
from lakecommit.table.contracts import AppendTransaction, TableStore


def marker_key(writer_identity: str) -> str:
    return f"{MAX_COMMITTED_EPOCH_PREFIX}{writer_identity}"


def last_committed(table: TableStore, writer_identity: str) -> int:
    """Return the highest epoch committed by `writer_identity`.

    Snapshots are scanned newest first because other writers may have
    committed since; NO_COMMITTED_EPOCH is returned when this writer has
    never committed to the table.
    """
    key = marker_key(writer_identity)
    for snapshot in table.snapshots():
        value = snapshot.properties.get(key)
        if value is None:
            continue
        try:
            return int(value)
        except ValueError as exc:
            raise ValueError(
                f"Malformed marker {key}={value!r} on table version {snapshot.version}"
            ) from exc
    return NO_COMMITTED_EPOCH


def record_commit(transaction: AppendTransaction, writer_identity: str, epoch: int) -> None:
    """Attach the marker to the same transaction that appends the epoch's files."""
    transaction.set_snapshot_property(marker_key(writer_identity), str(epoch))
    transaction.set_snapshot_property(WRITER_IDENTITY_PROPERTY, writer_identity)
