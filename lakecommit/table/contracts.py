"""Contracts for the versioned table the coordinator publishes into."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from lakecommit.protocols import DataFileDescriptor


@dataclass(frozen=True)
class TableSnapshot:
    """One committed table version and the summary properties it carries."""

    version: int
    properties: Mapping[str, str] = field(default_factory=dict)


@runtime_checkable
class AppendTransaction(Protocol):
    """A pending append that becomes exactly one new table snapshot."""

    def append_file(self, descriptor: DataFileDescriptor) -> None:
        """Stage one data file for publication."""

    def set_snapshot_property(self, key: str, value: str) -> None:
        """Attach a summary property to the snapshot this append creates."""

    def commit(self) -> int:
        """Atomically publish files and properties; raise TableCommitConflict on a race."""


@runtime_checkable
class TableStore(Protocol):
    """Read/append access to one table's snapshot history."""

    def current_snapshot(self) -> TableSnapshot | None:
        """Return the latest snapshot, or None for a table without commits."""

    def snapshots(self) -> Iterator[TableSnapshot]:
        """Iterate snapshots from newest to oldest."""

    def new_append(self) -> AppendTransaction:
        """Start an append against the latest table version."""
