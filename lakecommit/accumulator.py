"""In-memory buffer of data files collected between two epoch boundaries."""

from __future__ import annotations

from collections.abc import Iterable

from lakecommit.protocols import DataFileDescriptor


class EpochAccumulator:
    """Collects descriptors for the epoch currently in progress.

    Contents are lost on restart, so they must be drained into a pending
    commit before the epoch boundary is acknowledged.
    """

    def __init__(self) -> None:
        self._files: list[DataFileDescriptor] = []

    def __len__(self) -> int:
        return len(self._files)

    def add(self, descriptor: DataFileDescriptor) -> None:
        self._files.append(descriptor)

    def drain_and_reset(self) -> list[DataFileDescriptor]:
        drained = self._files
        self._files = []
        return drained

    def restore(self, descriptors: Iterable[DataFileDescriptor]) -> None:
        """Put drained files back in front of anything recorded since."""
        self._files = [*descriptors, *self._files]
