"""Delta Lake implementation of the table-commit contracts."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from typing import Any

from deltalake import CommitProperties, DeltaTable
from deltalake.exceptions import CommitFailedError
from deltalake.transaction import AddAction

from lakecommit.errors import TableCommitConflict
from lakecommit.protocols import DataFileDescriptor
from lakecommit.table.contracts import AppendTransaction, TableSnapshot, TableStore

logger = logging.getLogger(__name__)

# commitInfo fields written by the Delta engine itself, not user properties.
_COMMIT_INFO_FIELDS = {
    "version",
    "timestamp",
    "operation",
    "operationParameters",
    "operationMetrics",
    "clientVersion",
    "engineInfo",
    "isBlindAppend",
    "readVersion",
    "userId",
    "userName",
}


def _snapshot_from_history(entry: Mapping[str, Any]) -> TableSnapshot:
    properties = {
        str(key): str(value)
        for key, value in entry.items()
        if key not in _COMMIT_INFO_FIELDS and isinstance(value, (str, int))
    }
    return TableSnapshot(version=int(entry["version"]), properties=properties)


class DeltaAppendTransaction(AppendTransaction):
    """Collects add actions and commits them as one Delta log entry."""

    def __init__(self, store: DeltaTableStore, table: DeltaTable) -> None:
        self.store = store
        self.table = table
        self._actions: list[AddAction] = []
        self._properties: dict[str, str] = {}
        self._committed = False

    def append_file(self, descriptor: DataFileDescriptor) -> None:
        self._actions.append(
            AddAction(
                path=descriptor.path,
                size=descriptor.file_size_bytes,
                partition_values=dict(descriptor.partition_values),
                modification_time=descriptor.modification_time_ms,
                data_change=True,
                stats=descriptor.stats_json(),
            )
        )

    def set_snapshot_property(self, key: str, value: str) -> None:
        self._properties[key] = value

    def commit(self) -> int:
        if self._committed:
            raise RuntimeError("Delta append transaction was already committed")
        metadata = self.table.metadata()
        read_version = self.table.version()
        try:
            self.table.create_write_transaction(
                actions=self._actions,
                mode="append",
                schema=self.table.schema(),
                partition_by=list(metadata.partition_columns) or None,
                commit_properties=CommitProperties(custom_metadata=dict(self._properties)),
            )
        except CommitFailedError as exc:
            raise TableCommitConflict(f"Delta commit conflicted: {exc}") from exc
        self._committed = True
        # The transaction's table object already points at the version it created.
        try:
            return int(self.table.version())
        except Exception as exc:
            logger.warning(
                f"Committed to {self.store.table_uri} but could not read the new version: {exc}"
            )
            return read_version + 1


class DeltaTableStore(TableStore):
    """Snapshot history and appends for an existing Delta table."""

    def __init__(
        self,
        table_uri: str,
        *,
        storage_options: Mapping[str, str] | None = None,
    ) -> None:
        self.table_uri = table_uri
        self.storage_options = dict(storage_options or {})

    def load(self) -> DeltaTable:
        return DeltaTable(self.table_uri, storage_options=self.storage_options or None)

    def current_snapshot(self) -> TableSnapshot | None:
        history = self.load().history(limit=1)
        if not history:
            return None
        return _snapshot_from_history(history[0])

    def snapshots(self) -> Iterator[TableSnapshot]:
        for entry in self.load().history():
            yield _snapshot_from_history(entry)

    def new_append(self) -> AppendTransaction:
        table = self.load()
        logger.debug(f"Starting append on {self.table_uri} at version {table.version()}")
        return DeltaAppendTransaction(self, table)
