from __future__ import annotations

from lakecommit.protocols import DataFileDescriptor
from lakecommit.table.contracts import AppendTransaction, TableSnapshot, TableStore


class _AppendImpl:
    def append_file(self, descriptor: DataFileDescriptor) -> None:
        return None

    def set_snapshot_property(self, key: str, value: str) -> None:
        return None

    def commit(self) -> int:
        return 0


class _TableImpl:
    def current_snapshot(self) -> TableSnapshot | None:
        return None

    def snapshots(self):
        return iter(())

    def new_append(self) -> _AppendImpl:
        return _AppendImpl()


def test_protocols_are_runtime_checkable(memory_table) -> None:
    assert isinstance(_TableImpl(), TableStore)
    assert isinstance(_AppendImpl(), AppendTransaction)
    assert isinstance(memory_table, TableStore)
    assert isinstance(memory_table.new_append(), AppendTransaction)


def test_descriptor_stats_json_includes_record_count() -> None:
    descriptor = DataFileDescriptor(
        path="part-0.parquet",
        file_format="parquet",
        file_size_bytes=10,
        record_count=4,
        column_stats={"nullCount": {"id": 0}},
    )

    assert descriptor.stats_json() == '{"nullCount": {"id": 0}, "numRecords": 4}'
