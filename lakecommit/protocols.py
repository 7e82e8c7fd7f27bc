"""Data-file descriptors and task identity handed over by the stream host."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class DataFileDescriptor:
    """An already-written, immutable data file staged for a table append.

    Required fields:
        - path: Path relative to the table root
        - file_format: Physical format ("parquet", "orc", ...)
        - file_size_bytes: Size on storage
        - record_count: Number of rows in the file

    Optional fields:
        - partition_values: Partition column -> rendered value (None for null)
        - modification_time_ms: Writer-side modification time
        - column_stats: Delta-style stats ("minValues", "maxValues", "nullCount")
    """

    path: str
    file_format: str
    file_size_bytes: int
    record_count: int
    partition_values: dict[str, str | None] = field(default_factory=dict)
    modification_time_ms: int = 0
    column_stats: dict[str, dict[str, Any]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.path:
            raise ValueError("DataFileDescriptor.path must be non-empty")
        if self.file_size_bytes < 0:
            raise ValueError(f"{self.path}: file_size_bytes must be >= 0")
        if self.record_count < 0:
            raise ValueError(f"{self.path}: record_count must be >= 0")

    def stats_json(self) -> str:
        payload: dict[str, Any] = {"numRecords": self.record_count}
        payload.update(self.column_stats)
        return json.dumps(payload, sort_keys=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "file_format": self.file_format,
            "file_size_bytes": self.file_size_bytes,
            "record_count": self.record_count,
            "partition_values": dict(self.partition_values),
            "modification_time_ms": self.modification_time_ms,
            "column_stats": self.column_stats,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DataFileDescriptor:
        partition_values = data.get("partition_values") or {}
        if not isinstance(partition_values, dict):
            raise ValueError("partition_values must be an object")
        column_stats = data.get("column_stats") or {}
        if not isinstance(column_stats, dict):
            raise ValueError("column_stats must be an object")
        return cls(
            path=str(data["path"]),
            file_format=str(data["file_format"]),
            file_size_bytes=int(data["file_size_bytes"]),
            record_count=int(data["record_count"]),
            partition_values={
                str(key): str(value) if value is not None else None
                for key, value in partition_values.items()
            },
            modification_time_ms=int(data.get("modification_time_ms") or 0),
            column_stats=column_stats,
        )


@dataclass(frozen=True)
class TaskContext:
    """Identity of the writer task as seen by the host runtime."""

    writer_identity: str
    task_index: int = 0
    attempt: int = 0

    def __post_init__(self) -> None:
        if not self.writer_identity:
            raise ValueError("writer_identity must be non-empty")
        if self.task_index < 0 or self.attempt < 0:
            raise ValueError("task_index and attempt must be >= 0")
