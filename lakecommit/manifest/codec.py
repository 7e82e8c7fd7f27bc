"""Parquet encoding of the data-file list staged for one epoch."""

from __future__ import annotations

import json
from dataclasses import dataclass

import polars as pl
import pyarrow as pa
import pyarrow.parquet as pq

from lakecommit.contracts import (
    MANIFEST_EPOCH_KEY,
    MANIFEST_FORMAT_KEY,
    MANIFEST_FORMAT_NAME,
    MANIFEST_SCHEMA_VERSION,
    MANIFEST_VERSION_KEY,
    MANIFEST_WRITER_KEY,
)
from lakecommit.errors import CorruptManifestError
from lakecommit.protocols import DataFileDescriptor

PARTITION_ENTRY = pl.Struct([pl.Field("key", pl.Utf8), pl.Field("value", pl.Utf8)])

MANIFEST_SCHEMA: dict[str, pl.DataType] = {
    "path": pl.Utf8,
    "file_format": pl.Utf8,
    "file_size_bytes": pl.Int64,
    "record_count": pl.Int64,
    "modification_time_ms": pl.Int64,
    "partition_values": pl.List(PARTITION_ENTRY),
    "column_stats": pl.Utf8,
}


@dataclass(frozen=True)
class PendingManifest:
    epoch: int
    writer_identity: str
    descriptors: list[DataFileDescriptor]


def _to_frame(descriptors: list[DataFileDescriptor]) -> pl.DataFrame:
    return pl.DataFrame(
        {
            "path": [d.path for d in descriptors],
            "file_format": [d.file_format for d in descriptors],
            "file_size_bytes": [d.file_size_bytes for d in descriptors],
            "record_count": [d.record_count for d in descriptors],
            "modification_time_ms": [d.modification_time_ms for d in descriptors],
            "partition_values": [
                [{"key": key, "value": value} for key, value in d.partition_values.items()]
                for d in descriptors
            ],
            "column_stats": [json.dumps(d.column_stats, sort_keys=True) for d in descriptors],
        },
        schema=MANIFEST_SCHEMA,
    )


def encode_manifest(
    descriptors: list[DataFileDescriptor],
    *,
    epoch: int,
    writer_identity: str,
) -> bytes:
    """Serialize descriptors, in order, into a self-describing Parquet payload."""
    table = _to_frame(descriptors).to_arrow(compat_level=pl.CompatLevel.oldest())
    table = table.replace_schema_metadata(
        {
            MANIFEST_FORMAT_KEY: MANIFEST_FORMAT_NAME,
            MANIFEST_VERSION_KEY: str(MANIFEST_SCHEMA_VERSION),
            MANIFEST_EPOCH_KEY: str(epoch),
            MANIFEST_WRITER_KEY: writer_identity,
        }
    )
    sink = pa.BufferOutputStream()
    pq.write_table(table, sink)
    return sink.getvalue().to_pybytes()


def _row_to_descriptor(row: dict[str, object]) -> DataFileDescriptor:
    entries = row["partition_values"] or []
    column_stats = json.loads(str(row["column_stats"] or "{}"))
    if not isinstance(column_stats, dict):
        raise ValueError("column_stats must decode to an object")
    return DataFileDescriptor(
        path=str(row["path"]),
        file_format=str(row["file_format"]),
        file_size_bytes=int(row["file_size_bytes"]),
        record_count=int(row["record_count"]),
        partition_values={str(entry["key"]): entry["value"] for entry in entries},
        modification_time_ms=int(row["modification_time_ms"] or 0),
        column_stats=column_stats,
    )


def decode_manifest(data: bytes) -> PendingManifest:
    """Inverse of `encode_manifest`; any malformed payload is a corrupt manifest."""
    try:
        table = pq.read_table(pa.BufferReader(data))
    except (pa.ArrowException, OSError) as exc:
        raise CorruptManifestError(f"Unreadable pending manifest: {exc}") from exc

    metadata = {
        key.decode("utf-8"): value.decode("utf-8")
        for key, value in (table.schema.metadata or {}).items()
    }
    if metadata.get(MANIFEST_FORMAT_KEY) != MANIFEST_FORMAT_NAME:
        raise CorruptManifestError("Missing pending manifest format tag")
    version = metadata.get(MANIFEST_VERSION_KEY)
    if version != str(MANIFEST_SCHEMA_VERSION):
        raise CorruptManifestError(f"Unsupported pending manifest version {version!r}")

    missing = sorted(set(MANIFEST_SCHEMA) - set(table.column_names))
    if missing:
        raise CorruptManifestError(f"Pending manifest is missing columns {missing}")

    try:
        epoch = int(metadata[MANIFEST_EPOCH_KEY])
        df = pl.from_arrow(table.select(list(MANIFEST_SCHEMA)))
        descriptors = [_row_to_descriptor(row) for row in df.iter_rows(named=True)]
    except (KeyError, TypeError, ValueError) as exc:
        raise CorruptManifestError(f"Invalid pending manifest content: {exc}") from exc

    return PendingManifest(
        epoch=epoch,
        writer_identity=metadata.get(MANIFEST_WRITER_KEY, ""),
        descriptors=descriptors,
    )
