"""Lifecycle of per-epoch pending manifests on durable storage."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import filelock
import pyarrow as pa

from lakecommit.contracts import MANIFEST_SUFFIX
from lakecommit.errors import CorruptManifestError, ManifestWriteError
from lakecommit.manifest.codec import decode_manifest, encode_manifest
from lakecommit.protocols import DataFileDescriptor, TaskContext
from lakecommit.state import ManifestReference

logger = logging.getLogger(__name__)

_LOCK_NAME = ".pending-manifests.lock"


@dataclass(frozen=True)
class ManifestName:
    """Parsed `<writer>-<task>-<attempt>-<epoch>-<sequence>.parquet` file name."""

    writer_identity: str
    task_index: int
    attempt: int
    epoch: int
    sequence: int

    @property
    def prefix(self) -> str:
        return f"{self.writer_identity}-{self.task_index:05d}-{self.attempt}-"

    def render(self) -> str:
        return f"{self.prefix}{self.epoch}-{self.sequence:05d}{MANIFEST_SUFFIX}"


def parse_manifest_name(path: str | Path) -> ManifestName | None:
    """Return the naming fields of a manifest file, or None for foreign files."""
    name = Path(path).name
    if not name.endswith(MANIFEST_SUFFIX):
        return None
    # Writer identities may contain '-', the numeric fields never do.
    parts = name[: -len(MANIFEST_SUFFIX)].rsplit("-", 4)
    if len(parts) != 5:
        return None
    writer_identity, *numbers = parts
    if not writer_identity or not all(number.isdigit() for number in numbers):
        return None
    task_index, attempt, epoch, sequence = (int(number) for number in numbers)
    return ManifestName(
        writer_identity=writer_identity,
        task_index=task_index,
        attempt=attempt,
        epoch=epoch,
        sequence=sequence,
    )


def _fsync_directory(path: Path) -> None:
    if os.name == "nt":
        return
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class PendingManifestStore:
    """Writes, reads and removes pending manifests under one directory.

    Several writer identities may share the directory; file names keep
    them apart and let external tooling attribute stale files.
    """

    def __init__(self, manifest_dir: Path, context: TaskContext) -> None:
        self.manifest_dir = manifest_dir
        self.context = context
        self._last_sequence = 0

    @property
    def _prefix(self) -> str:
        ctx = self.context
        return f"{ctx.writer_identity}-{ctx.task_index:05d}-{ctx.attempt}-"

    def _lock(self) -> filelock.FileLock:
        return filelock.FileLock(str(self.manifest_dir / _LOCK_NAME), timeout=30)

    def _next_sequence(self, prefix: str) -> int:
        existing = [
            parsed.sequence
            for parsed in (parse_manifest_name(path) for path in self.list_manifests())
            if parsed is not None and parsed.prefix == prefix
        ]
        self._last_sequence = max([self._last_sequence, *existing]) + 1
        return self._last_sequence

    def _write_durable(self, target: Path, payload: bytes) -> None:
        tmp_path = target.with_suffix(target.suffix + ".tmp")
        try:
            with tmp_path.open("wb") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, target)
            _fsync_directory(target.parent)
        finally:
            if tmp_path.exists():
                tmp_path.unlink(missing_ok=True)

    def write(self, epoch: int, descriptors: list[DataFileDescriptor]) -> ManifestReference:
        """Persist one epoch's files; the reference is returned only once durable."""
        if not descriptors:
            raise ValueError(f"epoch {epoch}: refusing to write an empty pending manifest")

        try:
            payload = encode_manifest(
                descriptors, epoch=epoch, writer_identity=self.context.writer_identity
            )
        except (pa.ArrowException, TypeError, ValueError) as exc:
            raise ManifestWriteError(f"epoch {epoch}: failed to encode manifest: {exc}") from exc

        try:
            self.manifest_dir.mkdir(parents=True, exist_ok=True)
            with self._lock():
                name = ManifestName(
                    writer_identity=self.context.writer_identity,
                    task_index=self.context.task_index,
                    attempt=self.context.attempt,
                    epoch=epoch,
                    sequence=self._next_sequence(self._prefix),
                )
                target = self.manifest_dir / name.render()
                self._write_durable(target, payload)
        except (OSError, filelock.Timeout) as exc:
            raise ManifestWriteError(
                f"epoch {epoch}: failed to write manifest under {self.manifest_dir}: {exc}"
            ) from exc

        reference = ManifestReference(
            path=str(target),
            record_count=sum(d.record_count for d in descriptors),
            file_count=len(descriptors),
        )
        logger.info(
            f"Wrote pending manifest {target.name} "
            f"(epoch={epoch}, files={reference.file_count}, records={reference.record_count})"
        )
        return reference

    def read(
        self, reference: ManifestReference, *, epoch: int | None = None
    ) -> list[DataFileDescriptor]:
        """Load a manifest's descriptors, checking them against the reference.

        When `epoch` is given, a manifest staged for any other epoch is corrupt.
        """
        path = Path(reference.path)
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise CorruptManifestError(f"Cannot read pending manifest {path}: {exc}") from exc

        manifest = decode_manifest(data)
        if epoch is not None and manifest.epoch != epoch:
            raise CorruptManifestError(
                f"{path.name}: staged for epoch {manifest.epoch}, expected epoch {epoch}"
            )
        descriptors = manifest.descriptors
        if len(descriptors) != reference.file_count:
            raise CorruptManifestError(
                f"{path.name}: expected {reference.file_count} files, found {len(descriptors)}"
            )
        record_count = sum(d.record_count for d in descriptors)
        if record_count != reference.record_count:
            raise CorruptManifestError(
                f"{path.name}: expected {reference.record_count} records, found {record_count}"
            )
        return descriptors

    def delete(self, reference: ManifestReference) -> bool:
        """Best-effort removal; a leaked file costs storage, never correctness."""
        path = Path(reference.path)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning(f"Failed to delete pending manifest {path}: {exc}")
            return False
        return True

    def list_manifests(self, writer_identity: str | None = None) -> list[Path]:
        if not self.manifest_dir.exists():
            return []
        paths: list[Path] = []
        for path in self.manifest_dir.iterdir():
            parsed = parse_manifest_name(path)
            if parsed is None:
                continue
            if writer_identity is not None and parsed.writer_identity != writer_identity:
                continue
            paths.append(path)
        return sorted(paths)
