"""Durable, checkpointed state of the commit coordinator."""

from __future__ import annotations

import json
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from lakecommit.contracts import LOCATION_INLINE, LOCATION_MANIFEST, STATE_SCHEMA_VERSION
from lakecommit.errors import InvalidEpochError
from lakecommit.protocols import DataFileDescriptor


@dataclass(frozen=True)
class ManifestReference:
    """Pointer to a durable pending manifest holding one epoch's files."""

    path: str
    record_count: int
    file_count: int


@dataclass(frozen=True)
class InlineFiles:
    """Files carried directly in state; only used for the end-of-input flush."""

    descriptors: tuple[DataFileDescriptor, ...]

    @property
    def record_count(self) -> int:
        return sum(d.record_count for d in self.descriptors)


Location = ManifestReference | InlineFiles


@dataclass(frozen=True)
class PendingCommit:
    epoch: int
    location: Location

    @property
    def manifest(self) -> ManifestReference | None:
        return self.location if isinstance(self.location, ManifestReference) else None


def _check_epoch(epoch: int) -> None:
    if epoch < 0:
        raise InvalidEpochError(f"epoch must be >= 0, got {epoch}")


@dataclass(frozen=True)
class CommitState:
    """Writer identity plus every snapshotted epoch not yet confirmed committed.

    `pending` is keyed by epoch and kept in ascending order; instances are
    never mutated, every change returns a new state.
    """

    writer_identity: str
    pending: Mapping[int, PendingCommit]

    @classmethod
    def empty(cls, writer_identity: str) -> CommitState:
        return cls(writer_identity=writer_identity, pending=MappingProxyType({}))

    def __iter__(self) -> Iterator[PendingCommit]:
        return iter(self.pending.values())

    def __len__(self) -> int:
        return len(self.pending)

    @property
    def max_epoch(self) -> int | None:
        return max(self.pending) if self.pending else None

    def with_pending(self, commit: PendingCommit) -> CommitState:
        _check_epoch(commit.epoch)
        latest = self.max_epoch
        if latest is not None and commit.epoch <= latest:
            raise InvalidEpochError(
                f"epoch {commit.epoch} must be greater than last pending epoch {latest}"
            )
        updated = dict(self.pending)
        updated[commit.epoch] = commit
        return CommitState(self.writer_identity, MappingProxyType(updated))

    def without(self, epoch: int) -> CommitState:
        if epoch not in self.pending:
            return self
        updated = {key: value for key, value in self.pending.items() if key != epoch}
        return CommitState(self.writer_identity, MappingProxyType(updated))

    def pending_through(self, epoch: int) -> list[PendingCommit]:
        return [commit for key, commit in self.pending.items() if key <= epoch]

    def pending_after(self, epoch: int) -> list[PendingCommit]:
        return [commit for key, commit in self.pending.items() if key > epoch]

    def serialize(self) -> bytes:
        payload = {
            "version": STATE_SCHEMA_VERSION,
            "writer_identity": self.writer_identity,
            "pending": [_commit_to_dict(commit) for commit in self],
        }
        return json.dumps(payload, sort_keys=True).encode("utf-8")

    @classmethod
    def deserialize(cls, blob: bytes) -> CommitState:
        payload = json.loads(blob.decode("utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("Invalid commit state: payload must be an object")
        version = payload.get("version")
        if version != STATE_SCHEMA_VERSION:
            raise ValueError(f"Unsupported commit state version {version!r}")
        writer_identity = payload.get("writer_identity")
        if not isinstance(writer_identity, str) or not writer_identity:
            raise ValueError("Invalid commit state: writer_identity is required")
        raw_pending = payload.get("pending", [])
        if not isinstance(raw_pending, list):
            raise ValueError("Invalid commit state: pending must be a list")

        state = cls.empty(writer_identity)
        for value in raw_pending:
            if not isinstance(value, dict):
                raise ValueError(f"Invalid pending commit entry {value!r}")
            try:
                commit = _commit_from_dict(value)
            except (KeyError, TypeError) as exc:
                raise ValueError(f"Invalid pending commit entry {value!r}: {exc}") from exc
            state = state.with_pending(commit)
        return state


def _commit_to_dict(commit: PendingCommit) -> dict[str, object]:
    location = commit.location
    if isinstance(location, ManifestReference):
        return {
            "epoch": commit.epoch,
            "kind": LOCATION_MANIFEST,
            "path": location.path,
            "record_count": location.record_count,
            "file_count": location.file_count,
        }
    return {
        "epoch": commit.epoch,
        "kind": LOCATION_INLINE,
        "files": [d.to_dict() for d in location.descriptors],
    }


def _commit_from_dict(data: dict[str, object]) -> PendingCommit:
    epoch = int(data["epoch"])
    kind = data.get("kind")
    if kind == LOCATION_MANIFEST:
        return PendingCommit(
            epoch=epoch,
            location=ManifestReference(
                path=str(data["path"]),
                record_count=int(data["record_count"]),
                file_count=int(data["file_count"]),
            ),
        )
    if kind == LOCATION_INLINE:
        files = data.get("files", [])
        if not isinstance(files, list):
            raise ValueError(f"epoch {epoch}: inline files must be a list")
        return PendingCommit(
            epoch=epoch,
            location=InlineFiles(tuple(DataFileDescriptor.from_dict(item) for item in files)),
        )
    raise ValueError(f"epoch {epoch}: unknown pending commit kind {kind!r}")
