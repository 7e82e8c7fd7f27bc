from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from lakecommit.coordinator import CommitCoordinator
from lakecommit.errors import TableCommitConflict
from lakecommit.manifest.store import PendingManifestStore
from lakecommit.protocols import DataFileDescriptor, TaskContext
from lakecommit.table.contracts import TableSnapshot


class InMemoryTable:
    """Compare-and-swap table history used in place of a real table format."""

    def __init__(self) -> None:
        self.history: list[tuple[TableSnapshot, tuple[DataFileDescriptor, ...]]] = []
        self.injected_conflicts = 0
        self.fail_versions: dict[int, Exception] = {}
        self.fail_after_versions: dict[int, Exception] = {}

    @property
    def version(self) -> int:
        return len(self.history) - 1

    def current_snapshot(self) -> TableSnapshot | None:
        return self.history[-1][0] if self.history else None

    def snapshots(self) -> Iterator[TableSnapshot]:
        for snapshot, _ in reversed(self.history):
            yield snapshot

    def new_append(self) -> InMemoryAppend:
        return InMemoryAppend(self, base_version=self.version)

    def file_paths(self) -> list[str]:
        return [d.path for _, files in self.history for d in files]

    def snapshot_count(self) -> int:
        return len(self.history)


class InMemoryAppend:
    def __init__(self, table: InMemoryTable, *, base_version: int) -> None:
        self.table = table
        self.base_version = base_version
        self.files: list[DataFileDescriptor] = []
        self.properties: dict[str, str] = {}

    def append_file(self, descriptor: DataFileDescriptor) -> None:
        self.files.append(descriptor)

    def set_snapshot_property(self, key: str, value: str) -> None:
        self.properties[key] = value

    def commit(self) -> int:
        failure = self.table.fail_versions.pop(self.table.version + 1, None)
        if failure is not None:
            raise failure
        if self.table.injected_conflicts > 0:
            self.table.injected_conflicts -= 1
            raise TableCommitConflict("injected concurrent modification")
        if self.base_version != self.table.version:
            raise TableCommitConflict(
                f"stale base version {self.base_version}, table is at {self.table.version}"
            )
        version = self.table.version + 1
        snapshot = TableSnapshot(version=version, properties=dict(self.properties))
        self.table.history.append((snapshot, tuple(self.files)))
        landed_failure = self.table.fail_after_versions.pop(version, None)
        if landed_failure is not None:
            raise landed_failure
        return version


@pytest.fixture
def memory_table() -> InMemoryTable:
    return InMemoryTable()


@pytest.fixture
def manifest_dir(tmp_path: Path) -> Path:
    return tmp_path / "manifests"


@pytest.fixture
def make_coordinator(
    memory_table: InMemoryTable, manifest_dir: Path
) -> Callable[..., CommitCoordinator]:
    def _make(
        writer_identity: str = "job-a",
        *,
        attempt: int = 0,
        max_commit_retries: int = 4,
        delete_manifests_on_commit: bool = True,
    ) -> CommitCoordinator:
        context = TaskContext(writer_identity=writer_identity, task_index=0, attempt=attempt)
        return CommitCoordinator(
            memory_table,
            PendingManifestStore(manifest_dir, context),
            context,
            max_commit_retries=max_commit_retries,
            delete_manifests_on_commit=delete_manifests_on_commit,
        )

    return _make
