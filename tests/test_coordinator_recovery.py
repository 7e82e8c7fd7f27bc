from __future__ import annotations

import json
from pathlib import Path

import pytest

from lakecommit.contracts import NO_COMMITTED_EPOCH
from lakecommit.errors import (
    CommitRetriesExhaustedError,
    CorruptManifestError,
    InvalidEpochError,
    ManifestWriteError,
)
from lakecommit.idempotency import last_committed
from lakecommit.protocols import DataFileDescriptor


def _file(name: str) -> DataFileDescriptor:
    return DataFileDescriptor(
        path=f"{name}.parquet",
        file_format="parquet",
        file_size_bytes=128,
        record_count=2,
    )


def _manifests(manifest_dir: Path) -> list[Path]:
    if not manifest_dir.exists():
        return []
    return sorted(manifest_dir.glob("*.parquet"))


def test_restore_after_completed_commit_discards_pending(
    make_coordinator, memory_table, manifest_dir
) -> None:
    first = make_coordinator()
    first.initialize_state(None)
    first.process_element(_file("data-1"))
    blob = first.snapshot_state(1)
    first.notify_checkpoint_complete(1)

    restored = make_coordinator()
    restored.initialize_state(blob)

    assert memory_table.file_paths() == ["data-1.parquet"]
    assert memory_table.snapshot_count() == 1
    assert len(restored.commit_state) == 0
    assert restored.max_committed_epoch == 1

    restored.process_element(_file("data-2"))
    restored.snapshot_state(2)
    restored.notify_checkpoint_complete(2)

    assert memory_table.file_paths() == ["data-1.parquet", "data-2.parquet"]
    assert memory_table.snapshot_count() == 2
    assert _manifests(manifest_dir) == []


def test_restore_commits_epoch_that_never_saw_completion(
    make_coordinator, memory_table, manifest_dir
) -> None:
    crashed = make_coordinator("job-j")
    crashed.initialize_state(None)
    crashed.process_element(_file("row-a"))
    crashed.process_element(_file("row-b"))
    blob = crashed.snapshot_state(1)
    assert memory_table.file_paths() == []
    assert len(_manifests(manifest_dir)) == 1

    restarted = make_coordinator("job-j", attempt=1)
    restarted.initialize_state(blob)

    assert memory_table.file_paths() == ["row-a.parquet", "row-b.parquet"]
    assert last_committed(memory_table, "job-j") == 1
    assert _manifests(manifest_dir) == []

    # A second restore from the same checkpoint must not append again.
    again = make_coordinator("job-j", attempt=2)
    again.initialize_state(blob)
    assert memory_table.file_paths() == ["row-a.parquet", "row-b.parquet"]
    assert memory_table.snapshot_count() == 1


def test_redeploy_from_external_checkpoint_commits_under_restored_identity(
    make_coordinator, memory_table, manifest_dir
) -> None:
    old = make_coordinator("job-old")
    old.initialize_state(None)
    old.process_element(_file("data-1"))
    old.snapshot_state(1)
    old.notify_checkpoint_complete(1)
    old.process_element(_file("data-2"))
    blob = old.snapshot_state(2)

    new = make_coordinator("job-new")
    new.initialize_state(blob)

    assert _manifests(manifest_dir) == []
    assert last_committed(memory_table, "job-old") == 2
    assert last_committed(memory_table, "job-new") == NO_COMMITTED_EPOCH
    assert memory_table.file_paths() == ["data-1.parquet", "data-2.parquet"]
    assert new.commit_state.writer_identity == "job-new"

    new.process_element(_file("data-3"))
    new.snapshot_state(3)
    new.notify_checkpoint_complete(3)

    assert memory_table.snapshot_count() == 3
    assert last_committed(memory_table, "job-new") == 3
    assert last_committed(memory_table, "job-old") == 2


def test_new_job_numbers_epochs_independently(make_coordinator, memory_table) -> None:
    old = make_coordinator("job-old")
    old.initialize_state(None)
    for epoch in range(1, 4):
        old.process_element(_file(f"old-{epoch}"))
        old.snapshot_state(epoch)
        old.notify_checkpoint_complete(epoch)

    new = make_coordinator("job-new")
    new.initialize_state(None)
    assert new.max_committed_epoch == NO_COMMITTED_EPOCH

    new.process_element(_file("new-1"))
    new.snapshot_state(1)
    new.notify_checkpoint_complete(1)

    assert memory_table.snapshot_count() == 4
    assert last_committed(memory_table, "job-old") == 3
    assert last_committed(memory_table, "job-new") == 1


def test_interleaved_jobs_keep_separate_markers(make_coordinator, memory_table) -> None:
    jobs = ["job-0", "job-1", "job-2"]
    expected: list[str] = []
    for i in range(20):
        writer = jobs[i % 3]
        epoch = i // 3 + 1
        coordinator = make_coordinator(writer, attempt=i)
        coordinator.initialize_state(None)
        assert coordinator.max_committed_epoch == (epoch - 1 if epoch > 1 else NO_COMMITTED_EPOCH)

        coordinator.process_element(_file(f"data-{i}"))
        expected.append(f"data-{i}.parquet")
        coordinator.snapshot_state(epoch)
        coordinator.notify_checkpoint_complete(epoch)

        assert memory_table.file_paths() == expected
        assert memory_table.snapshot_count() == i + 1
        assert last_committed(memory_table, writer) == epoch


def test_snapshot_at_or_below_committed_epoch_is_rejected(make_coordinator) -> None:
    first = make_coordinator()
    first.initialize_state(None)
    first.process_element(_file("data-1"))
    first.snapshot_state(4)
    first.notify_checkpoint_complete(4)

    restarted = make_coordinator(attempt=1)
    restarted.initialize_state(None)
    restarted.process_element(_file("data-2"))

    with pytest.raises(InvalidEpochError):
        restarted.snapshot_state(4)
    restarted.snapshot_state(5)


def test_orphan_manifest_from_unacknowledged_snapshot_is_never_committed(
    make_coordinator, memory_table, manifest_dir
) -> None:
    coordinator = make_coordinator()
    coordinator.initialize_state(None)
    coordinator.process_element(_file("data-1"))
    durable = coordinator.snapshot_state(1)
    coordinator.process_element(_file("data-2"))
    coordinator.snapshot_state(2)  # crash before the host persists this checkpoint

    restarted = make_coordinator(attempt=1)
    restarted.initialize_state(durable)

    assert memory_table.file_paths() == ["data-1.parquet"]
    orphans = [p.name for p in _manifests(manifest_dir)]
    assert orphans == ["job-a-00000-0-2-00002.parquet"]

    # Upstream replays records after the restored checkpoint.
    restarted.process_element(_file("data-2"))
    restarted.snapshot_state(2)
    restarted.notify_checkpoint_complete(2)
    assert memory_table.file_paths() == ["data-1.parquet", "data-2.parquet"]


def test_conflicts_are_retried_against_latest_version(make_coordinator, memory_table) -> None:
    coordinator = make_coordinator(max_commit_retries=3)
    coordinator.initialize_state(None)
    coordinator.process_element(_file("data-1"))
    coordinator.snapshot_state(1)
    memory_table.injected_conflicts = 2

    assert coordinator.notify_checkpoint_complete(1) == 1

    assert memory_table.snapshot_count() == 1
    assert last_committed(memory_table, "job-a") == 1


def test_exhausted_retries_keep_epochs_queued(
    make_coordinator, memory_table, manifest_dir
) -> None:
    coordinator = make_coordinator(max_commit_retries=2)
    coordinator.initialize_state(None)
    coordinator.process_element(_file("data-1"))
    coordinator.snapshot_state(1)
    coordinator.process_element(_file("data-2"))
    coordinator.snapshot_state(2)
    memory_table.injected_conflicts = 2

    with pytest.raises(CommitRetriesExhaustedError) as excinfo:
        coordinator.notify_checkpoint_complete(2)

    assert excinfo.value.epoch == 1
    assert memory_table.snapshot_count() == 0
    assert [c.epoch for c in coordinator.commit_state] == [1, 2]
    assert len(_manifests(manifest_dir)) == 2

    assert coordinator.notify_checkpoint_complete(2) == 2
    assert memory_table.file_paths() == ["data-1.parquet", "data-2.parquet"]


def test_failed_epoch_blocks_later_epochs(make_coordinator, memory_table, manifest_dir) -> None:
    coordinator = make_coordinator()
    coordinator.initialize_state(None)
    for epoch in (1, 2, 3):
        coordinator.process_element(_file(f"data-{epoch}"))
        coordinator.snapshot_state(epoch)
    memory_table.fail_versions[1] = OSError("object store unavailable")

    with pytest.raises(OSError):
        coordinator.notify_checkpoint_complete(3)

    assert memory_table.file_paths() == ["data-1.parquet"]
    assert [c.epoch for c in coordinator.commit_state] == [2, 3]
    assert len(_manifests(manifest_dir)) == 2

    blob = coordinator.commit_state.serialize()
    restarted = make_coordinator(attempt=1)
    restarted.initialize_state(blob)

    assert memory_table.file_paths() == ["data-1.parquet", "data-2.parquet", "data-3.parquet"]
    assert last_committed(memory_table, "job-a") == 3
    assert _manifests(manifest_dir) == []


def test_corrupt_manifest_is_fatal_and_keeps_state(
    make_coordinator, memory_table, manifest_dir
) -> None:
    coordinator = make_coordinator()
    coordinator.initialize_state(None)
    coordinator.process_element(_file("data-1"))
    coordinator.snapshot_state(1)
    (path,) = _manifests(manifest_dir)
    path.write_bytes(b"\x00garbage")

    with pytest.raises(CorruptManifestError):
        coordinator.notify_checkpoint_complete(1)

    assert memory_table.snapshot_count() == 0
    assert [c.epoch for c in coordinator.commit_state] == [1]


def test_manifest_write_failure_keeps_epoch_files(
    make_coordinator, memory_table, manifest_dir
) -> None:
    manifest_dir.parent.mkdir(parents=True, exist_ok=True)
    manifest_dir.write_text("blocked", encoding="utf-8")
    coordinator = make_coordinator()
    coordinator.initialize_state(None)
    coordinator.process_element(_file("data-1"))

    with pytest.raises(ManifestWriteError):
        coordinator.snapshot_state(1)
    assert len(coordinator.commit_state) == 0

    manifest_dir.unlink()
    coordinator.process_element(_file("data-2"))
    coordinator.snapshot_state(1)
    coordinator.notify_checkpoint_complete(1)

    assert memory_table.file_paths() == ["data-1.parquet", "data-2.parquet"]


def test_manifest_delete_failure_does_not_fail_commit(
    make_coordinator, memory_table, monkeypatch: pytest.MonkeyPatch
) -> None:
    coordinator = make_coordinator()
    coordinator.initialize_state(None)
    coordinator.process_element(_file("data-1"))
    coordinator.snapshot_state(1)

    def _refuse(self: Path, missing_ok: bool = False) -> None:
        raise PermissionError("read-only")

    monkeypatch.setattr(Path, "unlink", _refuse)

    assert coordinator.notify_checkpoint_complete(1) == 1
    assert len(coordinator.commit_state) == 0
    assert memory_table.file_paths() == ["data-1.parquet"]


def test_commit_that_lands_before_failing_is_not_appended_again(
    make_coordinator, memory_table, manifest_dir
) -> None:
    coordinator = make_coordinator()
    coordinator.initialize_state(None)
    coordinator.process_element(_file("data-1"))
    coordinator.snapshot_state(1)
    memory_table.fail_after_versions[0] = OSError("connection reset after commit")

    with pytest.raises(OSError):
        coordinator.notify_checkpoint_complete(1)
    assert [c.epoch for c in coordinator.commit_state] == [1]

    assert coordinator.notify_checkpoint_complete(1) == 0

    assert memory_table.file_paths() == ["data-1.parquet"]
    assert memory_table.snapshot_count() == 1
    assert last_committed(memory_table, "job-a") == 1
    assert len(coordinator.commit_state) == 0
    assert _manifests(manifest_dir) == []


def test_manifest_staged_for_another_epoch_is_corrupt(
    make_coordinator, memory_table, manifest_dir
) -> None:
    coordinator = make_coordinator()
    coordinator.initialize_state(None)
    coordinator.process_element(_file("data-1"))
    coordinator.snapshot_state(1)
    coordinator.process_element(_file("data-2"))
    blob = coordinator.snapshot_state(2)

    payload = json.loads(blob)
    first, second = payload["pending"]
    first["path"], second["path"] = second["path"], first["path"]
    swapped = json.dumps(payload).encode("utf-8")

    restarted = make_coordinator(attempt=1)
    with pytest.raises(CorruptManifestError, match="expected epoch 1"):
        restarted.initialize_state(swapped)
    assert memory_table.snapshot_count() == 0
