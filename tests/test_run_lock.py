import json
import os

import pytest

from obsctl.runtime import lock as run_lock_module
from obsctl.runtime.lock import (
    LockState,
    RunLockMetadata,
    acquire_run_lock,
    probe_lock_state,
    release_run_lock,
    run_lock,
)
from obsctl.utils.diagnostics import LockHeldError

from conftest import hold_lock


def _write_lock(path, pid):
    path.parent.mkdir(parents=True, exist_ok=True)
    metadata = RunLockMetadata(pid=pid, command="install", acquired_at="2026-10-19T00:00:00+00:00")
    path.write_text(metadata.model_dump_json(indent=2))


def test_absent_lock_file(tmp_path):
    result = probe_lock_state(tmp_path / "obsctl.lock")
    assert result.state == LockState.ABSENT
    assert "not found" in result.reason.lower()


def test_acquire_writes_pid_metadata(tmp_path):
    lock_path = tmp_path / "run" / "obsctl.lock"

    metadata = acquire_run_lock(lock_path, "install")
    try:
        payload = json.loads(lock_path.read_text())
        assert payload["pid"] == os.getpid()
        assert payload["command"] == "install"
        assert metadata.pid == os.getpid()
        assert probe_lock_state(lock_path).state == LockState.HELD
    finally:
        release_run_lock(lock_path)


def test_live_holder_blocks_acquire(tmp_path):
    lock_path = tmp_path / "obsctl.lock"
    holder = hold_lock(lock_path, pid=424242)

    try:
        assert probe_lock_state(lock_path).state == LockState.HELD
        with pytest.raises(LockHeldError) as exc:
            acquire_run_lock(lock_path, "uninstall")
    finally:
        holder.close()

    assert exc.value.pid == 424242
    assert json.loads(lock_path.read_text())["pid"] == 424242


def test_dead_holder_is_reclaimed(tmp_path, monkeypatch):
    lock_path = tmp_path / "obsctl.lock"
    _write_lock(lock_path, 424242)
    monkeypatch.setattr("obsctl.runtime.lock.is_process_alive", lambda pid: False)

    result = probe_lock_state(lock_path)
    assert result.state == LockState.STALE
    assert "not alive" in result.reason

    with run_lock(lock_path, "install"):
        assert json.loads(lock_path.read_text())["pid"] == os.getpid()


def test_metadata_without_flock_is_stale_even_if_pid_alive(tmp_path, monkeypatch):
    lock_path = tmp_path / "obsctl.lock"
    _write_lock(lock_path, 424242)
    monkeypatch.setattr("obsctl.runtime.lock.is_process_alive", lambda pid: True)

    assert probe_lock_state(lock_path).state == LockState.STALE
    with run_lock(lock_path, "install") as metadata:
        assert metadata.pid == os.getpid()


def test_stale_lock_reclaimed_by_another_run_blocks(tmp_path):
    lock_path = tmp_path / "obsctl.lock"
    _write_lock(lock_path, 424242)
    assert probe_lock_state(lock_path).state == LockState.STALE

    # A concurrent run reclaims the stale file first.
    holder = hold_lock(lock_path, pid=515151)
    try:
        with pytest.raises(LockHeldError) as exc:
            acquire_run_lock(lock_path, "install")
    finally:
        holder.close()

    assert exc.value.pid == 515151
    assert json.loads(lock_path.read_text())["pid"] == 515151


def test_lock_file_replaced_between_open_and_flock(tmp_path, monkeypatch):
    lock_path = tmp_path / "obsctl.lock"
    real_try_flock = run_lock_module._try_flock
    holders = []

    def replaced_then_flock(fd):
        if not holders:
            # Previous holder releases (unlinks) and another run creates a fresh file.
            lock_path.unlink()
            holders.append(hold_lock(lock_path, pid=616161))
        return real_try_flock(fd)

    monkeypatch.setattr("obsctl.runtime.lock._try_flock", replaced_then_flock)

    try:
        with pytest.raises(LockHeldError) as exc:
            acquire_run_lock(lock_path, "install")
    finally:
        for holder in holders:
            holder.close()

    assert exc.value.pid == 616161
    assert json.loads(lock_path.read_text())["pid"] == 616161


def test_invalid_metadata_is_stale(tmp_path):
    lock_path = tmp_path / "obsctl.lock"
    lock_path.write_text("{not-json}")

    result = probe_lock_state(lock_path)

    assert result.state == LockState.STALE
    assert "invalid" in result.reason.lower()
    with run_lock(lock_path, "install"):
        assert probe_lock_state(lock_path).state == LockState.HELD


def test_second_acquire_in_same_process_is_refused(tmp_path):
    lock_path = tmp_path / "obsctl.lock"

    with run_lock(lock_path, "install"):
        with pytest.raises(LockHeldError):
            acquire_run_lock(lock_path, "uninstall")


def test_release_leaves_foreign_lock(tmp_path):
    lock_path = tmp_path / "obsctl.lock"
    holder = hold_lock(lock_path)

    try:
        assert release_run_lock(lock_path) is False
        assert lock_path.exists()
    finally:
        holder.close()


def test_run_lock_context_releases(tmp_path):
    lock_path = tmp_path / "obsctl.lock"

    with pytest.raises(RuntimeError):
        with run_lock(lock_path, "install"):
            assert lock_path.exists()
            raise RuntimeError("boom")

    assert not lock_path.exists()
    assert probe_lock_state(lock_path).state == LockState.ABSENT
