"""Unit tests for the attendance log."""

from __future__ import annotations

import pytest

from faceid.services.attendance import AttendanceLog


def test_first_check_in_recorded():
    """A new person is checked in."""
    log = AttendanceLog(cooldown=30.0)

    record = log.record("alice", 0.82, photo=b"jpeg", now=100.0)

    assert record.identity == "alice"
    assert record.checked_in_at == 100.0
    assert record.photo == b"jpeg"
    assert len(log) == 1


def test_cooldown_suppresses_repeats():
    """Repeated identifications within the cooldown are ignored."""
    log = AttendanceLog(cooldown=30.0)
    log.record("alice", 0.8, now=100.0)

    assert log.record("alice", 0.9, now=120.0) is None
    assert log.record("alice", 0.9, now=130.0) is None
    assert log.record("alice", 0.9, now=130.5) is not None
    assert len(log) == 2


def test_cooldown_is_per_person():
    """Another person is not affected by alice's cooldown."""
    log = AttendanceLog(cooldown=30.0)
    log.record("alice", 0.8, now=100.0)

    assert log.record("bob", 0.7, now=101.0) is not None


def test_records_newest_first():
    """Records come back newest first as a copy."""
    log = AttendanceLog(cooldown=0.0, clock=iter([1.0, 2.0, 3.0]).__next__)
    for name in ("alice", "bob", "carol"):
        log.record(name, 0.9)

    records = log.records
    records.clear()

    assert [r.identity for r in log.records] == ["carol", "bob", "alice"]
    assert [r.checked_in_at for r in log.records] == [3.0, 2.0, 1.0]


def test_negative_cooldown():
    """Cooldown cannot be negative."""
    with pytest.raises(ValueError):
        AttendanceLog(cooldown=-1)
