"""Tests for the snapshot diff engine."""

from types import MappingProxyType

from pstree_prof.diff import Transition, TransitionKind, diff_snapshots
from pstree_prof.snapshot import Snapshot
from tests.conftest import make_record


def snapshot_of(at: float, *pids: int, started_at: dict[int, float] | None = None) -> Snapshot:
    records = {}
    for pid in pids:
        rec = make_record(pid, command=f"cmd{pid}")
        if started_at:
            rec.started_at = started_at.get(pid)
        records[pid] = rec
    return Snapshot(captured_at=at, processes=MappingProxyType(records))


def test_reports_started_and_ended():
    """{1,2,3} -> {2,3,4} is one start (4) and one end (1)."""
    transitions = diff_snapshots(snapshot_of(1.0, 1, 2, 3), snapshot_of(2.0, 2, 3, 4))

    assert transitions == [
        Transition(pid=4, command="cmd4", kind=TransitionKind.STARTED, at=2.0),
        Transition(pid=1, command="cmd1", kind=TransitionKind.ENDED, at=2.0),
    ]


def test_first_tick_reports_everything_started():
    transitions = diff_snapshots(Snapshot.empty(0.0), snapshot_of(0.5, 7, 8))
    assert [(t.pid, t.kind) for t in transitions] == [
        (7, TransitionKind.STARTED),
        (8, TransitionKind.STARTED),
    ]
    assert all(t.at == 0.5 for t in transitions)


def test_ended_events_use_current_timestamp():
    """An end is stamped with the first sample that misses the process."""
    transitions = diff_snapshots(snapshot_of(2.0, 7), Snapshot.empty(3.0))
    assert transitions == [Transition(pid=7, command="cmd7", kind=TransitionKind.ENDED, at=3.0)]


def test_unchanged_snapshots_produce_nothing():
    assert diff_snapshots(snapshot_of(1.0, 1, 2), snapshot_of(2.0, 1, 2)) == []


def test_recycled_pid_invisible_by_default():
    previous = snapshot_of(1.0, 5, started_at={5: 100.0})
    current = snapshot_of(2.0, 5, started_at={5: 150.0})
    assert diff_snapshots(previous, current) == []


def test_recycled_pid_detected_with_strict_identity():
    previous = snapshot_of(1.0, 5, started_at={5: 100.0})
    current = snapshot_of(2.0, 5, started_at={5: 150.0})

    transitions = diff_snapshots(previous, current, strict_identity=True)

    assert [(t.pid, t.kind) for t in transitions] == [
        (5, TransitionKind.STARTED),
        (5, TransitionKind.ENDED),
    ]


def test_strict_identity_same_start_time_is_continuation():
    previous = snapshot_of(1.0, 5, started_at={5: 100.0})
    current = snapshot_of(2.0, 5, started_at={5: 100.0})
    assert diff_snapshots(previous, current, strict_identity=True) == []


def test_strict_identity_unreadable_start_time_is_continuation():
    """A start time that could not be read falls back to comparing PIDs."""
    previous = snapshot_of(1.0, 5, started_at={5: 100.0})
    current = snapshot_of(2.0, 5)
    assert diff_snapshots(previous, current, strict_identity=True) == []
    assert diff_snapshots(current, previous, strict_identity=True) == []
