"""Start/end transitions between two consecutive selected snapshots."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pstree_prof.snapshot import ProcessRecord, Snapshot


class TransitionKind(Enum):
    """Direction of a process transition."""

    STARTED = "started"
    ENDED = "ended"


@dataclass(frozen=True)
class Transition:
    """A process seen starting or ending between two samples."""

    pid: int
    command: str
    kind: TransitionKind
    at: float


def _same_process(before: ProcessRecord, after: ProcessRecord, strict: bool) -> bool:
    if not strict or before.started_at is None or after.started_at is None:
        return True
    return before.started_at == after.started_at


def diff_snapshots(
    previous: Snapshot,
    current: Snapshot,
    *,
    strict_identity: bool = False,
) -> list[Transition]:
    """Compare two selections and report what started and what ended.

    Every event is stamped with current.captured_at. STARTED events come first
    in current's order, then ENDED events in previous's order. PIDs present in
    both snapshots produce nothing.

    Only valid for snapshots from one continuous run: a PID recycled by the OS
    between the two samples looks like the same process unless
    `strict_identity` is set and both records carry a start time. A record
    whose start time could not be read is compared by PID alone.
    """
    before = previous.processes
    after = current.processes
    at = current.captured_at

    transitions = [
        Transition(pid=pid, command=r.command, kind=TransitionKind.STARTED, at=at)
        for pid, r in after.items()
        if pid not in before or not _same_process(before[pid], r, strict_identity)
    ]
    transitions.extend(
        Transition(pid=pid, command=r.command, kind=TransitionKind.ENDED, at=at)
        for pid, r in before.items()
        if pid not in after or not _same_process(r, after[pid], strict_identity)
    )
    return transitions
