"""Terminal reducers over the sampled snapshots."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from pstree_prof.diff import Transition, TransitionKind
from pstree_prof.snapshot import Snapshot

log = structlog.get_logger()


@dataclass(frozen=True)
class Span:
    """One process lifetime as observed by the sampler."""

    pid: int
    command: str
    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start


class Aggregator:
    """Receives every selected snapshot with its transitions, then a single finalize()."""

    def observe(self, snapshot: Snapshot, transitions: list[Transition]) -> None:
        raise NotImplementedError

    def finalize(self, at: float, flushed: list[Transition]) -> None:
        """Close out the run. `flushed` holds the ENDED events for everything still tracked."""
        raise NotImplementedError


class CommandCounter(Aggregator):
    """Counts how many ticks each command was seen in.

    A process alive for ten ticks counts ten times, so the histogram is
    weighted by observed duration.
    """

    def __init__(self) -> None:
        self.counts: dict[str, int] = {}

    def observe(self, snapshot: Snapshot, transitions: list[Transition]) -> None:
        for record in snapshot.processes.values():
            self.counts[record.command] = self.counts.get(record.command, 0) + 1

    def finalize(self, at: float, flushed: list[Transition]) -> None:
        log.info("counts_finalized", commands=len(self.counts))

    def rows(self) -> list[tuple[int, str]]:
        """Return (count, command) sorted by count, descending.

        Ties keep first-seen order.
        """
        rows = [(count, command) for command, count in self.counts.items() if count > 0]
        return sorted(rows, key=lambda row: row[0], reverse=True)


class SpanBuilder(Aggregator):
    """Turns start/end transitions into one span per process lifetime."""

    def __init__(self) -> None:
        self.open: dict[int, tuple[str, float]] = {}
        self.spans: list[Span] = []

    def observe(self, snapshot: Snapshot, transitions: list[Transition]) -> None:
        # Ends first: with strict identity a recycled PID ends and starts in one tick
        for t in transitions:
            if t.kind is TransitionKind.ENDED:
                self._close(t.pid, t.at)
        for t in transitions:
            if t.kind is TransitionKind.STARTED:
                self.open[t.pid] = (t.command, t.at)

    def finalize(self, at: float, flushed: list[Transition]) -> None:
        self.observe(Snapshot.empty(at), flushed)
        for pid in list(self.open):
            self._close(pid, at)
        log.info("spans_finalized", spans=len(self.spans))

    def _close(self, pid: int, at: float) -> None:
        if pid not in self.open:
            return
        command, start = self.open.pop(pid)
        self.spans.append(Span(pid=pid, command=command, start=start, end=at))


class SampleRecorder(Aggregator):
    """Keeps every selected snapshot for JSON export."""

    def __init__(self) -> None:
        self.samples: list[Snapshot] = []

    def observe(self, snapshot: Snapshot, transitions: list[Transition]) -> None:
        self.samples.append(snapshot)

    def finalize(self, at: float, flushed: list[Transition]) -> None:
        log.info("samples_finalized", samples=len(self.samples))
