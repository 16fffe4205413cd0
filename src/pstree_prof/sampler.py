"""Sampler loop: capture, select, diff and aggregate on a fixed interval."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from enum import Enum
from typing import Protocol

import structlog

from pstree_prof.aggregate import Aggregator
from pstree_prof.collector import ProcessTableUnavailable, annotate_start_times
from pstree_prof.diff import Transition, diff_snapshots
from pstree_prof.snapshot import (
    ProcessRecord,
    RootSelector,
    Snapshot,
    link_children,
    select_subtree,
)

log = structlog.get_logger()


class ProcessTableSource(Protocol):
    def collect(self) -> tuple[float, dict[int, ProcessRecord]]: ...


class SamplerState(Enum):
    """Sampler lifecycle. STOPPED is terminal."""

    RUNNING = "running"
    STOPPED = "stopped"


class Sampler:
    """Samples the process table until stopped, then flushes and finalizes.

    The sampler owns the previous/current snapshot pair; nothing else touches
    them. stop() may be called any number of times from the completion watcher
    or a signal handler. A tick already in progress finishes before the loop
    notices.
    """

    def __init__(
        self,
        source: ProcessTableSource,
        selector: RootSelector,
        aggregator: Aggregator,
        interval: float,
        *,
        strict_identity: bool = False,
        on_transitions: Callable[[list[Transition]], None] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the sampler.

        Args:
            source: Process-table source; its collect() blocks.
            selector: Root selection rule, re-evaluated on every tick.
            aggregator: Reducer receiving every tick and the final flush.
            interval: Seconds to wait between ticks. Must be positive.
            strict_identity: Track PID + start time instead of PID alone.
            on_transitions: Optional observer for each tick's transitions.
            clock: Time source for the finalization timestamp.
        """
        if interval <= 0:
            raise ValueError(f"sampling interval must be > 0, got {interval}")
        self.source = source
        self.selector = selector
        self.aggregator = aggregator
        self.interval = interval
        self.strict_identity = strict_identity
        self._on_transitions = on_transitions
        self._clock = clock
        self._stop_event = asyncio.Event()
        self.state = SamplerState.RUNNING
        self.tick_count = 0
        self.previous: Snapshot | None = None
        self.finished_at: float | None = None

    @property
    def is_running(self) -> bool:
        return self.state is SamplerState.RUNNING

    def stop(self) -> None:
        """Request the transition to STOPPED. Idempotent."""
        if self._stop_event.is_set():
            return
        log.info("sampler_stop_requested", ticks=self.tick_count)
        self._stop_event.set()

    async def tick(self) -> Snapshot:
        """Capture one sample and feed its transitions to the aggregator."""
        captured_at, processes = await asyncio.to_thread(self.source.collect)
        current = select_subtree(link_children(processes), self.selector, captured_at)
        if self.strict_identity:
            current = annotate_start_times(current)

        previous = self.previous or Snapshot.empty(captured_at)
        transitions = diff_snapshots(previous, current, strict_identity=self.strict_identity)
        self.aggregator.observe(current, transitions)
        if self._on_transitions and transitions:
            self._on_transitions(transitions)

        self.previous = current
        self.tick_count += 1
        log.debug(
            "sampler_tick",
            tick=self.tick_count,
            selected=len(current),
            transitions=len(transitions),
        )
        return current

    async def run(self) -> None:
        """Tick until stopped, then flush ENDED events and finalize.

        Errors raised by a tick propagate without flushing or finalizing,
        except a failed ps run after stop() was requested: an interrupt may
        reach ps too, and that tick is dropped.
        """
        while not self._stop_event.is_set():
            try:
                await self.tick()
            except ProcessTableUnavailable as e:
                if not self._stop_event.is_set():
                    raise
                log.info("sampler_tick_interrupted", error=str(e))
                break
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass  # Normal timeout, continue to next sample

        self._finish()

    def _finish(self) -> None:
        at = self._clock()
        previous = self.previous or Snapshot.empty(at)
        flushed = diff_snapshots(
            previous, Snapshot.empty(at), strict_identity=self.strict_identity
        )
        if self._on_transitions and flushed:
            self._on_transitions(flushed)
        self.aggregator.finalize(at, flushed)
        self.finished_at = at
        self.state = SamplerState.STOPPED
        log.info("sampler_stopped", ticks=self.tick_count, flushed=len(flushed))
