"""Profiling run: launch, sample until done, hand results to the selected sink."""

from __future__ import annotations

import asyncio
import os
import signal
import time
from collections.abc import Sequence
from importlib.metadata import PackageNotFoundError, version
from typing import TextIO

import structlog

from pstree_prof import logging as console
from pstree_prof.aggregate import Aggregator, CommandCounter, SampleRecorder, SpanBuilder
from pstree_prof.collector import PsCollector
from pstree_prof.config import Config
from pstree_prof.diff import Transition, TransitionKind
from pstree_prof.export import TraceExporter, write_counts, write_samples
from pstree_prof.formatting import format_duration
from pstree_prof.launcher import CommandLauncher
from pstree_prof.sampler import Sampler
from pstree_prof.snapshot import CommandContains, ExactPid, RootSelector

log = structlog.get_logger()


def _package_version() -> str:
    try:
        return version("pstree-prof")
    except PackageNotFoundError:
        return "unknown"


def make_aggregator(mode: str) -> Aggregator:
    """Return the reducer for an output mode."""
    if mode == "count":
        return CommandCounter()
    if mode == "trace":
        return SpanBuilder()
    if mode == "json":
        return SampleRecorder()
    raise ValueError(f"unrecognized output mode: {mode}")


class Profiler:
    """Runs one profiling session.

    Stops when the launched command exits or on SIGINT/SIGTERM, whichever
    comes first. With only a pattern and no command, it runs until signalled.
    """

    def __init__(
        self,
        config: Config,
        argv: Sequence[str] | None = None,
        pattern: str | None = None,
        *,
        quiet: bool = False,
        out: TextIO | None = None,
    ) -> None:
        if not argv and not pattern:
            raise ValueError("a non-empty command or pattern must be specified")
        config.validate()

        self.config = config
        self.pattern = pattern
        self.quiet = quiet
        self.out = out
        self.launcher = CommandLauncher(argv) if argv else None
        self.collector = PsCollector(config.table)
        self.aggregator = make_aggregator(config.output.mode)
        self.sampler: Sampler | None = None
        self.started_at: float | None = None
        self._watcher: asyncio.Task | None = None

    @property
    def target(self) -> str:
        """Human-readable name for what is being profiled."""
        if self.launcher is not None:
            return " ".join(self.launcher.argv)
        return f"*{self.pattern}*"

    async def run(self) -> int | None:
        """Profile until stopped and emit the summary.

        Returns:
            The launched command's exit status, or None in pattern-only mode.

        Raises:
            ProcessTableUnavailable: ps cannot be run (checked before launching).
            LaunchError: The command could not be started.
            ProcessTableError: ps output was malformed. No summary is emitted.
        """
        # Probe ps before launching anything so environment problems fail fast
        await asyncio.to_thread(self.collector.collect)

        self.started_at = time.time()
        selector = await self._start_target()
        self.sampler = Sampler(
            self.collector,
            selector,
            self.aggregator,
            self.config.sampling.interval_ms / 1000,
            strict_identity=self.config.sampling.strict_identity,
            on_transitions=None if self.quiet else _log_transitions,
        )

        console.profiling_started(
            self.target, self.config.sampling.interval_ms, self.config.output.mode
        )
        log.info(
            "profiling_started",
            target=self.target,
            selector=str(selector),
            interval_ms=self.config.sampling.interval_ms,
            mode=self.config.output.mode,
            strict_identity=self.config.sampling.strict_identity,
        )

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: self._handle_signal(s))
        if self.launcher is not None:
            self._watcher = asyncio.create_task(self._watch_command())

        try:
            await self.sampler.run()
        except Exception as e:
            log.error("profiling_failed", error=str(e))
            if self.launcher is not None:
                await self.launcher.terminate()
            raise
        finally:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)
            await self._stop_watcher()

        finished_at = self.sampler.finished_at or time.time()
        console.profiling_stopped(
            self.sampler.tick_count, format_duration(self.started_at, finished_at)
        )
        self._emit()
        return self.launcher.returncode if self.launcher is not None else None

    async def _start_target(self) -> RootSelector:
        """Launch the command if there is one and build the root selector."""
        pid = None
        if self.launcher is not None:
            pid = await self.launcher.start()
            console.command_started(self.launcher.argv, pid)

        if self.pattern:
            return CommandContains(self.pattern, ignore_pids=frozenset({os.getpid()}))
        assert pid is not None
        return ExactPid(pid)

    async def _watch_command(self) -> None:
        """Stop sampling once the launched command exits."""
        assert self.launcher is not None
        returncode = await self.launcher.wait()
        console.command_exited(self.launcher.pid or 0, returncode)
        if self.sampler is not None:
            self.sampler.stop()

    async def _stop_watcher(self) -> None:
        if self._watcher is None:
            return
        if not self._watcher.done():
            self._watcher.cancel()
        try:
            await self._watcher
        except asyncio.CancelledError:
            pass
        self._watcher = None

    def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle interrupt signals."""
        console.signal_received(sig.name)
        log.info("signal_received", signal=sig.name)
        console.profiling_stopping()
        if self.sampler is not None:
            self.sampler.stop()

    def _emit(self) -> None:
        """Hand the aggregated results to the sink for the configured mode."""
        agg = self.aggregator
        if isinstance(agg, CommandCounter):
            write_counts(agg.rows(), self.out)
        elif isinstance(agg, SampleRecorder):
            write_samples(agg.samples, self.out)
        elif isinstance(agg, SpanBuilder):
            assert self.sampler is not None and self.started_at is not None
            exporter = TraceExporter(self.config.trace, service_version=_package_version())
            try:
                exporter.export(
                    self.target,
                    agg.spans,
                    start=self.started_at,
                    end=self.sampler.finished_at or time.time(),
                )
            finally:
                exporter.shutdown()


def _log_transitions(transitions: list[Transition]) -> None:
    for t in transitions:
        if t.kind is TransitionKind.STARTED:
            console.process_started(t.command, t.pid)
        else:
            console.process_ended(t.command, t.pid)


async def run_profiler(
    config: Config,
    argv: Sequence[str] | None = None,
    pattern: str | None = None,
    *,
    quiet: bool = False,
) -> int | None:
    """Run one profiling session to completion.

    Args:
        config: Loaded and validated config (CLI overrides already applied)
        argv: Command to launch, if any
        pattern: Command substring selecting the roots instead of the launched PID
        quiet: Suppress per-process console lines
    """
    profiler = Profiler(config, argv, pattern, quiet=quiet)
    try:
        return await profiler.run()
    except Exception as e:
        log.exception("profiler_crashed", error=str(e))
        raise
