"""Process-table source backed by the ps command."""

from __future__ import annotations

import subprocess
import time
from dataclasses import replace
from types import MappingProxyType

import psutil
import structlog

from pstree_prof.config import TableConfig
from pstree_prof.snapshot import ProcessRecord, Snapshot, parse_process_table

log = structlog.get_logger()


class ProcessTableUnavailable(RuntimeError):
    """The ps command could not be run or did not succeed."""


class PsCollector:
    """Captures the full process table with one ps invocation per call.

    The ps child is visible in its own output, so its PID is dropped from
    every table. It runs in its own session so a terminal interrupt aimed at
    the profiler does not kill it mid-sample.
    """

    def __init__(self, table: TableConfig) -> None:
        self.table = table
        self.args = table.ps_args()

    def collect(self) -> tuple[float, dict[int, ProcessRecord]]:
        """Run ps once and parse its output.

        Blocks until ps exits.

        Returns:
            (captured_at, records keyed by PID)

        Raises:
            ProcessTableUnavailable: If ps cannot be started or exits non-zero.
            ProcessTableError: If its output is malformed.
        """
        try:
            proc = subprocess.Popen(
                self.args,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                start_new_session=True,
            )
        except FileNotFoundError as e:
            raise ProcessTableUnavailable(f"could not start `{self.args[0]}`: not found") from e
        except OSError as e:
            raise ProcessTableUnavailable(f"could not start `{self.args[0]}`: {e}") from e

        captured_at = time.time()
        stdout, stderr = proc.communicate()
        if proc.returncode != 0:
            raise ProcessTableUnavailable(
                f"`{' '.join(self.args)}` exited with status {proc.returncode}: {stderr.strip()}"
            )

        processes = parse_process_table(stdout, self.table.columns, exclude_pids=(proc.pid,))
        log.debug("process_table_collected", count=len(processes), ps_pid=proc.pid)
        return captured_at, processes


def annotate_start_times(snapshot: Snapshot) -> Snapshot:
    """Return a copy of `snapshot` whose records carry the OS process start time.

    A record stays at None when its process is already gone or not
    inspectable. The input snapshot and its records are left untouched.
    """
    annotated: dict[int, ProcessRecord] = {}
    for pid, record in snapshot.processes.items():
        try:
            started_at = psutil.Process(pid).create_time()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            started_at = None
        annotated[pid] = replace(record, started_at=started_at)
    return Snapshot(captured_at=snapshot.captured_at, processes=MappingProxyType(annotated))
