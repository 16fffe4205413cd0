"""Process-table snapshots: parsing, tree linking and subtree selection.

The process table arrives as the text ps prints: a header line, then one line
per process with whitespace-padded columns. The last column (the command) is
unbounded and may contain spaces, so it is never split.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType

import structlog

log = structlog.get_logger()

RECORD_FIELDS = ("owner", "pid", "parent_pid", "process_group", "command")
_INT_FIELDS = ("pid", "parent_pid", "process_group")


class ProcessTableError(ValueError):
    """Process-table text could not be parsed into a complete snapshot."""


@dataclass
class ProcessRecord:
    """One row of the process table.

    `children` is filled by link_children(); it is empty straight out of the
    parser. `started_at` is only set when strict identity tracking is enabled.
    """

    owner: str
    pid: int
    parent_pid: int
    process_group: int
    command: str
    children: list[int] = field(default_factory=list)
    started_at: float | None = None

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict."""
        return {
            "user": self.owner,
            "pid": self.pid,
            "ppid": self.parent_pid,
            "pgid": self.process_group,
            "command": self.command,
            "children": list(self.children),
            "started_at": self.started_at,
        }


@dataclass(frozen=True)
class Snapshot:
    """Process table (or a selected subtree of it) at one instant."""

    captured_at: float
    processes: Mapping[int, ProcessRecord] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def __len__(self) -> int:
        return len(self.processes)

    def __contains__(self, pid: object) -> bool:
        return pid in self.processes

    @property
    def pids(self) -> set[int]:
        return set(self.processes)

    @classmethod
    def empty(cls, captured_at: float) -> Snapshot:
        """Return a snapshot with no processes."""
        return cls(captured_at=captured_at)


def split_columns(line: str, count: int) -> list[str]:
    """Split a fixed-column line into exactly `count` fields.

    A column ends at the first space after a run of non-space characters and
    the next column starts at the first non-space character after that. The
    last column is the remainder of the line, verbatim.

    Raises:
        ProcessTableError: If the line does not resolve all `count` columns.
    """
    fields: list[str] = []
    start: int | None = None

    for i, ch in enumerate(line):
        if start is None:
            if ch == " ":
                continue
            if len(fields) == count - 1:
                fields.append(line[i:])
                return fields
            start = i
        elif ch == " ":
            fields.append(line[start:i])
            start = None

    if start is not None:
        fields.append(line[start:])
    raise ProcessTableError(f"expected {count} columns, found {len(fields)}: {line!r}")


def _strict_int(name: str, value: str, line: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ProcessTableError(f"{name} is not an integer ({value!r}): {line!r}") from None


def parse_process_table(
    text: str,
    columns: Sequence[str] = RECORD_FIELDS,
    exclude_pids: Iterable[int] = (),
) -> dict[int, ProcessRecord]:
    """Parse ps output into records keyed by PID.

    Args:
        text: Raw process-table text, header line first.
        columns: Record field names in the order they appear on each line.
        exclude_pids: PIDs to drop (the ps process itself shows up in its own output).

    Returns:
        Mapping of PID to ProcessRecord in line order, children unset.

    Raises:
        ValueError: If `columns` does not name every record field exactly once.
        ProcessTableError: If any line is malformed. Nothing is returned for
            a partially parsed table.
    """
    if sorted(columns) != sorted(RECORD_FIELDS):
        raise ValueError(f"columns must name each of {RECORD_FIELDS} once, got {list(columns)}")

    lines = text.split("\n")
    if not lines[0]:
        raise ProcessTableError("expected at least a header line from the process table")

    # Skip header; a single trailing newline leaves one empty line behind
    lines = lines[1:]
    if lines and lines[-1] == "":
        lines.pop()

    excluded = set(exclude_pids)
    processes: dict[int, ProcessRecord] = {}
    for line in lines:
        values = dict(zip(columns, split_columns(line, len(columns))))
        record = ProcessRecord(
            owner=values["owner"],
            pid=_strict_int("pid", values["pid"], line),
            parent_pid=_strict_int("parent_pid", values["parent_pid"], line),
            process_group=_strict_int("process_group", values["process_group"], line),
            command=values["command"],
        )
        if record.pid in excluded:
            continue
        if record.pid in processes:
            raise ProcessTableError(f"duplicate pid {record.pid}: {line!r}")
        processes[record.pid] = record

    return processes


def link_children(processes: dict[int, ProcessRecord]) -> dict[int, ProcessRecord]:
    """Append each record's PID to its parent's children, in table order.

    Records whose parent is not in the table stay unlinked. Returns the same
    mapping for chaining.
    """
    for pid, record in processes.items():
        parent = processes.get(record.parent_pid)
        if parent is not None:
            parent.children.append(pid)
    return processes


@dataclass(frozen=True)
class ExactPid:
    """Select the subtree under one PID."""

    pid: int

    def roots(self, processes: Mapping[int, ProcessRecord]) -> list[int]:
        return [self.pid] if self.pid in processes else []

    def __str__(self) -> str:
        return f"pid {self.pid}"


@dataclass(frozen=True)
class CommandContains:
    """Select the subtrees under every process whose command contains a substring.

    PIDs in `ignore_pids` never become roots (the profiler's own command line
    usually contains the pattern it was given).
    """

    substring: str
    ignore_pids: frozenset[int] = frozenset()

    def roots(self, processes: Mapping[int, ProcessRecord]) -> list[int]:
        return [
            pid
            for pid, record in processes.items()
            if self.substring in record.command and pid not in self.ignore_pids
        ]

    def __str__(self) -> str:
        return f"command containing {self.substring!r}"


RootSelector = ExactPid | CommandContains


def select_subtree(
    processes: Mapping[int, ProcessRecord],
    selector: RootSelector,
    captured_at: float,
) -> Snapshot:
    """Breadth-first walk from the selector's roots over linked records.

    Each PID is visited once; a PID reached again through another path is
    skipped without expanding its children. An empty root set yields an empty
    snapshot.
    """
    queue: deque[tuple[int, int]] = deque((pid, 0) for pid in selector.roots(processes))
    selected: dict[int, ProcessRecord] = {}

    while queue:
        pid, depth = queue.popleft()
        if pid in selected:
            continue
        record = processes.get(pid)
        if record is None:
            continue
        selected[pid] = record
        queue.extend((child, depth + 1) for child in record.children)

    log.debug("subtree_selected", selector=str(selector), count=len(selected))
    return Snapshot(captured_at=captured_at, processes=MappingProxyType(selected))
