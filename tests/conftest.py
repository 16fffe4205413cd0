"""Shared test fixtures for pstree-prof."""

from pathlib import Path
from unittest.mock import patch

import pytest

from pstree_prof.config import Config
from pstree_prof.snapshot import ProcessRecord, parse_process_table

HEADER = "USER               PID  PPID  PGID COMMAND"


def ps_line(pid: int, ppid: int, command: str, user: str = "alice", pgid: int | None = None) -> str:
    """Format one process the way `ps -axwwo user,pid,ppid,pgid,command` does."""
    pgid = pid if pgid is None else pgid
    return f"{user:<16} {pid:>5} {ppid:>5} {pgid:>5} {command}"


def ps_table(*rows: tuple[int, int, str]) -> str:
    """Build ps output from (pid, ppid, command) tuples, with the trailing newline."""
    lines = [HEADER] + [ps_line(pid, ppid, command) for pid, ppid, command in rows]
    return "\n".join(lines) + "\n"


def make_record(
    pid: int,
    parent_pid: int = 1,
    command: str = "test_cmd",
    owner: str = "alice",
    process_group: int | None = None,
) -> ProcessRecord:
    """Create a ProcessRecord for testing."""
    return ProcessRecord(
        owner=owner,
        pid=pid,
        parent_pid=parent_pid,
        process_group=pid if process_group is None else process_group,
        command=command,
    )


class FakeSource:
    """Process-table source replaying canned ps output.

    Each item is (captured_at, ps text). Records are parsed fresh on every
    call, like a real ps run.
    """

    def __init__(self, tables: list[tuple[float, str]]) -> None:
        self.tables = list(tables)
        self.calls = 0

    def collect(self) -> tuple[float, dict[int, ProcessRecord]]:
        at, text = self.tables[min(self.calls, len(self.tables) - 1)]
        self.calls += 1
        return at, parse_process_table(text)


@pytest.fixture
def tmp_config(tmp_path: Path):
    """Config whose file and log locations live under tmp_path."""
    with (
        patch.object(Config, "config_dir", new=property(lambda self: tmp_path / "config")),
        patch.object(Config, "state_dir", new=property(lambda self: tmp_path / "state")),
    ):
        yield Config()
