"""Tests for process-table parsing, tree linking and subtree selection."""

import pytest

from pstree_prof.snapshot import (
    CommandContains,
    ExactPid,
    ProcessTableError,
    Snapshot,
    link_children,
    parse_process_table,
    select_subtree,
    split_columns,
)
from tests.conftest import HEADER, make_record, ps_line, ps_table


class TestSplitColumns:
    """Tests for the fixed-column splitting rule."""

    def test_splits_padded_columns(self):
        assert split_columns("root     1    0 launchd", 4) == ["root", "1", "0", "launchd"]

    def test_last_column_kept_verbatim(self):
        """The command column keeps its internal spaces."""
        line = "alice   42   1   42 /usr/bin/python3 -m http.server  8000"
        fields = split_columns(line, 5)
        assert fields[-1] == "/usr/bin/python3 -m http.server  8000"

    def test_last_column_starts_at_first_non_space(self):
        fields = split_columns("alice 42 1 42      sleep 10", 5)
        assert fields[-1] == "sleep 10"

    def test_leading_padding_skipped(self):
        assert split_columns("   7   1 worker", 3) == ["7", "1", "worker"]

    def test_single_column_is_whole_line(self):
        assert split_columns("a b c", 1) == ["a b c"]

    def test_missing_command_column(self):
        with pytest.raises(ProcessTableError, match="expected 5 columns"):
            split_columns("alice 42 1 42", 5)

    def test_trailing_padding_without_command(self):
        """Padding after the last numeric column is not an empty command."""
        with pytest.raises(ProcessTableError):
            split_columns("alice 42 1 42    ", 5)

    def test_empty_line(self):
        with pytest.raises(ProcessTableError):
            split_columns("", 5)


class TestParseProcessTable:
    """Tests for parse_process_table()."""

    def test_parses_every_data_line(self):
        text = ps_table((1, 0, "init"), (10, 1, "sh -c make"), (11, 10, "make all"))
        processes = parse_process_table(text)

        assert list(processes) == [1, 10, 11]
        rec = processes[10]
        assert rec.owner == "alice"
        assert rec.parent_pid == 1
        assert rec.process_group == 10
        assert rec.command == "sh -c make"
        assert rec.children == []

    def test_header_only(self):
        assert parse_process_table(HEADER + "\n") == {}

    def test_trailing_blank_line_is_ignored(self):
        rows = ((1, 0, "init"), (2, 1, "worker"))
        with_blank = ps_table(*rows)
        without_blank = with_blank.rstrip("\n")
        assert with_blank.endswith("\n")

        assert parse_process_table(with_blank) == parse_process_table(without_blank)

    def test_blank_line_in_the_middle_is_an_error(self):
        text = "\n".join([HEADER, ps_line(1, 0, "init"), "", ps_line(2, 1, "sh")])
        with pytest.raises(ProcessTableError):
            parse_process_table(text)

    def test_empty_input_is_an_error(self):
        with pytest.raises(ProcessTableError, match="header"):
            parse_process_table("")

    def test_non_numeric_pid_is_fatal(self):
        text = "\n".join([HEADER, ps_line(1, 0, "init"), "alice  abc  1  1 broken"])
        with pytest.raises(ProcessTableError, match="pid is not an integer"):
            parse_process_table(text)

    @pytest.mark.parametrize("line", ["alice 5 x 5 cmd", "alice 5 1 ? cmd"])
    def test_non_numeric_parent_or_group_is_fatal(self, line):
        with pytest.raises(ProcessTableError, match="is not an integer"):
            parse_process_table(HEADER + "\n" + line)

    def test_duplicate_pid_is_fatal(self):
        text = ps_table((5, 1, "a"), (5, 1, "b"))
        with pytest.raises(ProcessTableError, match="duplicate pid 5"):
            parse_process_table(text)

    def test_excluded_pid_dropped(self):
        """The ps helper shows up in its own output and must be filtered."""
        text = ps_table((1, 0, "init"), (99, 1, "ps -axwwo user,pid,ppid,pgid,command"))
        processes = parse_process_table(text, exclude_pids=(99,))
        assert list(processes) == [1]

    def test_custom_column_order(self):
        text = "PID USER PPID PGID COMMAND\n42 bob 1 40 vim notes.txt\n"
        columns = ["pid", "owner", "parent_pid", "process_group", "command"]
        rec = parse_process_table(text, columns)[42]
        assert rec.owner == "bob"
        assert rec.process_group == 40
        assert rec.command == "vim notes.txt"

    def test_columns_must_name_every_field(self):
        with pytest.raises(ValueError, match="columns must name"):
            parse_process_table(HEADER, ["owner", "pid", "command"])

    def test_round_trip_non_command_columns(self):
        """Re-serializing parsed fields and parsing again yields the same records."""
        original = ps_table((1, 0, "init"), (300, 1, "a  b   c"), (301, 300, "d"))
        first = parse_process_table(original)

        lines = [HEADER]
        for rec in first.values():
            lines.append(
                f"{rec.owner}  {rec.pid}   {rec.parent_pid} {rec.process_group}  {rec.command}"
            )
        second = parse_process_table("\n".join(lines))

        assert second == first


class TestLinkChildren:
    """Tests for link_children()."""

    def test_child_listed_iff_parent_present(self):
        processes = parse_process_table(
            ps_table((1, 0, "init"), (2, 1, "a"), (3, 1, "b"), (4, 2, "c"), (5, 77, "orphan"))
        )
        link_children(processes)

        for pid, rec in processes.items():
            parent = processes.get(rec.parent_pid)
            if parent is None:
                assert all(pid not in other.children for other in processes.values())
            else:
                assert pid in parent.children

    def test_children_in_table_order(self):
        processes = parse_process_table(ps_table((1, 0, "init"), (9, 1, "z"), (3, 1, "a")))
        link_children(processes)
        assert processes[1].children == [9, 3]

    def test_returns_same_mapping(self):
        processes = {1: make_record(1, parent_pid=0)}
        assert link_children(processes) is processes


def _linked(*rows):
    return link_children(parse_process_table(ps_table(*rows)))


TREE = (
    (1, 0, "init"),
    (10, 1, "bash"),
    (20, 10, "make -j2"),
    (21, 20, "cc -c a.c"),
    (22, 20, "cc -c b.c"),
    (30, 1, "sshd"),
    (31, 30, "make -C other"),
)


class TestSelectSubtree:
    """Tests for select_subtree()."""

    def test_exact_pid_selects_descendants(self):
        snapshot = select_subtree(_linked(*TREE), ExactPid(20), captured_at=5.0)
        assert snapshot.pids == {20, 21, 22}
        assert snapshot.captured_at == 5.0

    def test_exact_pid_missing_gives_empty_snapshot(self):
        snapshot = select_subtree(_linked(*TREE), ExactPid(12345), captured_at=1.0)
        assert len(snapshot) == 0

    def test_pattern_selects_every_matching_root(self):
        snapshot = select_subtree(_linked(*TREE), CommandContains("make"), captured_at=1.0)
        assert snapshot.pids == {20, 21, 22, 31}

    def test_pattern_ignores_given_pids(self):
        selector = CommandContains("make", ignore_pids=frozenset({31}))
        snapshot = select_subtree(_linked(*TREE), selector, captured_at=1.0)
        assert snapshot.pids == {20, 21, 22}

    def test_pattern_without_match_gives_empty_snapshot(self):
        snapshot = select_subtree(_linked(*TREE), CommandContains("nginx"), captured_at=1.0)
        assert snapshot.pids == set()

    def test_overlapping_roots_visit_each_pid_once(self):
        """A root that is also a descendant of another root is not duplicated."""
        # "a" matches bash (10), make -j2 (20), cc -c a.c (21) and make -C other (31)
        snapshot = select_subtree(_linked(*TREE), CommandContains("a"), captured_at=1.0)
        assert list(snapshot.processes) == [10, 20, 21, 31, 22]

    def test_self_parented_process_does_not_loop(self):
        processes = _linked((0, 0, "kernel_task"), (1, 0, "launchd"))
        snapshot = select_subtree(processes, ExactPid(0), captured_at=1.0)
        assert snapshot.pids == {0, 1}

    def test_reparented_process_follows_new_parent(self):
        """Once its parent exits, a process is only reachable via its new parent."""
        processes = _linked((1, 0, "init"), (10, 1, "bash"), (21, 1, "cc -c a.c"))
        snapshot = select_subtree(processes, ExactPid(10), captured_at=1.0)
        assert snapshot.pids == {10}

    def test_idempotent_and_order_independent(self):
        forward = _linked(*TREE)
        backward = _linked(*reversed(TREE))

        first = select_subtree(forward, CommandContains("make"), captured_at=1.0)
        again = select_subtree(forward, CommandContains("make"), captured_at=1.0)
        reordered = select_subtree(backward, CommandContains("make"), captured_at=1.0)

        assert first.pids == again.pids == reordered.pids

    def test_selected_snapshot_is_read_only(self):
        snapshot = select_subtree(_linked(*TREE), ExactPid(20), captured_at=1.0)
        with pytest.raises(TypeError):
            snapshot.processes[99] = make_record(99)  # type: ignore[index]


def test_empty_snapshot():
    snapshot = Snapshot.empty(3.0)
    assert snapshot.captured_at == 3.0
    assert len(snapshot) == 0
    assert 1 not in snapshot
