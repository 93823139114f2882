# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

import sys
from datetime import datetime, timezone

import psycopg
import pytest
from packaging.version import Version

from conftest import FakeConnection
from pgstats import options, pgstat
from pgstats.catalog import resolve
from pgstats.formatting import Unit

RESET = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def bgwriter_row(value):
    # timings are reported in milliseconds
    columns = resolve("bgwriter", Version("16.0")).columns
    row = {column.name: value * 1000 if column.unit is Unit.DURATION else value for column in columns}
    row["stats_reset"] = RESET
    return [row]


@pytest.fixture
def connected(monkeypatch):
    def install(conn):
        monkeypatch.setattr(pgstat, "connect", lambda options: conn)
        return conn

    return install


def test_parse_args_defaults():
    args = pgstat.parse_args([])
    assert args.stat == "bgwriter"
    assert args.interval == 1.0
    assert args.count is None
    assert args.groups is None


def test_parse_args_full():
    args = pgstat.parse_args(["-s", "database", "-f", "app", "-S", "xacts", "-S", "blocks", "-H", "-t", "-n", "0.5", "3"])
    assert args.stat == "database"
    assert args.filter == "app"
    assert args.groups == ["xacts", "blocks"]
    assert args.human_readable and args.timestamp and args.no_header_repeat
    assert args.interval == 0.5
    assert args.count == 3


@pytest.mark.parametrize("bad", [["0"], ["-1"], ["1", "0"], ["1", "x"]])
def test_parse_args_rejects_bad_interval_or_count(bad):
    with pytest.raises(SystemExit) as info:
        pgstat.parse_args(bad)
    assert info.value.code == 1


def test_too_old_server_prints_no_data(connected, capsys):
    conn = connected(FakeConnection(server_version=120010))

    assert pgstat.main(["-s", "wal", "0.01", "2"]) == 1
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "You need at least 14 for this statistic." in captured.err
    assert conn.executed == []
    assert conn.closed


def test_prints_header_then_deltas(connected, capsys):
    conn = connected(FakeConnection(server_version=160002).script("pg_stat_bgwriter", bgwriter_row(10), bgwriter_row(15)))

    assert pgstat.main(["0.01", "2"]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert len(lines) == 4
    assert "checkpoints" in lines[0]
    assert set(lines[2].split()) <= {"10", "10.00"}
    assert set(lines[3].split()) <= {"5", "5.00"}
    assert conn.closed


def test_query_error_is_reported_with_query(connected, capsys):
    connected(
        FakeConnection(server_version=160002).script(
            "pg_stat_bgwriter", psycopg.errors.InsufficientPrivilege("permission denied")
        )
    )
    assert pgstat.main(["0.01", "1"]) == 1
    err = capsys.readouterr().err
    assert "[pgstat] query failed: permission denied" in err
    assert "[pgstat] query was: SELECT" in err


def test_interrupt_closes_connection(connected):
    conn = connected(FakeConnection(server_version=160002).script("pg_stat_bgwriter", KeyboardInterrupt()))
    assert pgstat.main(["0.01", "2"]) == 1
    assert conn.closed


def test_interrupt_while_connecting(monkeypatch):
    def interrupted(options):
        raise KeyboardInterrupt()

    monkeypatch.setattr(pgstat, "connect", interrupted)
    assert pgstat.main(["0.01", "1"]) == 1


def test_interrupt_at_password_prompt(monkeypatch, connected):
    def interrupted(prompt):
        raise KeyboardInterrupt()

    monkeypatch.setattr(options.getpass, "getpass", interrupted)
    conn = connected(FakeConnection(server_version=160002))
    assert pgstat.main(["-W", "0.01", "1"]) == 1
    assert conn.executed == []


class ClosedPipe:
    def write(self, text):
        raise BrokenPipeError()

    def flush(self):
        pass

    def isatty(self):
        return False


def test_closed_pipe_ends_quietly(connected, monkeypatch):
    conn = connected(FakeConnection(server_version=160002).script("pg_stat_bgwriter", bgwriter_row(1)))
    monkeypatch.setattr(sys, "stdout", ClosedPipe())
    assert pgstat.main(["0.01", "2"]) == 0
    assert conn.closed
