# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

import io
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from packaging.version import Version

from conftest import FakeConnection
from pgstats import pgwaitevent
from pgstats.errors import ConfigurationError, UnsupportedStatisticError
from pgstats.pgwaitevent import TABLE_TOP, SessionGone, WaitEventTracer, histogram

PID = 4242
START = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

ACTIVE = [{"state": "active", "query": "SELECT pg_sleep(3)", "query_start": START, "now": START}]
IDLE = [{"state": "idle", "query": "SELECT 1", "query_start": START, "now": START}]
TRACE = [
    {"wait_event": "[Running]", "wait_event_type": "", "occurences": 3, "percent": Decimal("75.00")},
    {"wait_event": "DataFileRead", "wait_event_type": "IO", "occurences": 1, "percent": Decimal("25.00")},
]
DURATIONS = [{"query": timedelta(seconds=4), "trace": timedelta(seconds=3)}]


def tracer_for(conn, **kwargs):
    out = io.StringIO()
    return WaitEventTracer(conn, PID, out=out, **kwargs), out


def test_histogram_layout():
    lines = histogram([tuple(row.values()) for row in TRACE])
    assert len(lines) == 6
    assert lines[3] == "│ " + "[Running]".ljust(33) + " │ " + " " * 9 + " │ " + "3".rjust(10) + " │   75.00 │"
    assert {len(line) for line in lines} == {len(TABLE_TOP)}


def test_version_checks():
    tracer, _ = tracer_for(FakeConnection())
    with pytest.raises(UnsupportedStatisticError):
        tracer.check_version(Version("9.6"))
    tracer.check_version(Version("12.0"))

    workers, _ = tracer_for(FakeConnection(), workers=True)
    with pytest.raises(ConfigurationError):
        workers.check_version(Version("12.0"))
    workers.check_version(Version("13.0"))


def test_build_and_drop_env():
    conn = FakeConnection()
    tracer, _ = tracer_for(conn)
    tracer.build_env()
    tracer.drop_env()
    queries = conn.queries()
    assert "CREATE TEMPORARY TABLE" in queries[0]
    assert "pg_temp.trace_wait_events_for_pid(p integer" in queries[1]
    assert queries[2].startswith("DROP FUNCTION IF EXISTS pg_temp.trace_wait_events_for_pid")


def test_gone_session():
    conn = FakeConnection().script("query_start, now()", [])
    tracer, _ = tracer_for(conn)
    with pytest.raises(SessionGone):
        tracer.active_session()


def test_idle_session_is_not_traced():
    conn = FakeConnection().script("query_start, now()", IDLE)
    tracer, out = tracer_for(conn)
    assert not tracer.active_session()
    assert out.getvalue() == ""


def test_active_session_announces_query():
    conn = FakeConnection().script("query_start, now()", ACTIVE)
    tracer, out = tracer_for(conn)
    assert tracer.active_session()
    assert "New query: SELECT pg_sleep(3)" in out.getvalue()
    assert tracer.query_start == START
    assert conn.executed[-1][1] == (PID,)


def test_trace_prints_durations_and_histogram():
    conn = (
        FakeConnection()
        .script("count(*)", [{"count": 3}])
        .script("trace_wait_events_for_pid(%s", TRACE)
        .script("timestamptz", DURATIONS)
    )
    tracer, out = tracer_for(conn, workers=True, interval=0.5)
    tracer.query_start = tracer.trace_start = START
    tracer.trace()

    text = out.getvalue()
    assert "Query duration: 0:00:04" in text
    assert "Trace duration: 0:00:03" in text
    assert "Number of processes: 3" in text
    assert "DataFileRead" in text
    trace_params = [params for query, params in conn.executed if "trace_wait_events_for_pid(%s" in query]
    assert trace_params == [(PID, True, 0.5)]


def test_follow_until_session_gone():
    conn = (
        FakeConnection()
        .script("query_start, now()", IDLE, [])
    )
    tracer, _ = tracer_for(conn)
    sleeps = []
    with pytest.raises(SessionGone):
        tracer.follow(sleep=sleeps.append)
    assert sleeps == [pgwaitevent.POLL_DELAY]


def test_main_exits_when_session_disappears(monkeypatch, capsys):
    conn = FakeConnection(server_version=160001).script("query_start, now()", [])
    monkeypatch.setattr(pgwaitevent, "connect", lambda options: conn)

    assert pgwaitevent.main([str(PID)]) == pgwaitevent.SESSION_GONE_STATUS
    assert f"No more session with PID {PID}, exiting..." in capsys.readouterr().out
    assert any(query.startswith("DROP FUNCTION") for query in conn.queries())
    assert conn.closed


def test_main_refuses_workers_on_old_release(monkeypatch, capsys):
    conn = FakeConnection(server_version=120005)
    monkeypatch.setattr(pgwaitevent, "connect", lambda options: conn)

    assert pgwaitevent.main(["-g", str(PID)]) == 1
    assert "v13" in capsys.readouterr().err
    assert conn.queries() == []


def test_interrupt_drops_tracer_and_closes(monkeypatch):
    conn = FakeConnection(server_version=160001).script("query_start, now()", KeyboardInterrupt())
    monkeypatch.setattr(pgwaitevent, "connect", lambda options: conn)

    assert pgwaitevent.main([str(PID)]) == 1
    assert conn.queries()[-1].startswith("DROP FUNCTION")
    assert conn.closed


def test_interrupt_while_connecting(monkeypatch):
    def interrupted(options):
        raise KeyboardInterrupt()

    monkeypatch.setattr(pgwaitevent, "connect", interrupted)
    assert pgwaitevent.main([str(PID)]) == 1
