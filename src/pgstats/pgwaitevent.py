#!/usr/bin/env python3
# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Gather every wait event of one backend PID, grouped by query."""

from __future__ import annotations

import argparse
import sys
import time
from datetime import datetime
from typing import Any, Callable, List, Optional, Sequence, TextIO, Tuple

import psycopg
from packaging.version import Version

from .connection import connect, execute, fetch_all, server_version
from .errors import ConfigurationError, PgStatsError, UnsupportedStatisticError
from .options import ArgumentParser, add_connection_arguments, connection_options, log, positive_float, report

TOOL = "pgwaitevent"
MINIMUM_VERSION = Version("10")
WORKERS_VERSION = Version("13")
POLL_DELAY = 0.1
SESSION_GONE_STATUS = 2

CREATE_TABLE_SQL = """
CREATE TEMPORARY TABLE IF NOT EXISTS waitevents (we text, wet text, o integer, UNIQUE (we, wet))
"""

CREATE_FUNCTION_SQL = """
CREATE OR REPLACE FUNCTION pg_temp.trace_wait_events_for_pid(p integer, leader boolean, s numeric DEFAULT 1)
RETURNS TABLE (wait_event text, wait_event_type text, occurences integer, percent numeric(5,2))
LANGUAGE plpgsql
AS $$
DECLARE
    q text;
    r record;
BEGIN
    SELECT query INTO q FROM pg_stat_activity
     WHERE pid = p AND backend_type = 'client backend' AND state = 'active';

    IF NOT FOUND THEN
        RAISE EXCEPTION 'PID % doesn''t appear to be an active backend', p
            USING HINT = 'Check the PID and its state';
    END IF;

    RAISE LOG 'Tracing PID %, sampling at %s', p, s;
    RAISE LOG 'Query is <%>', q;

    TRUNCATE waitevents;

    LOOP
        IF leader THEN
            SELECT COALESCE(psa.wait_event, '[Running]') AS wait_event,
                   COALESCE(psa.wait_event_type, '') AS wait_event_type
              INTO r
              FROM pg_stat_activity psa
             WHERE pid = p OR leader_pid = p;
        ELSE
            SELECT COALESCE(psa.wait_event, '[Running]') AS wait_event,
                   COALESCE(psa.wait_event_type, '') AS wait_event_type
              INTO r
              FROM pg_stat_activity psa
             WHERE pid = p;
        END IF;

        EXIT WHEN r.wait_event = 'ClientRead';

        INSERT INTO waitevents VALUES (r.wait_event, r.wait_event_type, 1)
            ON CONFLICT (we, wet) DO UPDATE SET o = waitevents.o + 1;

        PERFORM pg_sleep(s);
    END LOOP;

    RETURN QUERY
        SELECT we, wet, o, (o * 100. / sum(o) OVER ())::numeric(5,2)
          FROM waitevents
         ORDER BY o DESC;
END
$$
"""

DROP_FUNCTION_SQL = "DROP FUNCTION IF EXISTS pg_temp.trace_wait_events_for_pid(integer, boolean, numeric)"

SESSION_SQL = """
SELECT state, query, query_start, now()
  FROM pg_stat_activity
 WHERE backend_type = 'client backend'
   AND pid = %s
"""

PROCESSES_SQL = "SELECT count(*) FROM pg_stat_activity WHERE pid = %s OR leader_pid = %s"

TRACE_SQL = "SELECT * FROM pg_temp.trace_wait_events_for_pid(%s::integer, %s::boolean, %s::numeric)"

DURATION_SQL = "SELECT now() - %s::timestamptz, now() - %s::timestamptz"

TABLE_TOP = "┌───────────────────────────────────┬───────────┬────────────┬─────────┐"
TABLE_HEAD = "│ Wait event                        │ WE type   │ Occurences │ Percent │"
TABLE_RULE = "├───────────────────────────────────┼───────────┼────────────┼─────────┤"
TABLE_BOTTOM = "└───────────────────────────────────┴───────────┴────────────┴─────────┘"


class SessionGone(Exception):
    """The traced PID is no longer a client backend."""


def histogram(rows: Sequence[Tuple[Any, ...]]) -> List[str]:
    """Render the trace result as a box-drawing table."""
    lines = [TABLE_TOP, TABLE_HEAD, TABLE_RULE]
    for event, event_type, occurences, percent in rows:
        lines.append(f"│ {event:<33} │ {event_type:<9} │ {int(occurences):>10} │  {float(percent):>6.2f} │")
    lines.append(TABLE_BOTTOM)
    return lines


class WaitEventTracer:
    """Install the tracing function and run it once per query of ``pid``."""

    def __init__(
        self,
        conn: psycopg.Connection,
        pid: int,
        interval: float = 1.0,
        workers: bool = False,
        verbose: bool = False,
        out: TextIO = sys.stdout,
    ) -> None:
        self.conn = conn
        self.pid = pid
        self.interval = interval
        self.workers = workers
        self.verbose = verbose
        self.out = out
        self.query_start: Optional[datetime] = None
        self.trace_start: Optional[datetime] = None

    def _print(self, text: str = "") -> None:
        print(text, file=self.out, flush=True)

    def check_version(self, version: Version) -> None:
        if version < MINIMUM_VERSION:
            raise UnsupportedStatisticError(f"You need at least {MINIMUM_VERSION} to trace wait events.")
        if self.workers and version < WORKERS_VERSION:
            raise ConfigurationError(f"You need at least v{WORKERS_VERSION} to include workers' wait events.")

    def build_env(self) -> None:
        execute(self.conn, CREATE_TABLE_SQL)
        if self.verbose:
            log(TOOL, "Temporary table created")
        execute(self.conn, CREATE_FUNCTION_SQL)
        if self.verbose:
            log(TOOL, "Function created")

    def drop_env(self) -> None:
        execute(self.conn, DROP_FUNCTION_SQL)
        if self.verbose:
            log(TOOL, "Function dropped")

    def active_session(self) -> bool:
        """True when the PID runs a query; raises ``SessionGone`` once it has left."""
        rows = fetch_all(self.conn, SESSION_SQL, (self.pid,))
        if not rows:
            raise SessionGone(self.pid)
        if len(rows) > 1:
            return False
        state, query, query_start, now = rows[0]
        if state != "active":
            return False
        self._print()
        self._print(f"New query: {query}")
        self.query_start = query_start
        self.trace_start = now
        return True

    def trace(self) -> None:
        processes = None
        if self.workers:
            processes = fetch_all(self.conn, PROCESSES_SQL, (self.pid, self.pid))[0][0]

        rows = fetch_all(self.conn, TRACE_SQL, (self.pid, self.workers, self.interval))
        query_duration, trace_duration = fetch_all(
            self.conn, DURATION_SQL, (self.query_start, self.trace_start)
        )[0]

        self._print(f"Query duration: {query_duration}")
        self._print(f"Trace duration: {trace_duration}")
        if processes is not None:
            self._print(f"Number of processes: {processes}")
        for line in histogram(rows):
            self._print(line)

    def follow(self, sleep: Callable[[float], None] = time.sleep) -> None:
        """Trace every query until the session disappears."""
        while True:
            if self.active_session():
                self.trace()
            sleep(POLL_DELAY)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = ArgumentParser(prog=TOOL, description=__doc__)
    parser.add_argument("-i", "--interval", type=positive_float, default=1.0, metavar="INTERVAL",
                        help="sampling interval in seconds (default 1)")
    parser.add_argument("-g", "--include-workers", action="store_true",
                        help="include leader and workers of parallel queries (v13+)")
    parser.add_argument("-v", "--verbose", action="store_true", help="verbose diagnostics on stderr")
    add_connection_arguments(parser)
    parser.add_argument("pid", type=int, metavar="PID", help="backend process to trace")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        options = connection_options(args, TOOL)
        if args.verbose:
            log(TOOL, f"Connecting to {options.describe()}")
        conn = connect(options)
    except PgStatsError as exc:
        return report(TOOL, exc)
    except KeyboardInterrupt:
        return 1

    tracer = WaitEventTracer(
        conn, args.pid, interval=args.interval, workers=args.include_workers, verbose=args.verbose
    )
    installed = False
    status = 0
    try:
        version = server_version(conn)
        if args.verbose:
            log(TOOL, f"Detected release: {version}")
        tracer.check_version(version)
        tracer.build_env()
        installed = True
        tracer.follow()
    except SessionGone:
        print(f"\nNo more session with PID {args.pid}, exiting...", flush=True)
        status = SESSION_GONE_STATUS
    except PgStatsError as exc:
        status = report(TOOL, exc)
    except KeyboardInterrupt:
        status = 1

    try:
        if installed:
            tracer.drop_env()
    except PgStatsError as exc:
        status = report(TOOL, exc)
    finally:
        conn.close()
    return status


if __name__ == "__main__":
    raise SystemExit(main())
