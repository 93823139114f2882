#!/usr/bin/env python3
# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Dump the PostgreSQL statistics views into semicolon-separated CSV files.

Each run appends one batch of rows per report to ``<view>.csv`` in the
output directory, so repeated runs (from cron, for instance) build a
history that can be diffed later on.
"""

from __future__ import annotations

import argparse
import csv
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence

import psycopg
from packaging.version import Version

from .catalog import available
from .connection import connect, extension_schemas, fetch_with_names, is_superuser, server_version
from .errors import PgStatsError
from .options import ArgumentParser, add_connection_arguments, connection_options, log, report

TOOL = "pgcsvstat"
NOW = "date_trunc('seconds', now()) AS now"


def _pick(version: Version, *gated: Sequence[Any]) -> str:
    """Join the ``(text, since[, until])`` fragments valid on ``version``."""
    parts = []
    for fragment in gated:
        text, since = fragment[0], fragment[1]
        until = fragment[2] if len(fragment) > 2 else None
        if available(version, since, until):
            parts.append(text)
    return ", ".join(parts)


def _whole_view(view: str, order: str) -> Callable[[Version, Mapping[str, str]], str]:
    def build(version: Version, extensions: Mapping[str, str]) -> str:
        return f"SELECT {NOW}, * FROM {view} ORDER BY {order}"

    return build


def activity_query(version: Version, extensions: Mapping[str, str]) -> str:
    columns = _pick(
        version,
        ("datid, datname", None),
        ("pid", "9.2"),
        ("procpid", None, "9.2"),
        ("leader_pid", "13"),
        ("usesysid, usename", None),
        ("application_name", "9.0"),
        ("client_addr", "8.1"),
        ("client_hostname", "9.1"),
        ("client_port, date_trunc('seconds', backend_start) AS backend_start", "8.1"),
        ("date_trunc('seconds', xact_start) AS xact_start", "8.3"),
        ("date_trunc('seconds', query_start) AS query_start", None),
        ("state_change, state", "9.2"),
        ("wait_event_type, wait_event", "9.6"),
        ("waiting", "8.2", "9.6"),
        ("backend_xid, backend_xmin", "9.4"),
        ("query_id", "14"),
        ("query", "9.2"),
        ("current_query", None, "9.2"),
        ("backend_type", "10"),
    )
    order = "pid" if available(version, "9.2", None) else "procpid"
    return f"SELECT {NOW}, {columns} FROM pg_stat_activity ORDER BY {order}"


def replication_query(version: Version, extensions: Mapping[str, str]) -> str:
    modern = available(version, "10", None)
    columns = _pick(
        version,
        ("pid", "9.2"),
        ("procpid", None, "9.2"),
        ("usesysid, usename, application_name, client_addr, client_hostname, client_port", None),
        ("date_trunc('seconds', backend_start) AS backend_start", None),
        ("backend_xmin", "9.4"),
        ("state", None),
        ("pg_current_wal_lsn() AS current_lsn" if modern else "pg_current_xlog_location() AS current_location", None),
        ("sent_lsn, write_lsn, flush_lsn, replay_lsn", "10"),
        ("sent_location, write_location, flush_location, replay_location", None, "10"),
        ("write_lag, flush_lag, replay_lag", "10"),
        ("sync_priority, sync_state", None),
        ("reply_time", "12"),
    )
    return f"SELECT {NOW}, {columns} FROM pg_stat_replication ORDER BY application_name"


def class_size_query(version: Version, extensions: Mapping[str, str]) -> str:
    return (
        f"SELECT {NOW}, n.nspname, c.relname, c.relkind, c.reltuples, c.relpages, "
        "pg_relation_size(c.oid) AS relation_size "
        "FROM pg_class c JOIN pg_namespace n ON n.oid = c.relnamespace "
        "WHERE n.nspname <> 'information_schema' "
        "ORDER BY n.nspname, c.relname"
    )


def statements_query(version: Version, extensions: Mapping[str, str]) -> str:
    columns = _pick(
        version,
        ("r.rolname, d.datname", None),
        ("toplevel, queryid", "14"),
        ("regexp_replace(query, E'\\n', ' ', 'g') AS query", None),
        ("calls", None),
        ("plans, total_plan_time, min_plan_time, max_plan_time, mean_plan_time, stddev_plan_time", "13"),
        ("total_exec_time, min_exec_time, max_exec_time, mean_exec_time, stddev_exec_time", "13"),
        ("total_time", None, "13"),
        ("rows, shared_blks_hit, shared_blks_read, shared_blks_written", None),
        ("local_blks_hit, local_blks_read, local_blks_written", None),
        ("temp_blks_read, temp_blks_written", None),
        ("wal_records, wal_fpi, wal_bytes", "14"),
    )
    schema = extensions["pg_stat_statements"]
    return (
        f"SELECT {NOW}, {columns} "
        f"FROM {schema}.pg_stat_statements q "
        "JOIN pg_database d ON d.oid = q.dbid "
        "JOIN pg_roles r ON r.oid = q.userid "
        "ORDER BY r.rolname, d.datname"
    )


def wal_files_query(version: Version, extensions: Mapping[str, str]) -> str:
    if available(version, "10", None):
        current, directory = "pg_walfile_name(pg_current_wal_lsn())", "pg_wal"
    else:
        current, directory = "pg_xlogfile_name(pg_current_xlog_location())", "pg_xlog"
    return (
        f"SELECT {NOW}, {current} = pg_ls_dir AS current, pg_ls_dir AS filename, "
        f"(SELECT modification FROM pg_stat_file('{directory}/' || pg_ls_dir)) AS modification_timestamp "
        f"FROM pg_ls_dir('{directory}') "
        "WHERE pg_ls_dir ~ E'^[0-9A-F]{24}' "
        "ORDER BY pg_ls_dir"
    )


@dataclass(frozen=True)
class Report:
    filename: str
    build: Callable[[Version, Mapping[str, str]], str]
    since: Optional[str] = None
    extension: Optional[str] = None
    superuser: bool = False

    def wanted(self, version: Version, extensions: Mapping[str, str], superuser: bool) -> bool:
        if not available(version, self.since, None):
            return False
        if self.extension and self.extension not in extensions:
            return False
        return superuser or not self.superuser


REPORTS: List[Report] = [
    Report("pg_stat_activity.csv", activity_query),
    Report("pg_stat_archiver.csv", _whole_view("pg_stat_archiver", "1"), since="9.4"),
    Report("pg_stat_bgwriter.csv", _whole_view("pg_stat_bgwriter", "1")),
    Report("pg_stat_checkpointer.csv", _whole_view("pg_stat_checkpointer", "1"), since="17"),
    Report("pg_stat_database.csv", _whole_view("pg_stat_database", "datname")),
    Report("pg_stat_database_conflicts.csv", _whole_view("pg_stat_database_conflicts", "datname"), since="9.1"),
    Report("pg_stat_replication.csv", replication_query, since="9.1"),
    Report("pg_stat_replication_slots.csv", _whole_view("pg_stat_replication_slots", "slot_name"), since="14"),
    Report("pg_stat_slru.csv", _whole_view("pg_stat_slru", "name"), since="13"),
    Report("pg_stat_subscription.csv", _whole_view("pg_stat_subscription", "subname"), since="10"),
    Report("pg_stat_wal.csv", _whole_view("pg_stat_wal", "1"), since="14"),
    Report("pg_stat_io.csv", _whole_view("pg_stat_io", "backend_type, object, context"), since="16"),
    Report("pg_stat_all_tables.csv", _whole_view("pg_stat_all_tables", "schemaname, relname")),
    Report("pg_stat_all_indexes.csv", _whole_view("pg_stat_all_indexes", "schemaname, relname, indexrelname")),
    Report("pg_statio_all_tables.csv", _whole_view("pg_statio_all_tables", "schemaname, relname")),
    Report("pg_statio_all_indexes.csv", _whole_view("pg_statio_all_indexes", "schemaname, relname, indexrelname")),
    Report("pg_statio_all_sequences.csv", _whole_view("pg_statio_all_sequences", "schemaname, relname")),
    Report("pg_stat_user_functions.csv", _whole_view("pg_stat_user_functions", "schemaname, funcname"), since="8.4"),
    Report("pg_class_size.csv", class_size_query),
    Report("pg_stat_statements.csv", statements_query, extension="pg_stat_statements"),
    Report("pg_xlog_stat.csv", wal_files_query, since="8.2", superuser=True),
]


def csv_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "t" if value else "f"
    return str(value)


def write_report(path: Path, names: Sequence[str], rows: Iterable[Sequence[Any]], header: bool = True) -> int:
    """Append ``rows`` to ``path``; the header row goes only into an empty file."""
    empty = not path.exists() or path.stat().st_size == 0
    written = 0
    with path.open("a", newline="") as fh:
        writer = csv.writer(fh, delimiter=";", lineterminator="\n")
        if header and empty:
            writer.writerow(names)
        for row in rows:
            writer.writerow([csv_value(value) for value in row])
            written += 1
    return written


def dump(
    conn: psycopg.Connection,
    directory: Path,
    version: Version,
    extensions: Mapping[str, str],
    superuser: bool,
    header: bool = True,
    verbose: bool = False,
) -> List[Path]:
    written: List[Path] = []
    for entry in REPORTS:
        if not entry.wanted(version, extensions, superuser):
            if verbose:
                log(TOOL, f"skipping {entry.filename}")
            continue
        names, rows = fetch_with_names(conn, entry.build(version, extensions))
        path = directory / entry.filename
        count = write_report(path, names, rows, header=header)
        if verbose:
            log(TOOL, f"{count} row(s) appended to {path}")
        written.append(path)
    return written


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = ArgumentParser(prog=TOOL, description=__doc__,
                            formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("-D", "--directory", type=Path, default=Path("."), metavar="DIR",
                        help="directory receiving the CSV files (default: current directory)")
    parser.add_argument("-q", "--quiet", action="store_true", help="do not write the header row")
    parser.add_argument("-v", "--verbose", action="store_true", help="verbose diagnostics on stderr")
    add_connection_arguments(parser)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    if not args.directory.is_dir():
        log(TOOL, f"{args.directory} is not a directory")
        return 1

    try:
        options = connection_options(args, TOOL)
        if args.verbose:
            log(TOOL, f"Connecting to {options.describe()}")
        conn = connect(options)
    except PgStatsError as exc:
        return report(TOOL, exc)
    except KeyboardInterrupt:
        return 1

    try:
        version = server_version(conn)
        if args.verbose:
            log(TOOL, f"Detected release: {version}")
        dump(
            conn,
            args.directory,
            version,
            extension_schemas(conn),
            is_superuser(conn),
            header=not args.quiet,
            verbose=args.verbose,
        )
    except PgStatsError as exc:
        return report(TOOL, exc)
    except OSError as exc:
        log(TOOL, f"could not write CSV file: {exc}")
        return 1
    except KeyboardInterrupt:
        return 1
    finally:
        conn.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
