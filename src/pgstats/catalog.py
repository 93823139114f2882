# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Descriptor table of the statistics ``pgstat`` can follow.

Each ``Statistic`` lists its columns together with the server releases in
which they exist. ``resolve`` turns a descriptor into the single
``QueryTemplate`` matching the connected server; it runs once at startup.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from packaging.version import Version

from .errors import ConfigurationError, UnsupportedStatisticError
from .formatting import Unit


class Behaviour(enum.Enum):
    COUNTER = "counter"  # cumulative, shown as a delta
    GAUGE = "gauge"  # instantaneous, shown as is


@dataclass(frozen=True)
class Column:
    name: str
    label: str
    group: str
    width: int = 7
    expr: Optional[str] = None
    unit: Unit = Unit.COUNT
    behaviour: Behaviour = Behaviour.COUNTER
    since: Optional[str] = None
    until: Optional[str] = None  # first release without the column

    @property
    def sql(self) -> str:
        return self.expr or self.name

    @property
    def display_width(self) -> int:
        return max(self.width, len(self.label))


@dataclass(frozen=True)
class Predicate:
    sql: str
    since: Optional[str] = None
    until: Optional[str] = None


@dataclass(frozen=True)
class Statistic:
    name: str
    description: str
    view: str
    columns: Tuple[Column, ...]
    since: Optional[str] = None
    extension: Optional[str] = None
    where: Tuple[Predicate, ...] = ()
    filter: Optional[str] = None
    aggregate: bool = True
    reset_column: Optional[str] = None
    reset_since: Optional[str] = None
    bouncer: bool = False

    @property
    def groups(self) -> List[str]:
        seen: List[str] = []
        for column in self.columns:
            if column.group not in seen:
                seen.append(column.group)
        return seen


@dataclass(frozen=True)
class QueryTemplate:
    statistic: Statistic
    text: str
    columns: Tuple[Column, ...]
    parameterized: bool = False
    reset_column: Optional[str] = None

    @property
    def fields(self) -> List[str]:
        return [column.name for column in self.columns]


def available(version: Optional[Version], since: Optional[str], until: Optional[str]) -> bool:
    """True when ``version`` lies in ``[since, until)``.

    An unknown version (pgBouncer consoles) accepts everything.
    """
    if version is None:
        return True
    if since is not None and version < Version(since):
        return False
    if until is not None and version >= Version(until):
        return False
    return True


def counter(name: str, label: str, group: str, **kwargs) -> Column:
    return Column(name=name, label=label, group=group, **kwargs)


def gauge(name: str, label: str, group: str, **kwargs) -> Column:
    return Column(name=name, label=label, group=group, behaviour=Behaviour.GAUGE, **kwargs)


def timing(name: str, label: str, group: str, **kwargs) -> Column:
    kwargs.setdefault("width", 9)
    return Column(name=name, label=label, group=group, unit=Unit.DURATION, **kwargs)


def volume(name: str, label: str, group: str, **kwargs) -> Column:
    kwargs.setdefault("width", 9)
    return Column(name=name, label=label, group=group, unit=Unit.BYTES, **kwargs)


def _flag(condition: str) -> str:
    return f"CASE WHEN {condition} THEN 1 ELSE 0 END"


NOT_INFORMATION_SCHEMA = Predicate("schemaname <> 'information_schema'")

WAIT_EVENT_TYPES = ("Activity", "BufferPin", "Client", "Extension", "IO", "IPC", "Lock", "LWLock", "Timeout")

_STATISTICS: Tuple[Statistic, ...] = (
    Statistic(
        name="archiver",
        description="pg_stat_archiver",
        view="pg_stat_archiver",
        since="9.4",
        aggregate=False,
        reset_column="stats_reset",
        reset_since="9.4",
        columns=(
            counter("archived_count", "archived", "WAL counts", width=8),
            counter("failed_count", "failed", "WAL counts", width=8),
        ),
    ),
    Statistic(
        name="bgwriter",
        description="pg_stat_bgwriter",
        view="pg_stat_bgwriter",
        aggregate=False,
        reset_column="stats_reset",
        reset_since="9.1",
        columns=(
            counter("checkpoints_timed", "timed", "checkpoints", until="17"),
            counter("checkpoints_req", "requested", "checkpoints", until="17"),
            timing("checkpoint_write_time", "write_time", "checkpoints", since="9.2", until="17"),
            timing("checkpoint_sync_time", "sync_time", "checkpoints", since="9.2", until="17"),
            counter("buffers_checkpoint", "checkpoint", "buffers", until="17"),
            counter("buffers_clean", "clean", "buffers"),
            counter("buffers_backend", "backend", "buffers", until="17"),
            counter("buffers_alloc", "alloc", "buffers"),
            counter("maxwritten_clean", "maxwritten", "misc"),
            counter("buffers_backend_fsync", "backend_fsync", "misc", since="9.1", until="17"),
        ),
    ),
    Statistic(
        name="checkpointer",
        description="pg_stat_checkpointer",
        view="pg_stat_checkpointer",
        since="17",
        aggregate=False,
        reset_column="stats_reset",
        reset_since="17",
        columns=(
            counter("num_timed", "timed", "checkpoints"),
            counter("num_requested", "requested", "checkpoints"),
            counter("num_done", "done", "checkpoints", since="18"),
            timing("write_time", "write", "time"),
            timing("sync_time", "sync", "time"),
            counter("buffers_written", "written", "buffers"),
            counter("slru_written", "slru", "buffers", since="18"),
        ),
    ),
    Statistic(
        name="connection",
        description="pg_stat_activity connection states",
        view="pg_stat_activity",
        since="9.2",
        where=(Predicate("backend_type = 'client backend'", since="10"),),
        filter="datname = %s",
        columns=(
            gauge("total", "total", "connections", expr="1"),
            gauge("active", "active", "connections",
                  expr=_flag("state = 'active' AND NOT waiting"), until="9.6"),
            gauge("active", "active", "connections",
                  expr=_flag("state = 'active' AND wait_event_type IS DISTINCT FROM 'Lock'"), since="9.6"),
            gauge("lockwaiting", "lockwaiting", "connections", expr=_flag("waiting"), until="9.6"),
            gauge("lockwaiting", "lockwaiting", "connections", expr=_flag("wait_event_type = 'Lock'"), since="9.6"),
            gauge("idleintransaction", "idle_xact", "connections", expr=_flag("state = 'idle in transaction'")),
            gauge("idle", "idle", "connections", expr=_flag("state = 'idle'")),
        ),
    ),
    Statistic(
        name="database",
        description="pg_stat_database",
        view="pg_stat_database",
        filter="datname = %s",
        reset_column="stats_reset",
        reset_since="9.1",
        columns=(
            gauge("numbackends", "backends", "backends", width=8),
            counter("xact_commit", "commit", "xacts"),
            counter("xact_rollback", "rollback", "xacts"),
            counter("blks_read", "read", "blocks"),
            counter("blks_hit", "hit", "blocks", width=8),
            timing("blk_read_time", "read_time", "blocks", since="9.2"),
            timing("blk_write_time", "write_time", "blocks", since="9.2"),
            counter("tup_returned", "ret", "tuples", width=8, since="8.3"),
            counter("tup_fetched", "fet", "tuples", since="8.3"),
            counter("tup_inserted", "ins", "tuples", since="8.3"),
            counter("tup_updated", "upd", "tuples", since="8.3"),
            counter("tup_deleted", "del", "tuples", since="8.3"),
            counter("temp_files", "files", "temp", since="9.2"),
            volume("temp_bytes", "bytes", "temp", since="9.2"),
            counter("conflicts", "conflicts", "misc", since="9.1"),
            counter("deadlocks", "deadlocks", "misc", since="9.2"),
            counter("checksum_failures", "checksums", "misc", since="12"),
            counter("sessions", "total", "sessions", since="14"),
            counter("sessions_abandoned", "abandoned", "sessions", since="14"),
            counter("sessions_fatal", "fatal", "sessions", since="14"),
            counter("sessions_killed", "killed", "sessions", since="14"),
            timing("session_time", "time", "sessions", width=10, since="14"),
            timing("active_time", "active", "sessions", width=10, since="14"),
            timing("idle_in_transaction_time", "idle_xact", "sessions", width=10, since="14"),
        ),
    ),
    Statistic(
        name="table",
        description="pg_stat_all_tables",
        view="pg_stat_all_tables",
        where=(NOT_INFORMATION_SCHEMA,),
        filter="relname = %s",
        columns=(
            counter("seq_scan", "scan", "sequential"),
            counter("seq_tup_read", "tuples", "sequential", width=8),
            counter("idx_scan", "scan", "index"),
            counter("idx_tup_fetch", "tuples", "index", width=8),
            counter("n_tup_ins", "ins", "tuples"),
            counter("n_tup_upd", "upd", "tuples"),
            counter("n_tup_del", "del", "tuples"),
            counter("n_tup_hot_upd", "hotupd", "tuples", since="8.3"),
            counter("n_tup_newpage_upd", "newpage", "tuples", since="16"),
            gauge("n_live_tup", "live", "state", width=8, since="8.3"),
            gauge("n_dead_tup", "dead", "state", since="8.3"),
            gauge("n_mod_since_analyze", "analyze", "state", since="9.4"),
            gauge("n_ins_since_vacuum", "vacuum", "state", since="13"),
            counter("vacuum_count", "vacuum", "maintenance", since="9.1"),
            counter("autovacuum_count", "autovacuum", "maintenance", since="9.1"),
            counter("analyze_count", "analyze", "maintenance", since="9.1"),
            counter("autoanalyze_count", "autoanalyze", "maintenance", since="9.1"),
        ),
    ),
    Statistic(
        name="tableio",
        description="pg_statio_all_tables",
        view="pg_statio_all_tables",
        where=(NOT_INFORMATION_SCHEMA,),
        filter="relname = %s",
        columns=(
            counter("heap_blks_read", "read", "heap table"),
            counter("heap_blks_hit", "hit", "heap table", width=9),
            counter("idx_blks_read", "read", "heap indexes"),
            counter("idx_blks_hit", "hit", "heap indexes", width=9),
            counter("toast_blks_read", "read", "toast table"),
            counter("toast_blks_hit", "hit", "toast table", width=9),
            counter("tidx_blks_read", "read", "toast indexes"),
            counter("tidx_blks_hit", "hit", "toast indexes", width=9),
        ),
    ),
    Statistic(
        name="index",
        description="pg_stat_all_indexes",
        view="pg_stat_all_indexes",
        where=(NOT_INFORMATION_SCHEMA,),
        filter="indexrelname = %s",
        columns=(
            counter("idx_scan", "scan", "scan", width=8),
            counter("idx_tup_read", "read", "tuples", width=8),
            counter("idx_tup_fetch", "fetch", "tuples", width=8),
        ),
    ),
    Statistic(
        name="function",
        description="pg_stat_user_functions",
        view="pg_stat_user_functions",
        since="8.4",
        filter="funcname = %s",
        columns=(
            counter("calls", "calls", "count", width=9),
            timing("total_time", "total", "time", width=10),
            timing("self_time", "self", "time", width=10),
        ),
    ),
    Statistic(
        name="statement",
        description="pg_stat_statements",
        view="{schema}.pg_stat_statements",
        extension="pg_stat_statements",
        filter="dbid = (SELECT oid FROM pg_database WHERE datname = %s)",
        columns=(
            counter("calls", "calls", "calls", width=8),
            counter("plans", "plans", "calls", width=8, since="13"),
            timing("total_plan_time", "plan", "time", width=10, since="13"),
            timing("total_exec_time", "exec", "time", width=10, since="13"),
            timing("total_time", "exec", "time", width=10, until="13"),
            counter("rows", "rows", "rows", width=8),
            counter("shared_blks_hit", "hit", "shared", width=8),
            counter("shared_blks_read", "read", "shared"),
            counter("shared_blks_dirtied", "dirtied", "shared", since="9.2"),
            counter("shared_blks_written", "written", "shared"),
            counter("local_blks_hit", "hit", "local"),
            counter("local_blks_read", "read", "local"),
            counter("local_blks_dirtied", "dirtied", "local", since="9.2"),
            counter("local_blks_written", "written", "local"),
            counter("temp_blks_read", "read", "temp"),
            counter("temp_blks_written", "written", "temp"),
            counter("wal_records", "records", "wal", since="13"),
            counter("wal_fpi", "fpi", "wal", since="13"),
            volume("wal_bytes", "bytes", "wal", since="13"),
        ),
    ),
    Statistic(
        name="buffercache",
        description="pg_buffercache",
        view="{schema}.pg_buffercache",
        extension="pg_buffercache",
        filter="reldatabase = (SELECT oid FROM pg_database WHERE datname = %s)",
        columns=(
            gauge("used", "used", "buffers", width=8, expr=_flag("relfilenode IS NOT NULL")),
            gauge("unused", "unused", "buffers", width=8, expr=_flag("relfilenode IS NULL")),
            gauge("dirty", "dirty", "status", width=8, expr=_flag("isdirty")),
            gauge("pinned", "pinned", "status", width=8, expr=_flag("pinning_backends > 0"), since="9.5"),
        ),
    ),
    Statistic(
        name="wal",
        description="pg_stat_wal",
        view="pg_stat_wal",
        since="14",
        aggregate=False,
        reset_column="stats_reset",
        reset_since="14",
        columns=(
            counter("wal_records", "records", "records", width=8),
            counter("wal_fpi", "fpi", "records"),
            volume("wal_bytes", "bytes", "records"),
            counter("wal_buffers_full", "full", "buffers"),
            counter("wal_write", "write", "io", until="18"),
            counter("wal_sync", "sync", "io", until="18"),
            timing("wal_write_time", "write_time", "io", width=10, until="18"),
            timing("wal_sync_time", "sync_time", "io", width=10, until="18"),
        ),
    ),
    Statistic(
        name="io",
        description="pg_stat_io",
        view="pg_stat_io",
        since="16",
        filter="backend_type = %s",
        reset_column="stats_reset",
        reset_since="16",
        columns=(
            counter("reads", "reads", "reads", width=8),
            volume("read_bytes", "bytes", "reads", since="18"),
            timing("read_time", "time", "reads"),
            counter("hits", "hits", "reads", width=8),
            counter("writes", "writes", "writes"),
            volume("write_bytes", "bytes", "writes", since="18"),
            timing("write_time", "time", "writes"),
            counter("writebacks", "writebacks", "writebacks"),
            timing("writeback_time", "time", "writebacks"),
            counter("extends", "extends", "extends"),
            volume("extend_bytes", "bytes", "extends", since="18"),
            timing("extend_time", "time", "extends"),
            counter("evictions", "evictions", "buffers"),
            counter("reuses", "reuses", "buffers"),
            counter("fsyncs", "fsyncs", "fsyncs"),
            timing("fsync_time", "time", "fsyncs"),
        ),
    ),
    Statistic(
        name="slru",
        description="pg_stat_slru",
        view="pg_stat_slru",
        since="13",
        filter="name = %s",
        reset_column="stats_reset",
        reset_since="13",
        columns=(
            counter("blks_zeroed", "zeroed", "blocks"),
            counter("blks_hit", "hit", "blocks", width=8),
            counter("blks_read", "read", "blocks"),
            counter("blks_written", "written", "blocks"),
            counter("blks_exists", "exists", "blocks"),
            counter("flushes", "flushes", "misc"),
            counter("truncates", "truncates", "misc"),
        ),
    ),
    Statistic(
        name="replslot",
        description="pg_stat_replication_slots",
        view="pg_stat_replication_slots",
        since="14",
        filter="slot_name = %s",
        reset_column="stats_reset",
        reset_since="14",
        columns=(
            counter("spill_txns", "txns", "spill"),
            counter("spill_count", "count", "spill"),
            volume("spill_bytes", "bytes", "spill"),
            counter("stream_txns", "txns", "stream"),
            counter("stream_count", "count", "stream"),
            volume("stream_bytes", "bytes", "stream"),
            counter("total_txns", "txns", "total"),
            volume("total_bytes", "bytes", "total"),
        ),
    ),
    Statistic(
        name="subscription",
        description="pg_stat_subscription_stats",
        view="pg_stat_subscription_stats",
        since="15",
        filter="subname = %s",
        reset_column="stats_reset",
        reset_since="15",
        columns=(
            counter("apply_error_count", "apply", "errors"),
            counter("sync_error_count", "sync", "errors"),
        ),
    ),
    Statistic(
        name="waitevent",
        description="pg_stat_activity wait event types",
        view="pg_stat_activity",
        since="9.6",
        filter="datname = %s",
        columns=tuple(
            gauge(kind.lower(), kind, "wait event types", width=6, expr=_flag(f"wait_event_type = '{kind}'"))
            for kind in WAIT_EVENT_TYPES
        )
        + (gauge("running", "running", "wait event types",
                 expr=_flag("state = 'active' AND wait_event_type IS NULL")),),
    ),
    Statistic(
        name="pbpools",
        description="pgBouncer pools",
        view="POOLS",
        aggregate=False,
        bouncer=True,
        columns=(
            gauge("cl_active", "active", "client"),
            gauge("cl_waiting", "waiting", "client"),
            gauge("sv_active", "active", "server"),
            gauge("sv_idle", "idle", "server"),
            gauge("sv_used", "used", "server"),
            gauge("sv_tested", "tested", "server"),
            gauge("sv_login", "login", "server"),
            gauge("maxwait", "maxwait", "misc"),
        ),
    ),
)

STATISTICS: Dict[str, Statistic] = {statistic.name: statistic for statistic in _STATISTICS}
DEFAULT_STATISTIC = "bgwriter"


def lookup(kind: str) -> Statistic:
    try:
        return STATISTICS[kind]
    except KeyError:
        raise ConfigurationError(
            f"unknown statistic {kind!r}; choose one of: {', '.join(STATISTICS)}"
        ) from None


def _select_list(statistic: Statistic, columns: Sequence[Column], reset: Optional[str]) -> str:
    items = []
    for column in columns:
        if statistic.aggregate:
            items.append(f"sum({column.sql}) AS {column.name}")
        elif column.expr:
            items.append(f"{column.sql} AS {column.name}")
        else:
            items.append(column.name)
    if reset:
        items.append(f"max({reset}) AS {reset}" if statistic.aggregate else reset)
    return ", ".join(items)


def resolve(
    kind: str,
    version: Optional[Version],
    extensions: Optional[Mapping[str, str]] = None,
    filtered: bool = False,
    groups: Optional[Sequence[str]] = None,
) -> QueryTemplate:
    """Build the query for ``kind`` on a server running ``version``.

    ``extensions`` maps installed extension names to their quoted schema.
    ``groups`` restricts the columns to the named metric groups; names must
    match exactly.
    """
    statistic = lookup(kind)
    extensions = extensions or {}

    if not available(version, statistic.since, None):
        raise UnsupportedStatisticError(f"You need at least {statistic.since} for this statistic.")
    if statistic.extension and statistic.extension not in extensions:
        raise UnsupportedStatisticError(
            f"The {statistic.extension} extension is not installed in this database."
        )
    if filtered and not statistic.filter:
        raise ConfigurationError(f"The {kind} statistic does not accept a filter.")

    columns = [column for column in statistic.columns if available(version, column.since, column.until)]

    if groups:
        unknown = [group for group in groups if group not in statistic.groups]
        if unknown:
            raise ConfigurationError(
                f"unknown metric group {unknown[0]!r} for {kind}; choose from: "
                + ", ".join(repr(group) for group in statistic.groups)
            )
        columns = [column for column in columns if column.group in groups]
        if not columns:
            raise UnsupportedStatisticError(
                f"metric group(s) {', '.join(groups)} not available on this server release"
            )

    if statistic.bouncer:
        return QueryTemplate(statistic=statistic, text=f"SHOW {statistic.view}", columns=tuple(columns))

    reset = None
    if statistic.reset_column and available(version, statistic.reset_since, None):
        reset = statistic.reset_column

    view = statistic.view
    if statistic.extension:
        view = view.format(schema=extensions[statistic.extension])

    conditions = [predicate.sql for predicate in statistic.where if available(version, predicate.since, predicate.until)]
    if filtered:
        conditions.append(statistic.filter)

    text = f"SELECT {_select_list(statistic, columns, reset)} FROM {view}"
    if conditions:
        text += " WHERE " + " AND ".join(conditions)

    return QueryTemplate(
        statistic=statistic,
        text=text,
        columns=tuple(columns),
        parameterized=filtered,
        reset_column=reset,
    )
