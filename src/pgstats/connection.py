# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Connection handling shared by the command-line tools."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import psycopg
from packaging.version import Version
from psycopg import sql

from .errors import QueryError, ServerConnectionError

DEFAULT_DATABASE = "postgres"

EXTENSIONS_SQL = """
SELECT e.extname, n.nspname
  FROM pg_extension e
  JOIN pg_namespace n ON n.oid = e.extnamespace
"""

SUPERUSER_SQL = "SELECT rolsuper FROM pg_roles WHERE rolname = current_user"


@dataclass
class ConnectionOptions:
    dbname: Optional[str] = None
    host: Optional[str] = None
    port: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    application_name: str = "pgstats"
    bouncer: bool = False

    @property
    def database(self) -> str:
        return self.dbname or os.environ.get("PGDATABASE") or DEFAULT_DATABASE

    def connect_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "fallback_application_name": self.application_name,
        }
        # a database name holding '=' is a complete connection string
        if "=" not in self.database:
            kwargs["dbname"] = self.database
        return {key: value for key, value in kwargs.items() if value is not None}

    def conninfo(self) -> str:
        return self.database if "=" in self.database else ""

    def describe(self) -> str:
        parts = [f"dbname={self.database}"]
        for key in ("host", "port", "user"):
            value = getattr(self, key)
            if value:
                parts.append(f"{key}={value}")
        return " ".join(parts)


def connect(options: ConnectionOptions) -> psycopg.Connection:
    """Open an autocommit connection or raise ``ServerConnectionError``.

    pgBouncer's admin console only speaks the simple query protocol, so
    those connections use client-side binding and never prepare statements.
    """
    extra: Dict[str, Any] = {}
    if options.bouncer:
        extra["cursor_factory"] = psycopg.ClientCursor
        extra["prepare_threshold"] = None
    try:
        return psycopg.connect(options.conninfo(), autocommit=True, **extra, **options.connect_kwargs())
    except psycopg.Error as exc:
        raise ServerConnectionError(
            f"could not connect to database {options.database}: {str(exc).strip()}"
        ) from exc


def version_from_number(number: int) -> Version:
    """Map ``server_version_num`` to a major.minor ``Version``.

    From release 10 the major version is a single number and the minor
    part is the maintenance release.
    """
    if number >= 100000:
        return Version(f"{number // 10000}.{number % 10000}")
    return Version(f"{number // 10000}.{number // 100 % 100}")


def server_version(conn: psycopg.Connection) -> Version:
    return version_from_number(conn.info.server_version)


def fetch_all(
    conn: psycopg.Connection,
    query: str,
    params: Optional[Sequence[Any]] = None,
    row_factory=None,
) -> List[Any]:
    """Run ``query`` and return every row; any failure is a ``QueryError``."""
    try:
        with conn.cursor(row_factory=row_factory) as cur:
            cur.execute(query, params)
            if cur.description is None:
                return []
            return cur.fetchall()
    except psycopg.Error as exc:
        raise QueryError(f"query failed: {str(exc).strip()}", query) from exc


def fetch_with_names(conn: psycopg.Connection, query: str) -> Tuple[List[str], List[Any]]:
    """Like ``fetch_all`` but also return the result column names."""
    try:
        with conn.cursor() as cur:
            cur.execute(query)
            if cur.description is None:
                return [], []
            return [column.name for column in cur.description], cur.fetchall()
    except psycopg.Error as exc:
        raise QueryError(f"query failed: {str(exc).strip()}", query) from exc


def execute(conn: psycopg.Connection, query: str, params: Optional[Sequence[Any]] = None) -> None:
    fetch_all(conn, query, params)


def extension_schemas(conn: psycopg.Connection) -> Dict[str, str]:
    """Installed extensions mapped to their quoted schema name."""
    return {
        name: sql.Identifier(schema).as_string(conn)
        for name, schema in fetch_all(conn, EXTENSIONS_SQL)
    }


def is_superuser(conn: psycopg.Connection) -> bool:
    rows = fetch_all(conn, SUPERUSER_SQL)
    return bool(rows and rows[0][0])
