# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

from collections import namedtuple
from typing import Any, Dict, List, Optional

import pytest
from psycopg.rows import dict_row

Description = namedtuple("Description", ["name"])


class FakeInfo:
    def __init__(self, server_version: int) -> None:
        self.server_version = server_version


class FakeCursor:
    def __init__(self, conn: "FakeConnection", row_factory=None) -> None:
        self.conn = conn
        self.row_factory = row_factory
        self.description = None
        self._rows: List[Any] = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query, params=None):
        self.conn.executed.append((query, params))
        result = self.conn.result_for(query)
        if result is None:
            self.description = None
            self._rows = []
            return self
        names, rows = result
        self.description = [Description(name) for name in names]
        if self.row_factory is dict_row:
            self._rows = [dict(zip(names, row)) for row in rows]
        else:
            self._rows = [tuple(row) for row in rows]
        return self

    def fetchall(self):
        return list(self._rows)


class FakeConnection:
    """Scripted stand-in for ``psycopg.Connection``.

    ``script(key, *results)`` answers every query containing ``key``; each
    result is consumed in turn and the last one keeps being returned. A
    result is a list of dicts, or an exception instance to raise.
    """

    def __init__(self, server_version: int = 160000, default: Optional[List[Dict[str, Any]]] = None) -> None:
        self.info = FakeInfo(server_version)
        self.executed: List[Any] = []
        self.closed = False
        self.default = default
        self._scripts: List[Any] = []

    def script(self, key: str, *results) -> "FakeConnection":
        self._scripts.append((key, list(results)))
        return self

    def result_for(self, query: str):
        for key, results in self._scripts:
            if key in query:
                result = results.pop(0) if len(results) > 1 else results[0]
                return self._shape(result)
        if self.default is not None:
            return self._shape(self.default)
        return None

    @staticmethod
    def _shape(result):
        if isinstance(result, BaseException):
            raise result
        names: List[str] = list(result[0]) if result else []
        return names, [[row[name] for name in names] for row in result]

    def cursor(self, row_factory=None):
        return FakeCursor(self, row_factory)

    def close(self):
        self.closed = True

    def queries(self) -> List[str]:
        return [query for query, _ in self.executed]


@pytest.fixture
def fake_conn():
    return FakeConnection()
