# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Exceptions raised by the pgstats tools.

Every failure is terminal: the command-line entry points catch
``PgStatsError``, report it on stderr and exit with status 1.
"""

from __future__ import annotations

from typing import Optional


class PgStatsError(Exception):
    """Base class for every error reported by the tools."""


class ConfigurationError(PgStatsError):
    """Bad flag combination or missing selector/filter."""


class ServerConnectionError(PgStatsError):
    """The server could not be reached or refused the login."""


class UnsupportedStatisticError(PgStatsError):
    """The requested statistic needs a newer server or a missing extension."""


class QueryError(PgStatsError):
    """A query failed; ``query`` keeps the failing SQL for diagnosis."""

    def __init__(self, message: str, query: Optional[str] = None) -> None:
        super().__init__(message)
        self.query = query
