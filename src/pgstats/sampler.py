# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Polling loop turning a statistics view into one delta line per interval."""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

import psycopg
from psycopg.rows import dict_row

from .catalog import Behaviour, Column, QueryTemplate
from .connection import fetch_all
from .display import HeaderController, header_lines
from .errors import QueryError
from .formatting import Unit, format_value, mode_for
from .snapshot import Sample, Snapshot

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
TIMESTAMP_WIDTH = 19


def _number(value: Any, column: Column):
    if value is None:
        return 0.0 if column.unit is Unit.DURATION else 0
    if column.unit is Unit.DURATION:
        return float(value)
    # sum() over bigint columns comes back as numeric
    return int(value)


def fold(rows: Sequence[Dict[str, Any]], template: QueryTemplate) -> Sample:
    """Sum every returned row into a single sample.

    Server-side aggregation normally yields one row already; pgBouncer pools
    and unaggregated views may return several.
    """
    sample: Sample = {column.name: _number(None, column) for column in template.columns}
    marker = None
    for row in rows:
        for column in template.columns:
            if column.name not in row:
                raise QueryError(f"column {column.name} missing from result", template.text)
            sample[column.name] += _number(row[column.name], column)
        if template.reset_column:
            value = row.get(template.reset_column)
            if value is not None and (marker is None or value > marker):
                marker = value
    if template.reset_column:
        sample[template.reset_column] = marker
    return sample


class Sampler:
    """Owns the connection, the query and the previous sample."""

    def __init__(
        self,
        conn: psycopg.Connection,
        template: QueryTemplate,
        filter_value: Optional[str] = None,
        human_readable: bool = False,
        timestamps: bool = False,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.conn = conn
        self.template = template
        self.filter_value = filter_value
        self.human_readable = human_readable
        self.timestamps = timestamps
        self.clock = clock
        self.snapshot = Snapshot(template.fields)

    def header(self) -> List[str]:
        return header_lines(self.template.columns, TIMESTAMP_WIDTH if self.timestamps else 0)

    def fetch(self) -> Sample:
        params = (self.filter_value,) if self.template.parameterized else None
        rows = fetch_all(self.conn, self.template.text, params, row_factory=dict_row)
        return fold(rows, self.template)

    def poll(self) -> List[str]:
        """Run one iteration and return the lines to print."""
        sample = self.fetch()
        lines: List[str] = []

        if self.template.reset_column:
            marker = sample[self.template.reset_column]
            if self.snapshot.check_reset(marker):
                lines.append(f"-- statistics reset at {marker:{TIMESTAMP_FORMAT}} --")

        deltas = self.snapshot.diff(sample)
        cells = [
            format_value(
                self._shown(column, sample, deltas),
                column.display_width,
                mode_for(column.unit, self.human_readable),
                column.unit,
            )
            for column in self.template.columns
        ]
        line = " ".join(cells)
        if self.timestamps:
            line = f"{self.clock():{TIMESTAMP_FORMAT}} {line}"
        lines.append(line)

        self.snapshot.update(sample)
        return lines

    def _shown(self, column: Column, sample: Sample, deltas: Sample):
        value = deltas[column.name]
        if column.behaviour is Behaviour.GAUGE:
            value = sample[column.name]
        elif value < 0 and self.human_readable:
            # counters only go down on a reset the view does not report
            value = sample[column.name]
        if column.unit is Unit.DURATION:
            # the server reports milliseconds
            return value / 1000.0
        return value


def sample_lines(
    sampler: Sampler,
    header: HeaderController,
    interval: float,
    count: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Iterator[str]:
    """Yield header and data lines, forever unless ``count`` is given."""
    iteration = 0
    while True:
        yield from header.before_line()
        lines = sampler.poll()
        header.count_extra(len(lines) - 1)
        yield from lines
        iteration += 1
        if count is not None and iteration >= count:
            return
        sleep(interval)
