# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Previous-sample store used to turn cumulative counters into deltas."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

# stats_reset value meaning "no reset observed yet"
RESET_NEVER = datetime.min.replace(tzinfo=timezone.utc)

Sample = Dict[str, Any]


def _as_marker(value: Optional[datetime]) -> datetime:
    if value is None:
        return RESET_NEVER
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Snapshot:
    """Values seen at the previous poll for the active statistic.

    Counters start at zero so that the first printed line shows absolute
    values. The reset marker starts at ``RESET_NEVER``.
    """

    def __init__(self, fields: Iterable[str]) -> None:
        self.fields = list(fields)
        self.values: Sample = {name: 0 for name in self.fields}
        self.reset_marker = RESET_NEVER

    def check_reset(self, marker: Optional[datetime]) -> bool:
        """Record ``marker`` and report whether it denotes a new reset.

        A reset is reported only when a marker was already known and the
        fresh one is strictly newer. On a reset the stored counters go back
        to zero so the next diff shows values accumulated since the reset.
        """
        fresh = _as_marker(marker)
        known = self.reset_marker
        self.reset_marker = fresh
        if known == RESET_NEVER or fresh <= known:
            return False
        self.values = {name: 0 for name in self.fields}
        return True

    def diff(self, sample: Sample) -> Sample:
        return {name: sample[name] - self.values[name] for name in self.fields}

    def update(self, sample: Sample) -> None:
        self.values = {name: sample[name] for name in self.fields}
