# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Header rendering and vmstat-style header repetition."""

from __future__ import annotations

import os
import signal
import sys
import threading
from typing import Callable, List, Sequence, TextIO

from .catalog import Column

DEFAULT_LINES = 20
MARGIN = 3


def terminal_lines(stream: TextIO = sys.stdout) -> int:
    """Rows available between two headers on the terminal behind ``stream``."""
    try:
        rows = os.get_terminal_size(stream.fileno()).lines
    except (AttributeError, OSError, ValueError):
        return DEFAULT_LINES
    if rows > MARGIN:
        return rows - MARGIN
    return DEFAULT_LINES


def _banner(group: str, span: int) -> str:
    text = f" {group} "
    if len(text) > span:
        text = group[:span]
    return text.center(span, "-")


def header_lines(columns: Sequence[Column], prefix_width: int = 0) -> List[str]:
    """Two header rows: group banners, then one label per column."""
    banners: List[str] = []
    run: List[Column] = []
    for column in columns:
        if run and run[-1].group != column.group:
            banners.append(_banner(run[-1].group, _span(run)))
            run = []
        run.append(column)
    if run:
        banners.append(_banner(run[-1].group, _span(run)))

    labels = [column.label.rjust(column.display_width) for column in columns]
    prefix = " " * (prefix_width + 1) if prefix_width else ""
    return [prefix + " ".join(banners), prefix + " ".join(labels)]


def _span(columns: Sequence[Column]) -> int:
    return sum(column.display_width for column in columns) + len(columns) - 1


class Notification:
    """A flag raised asynchronously and consumed by the polling loop."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def notify(self, *_args) -> None:
        self._event.set()

    def consume(self) -> bool:
        if not self._event.is_set():
            return False
        self._event.clear()
        return True


class HeaderController:
    """Decide before every data line whether the header must be printed.

    The countdown starts at one so the very first line gets a header. When
    it reaches zero the header is due and the countdown restarts at the
    current terminal height. Notice lines printed next to a data line are
    charged through ``count_extra``. A resize re-reads the height and forces
    the header on the next line; a resume forces it right away. With
    ``suppress_repeat`` the header is only ever printed once.
    """

    def __init__(
        self,
        header: Sequence[str],
        suppress_repeat: bool = False,
        lines: Callable[[], int] = terminal_lines,
        height: int = DEFAULT_LINES,
    ) -> None:
        self.header = list(header)
        self.suppress_repeat = suppress_repeat
        self.lines = lines
        self.height = height
        self.remaining = 1
        self.printed = False
        self.resize = Notification()
        self.resume = Notification()

    def before_line(self) -> List[str]:
        if self.resume.consume():
            self.remaining = 1
        if self.resize.consume():
            self.height = self.lines()
            self.remaining = 1

        if self.suppress_repeat and self.printed:
            return []

        self.remaining -= 1
        if self.remaining > 0:
            return []

        self.printed = True
        self.remaining = self.height
        return list(self.header)

    def count_extra(self, lines: int) -> None:
        """Charge lines printed besides the data line against the countdown."""
        self.remaining -= lines

    def install_signal_handlers(self, stream: TextIO = sys.stdout) -> None:
        """Hook resize and resume signals where the platform has them."""
        if hasattr(signal, "SIGCONT"):
            signal.signal(signal.SIGCONT, self.resume.notify)
        if stream.isatty():
            # peek at the terminal size before the first header
            self.resize.notify()
            if hasattr(signal, "SIGWINCH"):
                signal.signal(signal.SIGWINCH, self.resize.notify)
