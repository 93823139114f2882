#!/usr/bin/env python3
# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Gather statistics from a PostgreSQL database and print them like vmstat."""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from .catalog import DEFAULT_STATISTIC, STATISTICS, resolve
from .connection import connect, extension_schemas, server_version
from .display import HeaderController
from .errors import PgStatsError
from .options import (
    ArgumentParser,
    add_connection_arguments,
    connection_options,
    log,
    positive_float,
    positive_int,
    report,
)
from .sampler import Sampler, sample_lines

TOOL = "pgstat"


def _stat_help() -> str:
    lines = ["available statistics (-s):"]
    for name, statistic in STATISTICS.items():
        detail = statistic.description
        if statistic.since:
            detail += f" (v{statistic.since}+)"
        if statistic.extension:
            detail += f" (needs {statistic.extension})"
        lines.append(f"  {name:<13} {detail}")
    return "\n".join(lines)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = ArgumentParser(
        prog=TOOL,
        description=__doc__,
        epilog=_stat_help(),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-s", "--stat", choices=list(STATISTICS), default=DEFAULT_STATISTIC,
                        metavar="STAT", help=f"statistic to follow (default {DEFAULT_STATISTIC})")
    parser.add_argument("-f", "--filter", metavar="FILTER", help="include only this object")
    parser.add_argument("-S", "--group", dest="groups", action="append", metavar="GROUP",
                        help="only display this metric group (repeatable)")
    parser.add_argument("-H", "--human-readable", action="store_true", help="scale values with units")
    parser.add_argument("-t", "--timestamp", action="store_true", help="prefix each line with a timestamp")
    parser.add_argument("-n", "--no-header-repeat", action="store_true", help="do not redisplay the header")
    parser.add_argument("-v", "--verbose", action="store_true", help="verbose diagnostics on stderr")
    add_connection_arguments(parser)
    parser.add_argument("interval", nargs="?", type=positive_float, default=1.0,
                        help="seconds between two samples (default 1)")
    parser.add_argument("count", nargs="?", type=positive_int,
                        help="number of samples (default: run until interrupted)")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    statistic = STATISTICS[args.stat]
    try:
        options = connection_options(args, TOOL, bouncer=statistic.bouncer)
        if args.verbose:
            log(TOOL, f"Connecting to {options.describe()}")
        conn = connect(options)
    except PgStatsError as exc:
        return report(TOOL, exc)
    except KeyboardInterrupt:
        return 1

    try:
        version = None
        if not statistic.bouncer:
            version = server_version(conn)
            if args.verbose:
                log(TOOL, f"Detected release: {version}")
        extensions = extension_schemas(conn) if statistic.extension else {}
        template = resolve(
            args.stat,
            version,
            extensions,
            filtered=args.filter is not None,
            groups=args.groups,
        )
        if args.verbose:
            log(TOOL, f"Query: {template.text}")

        sampler = Sampler(
            conn,
            template,
            filter_value=args.filter,
            human_readable=args.human_readable,
            timestamps=args.timestamp,
        )
        header = HeaderController(sampler.header(), suppress_repeat=args.no_header_repeat)
        header.install_signal_handlers(sys.stdout)

        for line in sample_lines(sampler, header, args.interval, args.count):
            print(line, flush=True)
    except PgStatsError as exc:
        return report(TOOL, exc)
    except KeyboardInterrupt:
        return 1
    except BrokenPipeError:
        # the reader is gone; nothing left to flush into
        sys.stdout = None
        return 0
    finally:
        conn.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
