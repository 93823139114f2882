# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Command-line plumbing shared by pgstat, pgcsvstat and pgwaitevent."""

from __future__ import annotations

import argparse
import getpass
import sys
from typing import NoReturn, Optional

from . import __version__
from .connection import ConnectionOptions
from .errors import PgStatsError, QueryError


class ArgumentParser(argparse.ArgumentParser):
    """``-h`` is the host name here, so help lives on ``-?``/``--help``.

    Usage errors exit with status 1 like every other failure.
    """

    def __init__(self, *args, **kwargs) -> None:
        kwargs["add_help"] = False
        super().__init__(*args, **kwargs)
        self.add_argument("-?", "--help", action="help", help="show this help, then exit")
        self.add_argument(
            "-V", "--version", action="version", version=f"%(prog)s {__version__}",
            help="output version information, then exit",
        )

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def add_connection_arguments(parser: argparse.ArgumentParser, with_dbname: bool = True) -> None:
    group = parser.add_argument_group("connection options")
    group.add_argument("-h", "--host", metavar="HOSTNAME", help="database server host or socket directory")
    group.add_argument("-p", "--port", metavar="PORT", help="database server port number")
    group.add_argument("-U", "--username", metavar="USER", help="connect as specified database user")
    if with_dbname:
        group.add_argument(
            "-d", "--dbname", metavar="DBNAME",
            help="database to connect to (defaults to $PGDATABASE, then postgres)",
        )
    group.add_argument("-W", "--password", action="store_true", help="force a password prompt")


def positive_float(text: str) -> float:
    try:
        value = float(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid interval: {text!r}") from None
    if value <= 0:
        raise argparse.ArgumentTypeError(f"interval must be positive: {text!r}")
    return value


def positive_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid count: {text!r}") from None
    if value <= 0:
        raise argparse.ArgumentTypeError(f"count must be positive: {text!r}")
    return value


def connection_options(args: argparse.Namespace, application_name: str, bouncer: bool = False) -> ConnectionOptions:
    password: Optional[str] = None
    if args.password:
        password = getpass.getpass("Password: ")
    return ConnectionOptions(
        dbname=getattr(args, "dbname", None),
        host=args.host,
        port=args.port,
        user=args.username,
        password=password,
        application_name=application_name,
        bouncer=bouncer,
    )


def report(tool: str, exc: PgStatsError) -> int:
    """Print ``exc`` on stderr and return the failure exit status."""
    print(f"[{tool}] {exc}", file=sys.stderr)
    if isinstance(exc, QueryError) and exc.query:
        print(f"[{tool}] query was: {exc.query.strip()}", file=sys.stderr)
    return 1


def log(tool: str, message: str) -> None:
    print(f"[{tool}] {message}", file=sys.stderr)
