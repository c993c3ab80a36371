#!/usr/bin/env python3
"""
pgcsvload

CSV file -> PostgreSQL table, in parallel: N workers, each committing
fixed-size batches with COPY inside its own transaction.

- the file is streamed through a bounded queue, never read whole
- a failed batch is rolled back as a unit and the load goes on
  (or stops, with --on-error abort)
- the header row names the target columns

psql-compatible flags:
- -h host, -p port, -U user, -d dbname, -W (prompt for password)
(argparse help is remapped to --help / -?)

Usage:
  pgcsvload -h localhost -p 5432 -U postgres -d mydb --table public.events --file data.csv --workers 8

"""

from __future__ import annotations

import argparse
import getpass
import os
import sys
from functools import partial

import psycopg

from .config import ERROR_POLICIES, METHODS, LoadConfig, session_settings
from .db import open_worker_connection, ping_database
from .logs import setup_logging
from .pipeline import run_pipeline
from .source import RecordSource, SourceError


# -----------------------------
# Connection (psql-compatible)
# -----------------------------
def build_libpq_dsn(args) -> str:
    if args.dsn:
        return args.dsn

    parts: list[str] = []
    for key, value in (
        ("host", args.host),
        ("port", args.port),
        ("user", args.user),
        ("dbname", args.dbname),
        ("password", args.password),
        ("sslmode", args.sslmode),
        ("options", args.options),
    ):
        if value:
            parts.append(f"{key}={_dsn_quote(str(value))}")

    return " ".join(parts)


def _dsn_quote(value: str) -> str:
    if value and not any(c in value for c in " '\\"):
        return value
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def psql_equivalent_cmd(args) -> str:
    cmd = ["psql"]
    if args.host:
        cmd += ["-h", args.host]
    if args.port:
        cmd += ["-p", str(args.port)]
    if args.user:
        cmd += ["-U", args.user]
    if args.dbname:
        cmd += ["-d", args.dbname]

    prefix = ""
    if args.password:
        prefix += "PGPASSWORD='***' "
    if args.sslmode:
        prefix += f"PGSSLMODE='{args.sslmode}' "
    if args.options:
        prefix += f"PGOPTIONS='{args.options}' "
    return prefix + " ".join(cmd)


# -----------------------------
# Arguments
# -----------------------------
def build_parser() -> argparse.ArgumentParser:
    # argparse default -h conflicts with psql's -h(host).
    ap = argparse.ArgumentParser(
        prog="pgcsvload",
        description="Load a CSV file into a PostgreSQL table with parallel batched COPY.",
        add_help=False,
    )
    ap.add_argument(
        "--help", "-?", action="help", help="show this help message and exit"
    )

    # Connection (psql-compatible)
    ap.add_argument(
        "--dsn",
        default=os.environ.get("PG_DSN"),
        help="libpq DSN. Overrides -h/-p/-U/-d.",
    )
    ap.add_argument("-h", "--host", default=None, help="database server host or socket directory.")
    ap.add_argument("-p", "--port", type=int, default=None, help="database server port.")
    ap.add_argument("-U", "--user", default=None, help="database user name.")
    ap.add_argument("-d", "--dbname", default=None, help="database name.")
    ap.add_argument(
        "--password",
        default=None,
        help="database password (or use PGPASSWORD env / .pgpass).",
    )
    ap.add_argument(
        "-W",
        "--password-prompt",
        action="store_true",
        help="prompt for the password (input is not echoed).",
    )
    ap.add_argument("--sslmode", default=None, help="sslmode (require, verify-full, etc.).")
    ap.add_argument(
        "--options",
        default=None,
        help='libpq options string (e.g., "-c search_path=staging").',
    )
    ap.add_argument(
        "--print-psql",
        action="store_true",
        help="Print equivalent psql command and exit.",
    )

    # Load
    ap.add_argument("--table", default=None, help="target table, optionally schema-qualified.")
    ap.add_argument("--file", default="data.csv", help="CSV file; the first row is the header.")
    ap.add_argument("--encoding", default="utf-8", help="source file encoding.")
    ap.add_argument("--workers", type=int, default=5, help="Number of concurrent workers.")
    ap.add_argument("--batch-size", type=int, default=100, help="Rows per transaction.")
    ap.add_argument(
        "--queue-size",
        type=int,
        default=0,
        help="Rows buffered between reader and workers (default: workers * 2).",
    )
    ap.add_argument(
        "--method",
        choices=METHODS,
        default="copy",
        help="copy (COPY FROM STDIN) or insert (parameterized INSERT fallback).",
    )
    ap.add_argument(
        "--on-error",
        choices=ERROR_POLICIES,
        default="continue",
        help="continue past a failed batch, or abort the whole load.",
    )
    ap.add_argument(
        "--batch-timeout-sec",
        type=float,
        default=0.0,
        help="statement_timeout for each batch statement. 0 means no limit.",
    )
    ap.add_argument(
        "--async-commit",
        action="store_true",
        help="SET synchronous_commit=off on worker connections.",
    )
    ap.add_argument(
        "--threads",
        action="store_true",
        help="Run workers as threads instead of processes.",
    )
    ap.add_argument(
        "--join-timeout-sec",
        type=float,
        default=0.0,
        help="If >0, timeout seconds for joining each worker. 0 means wait indefinitely.",
    )
    ap.add_argument("--log-level", default="INFO", help="DEBUG, INFO, WARNING, ...")
    return ap


def config_from_args(args) -> LoadConfig:
    return LoadConfig(
        table=args.table or "",
        source=args.file,
        workers=args.workers,
        batch_size=args.batch_size,
        queue_size=args.queue_size,
        method=args.method,
        on_error=args.on_error,
        batch_timeout_sec=args.batch_timeout_sec,
        async_commit=args.async_commit,
        use_threads=args.threads,
        join_timeout_sec=args.join_timeout_sec,
        encoding=args.encoding,
        log_level=args.log_level,
    )


# -----------------------------
# Main
# -----------------------------
def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.print_psql:
        print(psql_equivalent_cmd(args))
        return 0

    try:
        cfg = config_from_args(args)
    except ValueError as e:
        print(f"[fatal] {e}", file=sys.stderr)
        return 2
    setup_logging(cfg.log_level)

    if args.password_prompt and not args.password:
        args.password = getpass.getpass("Password: ")
    dsn = build_libpq_dsn(args)

    try:
        ping_database(dsn)
    except psycopg.Error as e:
        print(f"[fatal] cannot connect to database: {e}", file=sys.stderr)
        return 2
    print("[setup] connected to database")

    try:
        source = RecordSource.open(cfg.source, encoding=cfg.encoding)
    except SourceError as e:
        print(f"[fatal] {e}", file=sys.stderr)
        return 2

    mode = "threads" if cfg.use_threads else "processes"
    print(
        f"[setup] loading {cfg.source} -> {cfg.table}: columns={len(source.header)} "
        f"workers={cfg.workers} ({mode}) batch={cfg.batch_size:,} method={cfg.method}"
    )

    connect = partial(open_worker_connection, dsn, session_settings(cfg))
    with source:
        report = run_pipeline(cfg, source, connect)

    print(report.format())
    return report.exit_code()


if __name__ == "__main__":
    raise SystemExit(main())
