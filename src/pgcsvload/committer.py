"""
Per-batch transactional commit.

A batch goes in with one transaction of its own: BEGIN -> COPY (or INSERT)
every row -> end the COPY stream -> COMMIT. Any database error rolls the whole
batch back and comes out as a failed CommitOutcome; nothing is retried here.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional, Sequence

import psycopg
from psycopg import sql


@dataclass(frozen=True)
class CommitOutcome:
    rows: int
    seconds: float
    error: Optional[str] = None
    error_type: Optional[str] = None
    stage: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


# -----------------------------
# SQL composition
# -----------------------------
def table_identifier(table: str) -> sql.Identifier:
    """'schema.table' -> "schema"."table"; a bare name stays unqualified."""
    parts = [p.strip() for p in table.split(".")]
    if not all(parts):
        raise ValueError(f"invalid table name: {table!r}")
    return sql.Identifier(*parts)


def column_list(header: Sequence[str]) -> sql.Composed:
    return sql.SQL(", ").join(sql.Identifier(c) for c in header)


def copy_statement(table: str, header: Sequence[str]) -> sql.Composed:
    return sql.SQL("COPY {} ({}) FROM STDIN").format(
        table_identifier(table), column_list(header)
    )


def insert_statement(table: str, header: Sequence[str]) -> sql.Composed:
    return sql.SQL("INSERT INTO {} ({}) VALUES ({})").format(
        table_identifier(table),
        column_list(header),
        sql.SQL(", ").join([sql.Placeholder()] * len(header)),
    )


# -----------------------------
# Commit
# -----------------------------
def commit_batch(
    conn,
    table: str,
    header: Sequence[str],
    batch: Sequence[Sequence[str]],
    method: str = "copy",
) -> CommitOutcome:
    """
    Commit one batch atomically.

    `conn` must be in autocommit mode so that conn.transaction() opens a real
    BEGIN/COMMIT block rather than a savepoint.

    Returns:
      CommitOutcome with rows == len(batch); error/stage are set on failure.
    """
    t0 = time.perf_counter()
    stage = "begin"
    try:
        with conn.transaction():
            stage = "stream"
            with conn.cursor() as cur:
                if method == "insert":
                    cur.executemany(insert_statement(table, header), batch)
                else:
                    with cur.copy(copy_statement(table, header)) as cp:
                        for row in batch:
                            cp.write_row(row)
                        stage = "flush"
            stage = "commit"
    except psycopg.Error as e:
        return CommitOutcome(
            rows=len(batch),
            seconds=time.perf_counter() - t0,
            error=str(e).strip() or repr(e),
            error_type=type(e).__name__,
            stage=stage,
        )

    return CommitOutcome(rows=len(batch), seconds=time.perf_counter() - t0)
