"""Pytest fixtures: CSV files on disk and an in-memory stand-in for psycopg."""

import os
import threading
from contextlib import contextmanager

import psycopg
import pytest


class FakeDatabase:
    """
    Rows become visible only when a transaction commits. Failures are
    injected by commit attempt number (1-based, across all connections),
    by a poison field value, or for the first N connection attempts.
    """

    def __init__(self, fail_commits=(), poison=None, connect_failures=0,
                 fail_flush=False, fail_begin=False):
        self.rows = []
        self.batches = []
        self.commit_attempts = 0
        self.rollbacks = 0
        self.fail_commits = set(fail_commits)
        self.poison = poison
        self.connect_failures = connect_failures
        self.fail_flush = fail_flush
        self.fail_begin = fail_begin
        self.statements = []
        self.connections = []
        self.lock = threading.Lock()

    def connect(self):
        with self.lock:
            if self.connect_failures > 0:
                self.connect_failures -= 1
                raise psycopg.OperationalError("connection refused")
            conn = FakeConnection(self)
            self.connections.append(conn)
        return conn

    def commit(self, staged):
        with self.lock:
            self.commit_attempts += 1
            if self.commit_attempts in self.fail_commits:
                self.rollbacks += 1
                raise psycopg.errors.UniqueViolation("duplicate key value violates unique constraint")
            self.rows.extend(staged)
            self.batches.append(len(staged))

    def committed_ids(self):
        return sorted(int(r[0]) for r in self.rows)


class FakeConnection:
    def __init__(self, db):
        self.db = db
        self.staged = None
        self.closed = False

    @contextmanager
    def transaction(self):
        if self.db.fail_begin:
            raise psycopg.OperationalError("server closed the connection unexpectedly")
        assert self.staged is None, "transactions must not nest"
        self.staged = []
        try:
            yield self
        except BaseException:
            self.staged = None
            with self.db.lock:
                self.db.rollbacks += 1
            raise
        staged, self.staged = self.staged, None
        self.db.commit(staged)

    def cursor(self):
        return FakeCursor(self)

    def execute(self, query, params=None):
        with self.db.lock:
            self.db.statements.append((query, params))
        return self

    def stage(self, row):
        assert self.staged is not None, "write outside a transaction"
        if self.db.poison is not None and self.db.poison in row:
            raise psycopg.DataError(f"invalid input syntax: {self.db.poison!r}")
        self.staged.append(list(row))

    def close(self):
        self.closed = True


class FakeCopy:
    def __init__(self, conn):
        self.conn = conn

    def write_row(self, row):
        self.conn.stage(row)


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.copies = 0
        self.executemany_calls = 0

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    @contextmanager
    def copy(self, statement):
        self.copies += 1
        self.conn.db.statements.append((statement, None))
        yield FakeCopy(self.conn)
        if self.conn.db.fail_flush:
            raise psycopg.errors.QueryCanceled("canceling statement due to statement timeout")

    def executemany(self, query, rows):
        self.executemany_calls += 1
        self.conn.db.statements.append((query, "executemany"))
        for row in rows:
            self.conn.stage(row)


class BlockingDatabase(FakeDatabase):
    """Every commit waits until `release` is set."""

    def __init__(self, **kw):
        super().__init__(**kw)
        self.release = threading.Event()

    def commit(self, staged):
        self.release.wait()
        super().commit(staged)


class FileConnection:
    """
    Connection stand-in for worker processes. Built from a directory path
    only, so functools.partial(FileConnection, path) pickles; each commit
    appends the batch ids to <dir>/<pid>.txt, one batch per line.
    """

    def __init__(self, directory):
        self.path = os.path.join(directory, f"{os.getpid()}.txt")
        self.staged = None

    @contextmanager
    def transaction(self):
        self.staged = []
        try:
            yield self
        except BaseException:
            self.staged = None
            raise
        staged, self.staged = self.staged, None
        with open(self.path, "a", encoding="utf-8") as fh:
            fh.write(" ".join(row[0] for row in staged) + "\n")

    def cursor(self):
        return FileCursor(self)

    def stage(self, row):
        self.staged.append(list(row))

    def close(self):
        pass


class FileCursor:
    def __init__(self, conn):
        self.conn = conn

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    @contextmanager
    def copy(self, statement):
        yield FakeCopy(self.conn)

    def executemany(self, query, rows):
        for row in rows:
            self.conn.stage(row)


def read_file_batches(directory):
    """Committed batches written by FileConnection, as lists of ids."""
    batches = []
    for name in sorted(os.listdir(directory)):
        with open(os.path.join(directory, name), encoding="utf-8") as fh:
            batches += [[int(i) for i in line.split()] for line in fh if line.strip()]
    return batches


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def write_csv(tmp_path):
    """write_csv(n_rows, extra_lines=()) -> path of an id,name CSV with n data rows."""

    def _write(n_rows, header="id,name", extra_lines=(), name="data.csv"):
        lines = [header]
        lines += [f"{i},name-{i}" for i in range(n_rows)]
        lines += list(extra_lines)
        path = tmp_path / name
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return _write
