"""
Connections: the up-front reachability check and per-worker connections.
"""

from __future__ import annotations

from typing import Mapping

import psycopg


def ping_database(dsn: str) -> None:
    """Connect, run SELECT 1, disconnect. Raises psycopg.Error when unreachable."""
    with psycopg.connect(dsn, autocommit=True) as conn:
        conn.execute("SELECT 1").fetchone()


def open_worker_connection(dsn: str, settings: Mapping[str, str]):
    """
    One connection per worker. Autocommit, so each batch controls its own
    BEGIN/COMMIT through conn.transaction().
    """
    conn = psycopg.connect(dsn, autocommit=True)
    try:
        for name, value in settings.items():
            conn.execute("SELECT set_config(%s, %s, false)", (name, value))
    except BaseException:
        conn.close()
        raise
    return conn
