"""
Logging setup shared by the CLI and worker processes.
"""

from __future__ import annotations

import logging

FORMAT = "%(asctime)s [%(levelname)s] %(processName)s %(message)s"
DATEFMT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=FORMAT, datefmt=DATEFMT)
    logging.getLogger("pgcsvload").setLevel(level.upper())

    # psycopg logs COPY/connection chatter at INFO/DEBUG
    for name in ("psycopg", "psycopg.pq"):
        logging.getLogger(name).setLevel(logging.WARNING)
