"""
Run configuration for a CSV -> PostgreSQL load.

Built once from the command line (or directly in tests) and handed to the
pipeline; nothing here is mutated after construction.
"""

from __future__ import annotations

import codecs
import logging
from dataclasses import dataclass

from .committer import table_identifier

METHODS = ("copy", "insert")
ERROR_POLICIES = ("continue", "abort")


@dataclass(frozen=True)
class LoadConfig:
    table: str
    source: str
    workers: int = 5
    batch_size: int = 100
    queue_size: int = 0  # 0 -> workers * 2
    method: str = "copy"
    on_error: str = "continue"
    batch_timeout_sec: float = 0.0
    async_commit: bool = False
    use_threads: bool = False
    join_timeout_sec: float = 0.0
    encoding: str = "utf-8"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.table or not self.table.strip():
            raise ValueError("table name is required")
        if not self.source:
            raise ValueError("source file is required")
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1 (got {self.workers})")
        if self.batch_size < 1:
            raise ValueError(f"batch size must be >= 1 (got {self.batch_size})")
        if self.queue_size < 0:
            raise ValueError(f"queue size must be >= 0 (got {self.queue_size})")
        if self.method not in METHODS:
            raise ValueError(f"method must be one of {', '.join(METHODS)}")
        if self.on_error not in ERROR_POLICIES:
            raise ValueError(f"on-error must be one of {', '.join(ERROR_POLICIES)}")
        if self.batch_timeout_sec < 0:
            raise ValueError("batch timeout must be >= 0")
        if self.join_timeout_sec < 0:
            raise ValueError("join timeout must be >= 0")
        table_identifier(self.table)  # raises on "a..b", "schema."
        try:
            codecs.lookup(self.encoding)
        except LookupError:
            raise ValueError(f"unknown encoding: {self.encoding}") from None
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"unknown log level: {self.log_level}")

    @property
    def record_queue_size(self) -> int:
        return self.queue_size or self.workers * 2


def session_settings(cfg: LoadConfig) -> dict[str, str]:
    """Per-connection settings each worker applies right after connecting."""
    settings = {"client_min_messages": "warning"}
    if cfg.async_commit:
        settings["synchronous_commit"] = "off"
    if cfg.batch_timeout_sec > 0:
        # statement_timeout is in milliseconds; it bounds each COPY/COMMIT
        settings["statement_timeout"] = str(int(cfg.batch_timeout_sec * 1000))
    return settings
