"""
Result messages sent by workers, and the aggregated load report.

Messages travel through a multiprocessing queue, so they are plain picklable
dataclasses holding strings and numbers only.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import psutil


# -----------------------------
# Worker -> aggregator messages
# -----------------------------
@dataclass(frozen=True)
class BatchFailure:
    worker_id: int
    batch_no: int
    rows: int
    stage: str
    error_type: str
    error: str


@dataclass(frozen=True)
class WorkerSummary:
    worker_id: int
    rows_pulled: int
    rows_committed: int
    rows_discarded: int
    batch_sizes: tuple = ()
    batch_seconds: tuple = ()
    error: Optional[str] = None


# -----------------------------
# Aggregate
# -----------------------------
def _rss_bytes() -> int:
    return psutil.Process().memory_info().rss


@dataclass
class LoadReport:
    workers: int
    started: float = field(default_factory=time.perf_counter)
    rss_start: int = field(default_factory=_rss_bytes)

    rows_dispatched: int = 0
    rows_skipped: int = 0
    rows_committed: int = 0
    rows_failed: int = 0
    rows_discarded: int = 0
    rows_pulled: int = 0
    batches_failed: int = 0
    batch_sizes: list = field(default_factory=list)
    batch_seconds: list = field(default_factory=list)
    failures: list = field(default_factory=list)
    worker_errors: list = field(default_factory=list)
    workers_reported: int = 0
    source_error: Optional[str] = None
    aborted: bool = False

    elapsed: float = 0.0
    memory_delta_kb: int = 0

    def record(self, msg) -> None:
        if isinstance(msg, BatchFailure):
            self.batches_failed += 1
            self.rows_failed += msg.rows
            self.failures.append(msg)
        elif isinstance(msg, WorkerSummary):
            self.workers_reported += 1
            self.rows_pulled += msg.rows_pulled
            self.rows_committed += msg.rows_committed
            self.rows_discarded += msg.rows_discarded
            self.batch_sizes.extend(msg.batch_sizes)
            self.batch_seconds.extend(msg.batch_seconds)
            if msg.error:
                self.worker_errors.append(f"worker {msg.worker_id}: {msg.error}")
        else:
            raise TypeError(f"unexpected result message: {msg!r}")

    def finish(
        self,
        rows_dispatched: int,
        rows_skipped: int,
        source_error: Optional[str] = None,
        aborted: bool = False,
    ) -> "LoadReport":
        self.rows_dispatched = rows_dispatched
        self.rows_skipped = rows_skipped
        self.source_error = source_error
        self.aborted = aborted
        self.elapsed = time.perf_counter() - self.started
        self.memory_delta_kb = (_rss_bytes() - self.rss_start) // 1024
        return self

    # -------- derived --------
    @property
    def batches_committed(self) -> int:
        return len(self.batch_sizes)

    @property
    def workers_lost(self) -> int:
        return self.workers - self.workers_reported

    @property
    def failed(self) -> bool:
        return bool(
            self.aborted
            or self.worker_errors
            or self.workers_lost
            or self.source_error
        )

    @property
    def status(self) -> str:
        if self.failed:
            return "failed"
        if self.batches_failed:
            return "completed with errors"
        return "completed"

    def exit_code(self) -> int:
        return 1 if self.failed else 0

    def rows_per_sec(self) -> float:
        return self.rows_committed / self.elapsed if self.elapsed > 0 else 0.0

    def commit_latency(self) -> dict:
        """Seconds per committed batch: mean / p50 / p95 / max."""
        if not self.batch_seconds:
            return {}
        secs = np.asarray(self.batch_seconds, dtype=np.float64)
        p50, p95 = np.percentile(secs, [50, 95])
        return {
            "mean": float(secs.mean()),
            "p50": float(p50),
            "p95": float(p95),
            "max": float(secs.max()),
        }

    def format(self) -> str:
        lines = [
            f"[done] import {self.status}",
            f"[done] execution time: {self.elapsed:.3f}s",
            f"[done] rows dispatched: {self.rows_dispatched:,} (skipped {self.rows_skipped:,})",
            f"[done] rows committed: {self.rows_committed:,} "
            f"in {self.batches_committed:,} batches ({self.rows_per_sec():,.0f} rows/s)",
            f"[done] batches failed: {self.batches_failed:,} ({self.rows_failed:,} rows lost)",
            f"[done] memory used: {self.memory_delta_kb:,} KB",
        ]
        lat = self.commit_latency()
        if lat:
            lines.append(
                "[done] batch commit: "
                f"mean {lat['mean'] * 1000:.1f}ms, p50 {lat['p50'] * 1000:.1f}ms, "
                f"p95 {lat['p95'] * 1000:.1f}ms, max {lat['max'] * 1000:.1f}ms"
            )
        if self.rows_discarded:
            lines.append(f"[warn] rows discarded after stop: {self.rows_discarded:,}")
        for f in self.failures:
            lines.append(
                f"[warn] worker {f.worker_id} batch {f.batch_no} ({f.rows} rows) "
                f"failed at {f.stage}: {f.error_type}: {f.error}"
            )
        for e in self.worker_errors:
            lines.append(f"[warn] {e}")
        if self.workers_lost:
            lines.append(f"[warn] {self.workers_lost} worker(s) exited without reporting")
        if self.source_error:
            lines.append(f"[warn] source read stopped early: {self.source_error}")
        if self.batches_failed and not self.failed:
            lines.append("[warn] some records failed to import; check the log for details")
        return "\n".join(lines)
