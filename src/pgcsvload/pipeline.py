"""
Concurrent batch-loading pipeline.

  RecordSource -> Dispatcher -> record queue -> N workers -> commit_batch
                                                    |
                           aggregator <- result queue

Workers are processes by default (threads with cfg.use_threads). The record
queue is bounded, so the dispatcher blocks when workers fall behind and memory
stays flat whatever the file size. End of input is one None per worker; every
worker keeps pulling until it sees its own None, so the dispatcher can never
be left blocked on a full queue.
"""

from __future__ import annotations

import logging
import multiprocessing
import queue
import threading
from typing import Callable, Sequence

from .committer import commit_batch
from .config import LoadConfig
from .logs import setup_logging
from .report import BatchFailure, LoadReport, WorkerSummary
from .source import RecordSource, RowError

log = logging.getLogger("pgcsvload")


# -----------------------------
# Dispatcher
# -----------------------------
class Dispatcher:
    def __init__(self, source: RecordSource, record_q, workers: int, stop_evt):
        self.source = source
        self.record_q = record_q
        self.workers = workers
        self.stop_evt = stop_evt
        self.rows_sent = 0
        self.rows_skipped = 0
        self.error: str | None = None

    def run(self) -> int:
        try:
            for item in self.source:
                if self.stop_evt.is_set():
                    log.warning("load stopped; not reading further input")
                    break
                if isinstance(item, RowError):
                    log.warning("skipping line %d: %s", item.line, item.reason)
                    self.rows_skipped += 1
                    continue
                self.record_q.put(item)  # blocks while the queue is full
                self.rows_sent += 1
        except Exception as e:
            log.exception("error reading %s", self.source.name)
            self.error = f"{type(e).__name__}: {e}"
            self.stop_evt.set()
        finally:
            for _ in range(self.workers):
                self.record_q.put(None)

        log.info("total records sent to processing: %d", self.rows_sent)
        return self.rows_sent


# -----------------------------
# Worker
# -----------------------------
def worker_proc(
    worker_id: int,
    cfg: LoadConfig,
    header: Sequence[str],
    connect: Callable,
    record_q,
    result_q,
    stop_evt,
) -> None:
    if not cfg.use_threads:
        setup_logging(cfg.log_level)

    pulled = committed = discarded = 0
    batch_no = 0
    batch: list = []
    sizes: list[int] = []
    seconds: list[float] = []
    error = None
    conn = None

    def flush() -> None:
        nonlocal committed, batch_no
        batch_no += 1
        outcome = commit_batch(conn, cfg.table, header, batch, method=cfg.method)
        if outcome.ok:
            committed += outcome.rows
            sizes.append(outcome.rows)
            seconds.append(outcome.seconds)
            return
        log.warning(
            "worker %d batch %d (%d rows) failed at %s: %s",
            worker_id, batch_no, outcome.rows, outcome.stage, outcome.error,
        )
        result_q.put(
            BatchFailure(
                worker_id=worker_id,
                batch_no=batch_no,
                rows=outcome.rows,
                stage=outcome.stage or "",
                error_type=outcome.error_type or "",
                error=outcome.error or "",
            )
        )
        if cfg.on_error == "abort":
            stop_evt.set()

    end_seen = False
    try:
        conn = connect()
        while True:
            row = record_q.get()  # blocks
            if row is None:
                end_seen = True
                break
            pulled += 1
            if stop_evt.is_set():
                discarded += len(batch) + 1
                batch = []
                continue

            batch.append(row)
            if len(batch) >= cfg.batch_size:
                flush()
                batch = []

        if batch:
            if stop_evt.is_set():
                discarded += len(batch)
            else:
                flush()
            batch = []

    except Exception as e:
        log.exception("worker %d stopped", worker_id)
        error = f"{type(e).__name__}: {e}"
        stop_evt.set()
        discarded += len(batch)
        batch = []
        # keep draining up to our end marker so the dispatcher is never stuck
        while not end_seen:
            if record_q.get() is None:
                end_seen = True
            else:
                pulled += 1
                discarded += 1

    finally:
        if conn is not None:
            try:
                conn.close()
            except Exception:
                log.debug("worker %d: close failed", worker_id, exc_info=True)

    result_q.put(
        WorkerSummary(
            worker_id=worker_id,
            rows_pulled=pulled,
            rows_committed=committed,
            rows_discarded=discarded,
            batch_sizes=tuple(sizes),
            batch_seconds=tuple(seconds),
            error=error,
        )
    )
    log.info("worker %d completed, committed %d records", worker_id, committed)


# -----------------------------
# Supervisor / orchestration
# -----------------------------
def _supervise(units: list, result_q, join_timeout_sec: float) -> None:
    """Wait for every worker, then close the result queue."""
    try:
        for u in units:
            if join_timeout_sec and join_timeout_sec > 0:
                u.join(timeout=join_timeout_sec)
            else:
                u.join()

            if u.is_alive():
                log.warning("worker %s still running after %.1fs", u.name, join_timeout_sec)
                if hasattr(u, "terminate"):
                    u.terminate()
                    u.join()

            exitcode = getattr(u, "exitcode", 0)
            if exitcode not in (0, None):
                log.warning("worker %s exited with code %s", u.name, exitcode)
    finally:
        result_q.put(None)


def run_pipeline(cfg: LoadConfig, source: RecordSource, connect: Callable) -> LoadReport:
    """
    Load every row of `source` into cfg.table.

    `connect` is a zero-argument callable returning a new autocommit
    connection; each worker calls it once. In process mode it must be
    picklable (e.g. functools.partial(open_worker_connection, dsn, settings)).
    """
    report = LoadReport(workers=cfg.workers)

    if cfg.use_threads:
        Unit, make_queue, stop_evt = threading.Thread, queue.Queue, threading.Event()
    else:
        Unit, make_queue, stop_evt = (
            multiprocessing.Process,
            multiprocessing.Queue,
            multiprocessing.Event(),
        )

    record_q = make_queue(maxsize=cfg.record_queue_size)
    result_q = make_queue(maxsize=cfg.workers)
    header = list(source.header)

    units = []
    for wid in range(cfg.workers):
        u = Unit(
            target=worker_proc,
            args=(wid, cfg, header, connect, record_q, result_q, stop_evt),
            name=f"worker-{wid}",
            # a thread stuck past the join timeout cannot be terminated or block exit
            daemon=cfg.use_threads,
        )
        u.start()
        units.append(u)

    dispatcher = Dispatcher(source, record_q, cfg.workers, stop_evt)
    feeder = threading.Thread(target=dispatcher.run, name="dispatcher", daemon=True)
    feeder.start()

    supervisor = threading.Thread(
        target=_supervise,
        args=(units, result_q, cfg.join_timeout_sec),
        name="supervisor",
        daemon=True,
    )
    supervisor.start()

    # aggregate until the supervisor closes the result queue
    while True:
        msg = result_q.get()
        if msg is None:
            break
        report.record(msg)

    supervisor.join()
    if report.workers_lost:
        # nobody is left to drain the record queue
        stop_evt.set()
        feeder.join(timeout=1.0)
        if feeder.is_alive():
            log.warning("reader blocked on the record queue; abandoning it")
    else:
        feeder.join()

    if not cfg.use_threads:
        # a terminated worker can leave rows behind; don't wait to flush them
        if any(u.exitcode not in (0, None) for u in units):
            record_q.cancel_join_thread()
        for q in (record_q, result_q):
            q.close()
            q.join_thread()

    return report.finish(
        rows_dispatched=dispatcher.rows_sent,
        rows_skipped=dispatcher.rows_skipped,
        source_error=dispatcher.error,
        aborted=stop_evt.is_set(),
    )
