#!/usr/bin/env python3
"""
Rollup of raw heartbeats into daily totals.
Days older than the live window are compacted; the live window stays raw.
"""

import fcntl
import os
import threading
import time
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Optional

from .storage import HeartbeatStore
from .utils import day_start_ts, live_boundary


@dataclass
class RollupResult:
    cutoff_date: date
    daily_totals: int
    heartbeats: int


class RollupLogger:
    """Console output for rollup runs."""

    def __init__(self, verbose: bool = True):
        self.verbose = verbose

    @staticmethod
    def _now() -> str:
        return datetime.now().strftime("%H:%M:%S")

    def log_result(self, result: RollupResult) -> None:
        if self.verbose:
            print(
                f"[{self._now()}] [OK] Rollup before {result.cutoff_date}: "
                f"{result.heartbeats} heartbeats into {result.daily_totals} daily totals"
            )

    def log_already_running(self) -> None:
        print(f"[{self._now()}] [SKIP] Rollup already running")

    def log_failure(self, error: Exception) -> None:
        print(f"[{self._now()}] [FAIL] Rollup failed: {error}")


class RollupAggregator:
    """Idempotent, single-flight compaction of heartbeats into daily totals.

    Only whole days strictly before the live boundary are rolled up, so a
    day is read either from daily totals or from raw heartbeats, never both.
    """

    def __init__(
        self,
        store: HeartbeatStore,
        retention_days: int = 31,
        delete_raw: bool = True,
        verbose: bool = True,
    ):
        if retention_days < 1:
            raise ValueError("retention_days must be at least 1")
        self.store = store
        self.retention_days = retention_days
        self.delete_raw = delete_raw
        self.logger = RollupLogger(verbose=verbose)
        self._running = threading.Lock()

    def cutoff_date(self, now: Optional[float] = None) -> date:
        return live_boundary(now if now is not None else time.time(), self.retention_days)

    def run(self, now: Optional[float] = None) -> Optional[RollupResult]:
        """Run one rollup pass.

        Returns:
            The pass result, or None if another pass is still running.
        """
        if not self._running.acquire(blocking=False):
            self.logger.log_already_running()
            return None

        try:
            cutoff = self.cutoff_date(now)
            groups, heartbeats = self.store.rollup_before(
                day_start_ts(cutoff), delete_raw=self.delete_raw
            )
            result = RollupResult(cutoff_date=cutoff, daily_totals=groups, heartbeats=heartbeats)
            self.logger.log_result(result)
            return result
        finally:
            self._running.release()


class RollupLock:
    """Exclusive lock file so separate rollup processes never overlap."""

    def __init__(self, lock_path: Path):
        self.lock_path = Path(lock_path)
        self._file = None

    def acquire(self) -> bool:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self.lock_path, "w")
        try:
            fcntl.flock(self._file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            self._file.close()
            self._file = None
            return False
        self._file.write(str(os.getpid()))
        self._file.flush()
        return True

    def release(self) -> None:
        if self._file is None:
            return
        fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
        self._file.close()
        self._file = None

    def __enter__(self) -> bool:
        return self.acquire()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
