"""In-process periodic trigger for recurring processing cycles.

A daemon thread calls :meth:`RecurringScheduler.tick` every
``interval_seconds``. Each tick opens its own session and runs one
unrestricted cycle. Overlap with on-demand cycles (API) or other processes is
safe because every schedule is claimed individually.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from finance_tracker import models
from finance_tracker.services.recurring_processor import ProcessCycleResult, RecurringProcessor
from finance_tracker.services.schedule_store import SqlScheduleStore

logger = logging.getLogger(__name__)


class RecurringScheduler:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        interval_seconds: int = 3600,
        batch_size: Optional[int] = None,
        clock: Callable[[], datetime] = models.now_local_naive,
    ) -> None:
        self._session_factory = session_factory
        self._interval = interval_seconds
        self._batch_size = batch_size
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def tick(self) -> Optional[ProcessCycleResult]:
        """Run one cycle now. Returns None when the cycle could not run."""
        session = self._session_factory()
        try:
            processor = RecurringProcessor(SqlScheduleStore(session), batch_size=self._batch_size)
            return processor.run_cycle(self._clock())
        except Exception:
            session.rollback()
            logger.exception("recurring scheduler tick failed")
            return None
        finally:
            session.close()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="recurring-scheduler", daemon=True)
        self._thread.start()
        logger.info("recurring scheduler started (interval=%ss)", self._interval)

    def stop(self, timeout: float = 30.0) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("recurring scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self._interval)
