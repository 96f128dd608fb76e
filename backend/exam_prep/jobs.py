"""Periodic catch-up job for strict-mode week advances."""

from __future__ import annotations

import json
import logging
import threading
from typing import Optional

from sqlmodel import Session

from .config import ProgressionConfig
from .services import ProgressionStatusService
from .utils.timeutil import Clock, utcnow

logger = logging.getLogger("exam_prep.jobs")


class AdvanceScheduler:
    """Run `process_automatic_advances` every `advance_check_interval_ms`.

    One pass at a time on a daemon thread; `stop()` wakes the thread and
    waits for the current pass to finish.
    """

    def __init__(self, engine, config: ProgressionConfig, clock: Clock = utcnow):
        self._engine = engine
        self._config = config
        self._clock = clock
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_result: Optional[dict] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> dict:
        with Session(self._engine) as session:
            result = ProgressionStatusService(session, self._config, self._clock).process_automatic_advances()
        self.last_result = result
        return result

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="advance-scheduler", daemon=True)
        self._thread.start()
        logger.info(
            "scheduler_started %s",
            json.dumps({"interval_ms": self._config.advance_check_interval_ms, "cap": self._config.max_concurrent_advances}),
        )

    def stop(self, timeout: float = 10.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("scheduler_stopped")

    def _loop(self) -> None:
        interval = self._config.advance_check_interval_seconds
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                # a failed pass (e.g. database down) must not kill the loop
                logger.exception("scheduler_pass_failed")
            self._stop.wait(interval)
