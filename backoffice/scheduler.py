"""
Interval runner for the two background timers (snapshot push, derivation poll).

Each runner is a daemon thread that calls its job every `interval` seconds inside
an app context until stop() is called. A failing job is logged; the next interval
runs it again.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class IntervalRunner:
    def __init__(self, app, name: str, interval: float, job: Callable[[], object]):
        self.app = app
        self.name = name
        self.interval = float(interval)
        self.job = job
        self._shutdown_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> "IntervalRunner":
        if self.running:
            return self
        self._shutdown_event.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.info("Started %s (every %ss)", self.name, self.interval)
        return self

    def run_once(self) -> None:
        with self.app.app_context():
            try:
                self.job()
            except Exception:
                logger.exception("%s job failed", self.name)

    def _run(self) -> None:
        while not self._shutdown_event.wait(timeout=self.interval):
            self.run_once()
        logger.info("Stopped %s", self.name)

    def stop(self, timeout: float | None = None) -> None:
        self._shutdown_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
