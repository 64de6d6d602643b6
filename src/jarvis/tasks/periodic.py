"""In-process periodic runner for the escalation sweep.

Used by the worker role when no external scheduler calls
POST /tasks/escalation/sweep.
"""

from __future__ import annotations

import os
import threading
from typing import Any, Callable

from jarvis.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_INTERVAL_MINUTES = 30


def interval_from_env() -> float:
    """ESCALATION_INTERVAL_MINUTES in seconds."""
    minutes = float(os.environ.get("ESCALATION_INTERVAL_MINUTES", DEFAULT_INTERVAL_MINUTES))
    return minutes * 60


class PeriodicRunner:
    """Calls job() every interval_seconds on a daemon thread until stopped.

    The first run happens one interval after start(). Exceptions from job()
    are logged and the loop keeps going.
    """

    def __init__(
        self,
        job: Callable[[], Any],
        interval_seconds: float,
        name: str = "periodic",
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._job = job
        self._interval = interval_seconds
        self._name = name
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=self._name, daemon=True)
        self._thread.start()
        logger.info(
            "periodic runner started",
            extra={"extra_fields": {"runner": self._name, "interval_seconds": self._interval}},
        )

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None
        logger.info("periodic runner stopped", extra={"extra_fields": {"runner": self._name}})

    def run_once(self) -> Any:
        try:
            return self._job()
        except Exception:
            logger.exception(
                "periodic job failed", extra={"extra_fields": {"runner": self._name}}
            )
            return None

    def _loop(self) -> None:
        # wait() returns True once stop() is called
        while not self._stop.wait(self._interval):
            self.run_once()
