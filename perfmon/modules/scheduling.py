"""
Periodic Task Scheduling
Cancellable background timers owned by the service that starts them
"""

import logging
import threading
from typing import Callable, Optional


class PeriodicTask:
    """
    Run *callback* every *interval* seconds on a daemon thread until cancelled.

    The first run happens one full interval after ``start()``. A callback that
    raises is logged and the schedule keeps going; one bad tick must not stop
    aggregation or transmission for the rest of the process.

    Args:
        name: Short name used for the thread and in log lines
        interval: Seconds between runs
        callback: Zero-argument callable
    """

    def __init__(self, name: str, interval: float, callback: Callable[[], None]):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.name = name
        self.interval = interval
        self.callback = callback
        self.runs = 0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.logger = logging.getLogger(f"PeriodicTask.{name}")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set()

    def start(self) -> None:
        """Start the timer thread (no-op if already running)."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name=f"perfmon-{self.name}",
            daemon=True,
        )
        self._thread.start()
        self.logger.debug(f"Started with interval {self.interval}s")

    def _run(self) -> None:
        # wait() returns True as soon as cancel() sets the event
        while not self._stop_event.wait(self.interval):
            self.run_once()

    def run_once(self) -> None:
        """Invoke the callback once, logging instead of raising."""
        self.runs += 1
        try:
            self.callback()
        except Exception as e:
            self.logger.error(f"Periodic task '{self.name}' failed: {e}", exc_info=True)

    def cancel(self, timeout: Optional[float] = 1.0) -> None:
        """Stop the timer. Safe to call from inside the callback itself."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
