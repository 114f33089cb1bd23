import logging
import threading
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


class PeriodicSweeper:
    """
    Daemon thread that runs every registered cleanup task each `interval` seconds.
    Each task returns how many entries it removed.
    """

    def __init__(self, interval: float = 60.0, tasks: Optional[Dict[str, Callable[[], int]]] = None):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval!r}")
        self.interval = interval
        self.tasks: Dict[str, Callable[[], int]] = dict(tasks or {})
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def register(self, name: str, task: Callable[[], int]) -> None:
        self.tasks[name] = task

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> Dict[str, int]:
        removed = {}
        for name, task in self.tasks.items():
            try:
                removed[name] = task()
            except Exception:
                logger.exception("Cleanup task %s failed", name)
        return removed

    def _loop(self) -> None:
        # Event.wait returns True once stop() is called
        while not self._stop.wait(self.interval):
            self.run_once()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="postguard-sweeper", daemon=True)
        self._thread.start()
        logger.info("Background sweep started (every %ss)", self.interval)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
