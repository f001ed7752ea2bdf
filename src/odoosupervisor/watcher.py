"""Background watcher restarting Odoo when container resources change."""

import logging
import threading
from typing import Callable, Optional

from .constants import DEFAULT_WATCHER_INTERVAL, MIB
from .errors import SupervisorError
from .models import ResourceReading

logger = logging.getLogger("odoosupervisor")


class ResourceWatcher:
    """Polls the resource detector and calls ``on_change`` on any difference.

    ``on_change`` runs synchronously on the watcher thread, so polling only
    resumes once the triggered restart has fully completed.
    """

    def __init__(
        self,
        detector,
        on_change: Callable[[ResourceReading], None],
        interval: float = DEFAULT_WATCHER_INTERVAL,
        initial: Optional[ResourceReading] = None,
    ):
        self.detector = detector
        self.on_change = on_change
        self.interval = interval
        self.previous = initial
        self.changes = 0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def poll_once(self) -> bool:
        current = self.detector.detect()
        if self.previous is None:
            self.previous = current
            return False
        if current == self.previous:
            return False

        logger.info(
            "Resource change detected: CPU %s->%s, RAM %sMB->%sMB",
            self.previous.cpu_count,
            current.cpu_count,
            self.previous.ram_bytes // MIB,
            current.ram_bytes // MIB,
        )
        self.changes += 1
        try:
            self.on_change(current)
        except (SupervisorError, OSError) as exc:
            logger.error("Could not apply resource change, retrying next poll: %s", exc)
            return True
        self.previous = current
        return True

    def run(self):
        if self.previous is None:
            self.previous = self.detector.detect()
        logger.info("Resource watcher active (checking every %ss)", self.interval)
        while not self._stop_event.wait(self.interval):
            self.poll_once()
        logger.debug("Resource watcher stopped.")

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(target=self.run, name="resource-watcher", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self):
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def join(self, timeout: Optional[float] = None):
        if self._thread is not None:
            self._thread.join(timeout)
