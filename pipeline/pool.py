"""
Fixed-size worker pool. Each worker holds at most one outbound connection,
so the worker count is also the bound on simultaneous dials.
"""

import logging
import queue
import threading
from typing import Callable, List, Optional

from core.models import PortStatus, ProbeOutcome
from core.queue import PortFeeder, ResultCollector

log = logging.getLogger(__name__)

# wake-up interval for idle workers so a cancel is noticed without an end marker
_GET_POLL_S = 0.2

ProbeFn = Callable[[int], Optional[ProbeOutcome]]


class WorkerPool:
    def __init__(
        self,
        size: int,
        feeder: PortFeeder,
        collector: ResultCollector,
        probe: ProbeFn,
        stop_event: Optional[threading.Event] = None,
    ):
        if size < 1:
            raise ValueError("worker pool size must be >= 1")
        self.size = size
        self.feeder = feeder
        self.collector = collector
        self.probe = probe
        self._stop = stop_event or threading.Event()
        self._threads: List[threading.Thread] = []

    def start(self):
        for i in range(self.size):
            t = threading.Thread(target=self._work, name=f"scan-worker-{i}", daemon=True)
            self._threads.append(t)
            t.start()
        log.debug("started %s workers", self.size)

    def join(self):
        for t in self._threads:
            t.join()

    def _work(self):
        while not self._stop.is_set():
            try:
                port = self.feeder.get(timeout=_GET_POLL_S)
            except queue.Empty:
                continue
            if port is None or self._stop.is_set():
                return
            try:
                outcome = self.probe(port)
            except Exception:  # noqa: BLE001
                log.exception("probe crashed on port %s, recording as closed", port)
                outcome = ProbeOutcome(port=port, status=PortStatus.CLOSED)
            if outcome is not None:
                self.collector.put(outcome)
