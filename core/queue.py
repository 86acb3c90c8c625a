"""
Bounded in-memory queues between the scan stages.

PortFeeder produces the port range for the worker pool; ResultCollector
drains probe outcomes on its own thread so a full outcome buffer never
stalls a worker.
"""

import logging
import queue
import threading
from typing import Iterable, List, Optional

from core.config import settings
from core.models import ProbeOutcome

log = logging.getLogger(__name__)

# put retry interval while the port queue is full; only used to notice cancellation
_PUT_POLL_S = 0.1


class PortFeeder:
    """
    Feeds ports into a bounded queue from a background thread.

    After the last port one end marker (None) is queued per consumer, so
    every worker blocked in get() wakes up exactly once at exhaustion.
    """

    def __init__(
        self,
        ports: Iterable[int],
        consumers: int,
        stop_event: Optional[threading.Event] = None,
        capacity: Optional[int] = None,
    ):
        self._ports = ports
        self._consumers = consumers
        self._stop = stop_event or threading.Event()
        self.q: "queue.Queue[Optional[int]]" = queue.Queue(maxsize=capacity or settings.queue_capacity)
        self._thread = threading.Thread(target=self._run, name="port-feeder", daemon=True)
        self.fed = 0

    def start(self):
        self._thread.start()

    def join(self, timeout: Optional[float] = None):
        self._thread.join(timeout)

    def get(self, timeout: Optional[float] = None) -> Optional[int]:
        return self.q.get(timeout=timeout)

    def _put(self, item: Optional[int]) -> bool:
        while not self._stop.is_set():
            try:
                self.q.put(item, timeout=_PUT_POLL_S)
                return True
            except queue.Full:
                continue
        return False

    def _run(self):
        for port in self._ports:
            if not self._put(port):
                break
            self.fed += 1

        if self._stop.is_set():
            log.debug("feeder stopped after %s ports", self.fed)
            # idle workers also poll the stop flag, markers only wake them sooner
            for _ in range(self._consumers):
                try:
                    self.q.put_nowait(None)
                except queue.Full:
                    break
            return

        for _ in range(self._consumers):
            if not self._put(None):
                break


class ResultCollector:
    """
    Single consumer that drains outcomes into a list it owns exclusively.
    The list is handed over by join() once the end of stream was seen.
    """

    _END = object()

    def __init__(self, capacity: Optional[int] = None):
        self.q: "queue.Queue" = queue.Queue(maxsize=capacity or settings.queue_capacity)
        self._results: List[ProbeOutcome] = []
        self._thread = threading.Thread(target=self._drain, name="result-collector", daemon=True)

    def start(self):
        self._thread.start()

    def put(self, outcome: ProbeOutcome):
        self.q.put(outcome)

    def close(self):
        self.q.put(self._END)

    def join(self) -> List[ProbeOutcome]:
        self._thread.join()
        return self._results

    def _drain(self):
        results: List[ProbeOutcome] = []
        while True:
            item = self.q.get()
            if item is self._END:
                break
            results.append(item)
        self._results = results
        log.debug("collector drained %s outcomes", len(results))
