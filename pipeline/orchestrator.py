"""
Single-host scan orchestrator: optional RTT estimation, then a bounded
worker pool fed from a port queue, with outcomes drained by a collector
and sorted by port once everything has finished.

Phases: idle -> estimating (adaptive only) -> scanning -> draining -> done.
An orchestrator runs once; done is terminal.
"""

import functools
import logging
import threading
import time
from typing import Optional

from core.models import ScanConfig, ScanPhase, ScanReport, ScanTarget
from core.queue import PortFeeder, ResultCollector
from pipeline.pool import WorkerPool
from probers import l4_tcp, rtt

log = logging.getLogger(__name__)


class Orchestrator:
    def __init__(self, target: ScanTarget, config: ScanConfig) -> None:
        self.target = target
        self.config = config
        self.phase = ScanPhase.IDLE
        self.timeout_s: Optional[float] = None
        self._stop = threading.Event()
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def cancel(self) -> None:
        """Stop pulling new ports; in-flight probes finish their current attempt.

        Ports that were never dialed are left out of the report.
        """
        if not self._stop.is_set():
            log.warning("scan of %s cancelled in phase %s", self.target.ip, self.phase.value)
        self._stop.set()

    def _enter(self, phase: ScanPhase) -> None:
        log.debug("%s: %s -> %s", self.target.ip, self.phase.value, phase.value)
        self.phase = phase

    def _estimate(self) -> float:
        if not self.config.adaptive:
            return self.config.timeout_s
        self._enter(ScanPhase.ESTIMATING)
        return rtt.estimate_timeout(self.target.ip, self.config.timeout_s)

    def run(self) -> ScanReport:
        with self._lock:
            if self.phase is not ScanPhase.IDLE:
                raise RuntimeError(f"orchestrator already used (phase={self.phase.value})")
            self._enter(ScanPhase.ESTIMATING if self.config.adaptive else ScanPhase.SCANNING)

        started = time.perf_counter()
        self.timeout_s = self._estimate()
        self._enter(ScanPhase.SCANNING)

        workers = min(self.config.concurrency, self.target.port_count)
        log.info(
            "scanning %s (%s) ports %s-%s: workers=%s timeout=%.0fms retries=%s",
            self.target.host,
            self.target.ip,
            self.target.start_port,
            self.target.end_port,
            workers,
            self.timeout_s * 1000,
            self.config.retries,
        )

        probe = functools.partial(
            l4_tcp.probe_port,
            self.target.ip,
            timeout=self.timeout_s,
            retries=self.config.retries,
            stop=self._stop,
        )
        collector = ResultCollector()
        feeder = PortFeeder(self.target.ports(), consumers=workers, stop_event=self._stop)
        pool = WorkerPool(workers, feeder, collector, probe, stop_event=self._stop)

        collector.start()
        pool.start()
        feeder.start()
        pool.join()
        feeder.join()

        self._enter(ScanPhase.DRAINING)
        collector.close()
        results = collector.join()
        results.sort(key=lambda r: r.port)
        elapsed = time.perf_counter() - started

        self._enter(ScanPhase.DONE)
        report = ScanReport(
            target=self.target,
            config=self.config,
            timeout_ms=self.timeout_s * 1000,
            results=results,
            elapsed_s=elapsed,
            cancelled=self.cancelled,
        )
        log.info(
            "scanned %s ports on %s in %.2fs (%.1f ports/sec), open=%s%s",
            len(results),
            self.target.ip,
            elapsed,
            report.rate,
            report.open_count,
            " (cancelled)" if report.cancelled else "",
        )
        return report


def scan(target: ScanTarget, config: ScanConfig) -> ScanReport:
    return Orchestrator(target, config).run()
