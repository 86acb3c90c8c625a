"""
Adaptive dial timeout: sample connect latency on a few well-known ports
and derive a per-host timeout before the scan starts.

The samples measure elapsed wall-clock time whatever the dial outcome, so a
refused or timed-out probe still contributes a sample. If every probe times
out the estimate follows the probe ceiling rather than the real RTT.
"""

import logging
import socket
import statistics
import time
from typing import Iterable, List, Optional

from core.config import settings

log = logging.getLogger(__name__)


def timed_dial(ip: str, port: int, timeout: float) -> float:
    start = time.perf_counter()
    try:
        with socket.create_connection((ip, port), timeout=timeout):
            pass
    except OSError:
        pass
    return time.perf_counter() - start


def derive_timeout(samples: Iterable[float], max_timeout: float) -> float:
    """
    3x the median sample (median floored at 50 ms), floored at 150 ms and
    capped at max_timeout. The cap is applied last.
    """
    samples = list(samples)
    median = statistics.median(samples) if samples else 0.0
    median = max(median, settings.rtt_min_median_ms / 1000.0)
    candidate = settings.rtt_multiplier * median
    candidate = max(candidate, settings.rtt_min_timeout_ms / 1000.0)
    return min(candidate, max_timeout)


def estimate_timeout(ip: str, max_timeout: float, ports: Optional[List[int]] = None) -> float:
    probe_timeout = settings.rtt_probe_timeout_ms / 1000.0
    ports = ports or settings.rtt_probe_ports
    samples = [timed_dial(ip, port, probe_timeout) for port in ports]
    timeout = derive_timeout(samples, max_timeout)
    log.info(
        "estimated timeout for %s: %.0f ms (samples=%s ms)",
        ip,
        timeout * 1000,
        [round(s * 1000, 1) for s in samples],
    )
    return timeout
