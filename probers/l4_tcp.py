"""
TCP connect probe using plain connect() without crafting raw packets.
Only timeouts are retried; every other dial failure marks the port closed.
"""

import logging
import socket
import threading
from typing import Optional

from core.config import settings
from core.models import PortStatus, ProbeOutcome

log = logging.getLogger(__name__)


def read_banner(sock: socket.socket, timeout: Optional[float] = None, size: Optional[int] = None) -> bytes:
    sock.settimeout(settings.banner_timeout_ms / 1000.0 if timeout is None else timeout)
    try:
        return sock.recv(size or settings.banner_max_bytes)
    except OSError:
        return b""


def probe_port(
    ip: str,
    port: int,
    timeout: float,
    retries: int = 0,
    stop: Optional[threading.Event] = None,
) -> Optional[ProbeOutcome]:
    """
    Returns None when the scan was cancelled before the first dial.
    """
    attempts = retries + 1
    for attempt in range(1, attempts + 1):
        if stop is not None and stop.is_set():
            if attempt == 1:
                return None
            break
        try:
            sock = socket.create_connection((ip, port), timeout=timeout)
        except socket.timeout:
            log.debug("%s:%s attempt %s/%s timed out", ip, port, attempt, attempts)
            continue
        except OSError as e:
            log.debug("%s:%s closed: %s", ip, port, e)
            break

        with sock:
            banner = read_banner(sock)
        return ProbeOutcome(port=port, status=PortStatus.OPEN, banner=banner)

    return ProbeOutcome(port=port, status=PortStatus.CLOSED)
