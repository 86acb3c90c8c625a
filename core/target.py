"""
Pre-scan input handling: resolve the host once, clamp and validate the
port range, and normalize scan knobs into an immutable ScanConfig.
Everything raised here is fatal and happens before any worker starts.
"""

import logging
import socket
from typing import Optional

from core.config import settings
from core.models import MAX_PORT, MIN_PORT, ScanConfig, ScanTarget

log = logging.getLogger(__name__)


class TargetResolutionError(ValueError):
    pass


def resolve_host(host: str) -> str:
    host = (host or "").strip()
    if not host:
        raise TargetResolutionError("empty host")
    try:
        infos = socket.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    except socket.gaierror as e:
        raise TargetResolutionError(f"failed to resolve host {host}: {e}") from e
    if not infos:
        raise TargetResolutionError(f"failed to resolve host {host}: no addresses")
    # only the first address is scanned
    return infos[0][4][0]


def resolve_target(host: str, start: int, end: int) -> ScanTarget:
    start = max(start, MIN_PORT)
    end = min(end, MAX_PORT)
    if end < start:
        raise ValueError(f"end must be >= start (got {start}-{end})")
    ip = resolve_host(host)
    log.debug("resolved %s -> %s", host, ip)
    return ScanTarget(host=host.strip(), ip=ip, start_port=start, end_port=end)


def build_config(
    concurrency: Optional[int] = None,
    timeout_ms: Optional[int] = None,
    retries: Optional[int] = None,
    adaptive: Optional[bool] = None,
) -> ScanConfig:
    if concurrency is None:
        concurrency = settings.scan_concurrency
    if concurrency < 1:
        concurrency = settings.fallback_concurrency
    return ScanConfig(
        concurrency=concurrency,
        timeout_ms=settings.scan_timeout_ms if timeout_ms is None else timeout_ms,
        retries=settings.scan_retries if retries is None else retries,
        adaptive=settings.scan_adaptive if adaptive is None else adaptive,
    )
