"""
FastAPI surface for running scans over HTTP.
Each request resolves its own target and runs a fresh orchestrator.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from core.config import settings
from core.target import build_config, resolve_host, resolve_target
from pipeline.orchestrator import Orchestrator
from probers import rtt

log = logging.getLogger(__name__)

app = FastAPI(title="Port Sweep API", version="1.0")


class ScanPayload(BaseModel):
    host: str
    start: int = 1
    end: int = 1024
    workers: Optional[int] = None
    timeout_ms: Optional[int] = None
    retries: Optional[int] = None
    adaptive: Optional[bool] = None
    open_only: bool = True


class EstimatePayload(BaseModel):
    host: str
    timeout_ms: Optional[int] = None


@app.post("/api/scan")
def api_scan(payload: ScanPayload):
    try:
        target = resolve_target(payload.host, payload.start, payload.end)
        config = build_config(payload.workers, payload.timeout_ms, payload.retries, payload.adaptive)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        report = Orchestrator(target, config).run()
    except Exception as exc:  # noqa: BLE001
        log.exception("scan failed")
        raise HTTPException(status_code=500, detail="scan failed") from exc
    return report.to_doc(open_only=payload.open_only)


@app.post("/api/estimate")
def api_estimate(payload: EstimatePayload):
    timeout_ms = settings.scan_timeout_ms if payload.timeout_ms is None else payload.timeout_ms
    if timeout_ms <= 0:
        raise HTTPException(status_code=400, detail="timeout_ms must be > 0")
    try:
        ip = resolve_host(payload.host)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    timeout = rtt.estimate_timeout(ip, timeout_ms / 1000.0)
    return {"host": payload.host, "ip": ip, "timeout_ms": round(timeout * 1000, 1)}


@app.get("/api/health")
def api_health():
    return {
        "status": "ok",
        "defaults": {
            "workers": settings.scan_concurrency,
            "timeout_ms": settings.scan_timeout_ms,
            "retries": settings.scan_retries,
            "adaptive": settings.scan_adaptive,
        },
    }
