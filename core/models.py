"""
Shared data models for a single-host connect scan.
Target and config are validated once before any worker starts and are
read-only afterwards; outcomes are immutable once a probe creates them.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from core.config import settings

MIN_PORT = 1
MAX_PORT = 65535


class PortStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class ScanPhase(str, Enum):
    IDLE = "idle"
    ESTIMATING = "estimating"
    SCANNING = "scanning"
    DRAINING = "draining"
    DONE = "done"


class ScanTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str
    ip: str
    start_port: int = Field(ge=MIN_PORT, le=MAX_PORT)
    end_port: int = Field(ge=MIN_PORT, le=MAX_PORT)

    @model_validator(mode="after")
    def validate_range(self) -> "ScanTarget":
        if self.end_port < self.start_port:
            raise ValueError("end port must be >= start port")
        return self

    def ports(self) -> range:
        return range(self.start_port, self.end_port + 1)

    @property
    def port_count(self) -> int:
        return self.end_port - self.start_port + 1


class ScanConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    concurrency: int = Field(ge=1)
    timeout_ms: int = Field(gt=0)
    retries: int = Field(ge=0)
    adaptive: bool = True

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000.0


class ProbeOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    port: int = Field(ge=MIN_PORT, le=MAX_PORT)
    status: PortStatus
    banner: bytes = b""

    @field_validator("banner")
    @classmethod
    def truncate_banner(cls, v: bytes) -> bytes:
        return v[: settings.banner_max_bytes]

    @property
    def is_open(self) -> bool:
        return self.status is PortStatus.OPEN

    @property
    def banner_text(self) -> str:
        return self.banner.decode(errors="replace")

    def to_doc(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {"port": self.port, "status": self.status.value}
        if self.banner:
            doc["banner"] = self.banner_text
        return doc


class ScanReport(BaseModel):
    target: ScanTarget
    config: ScanConfig
    timeout_ms: float
    results: List[ProbeOutcome] = Field(default_factory=list)
    elapsed_s: float = 0.0
    cancelled: bool = False

    @property
    def open_results(self) -> List[ProbeOutcome]:
        return [r for r in self.results if r.is_open]

    @property
    def open_count(self) -> int:
        return sum(1 for r in self.results if r.is_open)

    @property
    def rate(self) -> float:
        return self.target.port_count / max(self.elapsed_s, 1e-9)

    def to_doc(self, open_only: bool = False) -> Dict[str, Any]:
        results = self.open_results if open_only else self.results
        return {
            "host": self.target.host,
            "ip": self.target.ip,
            "start": self.target.start_port,
            "end": self.target.end_port,
            "timeout_ms": round(self.timeout_ms, 1),
            "adaptive": self.config.adaptive,
            "elapsed_s": round(self.elapsed_s, 4),
            "ports_per_s": round(self.rate, 1),
            "open_count": self.open_count,
            "cancelled": self.cancelled,
            "results": [r.to_doc() for r in results],
        }
