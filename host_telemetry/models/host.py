from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

UNAVAILABLE = "unavailable"


class MemoryMetrics(BaseModel):
    """Host memory in bytes; ``used`` is derived as ``total - available``."""

    model_config = ConfigDict(frozen=True)

    total: int = Field(..., ge=0, description="MemTotal in bytes")
    free: int = Field(..., ge=0, description="MemFree in bytes")
    available: int = Field(
        ...,
        ge=0,
        description="MemAvailable in bytes, never larger than total",
    )
    used: int = Field(..., ge=0, description="total - available, in bytes")

    @classmethod
    def from_totals(cls, total: int, free: int, available: int) -> "MemoryMetrics":
        total = max(total, 0)
        available = min(max(available, 0), total)
        return cls(
            total=total,
            free=min(max(free, 0), total),
            available=available,
            used=total - available,
        )


class CpuMetrics(BaseModel):
    """CPU identity and an approximate utilisation figure."""

    model_config = ConfigDict(frozen=True)

    model: str = Field(..., description="CPU model string, informational only")
    count: int = Field(..., ge=1, description="Number of logical processors")
    usage_percent: float = Field(
        ...,
        ge=0,
        le=100,
        description="Approximate CPU utilisation; see usage_source for how it was computed",
    )
    usage_source: str = Field(
        ...,
        description="'sampled', 'cumulative' (since boot) or 'load_average'",
    )
    load_average: Tuple[float, float, float] = Field(
        ...,
        description="1, 5 and 15 minute load averages",
    )

    @model_validator(mode="after")
    def _non_negative_load(self) -> "CpuMetrics":
        if any(value < 0 for value in self.load_average):
            raise ValueError("load averages must be non-negative")
        return self


class DiskMetrics(BaseModel):
    """Usage of the host root filesystem."""

    model_config = ConfigDict(frozen=True)

    total: int = Field(..., ge=0, description="Filesystem size in bytes")
    used: int = Field(..., ge=0, description="Used bytes")
    free: int = Field(..., ge=0, description="Bytes available to unprivileged users")
    usage_percent: float = Field(..., ge=0, le=100, description="Used share in percent")


class NetworkIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    ip_address: str = Field(
        ...,
        description=f"Host IPv4 address, or '{UNAVAILABLE}' when none could be inferred",
    )
    source: str = Field(..., description="Name of the strategy that produced ip_address")


class OsIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str = Field(..., min_length=1, description="Operating system type, e.g. Linux")
    release: str = Field(..., min_length=1, description="Kernel release or distribution name")
    hostname: str = Field(..., min_length=1, description="Host name of the machine")
    architecture: str = Field(..., min_length=1, description="CPU architecture, e.g. x86_64")
    distribution: Optional[str] = Field(
        None,
        description="PRETTY_NAME from os-release, if readable",
    )


class HostSnapshot(BaseModel):
    """One independent observation of the host running this container."""

    model_config = ConfigDict(frozen=True)

    memory: MemoryMetrics
    cpu: CpuMetrics
    disk: DiskMetrics
    network: NetworkIdentity
    os: OsIdentity
    uptime_seconds: float = Field(..., ge=0, description="Seconds since host boot")
    host_mounted: bool = Field(
        ...,
        description="True if the host root is bind-mounted; False means values may be container-local",
    )
