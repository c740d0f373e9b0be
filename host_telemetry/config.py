import os
from functools import lru_cache

from pydantic import BaseModel, Field


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value >= 0 else default


class Settings(BaseModel):
    # Host visibility
    host_root: str = Field(
        default="/host",
        description="Bind-mount point of the host root (expects proc/, sys/ and etc/ below it)",
    )
    escape_root: str = Field(
        default="/proc/1/root",
        description="Root filesystem of the host's PID 1, reachable when running with --pid host",
    )
    pid1_path: str = Field(
        default="/proc/1",
        description="Process handle that nsenter targets",
    )
    container_root: str = Field(
        default="/",
        description="The container's own filesystem root, used as last resort",
    )

    # Subprocess bounds
    nsenter_timeout_seconds: float = Field(
        default=3.0,
        gt=0,
        description="Timeout for commands executed inside the host namespaces",
    )
    df_timeout_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Timeout for the df fallback used for disk usage",
    )

    # CPU usage: 0 keeps the single-read cumulative ratio, > 0 samples /proc/stat twice
    cpu_sample_interval_seconds: float = Field(
        default=0.0,
        ge=0,
        le=5,
        description="Delay between two /proc/stat reads; 0 disables two-sample mode",
    )

    log_level: str = Field(default="info", description="structlog level name")

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            host_root=os.getenv("HOST_ROOT", "/host"),
            escape_root=os.getenv("HOST_ESCAPE_ROOT", "/proc/1/root"),
            pid1_path=os.getenv("HOST_PID1_PATH", "/proc/1"),
            nsenter_timeout_seconds=_float_env("NSENTER_TIMEOUT_SECONDS", 3.0) or 3.0,
            df_timeout_seconds=_float_env("DF_TIMEOUT_SECONDS", 2.0) or 2.0,
            cpu_sample_interval_seconds=min(_float_env("CPU_SAMPLE_INTERVAL_SECONDS", 0.0), 5.0),
            log_level=os.getenv("LOG_LEVEL", "info"),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
