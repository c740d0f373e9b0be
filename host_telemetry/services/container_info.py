"""
Container-local introspection.

These functions describe the container (or whatever psutil can see from it)
and are only used as fallbacks when no host source could be read.
"""
import platform
import socket
import time
from pathlib import Path
from typing import List, Tuple

import psutil

from host_telemetry.services import parsers

CPUINFO_PATH = Path("/proc/cpuinfo")


def cpu_model(cpuinfo_path: Path = CPUINFO_PATH) -> str:
    """Model name from the container's own /proc/cpuinfo, or "Unknown"."""
    try:
        cpuinfo = cpuinfo_path.read_text(encoding="utf-8")
    except (OSError, ValueError):
        return "Unknown"
    return parsers.parse_cpu_identity(cpuinfo, fallback_count=1).model


def cpu_count() -> int:
    return psutil.cpu_count(logical=True) or 1


def memory_totals() -> Tuple[int, int, int]:
    """Return (total, free, available) in bytes."""
    mem = psutil.virtual_memory()
    return mem.total, mem.free, mem.available


def load_average() -> Tuple[float, float, float]:
    one, five, fifteen = psutil.getloadavg()
    return one, five, fifteen


def uptime_seconds() -> float:
    return max(time.time() - psutil.boot_time(), 0.0)


def hostname() -> str:
    return socket.gethostname() or "localhost"


def os_type() -> str:
    return platform.system() or "Linux"


def os_release() -> str:
    return platform.release() or "unknown"


def architecture() -> str:
    return platform.machine() or "unknown"


def ipv4_addresses() -> List[str]:
    """IPv4 addresses of the container's interfaces, loopback interfaces skipped."""
    addresses: List[str] = []
    for name, entries in psutil.net_if_addrs().items():
        if name == "lo":
            continue
        for entry in entries:
            if entry.family == socket.AF_INET:
                addresses.append(entry.address)
    return addresses
