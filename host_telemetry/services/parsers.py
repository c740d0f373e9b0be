"""
Parsers for kernel pseudo-files and tool output.

All functions here are pure: they take text (and, where a value may be
missing, the container-local fallback) and return plain values. Reading the
files is the job of HostPathResolver.
"""
import re
from typing import NamedTuple, Optional, Tuple

KIB = 1024

# "model name\t: Intel(R) Xeon(R) CPU E5-2673 v4 @ 2.30GHz"
_MODEL_NAME_PATTERN = re.compile(r"^\s*model\s+name\s*[:=]", re.IGNORECASE)
# ARM kernels describe the CPU with one of these keys instead
_ARM_MODEL_KEYS = ("Hardware", "Processor", "CPU implementer")
_VALUE_PATTERN = re.compile(r"[:=]\s*(.+)")
# Case-sensitive on purpose: ARM's "Processor\t: AArch64 ..." is not an entry
_PROCESSOR_PATTERN = re.compile(r"^processor(\s*[:=]|\s+\d+)")
_CPUS_PATTERN = re.compile(r"cpu\(s\)\D*(\d+)", re.IGNORECASE)

_MEMINFO_PATTERN = re.compile(r"^(MemTotal|MemFree|MemAvailable):?\s+(\d+)", re.MULTILINE)

_UPTIME_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)")
_KERNEL_VERSION_PATTERN = re.compile(r"Linux version (\S+)")
_PRETTY_NAME_PATTERN = re.compile(
    r"""^PRETTY_NAME=(?:"([^"\n]*)"|'([^'\n]*)'|([^\n]*))""", re.MULTILINE
)
_UBUNTU_VERSION_PATTERN = re.compile(r"(\d+\.\d+)")
_CONTAINER_ID_PATTERN = re.compile(r"^[0-9a-f]{12}$", re.IGNORECASE)

# Docker Desktop and similar VMs boot a LinuxKit kernel that says nothing about the real OS
VM_KERNEL_SIGNATURE = "linuxkit"
PLACEHOLDER_HOSTNAME = "host"


class CpuIdentity(NamedTuple):
    model: str
    count: int


class CpuTicks(NamedTuple):
    busy: float
    idle: float


class DiskUsage(NamedTuple):
    total: int
    used: int
    free: int
    usage_percent: float


def clamp_percent(value: float) -> float:
    return min(max(value, 0.0), 100.0)


# --- CPU ---------------------------------------------------------------------


def _value_after_separator(line: str) -> str:
    match = _VALUE_PATTERN.search(line)
    if match:
        return match.group(1).strip()
    return line.strip()


def _find_model_line(lines) -> Optional[str]:
    for line in lines:
        if _MODEL_NAME_PATTERN.match(line):
            return line
    for line in lines:
        stripped = line.strip()
        if any(stripped.startswith(key) for key in _ARM_MODEL_KEYS):
            return line
    return None


def parse_cpu_identity(cpuinfo: str, fallback_count: int) -> CpuIdentity:
    """
    Extract the CPU model and the number of logical processors.

    The count is the number of ``processor : N`` entries; without any, a
    ``CPU(s)`` line is used, then ``fallback_count``. The result is at least 1.
    """
    lines = cpuinfo.splitlines()

    model_line = _find_model_line(lines)
    model = _value_after_separator(model_line) if model_line else ""

    count = sum(1 for line in lines if _PROCESSOR_PATTERN.match(line.strip()))
    if count == 0:
        for line in lines:
            match = _CPUS_PATTERN.search(line)
            if match:
                count = int(match.group(1))
                break
    if count == 0:
        count = fallback_count

    return CpuIdentity(model=model or "Unknown", count=max(count, 1))


def parse_cpu_ticks(stat: str) -> Optional[CpuTicks]:
    """
    Read the aggregate ``cpu`` line of /proc/stat.

    Format: ``cpu user nice system idle iowait irq softirq steal guest guest_nice``.
    Guest time is already included in user time and is ignored.
    """
    for line in stat.splitlines():
        if not line.startswith("cpu "):
            continue
        fields = line.split()[1:9]
        if len(fields) < 4:
            return None
        values = []
        for field in fields:
            try:
                values.append(float(field))
            except ValueError:
                values.append(0.0)
        values.extend([0.0] * (8 - len(values)))
        user, nice, system, idle, iowait, irq, softirq, steal = values
        return CpuTicks(
            busy=user + nice + system + irq + softirq + steal,
            idle=idle + iowait,
        )
    return None


def busy_percent(ticks: CpuTicks) -> Optional[float]:
    """Share of busy ticks since boot. This is a long-run average, not current load."""
    total = ticks.busy + ticks.idle
    if total <= 0:
        return None
    return clamp_percent(ticks.busy / total * 100)


def busy_percent_between(before: CpuTicks, after: CpuTicks) -> Optional[float]:
    """Share of busy ticks between two reads of /proc/stat."""
    return busy_percent(
        CpuTicks(busy=after.busy - before.busy, idle=after.idle - before.idle)
    )


def load_percent(load_1m: float, cpu_count: int) -> float:
    """Approximate utilisation from the 1-minute load average (1.0 per core = 100 %)."""
    return clamp_percent(load_1m / max(cpu_count, 1) * 100)


def parse_loadavg(loadavg: str) -> Optional[Tuple[float, float, float]]:
    parts = loadavg.split()
    if len(parts) < 3:
        return None
    values = []
    for part in parts[:3]:
        try:
            values.append(max(float(part), 0.0))
        except ValueError:
            values.append(0.0)
    return values[0], values[1], values[2]


# --- Memory ------------------------------------------------------------------


def parse_meminfo(
    meminfo: str,
    fallback: Tuple[int, int, int],
) -> Tuple[int, int, int]:
    """
    Return (total, free, available) in bytes from /proc/meminfo.

    Values are given in KiB. Each missing line is replaced by the matching
    entry of ``fallback``.
    """
    found = {key: int(value) * KIB for key, value in _MEMINFO_PATTERN.findall(meminfo)}
    total, free, available = fallback
    return (
        found.get("MemTotal", total),
        found.get("MemFree", free),
        found.get("MemAvailable", available),
    )


# --- Uptime / OS -------------------------------------------------------------


def parse_uptime(uptime: str) -> Optional[float]:
    match = _UPTIME_PATTERN.match(uptime.strip())
    return float(match.group(1)) if match else None


def parse_kernel_release(proc_version: str) -> Optional[str]:
    """Kernel release from /proc/version, or None for a VM kernel or no match."""
    if not proc_version or VM_KERNEL_SIGNATURE in proc_version:
        return None
    match = _KERNEL_VERSION_PATTERN.search(proc_version)
    return match.group(1) if match else None


def parse_pretty_name(os_release: str) -> Optional[str]:
    match = _PRETTY_NAME_PATTERN.search(os_release)
    if not match:
        return None
    value = next((group for group in match.groups() if group is not None), "")
    return value.strip().strip("\"'").strip() or None


def distribution_release(pretty_name: str) -> str:
    """Shorten Ubuntu pretty names to ``Ubuntu X.Y``; keep everything else."""
    if "Ubuntu" in pretty_name:
        match = _UBUNTU_VERSION_PATTERN.search(pretty_name)
        if match:
            return f"Ubuntu {match.group(1)}"
    return pretty_name


def is_placeholder_hostname(hostname: str) -> bool:
    """True for empty names, Docker container IDs and the literal ``host``."""
    name = hostname.strip()
    return (
        not name
        or name == PLACEHOLDER_HOSTNAME
        or _CONTAINER_ID_PATTERN.match(name) is not None
    )


def detect_architecture(cpuinfo: str, proc_version: str) -> Optional[str]:
    """Guess the host CPU architecture from /proc/cpuinfo, then /proc/version."""
    lines = cpuinfo.splitlines()
    for line in lines:
        lower = line.lower()
        if "x86_64" in lower or "amd64" in lower:
            return "x86_64"
        if "aarch64" in lower or "arm64" in lower:
            return "aarch64"
        if "armv7" in lower or "armv6" in lower:
            return "arm"

    for line in lines:
        key, _, value = line.partition(":")
        key = key.strip()
        tokens = value.split()
        if key == "flags" and "lm" in tokens:
            return "x86_64"
        if key == "Features" and "asimd" in tokens:
            return "aarch64"
        if key == "CPU architecture":
            if value.strip() == "8":
                return "aarch64"
            if value.strip() in ("6", "7"):
                return "arm"
        if key == "Processor" and "ARMv8" in value:
            return "aarch64"

    lower = proc_version.lower()
    if "x86_64" in lower or "amd64" in lower:
        return "x86_64"
    if "aarch64" in lower or "arm64" in lower:
        return "aarch64"
    return None


# --- Disk --------------------------------------------------------------------


def disk_usage_from_totals(total: int, free: int) -> DiskUsage:
    """Usage from filesystem size and space available to unprivileged users."""
    total = max(total, 0)
    free = min(max(free, 0), total)
    used = total - free
    usage = used / total * 100 if total > 0 else 0.0
    return DiskUsage(total=total, used=used, free=free, usage_percent=clamp_percent(usage))


def parse_df_output(output: str) -> Optional[DiskUsage]:
    """
    Parse ``df -P -k /`` output.

    Format: ``Filesystem 1024-blocks Used Available Capacity Mounted on``.
    """
    lines = [line for line in output.strip().splitlines() if line.strip()]
    if len(lines) < 2:
        return None
    parts = lines[1].split()
    if len(parts) < 5:
        return None
    try:
        usage = float(parts[4].rstrip("%"))
    except ValueError:
        return None

    try:
        total = int(parts[1]) * KIB
        used = int(parts[2]) * KIB
        free = int(parts[3]) * KIB
    except ValueError:
        total = used = free = 0
    used = min(used, total)
    free = min(free, total - used)
    return DiskUsage(total=total, used=used, free=free, usage_percent=clamp_percent(usage))
