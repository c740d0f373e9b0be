import subprocess
import time
from typing import Callable, Optional, TypeVar

import psutil
import structlog

from host_telemetry.config import Settings, get_settings
from host_telemetry.errors import SnapshotUnavailableError
from host_telemetry.models.host import (
    UNAVAILABLE,
    CpuMetrics,
    DiskMetrics,
    HostSnapshot,
    MemoryMetrics,
    NetworkIdentity,
    OsIdentity,
)
from host_telemetry.services import container_info, parsers
from host_telemetry.services.address_resolver import AddressResolver
from host_telemetry.services.cascade import RECOVERABLE_ERRORS
from host_telemetry.services.host_paths import HostPathResolver
from host_telemetry.services.namespace_exec import CommandRunner, NamespaceExecutor

logger = structlog.get_logger()

T = TypeVar("T")

DF_COMMAND = ["df", "-P", "-k", "/"]


# --- container-local synthesizers --------------------------------------------


def _local_cpuinfo() -> str:
    model = container_info.cpu_model()
    return "\n".join(
        f"processor\t: {index}\nmodel name\t: {model}"
        for index in range(container_info.cpu_count())
    )


def _local_meminfo() -> str:
    total, free, available = container_info.memory_totals()
    return (
        f"MemTotal: {total // parsers.KIB} kB\n"
        f"MemFree: {free // parsers.KIB} kB\n"
        f"MemAvailable: {available // parsers.KIB} kB"
    )


def _local_loadavg() -> str:
    return " ".join(f"{value:.2f}" for value in container_info.load_average())


def _local_uptime() -> str:
    return f"{container_info.uptime_seconds():.2f}"


# --- collectors --------------------------------------------------------------


def collect_memory(paths: HostPathResolver) -> MemoryMetrics:
    meminfo = paths.resolve("/proc/meminfo", _local_meminfo)
    total, free, available = parsers.parse_meminfo(meminfo, container_info.memory_totals())
    return MemoryMetrics.from_totals(total=total, free=free, available=available)


def _cpu_usage(
    paths: HostPathResolver,
    cpu_count: int,
    load_1m: float,
    sample_interval: float,
    sleep: Callable[[float], None],
):
    """Return (usage_percent, usage_source)."""
    first = parsers.parse_cpu_ticks(paths.read("/proc/stat"))
    if first is not None:
        if sample_interval > 0:
            sleep(sample_interval)
            second = parsers.parse_cpu_ticks(paths.read("/proc/stat"))
            if second is not None:
                usage = parsers.busy_percent_between(first, second)
                if usage is not None:
                    return usage, "sampled"
        usage = parsers.busy_percent(first)
        if usage is not None:
            return usage, "cumulative"

    return parsers.load_percent(load_1m, cpu_count), "load_average"


def collect_cpu(
    paths: HostPathResolver,
    settings: Optional[Settings] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> CpuMetrics:
    settings = settings or get_settings()

    cpuinfo = paths.resolve("/proc/cpuinfo", _local_cpuinfo)
    identity = parsers.parse_cpu_identity(cpuinfo, fallback_count=container_info.cpu_count())

    load = parsers.parse_loadavg(paths.resolve("/proc/loadavg", _local_loadavg))
    if load is None:
        load = container_info.load_average()

    usage, source = _cpu_usage(
        paths,
        cpu_count=identity.count,
        load_1m=load[0],
        sample_interval=settings.cpu_sample_interval_seconds,
        sleep=sleep,
    )
    return CpuMetrics(
        model=identity.model,
        count=identity.count,
        usage_percent=usage,
        usage_source=source,
        load_average=load,
    )


def _run_df(timeout_seconds: float) -> Optional[parsers.DiskUsage]:
    try:
        result = subprocess.run(
            DF_COMMAND,
            check=True,
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
        )
    except FileNotFoundError:
        logger.debug("df_unavailable", reason="df binary not found")
        return None
    except (subprocess.SubprocessError, OSError) as exc:
        logger.debug("df_unavailable", reason=str(exc))
        return None
    return parsers.parse_df_output(result.stdout)


def collect_disk(paths: HostPathResolver, settings: Optional[Settings] = None) -> DiskMetrics:
    settings = settings or get_settings()
    root = paths.disk_root()

    try:
        stats = psutil.disk_usage(str(root))
    except OSError as exc:
        logger.debug("disk_usage_failed", root=str(root), error=str(exc))
    else:
        # used is total - free; psutil's own used leaves out reserved blocks
        usage = parsers.disk_usage_from_totals(total=stats.total, free=stats.free)
        if usage.total > 0:
            return DiskMetrics(**usage._asdict())

    usage = _run_df(settings.df_timeout_seconds)
    if usage is not None:
        return DiskMetrics(**usage._asdict())

    return DiskMetrics(total=0, used=0, free=0, usage_percent=0.0)


def _host_hostname(paths: HostPathResolver) -> str:
    for logical_path in ("/proc/sys/kernel/hostname", "/etc/hostname"):
        name = paths.read(logical_path)
        if not parsers.is_placeholder_hostname(name):
            return name.strip()
    return container_info.hostname()


def collect_os(paths: HostPathResolver) -> OsIdentity:
    """
    Identify the host OS.

    The kernel release from /proc/version wins unless the kernel is a
    LinuxKit VM kernel; then the distribution's PRETTY_NAME is used.
    """
    proc_version = paths.read("/proc/version")
    distribution = parsers.parse_pretty_name(paths.read("/etc/os-release"))
    kernel_release = parsers.parse_kernel_release(proc_version)

    os_type, release = container_info.os_type(), container_info.os_release()
    if kernel_release:
        os_type, release = "Linux", kernel_release
    elif distribution:
        os_type, release = "Linux", parsers.distribution_release(distribution)

    architecture = parsers.detect_architecture(
        paths.read("/proc/cpuinfo"), proc_version
    ) or container_info.architecture()

    return OsIdentity(
        type=os_type,
        release=release,
        hostname=_host_hostname(paths),
        architecture=architecture,
        distribution=distribution,
    )


def collect_uptime(paths: HostPathResolver) -> float:
    uptime = parsers.parse_uptime(paths.resolve("/proc/uptime", _local_uptime))
    return uptime if uptime is not None else container_info.uptime_seconds()


# --- container-only fallbacks for a collector that failed outright -----------


def _local_cpu_metrics() -> CpuMetrics:
    count = container_info.cpu_count()
    load = container_info.load_average()
    return CpuMetrics(
        model=container_info.cpu_model(),
        count=count,
        usage_percent=parsers.load_percent(load[0], count),
        usage_source="load_average",
        load_average=load,
    )


def _local_os_identity() -> OsIdentity:
    return OsIdentity(
        type=container_info.os_type(),
        release=container_info.os_release(),
        hostname=container_info.hostname(),
        architecture=container_info.architecture(),
    )


def _isolated(name: str, collect: Callable[[], T], fallback: Callable[[], T]) -> T:
    try:
        return collect()
    except RECOVERABLE_ERRORS as exc:
        logger.warning("collector_failed", collector=name, error=str(exc))
        return fallback()


def get_host_snapshot(
    paths: Optional[HostPathResolver] = None,
    executor: Optional[CommandRunner] = None,
    settings: Optional[Settings] = None,
) -> HostSnapshot:
    """
    Collect current host metrics and return them as a HostSnapshot.

    Every metric is collected independently and degrades to container-local
    values on its own. Only a failure while assembling the snapshot itself
    raises SnapshotUnavailableError.
    """
    settings = settings or get_settings()
    paths = paths or HostPathResolver.from_settings(settings)
    if executor is None:
        executor = NamespaceExecutor.from_settings(settings)

    try:
        host_mounted = paths.is_host_mounted()
        snapshot = HostSnapshot(
            memory=_isolated(
                "memory",
                lambda: collect_memory(paths),
                lambda: MemoryMetrics.from_totals(*container_info.memory_totals()),
            ),
            cpu=_isolated("cpu", lambda: collect_cpu(paths, settings), _local_cpu_metrics),
            disk=_isolated(
                "disk",
                lambda: collect_disk(paths, settings),
                lambda: DiskMetrics(total=0, used=0, free=0, usage_percent=0.0),
            ),
            network=_isolated(
                "network",
                lambda: AddressResolver(paths, executor).resolve(),
                lambda: NetworkIdentity(ip_address=UNAVAILABLE, source="none"),
            ),
            os=_isolated("os", lambda: collect_os(paths), _local_os_identity),
            uptime_seconds=_isolated(
                "uptime", lambda: collect_uptime(paths), container_info.uptime_seconds
            ),
            host_mounted=host_mounted,
        )
    except Exception as exc:
        logger.exception("host_snapshot_failed")
        raise SnapshotUnavailableError(f"could not assemble host snapshot: {exc}") from exc

    logger.info(
        "host_snapshot_collected",
        host_mounted=snapshot.host_mounted,
        ip=snapshot.network.ip_address,
        cpu_usage_source=snapshot.cpu.usage_source,
    )
    return snapshot
