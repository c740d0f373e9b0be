from pathlib import Path
from typing import Dict, Optional

import pytest

from host_telemetry.services import container_info
from host_telemetry.services.host_paths import HostPathResolver


class FakeHost:
    """Three filesystem tiers below tmp_path: PID 1 root, bind-mounted host root, container."""

    def __init__(self, base: Path) -> None:
        self.escape_root = base / "proc1-root"
        self.host_root = base / "host"
        self.container_root = base / "container"
        self.container_root.mkdir()

    def mount_host(self) -> None:
        for name in ("proc", "sys", "etc"):
            (self.host_root / name).mkdir(parents=True, exist_ok=True)

    def enable_escape_root(self) -> None:
        self.escape_root.mkdir(exist_ok=True)

    def write(self, root: Path, logical_path: str, content: str) -> Path:
        path = root / logical_path.lstrip("/")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    def write_host(self, logical_path: str, content: str) -> Path:
        self.mount_host()
        return self.write(self.host_root, logical_path, content)

    def resolver(self) -> HostPathResolver:
        return HostPathResolver(
            escape_root=str(self.escape_root),
            host_root=str(self.host_root),
            container_root=str(self.container_root),
        )


class FakeExecutor:
    """Deterministic stand-in for NamespaceExecutor."""

    def __init__(self, responses: Optional[Dict[str, str]] = None) -> None:
        self.responses = responses or {}
        self.commands = []

    def run(self, command: str) -> Optional[str]:
        self.commands.append(command)
        return self.responses.get(command)


@pytest.fixture
def fake_host(tmp_path):
    return FakeHost(tmp_path)


@pytest.fixture
def local_machine(monkeypatch):
    """Pin every container-local fallback to known values."""
    values = {
        "cpu_model": "Container CPU",
        "cpu_count": 2,
        "memory_totals": (8 * 1024 ** 3, 2 * 1024 ** 3, 4 * 1024 ** 3),
        "load_average": (0.5, 0.4, 0.3),
        "uptime_seconds": 1234.0,
        "hostname": "container-host",
        "os_type": "Linux",
        "os_release": "6.1.0-container",
        "architecture": "x86_64",
        "ipv4_addresses": ["172.17.0.2", "192.168.65.3"],
    }
    for name, value in values.items():
        monkeypatch.setattr(container_info, name, lambda value=value: value)
    return values


@pytest.fixture
def fake_executor():
    return FakeExecutor()
