import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Protocol

import structlog

from host_telemetry.config import Settings, get_settings


class CommandRunner(Protocol):
    """Runs a read-only shell command and returns its output, or None."""

    def run(self, command: str) -> Optional[str]:
        ...


class NamespaceExecutor:
    """
    Execute shell commands inside the host's mount, UTS and network namespaces.

    Uses ``nsenter --target 1``, which needs a host-visible PID 1 (``--pid host``)
    and enough privilege. The IPC namespace is not entered. Every failure mode
    (no PID 1, no nsenter, timeout, non-zero exit) yields None.
    """

    def __init__(
        self,
        pid1_path: str = "/proc/1",
        timeout_seconds: float = 3.0,
        logger=None,
    ) -> None:
        self.pid1_path = Path(pid1_path)
        self.timeout_seconds = timeout_seconds
        self._log = logger or structlog.get_logger()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "NamespaceExecutor":
        settings = settings or get_settings()
        return cls(
            pid1_path=settings.pid1_path,
            timeout_seconds=settings.nsenter_timeout_seconds,
        )

    def _build_argv(self, command: str) -> List[str]:
        return [
            "nsenter",
            "--target",
            "1",
            "--mount",
            "--uts",
            "--net",
            "--",
            "sh",
            "-c",
            command,
        ]

    def run(self, command: str) -> Optional[str]:
        if not self.pid1_path.exists():
            self._log.debug("nsenter_skipped", reason="pid1_missing", pid1=str(self.pid1_path))
            return None
        if shutil.which("nsenter") is None:
            self._log.debug("nsenter_skipped", reason="nsenter_not_found")
            return None

        try:
            result = subprocess.run(
                self._build_argv(command),
                check=True,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            self._log.debug("nsenter_timeout", command=command, timeout=self.timeout_seconds)
            return None
        except subprocess.CalledProcessError as exc:
            self._log.debug(
                "nsenter_failed",
                command=command,
                returncode=exc.returncode,
                stderr=(exc.stderr or "").strip(),
            )
            return None
        except OSError as exc:
            self._log.debug("nsenter_failed", command=command, error=str(exc))
            return None

        return result.stdout.strip()
