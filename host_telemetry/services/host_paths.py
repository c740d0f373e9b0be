from pathlib import Path
from typing import Callable, List, Optional

import structlog

from host_telemetry.config import Settings, get_settings
from host_telemetry.services.cascade import Strategy, first_successful


def _read_regular_file(path: Path) -> Optional[str]:
    """Return the stripped content of ``path`` if it is a non-empty regular file."""
    if not path.is_file():
        return None
    content = path.read_text(encoding="utf-8", errors="replace").strip()
    return content or None


class HostPathResolver:
    """
    Read host files from inside a container.

    Logical paths such as ``/proc/meminfo`` are looked up, in order, below the
    root of the host's PID 1 (``/proc/1/root``, available with ``--pid host``),
    below the bind-mounted host root (``/host``), and finally in the
    container's own filesystem.
    """

    def __init__(
        self,
        escape_root: str = "/proc/1/root",
        host_root: str = "/host",
        container_root: str = "/",
        logger=None,
    ) -> None:
        self.escape_root = Path(escape_root)
        self.host_root = Path(host_root)
        self.container_root = Path(container_root)
        self._log = logger or structlog.get_logger()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "HostPathResolver":
        settings = settings or get_settings()
        return cls(
            escape_root=settings.escape_root,
            host_root=settings.host_root,
            container_root=settings.container_root,
        )

    def is_host_mounted(self) -> bool:
        try:
            return all((self.host_root / name).exists() for name in ("proc", "sys", "etc"))
        except OSError:
            return False

    def has_escape_root(self) -> bool:
        # /proc/1/root exists but raises EACCES without CAP_SYS_PTRACE
        try:
            return self.escape_root.exists()
        except OSError:
            return False

    def disk_root(self) -> Path:
        """Filesystem root whose usage represents the host disk."""
        return self.escape_root if self.has_escape_root() else self.container_root

    def _candidates(self, logical_path: str) -> List[Strategy]:
        relative = logical_path.lstrip("/")
        return [
            Strategy(
                "escape_root",
                lambda: self.escape_root / relative if self.has_escape_root() else None,
            ),
            Strategy(
                "host_root",
                lambda: self.host_root / relative if self.is_host_mounted() else None,
            ),
            Strategy("container", lambda: self.container_root / relative),
        ]

    def resolve(self, logical_path: str, fallback: Callable[[], str]) -> str:
        """
        Return the content of ``logical_path`` from the first tier that has it.

        A tier only counts if the file is regular and its stripped content is
        non-empty. When no tier yields content, ``fallback()`` is returned as-is.
        """
        strategies = [
            Strategy(
                candidate.name,
                lambda candidate=candidate: self._read_tier(candidate),
            )
            for candidate in self._candidates(logical_path)
        ]
        resolution = first_successful(strategies, logger=self._log, path=logical_path)
        if resolution is not None:
            self._log.debug("host_path_resolved", path=logical_path, tier=resolution.source)
            return resolution.value

        self._log.debug("host_path_fallback", path=logical_path)
        return fallback()

    def read(self, logical_path: str) -> str:
        """Shorthand for ``resolve`` with an empty fallback."""
        return self.resolve(logical_path, str)

    def locate(self, logical_path: str) -> Optional[Path]:
        """
        Return the first existing concrete path for ``logical_path``.

        Uses the same tier order as ``resolve`` but accepts directories and
        does not look at content.
        """
        for candidate in self._candidates(logical_path):
            try:
                path = candidate.run()
                if path is not None and path.exists():
                    return path
            except OSError as exc:
                self._log.debug(
                    "host_path_locate_failed",
                    path=logical_path,
                    tier=candidate.name,
                    error=str(exc),
                )
        return None

    @staticmethod
    def _read_tier(candidate: Strategy) -> Optional[str]:
        path = candidate.run()
        if path is None:
            return None
        return _read_regular_file(path)
