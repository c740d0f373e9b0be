from fastapi import APIRouter, HTTPException

from host_telemetry.errors import SnapshotUnavailableError
from host_telemetry.models.host import HostSnapshot
from host_telemetry.services import host_monitor

router = APIRouter()


@router.get("/snapshot", response_model=HostSnapshot, summary="Host snapshot")
def host_snapshot() -> HostSnapshot:
    """
    Return a fresh snapshot of the machine hosting this container.

    All collection is delegated to the host_monitor service. Values are
    best-effort; ``host_mounted`` is False when the host root is not
    bind-mounted and figures may describe the container instead. If the
    snapshot cannot be assembled at all, a HTTP 500 with a structured error
    is returned.
    """
    try:
        return host_monitor.get_host_snapshot()
    except SnapshotUnavailableError as exc:
        raise HTTPException(
            status_code=500,
            detail={"error": "snapshot_unavailable", "message": str(exc)},
        ) from exc
