class TelemetryError(RuntimeError):
    """Base class for errors surfaced by the telemetry engine."""


class SnapshotUnavailableError(TelemetryError):
    """Raised when the host snapshot could not be assembled as a whole.

    Per-source failures never raise; they degrade to container-local values.
    Only an unexpected fault during aggregation ends up here.
    """
