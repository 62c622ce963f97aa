"""
Error taxonomy for the acquisition pipeline.

Configuration-time failures (open, allocate, register, start) are raised
to the caller.  Per-frame failures never leave the capture callback; they
are counted as dropped frames instead.
"""


class CameraError(Exception):
    """Base class for every pipeline error."""

    #: Short machine-readable kind reported to the UI (``/api/status``).
    kind = "camera_error"


class DeviceOpenError(CameraError):
    """Device id is invalid, missing, or already claimed by another session."""

    kind = "device_open"


class AllocationError(CameraError):
    """The device could not provide backing memory for the buffer pool."""

    kind = "allocation"


class RegistrationError(CameraError):
    """Buffer sequence registration failed, came too early, or was repeated."""

    kind = "registration"


class InvalidStateError(CameraError):
    """Lock/unlock protocol violation on an image buffer."""

    kind = "invalid_state"


class CaptureStartError(CameraError):
    """The hardware refused to begin acquisition."""

    kind = "capture_start"


class NotReadyError(CameraError):
    """``start_capture`` called on a session that is not open or has no buffers."""

    kind = "not_ready"
