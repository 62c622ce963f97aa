"""
Device session: one opened camera, its buffer pool, and its capture state.

States: UNINITIALIZED -> CONFIGURED -> CAPTURING <-> STOPPED -> CLOSED.
Events drive transitions through a table; an event that has no entry for
the current state is a caller error and raises before anything happens.

``close()`` is the terminal call on every path.  It is safe on sessions
that never opened, and the context-manager exit calls it:

    with DeviceSession(driver) as session:
        session.initialize(0)
        session.allocate_and_register_buffers()
        session.start_capture(publisher)
        ...
"""

import threading
from enum import Enum
from typing import Optional, Tuple

from mono_live.capture import CaptureLoop, CaptureStats
from mono_live.errors import (
    CameraError,
    CaptureStartError,
    DeviceOpenError,
    NotReadyError,
    RegistrationError,
)
from mono_live.logger import get_logger
from mono_live.memory.pool import BITS_PER_PIXEL, BUFFER_COUNT, BufferPool

log = get_logger("session")


class SessionState(Enum):
    UNINITIALIZED = "uninitialized"
    CONFIGURED = "configured"
    CAPTURING = "capturing"
    STOPPED = "stopped"
    CLOSED = "closed"


class SessionEvent(Enum):
    CONFIGURED = "configured"
    CAPTURE_STARTED = "capture_started"
    CAPTURE_STOPPED = "capture_stopped"


_TRANSITIONS = {
    (SessionState.UNINITIALIZED, SessionEvent.CONFIGURED): SessionState.CONFIGURED,
    (SessionState.CONFIGURED, SessionEvent.CAPTURE_STARTED): SessionState.CAPTURING,
    (SessionState.CAPTURING, SessionEvent.CAPTURE_STOPPED): SessionState.STOPPED,
    (SessionState.STOPPED, SessionEvent.CAPTURE_STARTED): SessionState.CAPTURING,
}


class DeviceSession:
    """Owns the connection to one sensor.

    Parameters
    ----------
    driver : CameraDriver
        Backend for the physical (or fake) device.
    buffer_count : int
        Size of the capture ring.
    """

    def __init__(self, driver, *, buffer_count: int = BUFFER_COUNT) -> None:
        self._driver = driver
        self._buffer_count = buffer_count
        self._pool = BufferPool(driver)
        self._capture: Optional[CaptureLoop] = None
        self._publisher = None
        self._stats = CaptureStats()

        self._state = SessionState.UNINITIALIZED
        self._opened = False
        self._control = threading.RLock()

        self.device_id: Optional[int] = None
        self.width = 0
        self.height = 0
        self.bits_per_pixel = BITS_PER_PIXEL
        self.last_error: Optional[CameraError] = None

    # ── properties ───────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_opened(self) -> bool:
        return self._opened

    @property
    def pool(self) -> BufferPool:
        return self._pool

    @property
    def geometry(self) -> Tuple[int, int]:
        return self.width, self.height

    @property
    def stats(self) -> CaptureStats:
        """Capture counters, cumulative over every start of this session."""
        return self._stats

    @property
    def error_kind(self) -> Optional[str]:
        return self.last_error.kind if self.last_error is not None else None

    # ── configuration ────────────────────────────────────────────────

    def initialize(self, device_id: int = 0) -> None:
        """Open *device_id*, force mono8, and read the AOI back.

        Raises DeviceOpenError.  On failure the caller must ``close()``.
        """
        with self._control:
            if self._state is not SessionState.UNINITIALIZED or self._opened:
                raise DeviceOpenError(f"session is {self._state.value}, cannot initialize")
            if (
                not isinstance(device_id, int)
                or isinstance(device_id, bool)
                or device_id < 0
            ):
                raise DeviceOpenError(f"invalid device id {device_id!r}")

            self._driver.open(device_id)
            self._opened = True
            self.device_id = device_id

            self._driver.set_mono8()
            width, height = self._driver.get_aoi()
            if width <= 0 or height <= 0:
                raise DeviceOpenError(f"device reported an empty AOI {width}x{height}")
            self.width, self.height = width, height

            self._dispatch(SessionEvent.CONFIGURED)
            log.info("Device %d configured: %dx%d mono8.", device_id, width, height)

    def allocate_and_register_buffers(self) -> None:
        """Allocate the buffer ring and register it with the device.

        Exactly once, after ``initialize()`` and before ``start_capture()``.
        """
        with self._control:
            if self._state is not SessionState.CONFIGURED:
                raise RegistrationError(
                    f"session is {self._state.value}; buffers are registered once, "
                    "after initialize() and before start_capture()"
                )
            if self._pool.is_registered:
                raise RegistrationError("buffers are already registered")
            ids = self._pool.allocate(
                self.width, self.height, self.bits_per_pixel, self._buffer_count,
            )
            self._pool.register(ids)

    def try_initialize(self, device_id: int = 0) -> bool:
        """Initialize and register buffers; report success as a bool.

        On failure the typed error is kept in ``last_error`` and the session
        is closed.  An unexpected driver error is kept as a plain
        ``CameraError`` chained to the original.
        """
        try:
            self.initialize(device_id)
            self.allocate_and_register_buffers()
        except Exception as exc:
            if isinstance(exc, CameraError):
                error = exc
            else:
                error = CameraError(f"{type(exc).__name__}: {exc}")
                error.__cause__ = exc
            self.last_error = error
            log.error("Camera could not be initialized (%s): %s", error.kind, error)
            self.close()
            return False
        self.last_error = None
        return True

    # ── capture ──────────────────────────────────────────────────────

    def start_capture(self, publisher) -> None:
        """Install the per-frame callback and start acquisition."""
        with self._control:
            if not self._opened or self._state not in (
                SessionState.CONFIGURED, SessionState.STOPPED,
            ):
                raise NotReadyError(f"session is {self._state.value}, not open for capture")
            if not self._pool.is_registered:
                raise NotReadyError("buffers are not registered")

            capture = CaptureLoop(self._driver, self._pool, publisher, self._stats)
            publisher.resume()
            capture.arm()
            try:
                self._driver.start_capture()
            except CaptureStartError:
                capture.disarm()
                raise
            self._capture = capture
            self._publisher = publisher
            self._dispatch(SessionEvent.CAPTURE_STARTED)
            log.info("Capture started on device %d.", self.device_id)

    def stop_capture(self) -> None:
        """Stop acquisition.  Idempotent.

        When this returns no callback is running, none will be dispatched,
        and no further frame-ready notification is emitted.  Waits for a
        callback or render in progress however long it takes.
        """
        with self._control:
            if self._state is not SessionState.CAPTURING:
                return
            self._capture.disarm()
            self._driver.stop_capture()
            self._publisher.cancel_pending(timeout=None)
            self._dispatch(SessionEvent.CAPTURE_STOPPED)
            stats = self._stats
            log.info(
                "Capture stopped: %d signalled, %d published, %d dropped.",
                stats.frames_signalled, stats.frames_published, stats.frames_dropped,
            )

    # ── teardown ─────────────────────────────────────────────────────

    def close(self) -> None:
        """Stop, free the buffers and release the device.  Always safe."""
        with self._control:
            if not self._opened:
                return
            try:
                self.stop_capture()
                self._pool.free_all()
            finally:
                self._driver.close()
                self._opened = False
                self._state = SessionState.CLOSED
                log.info("Session for device %s closed.", self.device_id)

    def __enter__(self) -> "DeviceSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ── internals ────────────────────────────────────────────────────

    def _dispatch(self, event: SessionEvent) -> SessionState:
        new_state = _TRANSITIONS.get((self._state, event))
        if new_state is None:
            raise NotReadyError(f"{event.value} is not allowed while {self._state.value}")
        self._state = new_state
        return self._state
