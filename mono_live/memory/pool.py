"""
Buffer pool: the fixed ring of device-writable image buffers.

Call ``allocate()`` once after the device geometry is known, then
``register()`` to hand the ids to the driver as its circular capture
sequence.  After that the id set never changes: buffers rotate between
QUEUED, FILLED and LOCKED until ``free_all()`` at teardown.

State flags are the only synchronization on the capture path.  The short
``threading.Lock`` below protects flag updates; it is never held while
the driver is called.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from mono_live.errors import (
    AllocationError,
    CameraError,
    InvalidStateError,
    RegistrationError,
)
from mono_live.logger import get_logger

log = get_logger("pool")

# ---------------------------------------------------------------------------
# Pool constants
# ---------------------------------------------------------------------------
# Number of rotating device buffers. Three keeps the device from stalling on
# a slow consumer without holding more memory than needed.
BUFFER_COUNT: int = 3

# Only supported pixel format: mono8.
BITS_PER_PIXEL: int = 8


class BufferState(Enum):
    FREE = "free"        # allocated, not yet part of the capture sequence
    QUEUED = "queued"    # in the device's write rotation
    FILLED = "filled"    # completed by the device, not yet read
    LOCKED = "locked"    # held by a reader; the device skips it


@dataclass
class ImageBuffer:
    """One device buffer and its pool-side state."""

    buffer_id: int
    width: int
    height: int
    bits_per_pixel: int
    stride: int
    state: BufferState = BufferState.FREE

    @property
    def nbytes(self) -> int:
        return self.stride * self.height


class BufferPool:
    """Owns the device buffers registered with one session.

    Parameters
    ----------
    driver : CameraDriver
        Backend that provides the device memory.
    """

    def __init__(self, driver) -> None:
        self._driver = driver
        self._buffers: Dict[int, ImageBuffer] = {}
        self._registered = False
        self._lock = threading.Lock()

    # ── introspection ────────────────────────────────────────────────

    @property
    def ids(self) -> List[int]:
        return list(self._buffers)

    @property
    def buffers(self) -> Tuple[ImageBuffer, ...]:
        return tuple(self._buffers.values())

    @property
    def is_allocated(self) -> bool:
        return bool(self._buffers)

    @property
    def is_registered(self) -> bool:
        return self._registered

    def __contains__(self, buffer_id: object) -> bool:
        return buffer_id in self._buffers

    def __len__(self) -> int:
        return len(self._buffers)

    def state(self, buffer_id: int) -> BufferState:
        return self._get(buffer_id).state

    def get(self, buffer_id: int) -> ImageBuffer:
        return self._get(buffer_id)

    # ── lifecycle ────────────────────────────────────────────────────

    def allocate(
        self,
        width: int,
        height: int,
        bits_per_pixel: int = BITS_PER_PIXEL,
        count: int = BUFFER_COUNT,
    ) -> List[int]:
        """Allocate *count* device buffers and return their ids in order.

        If the driver fails on any buffer, every buffer obtained so far is
        freed before the error propagates.  Camera errors pass through
        unchanged; anything else is raised as ``AllocationError``.
        """
        if self._buffers:
            raise AllocationError("buffer pool is already allocated")
        if width <= 0 or height <= 0 or count <= 0:
            raise AllocationError(
                f"invalid pool geometry {width}x{height} x{count}"
            )

        allocated: List[ImageBuffer] = []
        try:
            for _ in range(count):
                buffer_id, stride = self._driver.alloc_buffer(width, height, bits_per_pixel)
                allocated.append(
                    ImageBuffer(buffer_id, width, height, bits_per_pixel, stride)
                )
        except Exception as exc:
            log.error(
                "Allocation failed after %d of %d buffers; rolling back.",
                len(allocated), count,
            )
            for buf in allocated:
                self._driver.free_buffer(buf.buffer_id)
            if isinstance(exc, CameraError):
                raise
            raise AllocationError(
                f"buffer {len(allocated) + 1} of {count} failed: {exc!r}"
            ) from exc

        with self._lock:
            for buf in allocated:
                self._buffers[buf.buffer_id] = buf
        log.info(
            "Allocated %d buffers of %d bytes (%dx%d, %d bpp): ids=%s",
            count, allocated[0].nbytes, width, height, bits_per_pixel, self.ids,
        )
        return self.ids

    def register(self, ids: Optional[Sequence[int]] = None) -> None:
        """Register the allocated buffers as the driver's capture sequence."""
        if not self._buffers:
            raise RegistrationError("register() called before allocate()")
        if self._registered:
            raise RegistrationError("buffer sequence is already registered")
        ids = list(self._buffers) if ids is None else list(ids)
        if sorted(ids) != sorted(self._buffers):
            raise RegistrationError(
                f"ids {ids} do not match the allocated set {self.ids}"
            )

        self._driver.add_sequence(ids)

        with self._lock:
            for buffer_id in ids:
                self._buffers[buffer_id].state = BufferState.QUEUED
            self._registered = True
        log.info("Registered capture sequence %s", ids)

    def free_all(self) -> None:
        """Clear the capture sequence and free every buffer.

        Refuses while any buffer is locked; callers stop the capture
        callback first.
        """
        with self._lock:
            locked = [b.buffer_id for b in self._buffers.values()
                      if b.state is BufferState.LOCKED]
            if locked:
                raise InvalidStateError(f"cannot free pool, buffers locked: {locked}")
            buffers = list(self._buffers.values())
            was_registered = self._registered
            self._buffers.clear()
            self._registered = False

        if was_registered:
            self._driver.clear_sequence()
        for buf in buffers:
            self._driver.free_buffer(buf.buffer_id)
        if buffers:
            log.info("Freed %d buffers.", len(buffers))

    # ── capture-path transitions ─────────────────────────────────────

    def mark_filled(self, buffer_id: int) -> None:
        """Record *buffer_id* as the latest completed buffer.

        Any older filled buffer that was never read goes back to the
        rotation (latest wins).
        """
        with self._lock:
            buf = self._get(buffer_id)
            for other in self._buffers.values():
                if other is not buf and other.state is BufferState.FILLED:
                    other.state = BufferState.QUEUED
            if buf.state is BufferState.QUEUED:
                buf.state = BufferState.FILLED

    def release(self, buffer_id: int) -> None:
        """Return a filled, unread buffer to the device's write rotation."""
        with self._lock:
            buf = self._get(buffer_id)
            if buf.state is BufferState.LOCKED:
                raise InvalidStateError(f"buffer {buffer_id} is locked; unlock it instead")
            if buf.state is BufferState.FREE:
                raise InvalidStateError(f"buffer {buffer_id} is not registered")
            buf.state = BufferState.QUEUED

    def lock(self, buffer_id: int) -> bool:
        """Claim *buffer_id* for reading.

        Returns False when the device has already reclaimed the buffer.
        Raises ``InvalidStateError`` if it is already locked or was never
        registered.
        """
        with self._lock:
            buf = self._get(buffer_id)
            if buf.state is BufferState.LOCKED:
                raise InvalidStateError(f"buffer {buffer_id} is already locked")
            if buf.state is BufferState.FREE:
                raise InvalidStateError(f"buffer {buffer_id} is not registered")
            previous = buf.state
            buf.state = BufferState.LOCKED

        if self._driver.lock_buffer(buffer_id):
            return True

        with self._lock:
            buf.state = previous
        return False

    def unlock(self, buffer_id: int) -> None:
        """Hand a locked buffer back to the device."""
        with self._lock:
            buf = self._get(buffer_id)
            if buf.state is not BufferState.LOCKED:
                raise InvalidStateError(
                    f"buffer {buffer_id} is {buf.state.value}, not locked"
                )
        self._driver.unlock_buffer(buffer_id)
        with self._lock:
            buf.state = BufferState.QUEUED

    def view(self, buffer_id: int) -> np.ndarray:
        """Return the ``(height, stride)`` pixel view of a locked buffer."""
        buf = self._get(buffer_id)
        if buf.state is not BufferState.LOCKED:
            raise InvalidStateError(f"buffer {buffer_id} must be locked before reading")
        return self._driver.buffer_view(buffer_id)

    # ── internals ────────────────────────────────────────────────────

    def _get(self, buffer_id: int) -> ImageBuffer:
        try:
            return self._buffers[buffer_id]
        except KeyError:
            raise InvalidStateError(f"unknown buffer id {buffer_id}") from None
