"""
Camera drivers: pluggable backends for one physical (or simulated) sensor.

Implementations:
- FakeDriver: in-memory sensor with fault injection (tests, demo).
- UEyeDriver: IDS uEye cameras through pyueye.

Buffer ids are the driver's own memory ids.  Pixel memory is exposed as a
``(height, stride)`` uint8 array.
"""

from typing import Callable, Iterable, Optional, Tuple

import numpy as np

FrameHandler = Callable[[], None]


class CameraDriver:
    """
    Interface for a mono8 camera backend.  Methods that can fail at
    configuration time raise the matching ``mono_live.errors`` type.
    """

    # ── device ───────────────────────────────────────────────────────

    def open(self, device_id: int) -> None:
        """Claim the device.  Raises DeviceOpenError."""
        raise NotImplementedError

    def close(self) -> None:
        """Release the device handle.  Safe to call when not open."""
        raise NotImplementedError

    def set_mono8(self) -> None:
        """Fix the pixel format to 8-bit grayscale."""
        raise NotImplementedError

    def get_aoi(self) -> Tuple[int, int]:
        """Return the active area of interest as ``(width, height)``."""
        raise NotImplementedError

    # ── memory ───────────────────────────────────────────────────────

    def alloc_buffer(self, width: int, height: int, bits_per_pixel: int) -> Tuple[int, int]:
        """Allocate one image buffer; return ``(buffer_id, stride_bytes)``.

        Raises AllocationError.
        """
        raise NotImplementedError

    def free_buffer(self, buffer_id: int) -> None:
        raise NotImplementedError

    def buffer_view(self, buffer_id: int) -> np.ndarray:
        """Return the ``(height, stride)`` uint8 array backing *buffer_id*."""
        raise NotImplementedError

    def add_sequence(self, buffer_ids: Iterable[int]) -> None:
        """Register buffers as the circular capture sequence.

        Raises RegistrationError.
        """
        raise NotImplementedError

    def clear_sequence(self) -> None:
        raise NotImplementedError

    def get_last_buffer(self) -> Optional[int]:
        """Return the id of the most recently completed buffer, if any."""
        raise NotImplementedError

    def lock_buffer(self, buffer_id: int) -> bool:
        """Keep the device from writing *buffer_id*.

        Returns False if the device has already reclaimed it.
        """
        raise NotImplementedError

    def unlock_buffer(self, buffer_id: int) -> None:
        raise NotImplementedError

    # ── acquisition ──────────────────────────────────────────────────

    def set_frame_handler(self, handler: Optional[FrameHandler]) -> None:
        """Install (or with None, remove) the per-frame completion handler.

        The handler is called on a driver-owned thread with no arguments.
        """
        raise NotImplementedError

    def start_capture(self) -> None:
        """Begin free-running acquisition.  Raises CaptureStartError."""
        raise NotImplementedError

    def stop_capture(self) -> None:
        raise NotImplementedError
