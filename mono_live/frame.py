"""
Frame values passed along the pipeline.

FrameDescriptor - built by the capture callback from a *locked* device
buffer.  Its ``pixels`` view aliases device memory and is only valid until
the buffer is unlocked.

FrameReady - what the renderer receives on the render thread.  Its
``pixel_data`` is a read-only view into a publisher-owned staging slot and
is only valid for the duration of the renderer call.
"""

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class FrameDescriptor:
    buffer_id: int
    pixels: np.ndarray  # (height, stride) uint8, aliases device memory
    width: int
    height: int
    stride: int
    bits_per_pixel: int


@dataclass(frozen=True)
class FrameReady:
    sequence: int
    width: int
    height: int
    stride_bytes: int
    bits_per_pixel: int
    pixel_data: np.ndarray  # read-only (height, stride) uint8

    def image(self) -> np.ndarray:
        """Return the visible ``(height, width)`` region without row padding."""
        return self.pixel_data[:, : self.width]
