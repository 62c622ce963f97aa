"""mono_live.memory - device buffer pool and publisher staging ring."""

from mono_live.memory.pool import (
    BufferPool,
    BufferState,
    ImageBuffer,
    BUFFER_COUNT,
    BITS_PER_PIXEL,
)
from mono_live.memory.staging import StagingRing, STAGING_SLOTS

__all__ = [
    "BufferPool",
    "BufferState",
    "ImageBuffer",
    "StagingRing",
    "BUFFER_COUNT",
    "BITS_PER_PIXEL",
    "STAGING_SLOTS",
]
