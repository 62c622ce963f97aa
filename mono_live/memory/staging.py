"""
StagingRing: latest-wins ring of frame copies owned by the publisher.

The capture thread copies a locked device buffer into the slot returned by
``get_write_buffer()`` and calls ``publish_latest_from_write()``.  The
render thread takes the newest slot with ``take_latest()`` and hands it
back with ``done_reading()``.  The write slot is never the one being
read, so the copy itself runs outside the lock.
"""

import threading
from typing import Optional, Tuple

import numpy as np

# Write slot + latest slot + slot being rendered.
STAGING_SLOTS: int = 3


class StagingRing:
    """Thread-safe accessor for the staging slots.

    Parameters
    ----------
    height, stride : int
        Geometry of one slot (rows, bytes per row).
    slots : int
        Ring length; must be at least 3.
    """

    def __init__(self, height: int, stride: int, slots: int = STAGING_SLOTS) -> None:
        if slots < 3:
            raise ValueError("StagingRing needs at least 3 slots")
        self._ring = np.zeros((slots, height, stride), dtype=np.uint8)
        self._lock = threading.Condition()

        self._ring_n = slots
        self._write_idx = 0
        self._latest_idx = -1
        self._reading_idx = -1
        self._latest_meta = None

    @property
    def shape(self) -> Tuple[int, int]:
        return self._ring.shape[1], self._ring.shape[2]

    # ── writer side (capture thread) ─────────────────────────────────

    def get_write_buffer(self) -> np.ndarray:
        """Return a writable view into the current write slot."""
        return self._ring[self._write_idx]

    def publish_latest_from_write(self, meta=None) -> bool:
        """Publish the write slot as the newest frame and advance.

        Returns True when an unread frame was replaced (dropped).
        """
        with self._lock:
            replaced = self._latest_idx >= 0
            self._latest_idx = self._write_idx
            self._latest_meta = meta
            # next write slot: neither the one just published nor the one
            # currently being read
            idx = self._write_idx
            while True:
                idx = (idx + 1) % self._ring_n
                if idx != self._latest_idx and idx != self._reading_idx:
                    break
            self._write_idx = idx
            return replaced

    # ── reader side (render thread) ──────────────────────────────────

    def take_latest(self) -> Optional[Tuple[np.ndarray, object]]:
        """Claim the newest unread slot, or return None if there is none."""
        with self._lock:
            if self._latest_idx < 0:
                return None
            self._reading_idx = self._latest_idx
            self._latest_idx = -1
            meta, self._latest_meta = self._latest_meta, None
            view = self._ring[self._reading_idx].view()
        view.flags.writeable = False
        return view, meta

    def done_reading(self) -> None:
        with self._lock:
            self._reading_idx = -1
            self._lock.notify_all()

    def discard_latest(self) -> bool:
        """Drop the unread frame, if any.  Returns True if one was dropped."""
        with self._lock:
            dropped = self._latest_idx >= 0
            self._latest_idx = -1
            self._latest_meta = None
            return dropped

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no slot is being read."""
        with self._lock:
            return self._lock.wait_for(lambda: self._reading_idx < 0, timeout)
