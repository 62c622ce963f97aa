"""
Fake camera driver.

Simulates a mono8 sensor in memory.  Frames are produced either by calling
``fire()`` (tests inject completion events explicitly) or by a free-running
thread started with ``start_capture()`` when *fps* is given.  Each produced
frame is filled with ``frame_index % 256`` so readers can tell frames apart.

Fault injection knobs cover every configuration-time error and the
per-frame lock miss.
"""

import threading
import time
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

import numpy as np

from mono_live.drivers.base import CameraDriver, FrameHandler
from mono_live.errors import (
    AllocationError,
    CaptureStartError,
    DeviceOpenError,
    RegistrationError,
)
from mono_live.logger import get_logger

log = get_logger("driver.fake")

# Device ids currently claimed by any FakeDriver instance in this process.
_claimed: Set[int] = set()
_claimed_lock = threading.Lock()


class FakeDriver(CameraDriver):
    """In-memory sensor.

    Parameters
    ----------
    width, height : int
        AOI reported by ``get_aoi()``.
    devices : iterable of int
        Device ids that exist.
    fps : float, optional
        If given, ``start_capture()`` runs a free-running producer thread.
    fail_alloc_at : int, optional
        1-based index of the ``alloc_buffer`` call that fails.
    refuse_sequence, refuse_start : bool
        Make ``add_sequence`` / ``start_capture`` fail.
    """

    def __init__(
        self,
        width: int = 640,
        height: int = 480,
        *,
        devices: Iterable[int] = (0,),
        fps: Optional[float] = None,
        fail_alloc_at: Optional[int] = None,
        refuse_sequence: bool = False,
        refuse_start: bool = False,
    ) -> None:
        self.width = width
        self.height = height
        self.devices = set(devices)
        self.fps = fps
        self.fail_alloc_at = fail_alloc_at
        self.refuse_sequence = refuse_sequence
        self.refuse_start = refuse_start

        # Ids for which lock_buffer() reports "reclaimed by device"
        self.refuse_lock: Set[int] = set()
        # Called with the buffer id at the start of lock_buffer(); tests use
        # it to hold a capture callback mid-flight.
        self.before_lock: Optional[Callable[[int], None]] = None

        self.device_id: Optional[int] = None
        self.mono8 = False
        self.capturing = False

        self._lock = threading.Lock()
        self._memory: Dict[int, np.ndarray] = {}
        self._alloc_calls = 0
        self._next_id = 1
        self._sequence: List[int] = []
        self._seq_pos = 0
        self._device_locked: Set[int] = set()
        self._last: Optional[int] = None
        self._handler: Optional[FrameHandler] = None
        self._frame_index = 0

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ── introspection for tests ──────────────────────────────────────

    @property
    def is_open(self) -> bool:
        return self.device_id is not None

    @property
    def allocated_count(self) -> int:
        return len(self._memory)

    @property
    def sequence(self) -> List[int]:
        return list(self._sequence)

    @property
    def handler(self) -> Optional[FrameHandler]:
        return self._handler

    # ── device ───────────────────────────────────────────────────────

    def open(self, device_id: int) -> None:
        if device_id not in self.devices:
            raise DeviceOpenError(f"no device with id {device_id}")
        with _claimed_lock:
            if device_id in _claimed:
                raise DeviceOpenError(f"device {device_id} is already in use")
            _claimed.add(device_id)
        self.device_id = device_id
        log.debug("Fake device %d opened (%dx%d).", device_id, self.width, self.height)

    def close(self) -> None:
        if self.capturing:
            self.stop_capture()
        if self.device_id is not None:
            with _claimed_lock:
                _claimed.discard(self.device_id)
            log.debug("Fake device %d closed.", self.device_id)
            self.device_id = None

    def set_mono8(self) -> None:
        self.mono8 = True

    def get_aoi(self) -> Tuple[int, int]:
        return self.width, self.height

    # ── memory ───────────────────────────────────────────────────────

    def alloc_buffer(self, width: int, height: int, bits_per_pixel: int) -> Tuple[int, int]:
        self._alloc_calls += 1
        if self.fail_alloc_at is not None and self._alloc_calls == self.fail_alloc_at:
            raise AllocationError(f"out of device memory on buffer {self._alloc_calls}")
        stride = (width * bits_per_pixel + 7) // 8
        with self._lock:
            buffer_id = self._next_id
            self._next_id += 1
            self._memory[buffer_id] = np.zeros((height, stride), dtype=np.uint8)
        return buffer_id, stride

    def free_buffer(self, buffer_id: int) -> None:
        with self._lock:
            self._memory.pop(buffer_id, None)

    def buffer_view(self, buffer_id: int) -> np.ndarray:
        return self._memory[buffer_id]

    def add_sequence(self, buffer_ids: Iterable[int]) -> None:
        if self.refuse_sequence:
            raise RegistrationError("device refused the buffer sequence")
        ids = list(buffer_ids)
        with self._lock:
            if self._sequence:
                raise RegistrationError("a sequence is already registered")
            missing = [i for i in ids if i not in self._memory]
            if missing:
                raise RegistrationError(f"unknown buffer ids {missing}")
            self._sequence = ids
            self._seq_pos = 0

    def clear_sequence(self) -> None:
        with self._lock:
            self._sequence = []
            self._last = None

    def get_last_buffer(self) -> Optional[int]:
        return self._last

    def lock_buffer(self, buffer_id: int) -> bool:
        if self.before_lock is not None:
            self.before_lock(buffer_id)
        with self._lock:
            if buffer_id in self.refuse_lock:
                return False
            self._device_locked.add(buffer_id)
            return True

    def unlock_buffer(self, buffer_id: int) -> None:
        with self._lock:
            self._device_locked.discard(buffer_id)

    # ── acquisition ──────────────────────────────────────────────────

    def set_frame_handler(self, handler: Optional[FrameHandler]) -> None:
        with self._lock:
            self._handler = handler

    def start_capture(self) -> None:
        if self.refuse_start:
            raise CaptureStartError("device refused to start acquisition")
        if not self._sequence:
            raise CaptureStartError("no buffer sequence registered")
        self.capturing = True
        if self.fps:
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run, name="FakeDriver-Capture", daemon=True,
            )
            self._thread.start()

    def stop_capture(self) -> None:
        self.capturing = False
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)

    # ── frame production ─────────────────────────────────────────────

    def fire(self, value: Optional[int] = None) -> Optional[int]:
        """Complete one frame and signal the handler on the calling thread.

        The next unlocked buffer in the sequence is filled with *value*
        (default ``frame_index % 256``).  Returns the buffer id written, or
        None if every buffer is locked or capture is not running.
        """
        with self._lock:
            if not self.capturing or not self._sequence:
                return None
            target = None
            for _ in range(len(self._sequence)):
                candidate = self._sequence[self._seq_pos]
                self._seq_pos = (self._seq_pos + 1) % len(self._sequence)
                if candidate not in self._device_locked:
                    target = candidate
                    break
            if target is None:
                return None
            fill = self._frame_index % 256 if value is None else value
            self._frame_index += 1
            self._memory[target].fill(fill)
            self._last = target
            handler = self._handler

        if handler is not None:
            handler()
        return target

    def _run(self) -> None:
        tick = 1.0 / self.fps
        log.info("Fake capture thread started (%.0f FPS).", self.fps)
        while not self._stop_event.is_set():
            t0 = time.monotonic()
            self.fire()
            elapsed = time.monotonic() - t0
            time.sleep(max(0.0, tick - elapsed))
        log.info("Fake capture thread stopped.")
