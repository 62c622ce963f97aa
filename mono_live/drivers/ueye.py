"""
IDS uEye driver (pyueye).

Wraps the uEye C API the way the vendor's .NET ``Camera`` class is used:
init with a device id, force MONO8, read the AOI back, allocate sequence
memory, ``is_CaptureVideo`` in free-running mode.  Frame events are
delivered by a driver-owned thread blocking in ``is_WaitEvent``.
"""

import threading
from typing import Dict, Iterable, Optional, Tuple

import numpy as np
from pyueye import ueye

from mono_live.drivers.base import CameraDriver, FrameHandler
from mono_live.errors import (
    AllocationError,
    CaptureStartError,
    DeviceOpenError,
    RegistrationError,
)
from mono_live.logger import get_logger

log = get_logger("driver.ueye")

# is_WaitEvent timeout; bounds how long stop_capture() waits for the thread
_EVENT_TIMEOUT_MS = 200


class UEyeDriver(CameraDriver):
    """uEye backend.  One instance drives one camera."""

    def __init__(self) -> None:
        self._h_cam: Optional[ueye.HIDS] = None
        # buffer id -> (mem pointer, width, height, bits per pixel, pitch)
        self._mem: Dict[int, Tuple[ueye.c_mem_p, int, int, int, int]] = {}
        self._handler: Optional[FrameHandler] = None
        self._handler_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ── device ───────────────────────────────────────────────────────

    def open(self, device_id: int) -> None:
        h_cam = ueye.HIDS(device_id | ueye.IS_USE_DEVICE_ID)
        ret = ueye.is_InitCamera(h_cam, None)
        if ret != ueye.IS_SUCCESS:
            raise DeviceOpenError(f"is_InitCamera({device_id}) failed: {ret}")
        self._h_cam = h_cam
        log.info("uEye device %d opened.", device_id)

    def close(self) -> None:
        if self._h_cam is None:
            return
        if self._thread is not None:
            self.stop_capture()
        ret = ueye.is_ExitCamera(self._h_cam)
        if ret != ueye.IS_SUCCESS:
            log.warning("is_ExitCamera failed: %s", ret)
        self._h_cam = None
        self._mem.clear()
        log.info("uEye device closed.")

    def set_mono8(self) -> None:
        ret = ueye.is_SetColorMode(self._h_cam, ueye.IS_CM_MONO8)
        if ret != ueye.IS_SUCCESS:
            raise DeviceOpenError(f"is_SetColorMode(MONO8) failed: {ret}")

    def get_aoi(self) -> Tuple[int, int]:
        rect = ueye.IS_RECT()
        ret = ueye.is_AOI(self._h_cam, ueye.IS_AOI_IMAGE_GET_AOI, rect, ueye.sizeof(rect))
        if ret != ueye.IS_SUCCESS:
            raise DeviceOpenError(f"is_AOI(GET_AOI) failed: {ret}")
        return int(rect.s32Width), int(rect.s32Height)

    # ── memory ───────────────────────────────────────────────────────

    def alloc_buffer(self, width: int, height: int, bits_per_pixel: int) -> Tuple[int, int]:
        mem_ptr = ueye.c_mem_p()
        mem_id = ueye.int()
        ret = ueye.is_AllocImageMem(self._h_cam, width, height, bits_per_pixel, mem_ptr, mem_id)
        if ret != ueye.IS_SUCCESS:
            raise AllocationError(f"is_AllocImageMem failed: {ret}")
        # Pitch of this buffer, not of the active image memory (none is
        # active until the sequence is registered).
        x, y, bits, pitch = ueye.int(), ueye.int(), ueye.int(), ueye.int()
        ret = ueye.is_InquireImageMem(self._h_cam, mem_ptr, mem_id, x, y, bits, pitch)
        if ret != ueye.IS_SUCCESS:
            ueye.is_FreeImageMem(self._h_cam, mem_ptr, mem_id)
            raise AllocationError(f"is_InquireImageMem failed: {ret}")
        buffer_id = int(mem_id)
        self._mem[buffer_id] = (mem_ptr, width, height, bits_per_pixel, int(pitch))
        return buffer_id, int(pitch)

    def free_buffer(self, buffer_id: int) -> None:
        entry = self._mem.pop(buffer_id, None)
        if entry is None or self._h_cam is None:
            return
        ret = ueye.is_FreeImageMem(self._h_cam, entry[0], ueye.int(buffer_id))
        if ret != ueye.IS_SUCCESS:
            log.warning("is_FreeImageMem(%d) failed: %s", buffer_id, ret)

    def buffer_view(self, buffer_id: int) -> np.ndarray:
        mem_ptr, width, height, bpp, pitch = self._mem[buffer_id]
        data = ueye.get_data(mem_ptr, width, height, bpp, pitch, copy=False)
        return np.frombuffer(data, dtype=np.uint8).reshape((height, pitch))

    def add_sequence(self, buffer_ids: Iterable[int]) -> None:
        for buffer_id in buffer_ids:
            mem_ptr = self._mem[buffer_id][0]
            ret = ueye.is_AddToSequence(self._h_cam, mem_ptr, ueye.int(buffer_id))
            if ret != ueye.IS_SUCCESS:
                ueye.is_ClearSequence(self._h_cam)
                raise RegistrationError(f"is_AddToSequence({buffer_id}) failed: {ret}")

    def clear_sequence(self) -> None:
        if self._h_cam is not None:
            ueye.is_ClearSequence(self._h_cam)

    def get_last_buffer(self) -> Optional[int]:
        num = ueye.INT()
        mem = ueye.c_mem_p()
        mem_last = ueye.c_mem_p()
        ret = ueye.is_GetActSeqBuf(self._h_cam, num, mem, mem_last)
        if ret != ueye.IS_SUCCESS:
            return None
        for buffer_id, entry in self._mem.items():
            if entry[0].value == mem_last.value:
                return buffer_id
        return None

    def lock_buffer(self, buffer_id: int) -> bool:
        entry = self._mem.get(buffer_id)
        if entry is None:
            return False
        ret = ueye.is_LockSeqBuf(self._h_cam, ueye.IS_IGNORE_PARAMETER, entry[0])
        return ret == ueye.IS_SUCCESS

    def unlock_buffer(self, buffer_id: int) -> None:
        entry = self._mem.get(buffer_id)
        if entry is None:
            return
        ret = ueye.is_UnlockSeqBuf(self._h_cam, ueye.IS_IGNORE_PARAMETER, entry[0])
        if ret != ueye.IS_SUCCESS:
            log.warning("is_UnlockSeqBuf(%d) failed: %s", buffer_id, ret)

    # ── acquisition ──────────────────────────────────────────────────

    def set_frame_handler(self, handler: Optional[FrameHandler]) -> None:
        with self._handler_lock:
            self._handler = handler

    def start_capture(self) -> None:
        ret = ueye.is_EnableEvent(self._h_cam, ueye.IS_SET_EVENT_FRAME)
        if ret != ueye.IS_SUCCESS:
            raise CaptureStartError(f"is_EnableEvent(FRAME) failed: {ret}")
        ret = ueye.is_CaptureVideo(self._h_cam, ueye.IS_DONT_WAIT)
        if ret != ueye.IS_SUCCESS:
            ueye.is_DisableEvent(self._h_cam, ueye.IS_SET_EVENT_FRAME)
            raise CaptureStartError(f"is_CaptureVideo failed: {ret}")
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._event_loop, name="uEye-FrameEvents", daemon=True,
        )
        self._thread.start()
        log.info("uEye live capture started.")

    def stop_capture(self) -> None:
        if self._h_cam is None:
            return
        self._stop_event.set()
        ret = ueye.is_StopLiveVideo(self._h_cam, ueye.IS_FORCE_VIDEO_STOP)
        if ret != ueye.IS_SUCCESS:
            log.warning("is_StopLiveVideo failed: %s", ret)
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)
        ueye.is_DisableEvent(self._h_cam, ueye.IS_SET_EVENT_FRAME)
        log.info("uEye live capture stopped.")

    def _event_loop(self) -> None:
        while not self._stop_event.is_set():
            ret = ueye.is_WaitEvent(self._h_cam, ueye.IS_SET_EVENT_FRAME, _EVENT_TIMEOUT_MS)
            if ret != ueye.IS_SUCCESS:
                continue
            with self._handler_lock:
                handler = self._handler
            if handler is not None:
                handler()
