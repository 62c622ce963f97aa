"""
Capture loop: the per-frame callback contract.

The driver calls ``on_frame()`` on its own thread, once per completed frame,
at whatever rate the sensor runs.  Each call:

1. asks the driver for the most recently completed buffer (the event
   itself carries nothing trustworthy),
2. locks it, skipping the frame if the device already took it back,
3. wraps it in a FrameDescriptor,
4. publishes it (the publisher copies before returning),
5. unlocks it, whether or not publishing worked.

Frame-level failures never propagate; they are counted as drops.
"""

import threading
from dataclasses import dataclass
from typing import Optional

from mono_live.errors import InvalidStateError
from mono_live.frame import FrameDescriptor
from mono_live.logger import get_logger
from mono_live.memory.pool import BufferPool

log = get_logger("capture")


@dataclass
class CaptureStats:
    frames_signalled: int = 0
    frames_published: int = 0
    frames_dropped: int = 0


class CaptureLoop:
    """
    Parameters
    ----------
    driver : CameraDriver
    pool : BufferPool
        Registered pool of the same session.
    publisher : FramePublisher
    stats : CaptureStats, optional
        Counters to add to.  A session passes the same instance to every
        loop it creates, so totals survive a stop and restart.
    """

    def __init__(
        self,
        driver,
        pool: BufferPool,
        publisher,
        stats: Optional[CaptureStats] = None,
    ) -> None:
        self._driver = driver
        self._pool = pool
        self._publisher = publisher
        self._gate = threading.Condition()
        self._accepting = False
        self._in_flight = 0
        self.stats = stats if stats is not None else CaptureStats()

    @property
    def armed(self) -> bool:
        return self._accepting

    def arm(self) -> None:
        """Start accepting frames and install the handler on the driver."""
        with self._gate:
            self._accepting = True
        self._driver.set_frame_handler(self.on_frame)

    def disarm(self, timeout: Optional[float] = None) -> bool:
        """Stop accepting frames and wait for an in-flight callback.

        Must not be called from inside ``on_frame``.  Returns False if the
        in-flight callback did not finish within *timeout*.
        """
        self._driver.set_frame_handler(None)
        with self._gate:
            self._accepting = False
            return self._gate.wait_for(lambda: self._in_flight == 0, timeout)

    def on_frame(self) -> None:
        """Driver completion handler.  Never raises."""
        with self._gate:
            if not self._accepting:
                return
            self._in_flight += 1
        try:
            self._handle_frame()
        except Exception:
            self.stats.frames_dropped += 1
            log.exception("Unexpected error in capture callback; frame dropped.")
        finally:
            with self._gate:
                self._in_flight -= 1
                if self._in_flight == 0:
                    self._gate.notify_all()

    def _handle_frame(self) -> None:
        self.stats.frames_signalled += 1

        buffer_id = self._driver.get_last_buffer()
        if buffer_id is None or buffer_id not in self._pool:
            self._drop("no completed buffer")
            return

        try:
            self._pool.mark_filled(buffer_id)
            locked = self._pool.lock(buffer_id)
        except InvalidStateError as exc:
            self._drop(str(exc))
            return
        if not locked:
            self._drop(f"buffer {buffer_id} reclaimed by device")
            return

        try:
            buf = self._pool.get(buffer_id)
            descriptor = FrameDescriptor(
                buffer_id=buffer_id,
                pixels=self._pool.view(buffer_id),
                width=buf.width,
                height=buf.height,
                stride=buf.stride,
                bits_per_pixel=buf.bits_per_pixel,
            )
            self._publisher.publish(descriptor)
        except Exception as exc:
            self._drop(f"publish failed: {exc}")
        else:
            self.stats.frames_published += 1
        finally:
            self._pool.unlock(buffer_id)

    def _drop(self, reason: str) -> None:
        self.stats.frames_dropped += 1
        log.debug("Frame dropped: %s", reason)
