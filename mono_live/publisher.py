"""
Frame publisher: hands completed frames from the capture thread to the
render context.

``publish()`` copies the locked device buffer into a staging slot before it
returns, so the capture callback can unlock right away, and then queues a
render on the dispatcher without waiting for it.  Only the newest staged
frame is ever rendered: a frame replaced before the renderer got to it is
counted in ``frames_replaced`` and otherwise forgotten.
"""

import threading
from typing import Callable, Optional

import numpy as np

from mono_live.frame import FrameDescriptor, FrameReady
from mono_live.logger import get_logger
from mono_live.memory.staging import StagingRing
from mono_live.render.dispatcher import RenderDispatcher

log = get_logger("publisher")

Renderer = Callable[[FrameReady], None]


class FramePublisher:
    """
    Parameters
    ----------
    renderer : callable
        Receives one ``FrameReady`` per rendered frame, on the render thread.
    dispatcher : RenderDispatcher
        The render context.
    """

    def __init__(self, renderer: Renderer, dispatcher: RenderDispatcher) -> None:
        self._renderer = renderer
        self._dispatcher = dispatcher
        self._lock = threading.Lock()
        self._staging: Optional[StagingRing] = None
        self._scheduled = False
        self._sequence = 0
        self._render_thread: Optional[int] = None
        self._accepting = True

        self.frames_published = 0
        self.frames_replaced = 0
        self.frames_rendered = 0

    # ── capture side ─────────────────────────────────────────────────

    def publish(self, descriptor: FrameDescriptor) -> None:
        """Copy *descriptor*'s pixels and schedule a render.

        Ignored between ``cancel_pending()`` and the next ``resume()``.
        """
        if not self._accepting:
            log.debug("Frame ignored: publisher is cancelled.")
            return
        staging = self._staging_for(descriptor)
        np.copyto(staging.get_write_buffer(), descriptor.pixels)

        self._sequence += 1
        meta = (self._sequence, descriptor.width, descriptor.height,
                descriptor.stride, descriptor.bits_per_pixel)
        replaced = staging.publish_latest_from_write(meta)

        with self._lock:
            self.frames_published += 1
            if replaced:
                self.frames_replaced += 1
            schedule = not self._scheduled
            self._scheduled = True
        if replaced:
            log.debug("Frame %d replaced an unrendered frame.", self._sequence)
        if schedule:
            self._dispatcher.begin_invoke(self._render_latest)

    def _staging_for(self, descriptor: FrameDescriptor) -> StagingRing:
        """Allocate the staging ring once, on the first frame."""
        shape = (descriptor.height, descriptor.stride)
        if self._staging is None or self._staging.shape != shape:
            self._staging = StagingRing(*shape)
            log.info("Staging ring allocated for %dx%d (stride %d).",
                     descriptor.width, descriptor.height, descriptor.stride)
        return self._staging

    # ── render side ──────────────────────────────────────────────────

    def _render_latest(self) -> None:
        with self._lock:
            self._scheduled = False
            staging = self._staging
        if staging is None or not self._accepting:
            return
        item = staging.take_latest()
        if item is None:
            return
        pixels, (sequence, width, height, stride, bpp) = item
        self._render_thread = threading.get_ident()
        try:
            self._renderer(FrameReady(sequence, width, height, stride, bpp, pixels))
            self.frames_rendered += 1
        finally:
            self._render_thread = None
            staging.done_reading()

    # ── teardown ─────────────────────────────────────────────────────

    def cancel_pending(self, timeout: Optional[float] = 2.0) -> None:
        """Discard unrendered frames and wait out a render in progress.

        After this returns the renderer is not called again, and new frames
        are ignored, until ``resume()``.
        """
        self._accepting = False
        staging = self._staging
        if staging is None:
            return
        if staging.discard_latest():
            log.debug("Discarded an unrendered frame on cancel.")
        if self._render_thread != threading.get_ident():
            staging.wait_idle(timeout)

    def resume(self) -> None:
        """Accept frames again after ``cancel_pending()``.

        A frame staged while cancelled is dropped, never rendered late.
        """
        staging = self._staging
        if staging is not None:
            staging.discard_latest()
        self._accepting = True
