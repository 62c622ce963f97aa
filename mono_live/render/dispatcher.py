"""
Render dispatcher: the single logical render context.

``begin_invoke(fn)`` queues *fn* and returns immediately; the render thread
runs queued tasks one at a time in order.  Without a started thread the
owner drains the queue itself with ``process_pending()``.
"""

import queue
import threading
from typing import Callable, Optional

from mono_live.logger import get_logger

log = get_logger("render")

Task = Callable[[], None]


class RenderDispatcher:
    def __init__(self, name: str = "MonoLive-Render") -> None:
        self._name = name
        self._queue: "queue.Queue[Task]" = queue.Queue()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()
        log.info("Render thread started.")

    def stop(self, timeout: float = 2.0) -> None:
        """Stop the render thread after its current task."""
        thread, self._thread = self._thread, None
        if thread is None:
            return
        self._stop_event.set()
        thread.join(timeout=timeout)
        log.info("Render thread stopped.")

    def begin_invoke(self, task: Task) -> None:
        """Queue *task* for the render context; never blocks."""
        self._queue.put(task)

    def process_pending(self) -> int:
        """Run every queued task on the calling thread; return how many ran."""
        count = 0
        while True:
            try:
                task = self._queue.get_nowait()
            except queue.Empty:
                return count
            self._invoke(task)
            count += 1

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                task = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            self._invoke(task)

    @staticmethod
    def _invoke(task: Task) -> None:
        try:
            task()
        except Exception:
            # A failed render is a dropped frame, not a dead render thread.
            log.exception("Render task failed")
