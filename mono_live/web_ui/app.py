"""
Flask application: the display surface for the live view.

Provides:
  - Main page with the MJPEG stream and start/stop buttons.
  - DisplaySurface: the renderer. It runs on the render thread, encodes each
    frame to JPEG, and keeps the newest one for the stream.
  - API endpoints: /api/status, /api/capture/start, /api/capture/stop.
"""

import os
import threading
import time
from typing import Optional

import cv2
import psutil
from flask import Flask, Response, jsonify, render_template

from mono_live import __version__
from mono_live.errors import CameraError
from mono_live.frame import FrameReady
from mono_live.logger import get_logger
from mono_live.session import DeviceSession, SessionState

_log = get_logger("web_ui")


class DisplaySurface:
    """Renderer that turns ``FrameReady`` notifications into JPEG bytes.

    ``pixel_data`` is only valid during ``__call__``; encoding finishes
    before it returns.
    """

    def __init__(self, jpeg_quality: int = 80) -> None:
        self._params = [cv2.IMWRITE_JPEG_QUALITY, int(jpeg_quality)]
        self._lock = threading.Condition()
        self._jpeg: Optional[bytes] = None
        self._sequence = 0
        self.frames_rendered = 0
        self.width = 0
        self.height = 0

        # render FPS, updated once per second
        self.fps = 0.0
        self._fps_counter = 0
        self._fps_timer = time.monotonic()

    def __call__(self, frame: FrameReady) -> None:
        ok, jpeg = cv2.imencode(".jpg", frame.image(), self._params)
        if not ok:
            _log.warning("JPEG encode failed for frame %d", frame.sequence)
            return
        with self._lock:
            self._jpeg = jpeg.tobytes()
            self._sequence = frame.sequence
            self.width, self.height = frame.width, frame.height
            self.frames_rendered += 1
            self._lock.notify_all()

        self._fps_counter += 1
        now = time.monotonic()
        if now - self._fps_timer >= 1.0:
            self.fps = self._fps_counter / (now - self._fps_timer)
            self._fps_counter = 0
            self._fps_timer = now

    def latest(self) -> Optional[bytes]:
        with self._lock:
            return self._jpeg

    def wait_for_frame(self, after: int, timeout: float) -> Optional[tuple]:
        """Wait for a frame newer than sequence *after*; return ``(seq, jpeg)``."""
        with self._lock:
            self._lock.wait_for(lambda: self._sequence > after, timeout)
            if self._sequence > after:
                return self._sequence, self._jpeg
            return None


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------
# Module-level refs set by create_app; used by routes and the stream generator.
_surface: Optional[DisplaySurface] = None
_session: Optional[DeviceSession] = None
_publisher = None
_stream_fps: float = 10.0


def create_app(
    surface: DisplaySurface,
    session: Optional[DeviceSession] = None,
    publisher=None,
    *,
    stream_fps: float = 10.0,
) -> Flask:
    """Create and configure the Flask application.

    Parameters
    ----------
    surface : DisplaySurface
        Renderer whose newest JPEG is streamed.
    session : DeviceSession, optional
        Camera session (for status and start/stop).
    publisher : FramePublisher, optional
        Passed to ``session.start_capture`` by /api/capture/start.
    stream_fps : float
        Upper bound on MJPEG frames per second per client.
    """
    global _surface, _session, _publisher, _stream_fps
    _surface = surface
    _session = session
    _publisher = publisher
    _stream_fps = stream_fps

    template_dir = os.path.join(os.path.dirname(__file__), "templates")
    app = Flask(__name__, template_folder=template_dir)

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------
    @app.route("/")
    def index():
        return render_template("main.html", version=__version__)

    # ------------------------------------------------------------------
    # MJPEG stream
    # ------------------------------------------------------------------
    @app.route("/stream")
    def stream():
        return Response(
            _generate_mjpeg(),
            mimetype="multipart/x-mixed-replace; boundary=frame",
        )

    # ------------------------------------------------------------------
    # API: status
    # ------------------------------------------------------------------
    @app.route("/api/status")
    def api_status():
        return jsonify(_status())

    # ------------------------------------------------------------------
    # API: start / stop live video
    # ------------------------------------------------------------------
    @app.route("/api/capture/start", methods=["POST"])
    def api_capture_start():
        if _session is None or _publisher is None:
            return jsonify({"error": "No camera session"}), 503
        if _session.state is SessionState.CAPTURING:
            return jsonify({"status": "ok", "state": _session.state.value})
        try:
            _session.start_capture(_publisher)
        except CameraError as exc:
            _log.warning("API capture start refused: %s", exc)
            return jsonify({"error": str(exc), "error_kind": exc.kind}), 409
        _log.info("API capture started")
        return jsonify({"status": "ok", "state": _session.state.value})

    @app.route("/api/capture/stop", methods=["POST"])
    def api_capture_stop():
        if _session is None:
            return jsonify({"error": "No camera session"}), 503
        _session.stop_capture()
        _log.info("API capture stopped")
        return jsonify({"status": "ok", "state": _session.state.value})

    return app


def _status() -> dict:
    camera = {"camera_ok": False, "state": "none", "error_kind": None}
    if _session is not None:
        stats = _session.stats
        camera = {
            "camera_ok": _session.is_opened,
            "state": _session.state.value,
            "error_kind": _session.error_kind,
            "device_id": _session.device_id,
            "width": _session.width,
            "height": _session.height,
            "frames_signalled": stats.frames_signalled,
            "frames_published": stats.frames_published,
            "frames_dropped": stats.frames_dropped,
        }
    if _publisher is not None:
        camera["frames_replaced"] = _publisher.frames_replaced
    camera.update({
        "frames_rendered": _surface.frames_rendered if _surface else 0,
        "render_fps": round(_surface.fps, 1) if _surface else 0.0,
        "app_version": __version__,
        "cpu_percent": round(psutil.cpu_percent(interval=0), 1),
        "ram_percent": round(psutil.virtual_memory().percent, 1),
    })
    return camera


# ---------------------------------------------------------------------------
# MJPEG generator
# ---------------------------------------------------------------------------
def _generate_mjpeg():
    """Yield each new rendered frame, at most ``_stream_fps`` per second."""
    tick = 1.0 / _stream_fps
    last_seq = 0

    while True:
        t0 = time.monotonic()

        if _surface is None:
            time.sleep(tick)
            continue

        item = _surface.wait_for_frame(last_seq, timeout=1.0)
        if item is None:
            continue
        last_seq, frame_bytes = item

        yield (
            b"--frame\r\n"
            b"Content-Type: image/jpeg\r\n\r\n" + frame_bytes + b"\r\n"
        )

        elapsed = time.monotonic() - t0
        time.sleep(max(0.0, tick - elapsed))
