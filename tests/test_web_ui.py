"""
Tests for mono_live.web_ui - display surface renderer and status API.

Run:
    python -m pytest tests/test_web_ui.py -v
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np

from mono_live.drivers.fake import FakeDriver
from mono_live.frame import FrameReady
from mono_live.publisher import FramePublisher
from mono_live.render.dispatcher import RenderDispatcher
from mono_live.session import DeviceSession
from mono_live.web_ui.app import DisplaySurface, create_app


# ── helpers ──────────────────────────────────────────────────────────────

def _frame(value=100, width=64, height=48, sequence=1):
    pixels = np.full((height, width), value, dtype=np.uint8)
    pixels.flags.writeable = False
    return FrameReady(sequence, width, height, width, 8, pixels)


def _live_app():
    driver = FakeDriver(64, 48)
    dispatcher = RenderDispatcher()
    surface = DisplaySurface()
    publisher = FramePublisher(surface, dispatcher)
    session = DeviceSession(driver)
    assert session.try_initialize(0)
    session.start_capture(publisher)
    app = create_app(surface, session, publisher)
    return app, driver, dispatcher, surface, session


# ── display surface ──────────────────────────────────────────────────────

def test_surface_encodes_jpeg():
    surface = DisplaySurface(jpeg_quality=90)
    assert surface.latest() is None
    surface(_frame())
    jpeg = surface.latest()
    assert jpeg[:2] == b"\xff\xd8"
    assert surface.frames_rendered == 1
    assert (surface.width, surface.height) == (64, 48)


def test_surface_wait_for_frame():
    surface = DisplaySurface()
    assert surface.wait_for_frame(0, timeout=0.01) is None
    surface(_frame(sequence=4))
    seq, jpeg = surface.wait_for_frame(0, timeout=0.01)
    assert seq == 4
    assert jpeg == surface.latest()
    assert surface.wait_for_frame(4, timeout=0.01) is None


def test_surface_handles_padded_rows():
    pixels = np.zeros((48, 80), dtype=np.uint8)
    pixels.flags.writeable = False
    surface = DisplaySurface()
    surface(FrameReady(1, 64, 48, 80, 8, pixels))
    assert surface.latest() is not None


# ── routes ───────────────────────────────────────────────────────────────

def test_index_page():
    app = create_app(DisplaySurface())
    resp = app.test_client().get("/")
    assert resp.status_code == 200
    assert b"Live view" in resp.data


def test_status_without_session():
    app = create_app(DisplaySurface())
    data = app.test_client().get("/api/status").get_json()
    assert data["camera_ok"] is False
    assert data["frames_rendered"] == 0


def test_status_reports_failed_initialization():
    session = DeviceSession(FakeDriver(devices=()))
    assert not session.try_initialize(0)
    app = create_app(DisplaySurface(), session)
    data = app.test_client().get("/api/status").get_json()
    assert data["camera_ok"] is False
    assert data["error_kind"] == "device_open"


def test_status_while_capturing():
    app, driver, dispatcher, surface, session = _live_app()
    try:
        driver.fire()
        dispatcher.process_pending()
        data = app.test_client().get("/api/status").get_json()
        assert data["camera_ok"] is True
        assert data["state"] == "capturing"
        assert (data["width"], data["height"]) == (64, 48)
        assert data["frames_published"] == 1
        assert data["frames_rendered"] == 1
        assert data["frames_replaced"] == 0
    finally:
        session.close()


def test_capture_stop_and_start():
    app, _, _, _, session = _live_app()
    client = app.test_client()
    try:
        resp = client.post("/api/capture/stop")
        assert resp.get_json()["state"] == "stopped"
        resp = client.post("/api/capture/start")
        assert resp.status_code == 200
        assert resp.get_json()["state"] == "capturing"
    finally:
        session.close()


def test_capture_start_on_closed_session_is_refused():
    app, _, _, _, session = _live_app()
    session.close()
    resp = app.test_client().post("/api/capture/start")
    assert resp.status_code == 409
    assert resp.get_json()["error_kind"] == "not_ready"


def test_capture_start_without_session():
    app = create_app(DisplaySurface())
    assert app.test_client().post("/api/capture/start").status_code == 503
