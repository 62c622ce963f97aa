"""
Load camera/app configuration from JSON.  Every key has a default, so a
missing file or a missing key is fine.  Config file is next to this file
unless a path is given.
"""
import json
import os
from typing import Optional

_CONFIG_DIR = os.path.dirname(os.path.abspath(__file__))
DEFAULT_CONFIG_FILE = os.path.join(_CONFIG_DIR, "camera.json")

_DEFAULTS = {
    "device_id": 0,
    "driver": "fake",
    "buffer_count": 3,
    "fake_width": 640,
    "fake_height": 480,
    "fake_fps": 30.0,
    "stream_fps": 10.0,
    "jpeg_quality": 80,
    "web_host": "0.0.0.0",
    "web_port": 5000,
}


def _load_json(path: str) -> dict:
    if not os.path.exists(path):
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


class CameraConfig:
    """Single place for runtime settings.  Attributes mirror the JSON keys."""

    def __init__(self, path: Optional[str] = None, **overrides):
        self.path = path or DEFAULT_CONFIG_FILE
        values = dict(_DEFAULTS)
        values.update(_load_json(self.path))
        values.update({k: v for k, v in overrides.items() if v is not None})

        unknown = set(values) - set(_DEFAULTS)
        if unknown:
            raise ValueError(f"unknown config keys: {sorted(unknown)}")

        self.device_id = int(values["device_id"])
        self.driver = str(values["driver"])
        self.buffer_count = int(values["buffer_count"])
        self.fake_width = int(values["fake_width"])
        self.fake_height = int(values["fake_height"])
        self.fake_fps = float(values["fake_fps"])
        self.stream_fps = float(values["stream_fps"])
        self.jpeg_quality = int(values["jpeg_quality"])
        self.web_host = str(values["web_host"])
        self.web_port = int(values["web_port"])

        if self.device_id < 0:
            raise ValueError("device_id must be >= 0")
        if self.driver not in ("fake", "ueye"):
            raise ValueError(f"driver must be 'fake' or 'ueye', got {self.driver!r}")

    def as_dict(self) -> dict:
        return {key: getattr(self, key) for key in _DEFAULTS}
