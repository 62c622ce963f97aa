"""mono_live.drivers - camera backends behind the CameraDriver interface."""

from mono_live.drivers.base import CameraDriver, FrameHandler
from mono_live.drivers.fake import FakeDriver


def make_driver(config) -> CameraDriver:
    """Build the driver named by ``config.driver`` ("fake" or "ueye")."""
    if config.driver == "fake":
        return FakeDriver(
            config.fake_width, config.fake_height,
            devices=(config.device_id,), fps=config.fake_fps,
        )
    if config.driver == "ueye":
        # pyueye needs the IDS runtime; only import it when asked for
        from mono_live.drivers.ueye import UEyeDriver
        return UEyeDriver()
    raise ValueError(f"unknown driver {config.driver!r}")


__all__ = [
    "CameraDriver",
    "FrameHandler",
    "FakeDriver",
    "make_driver",
]
