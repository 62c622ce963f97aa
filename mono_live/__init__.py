"""mono_live - live mono8 camera view: buffer pool, capture callback, frame hand-off."""

__version__ = "0.1.0"
