from .loader import CameraConfig, DEFAULT_CONFIG_FILE

__all__ = ["CameraConfig", "DEFAULT_CONFIG_FILE"]
