"""mono_live.web_ui - Flask display surface."""

from mono_live.web_ui.app import DisplaySurface, create_app

__all__ = ["DisplaySurface", "create_app"]
