"""mono_live.render - the render execution context."""

from mono_live.render.dispatcher import RenderDispatcher

__all__ = ["RenderDispatcher"]
