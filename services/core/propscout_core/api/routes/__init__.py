"""API routes."""

from propscout_core.api.routes import account, pipeline, preferences, sessions

__all__ = ["account", "pipeline", "preferences", "sessions"]
