"""API routers for the VoIP client gateway."""
from . import dial, health, sync_wait
from .app import create_app

__all__ = ["dial", "health", "sync_wait", "create_app"]
