"""
Application lifecycle management
Handles startup and shutdown of background geocoding work
"""

from .startup import setup_startup_tasks
from .shutdown import setup_shutdown_handlers

__all__ = ["setup_startup_tasks", "setup_shutdown_handlers"]
