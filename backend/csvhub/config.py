"""
Configuration shortcut.
Imports from the core config package so modules can use ``from csvhub.config import get_settings``.
"""

from csvhub.core.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
