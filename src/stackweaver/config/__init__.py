"""
stackweaver configuration.

Pydantic-based settings loaded from STACKWEAVER_* environment variables
and an optional .env file.
"""

from stackweaver.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
