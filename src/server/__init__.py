"""Registry service - HTTP surface and settings."""

from .config import Settings

__all__ = [
    "Settings",
]
