"""Configuration module.

Provides runtime settings for the store, the ingestion pipeline and the
external services it talks to.
"""

from .settings import Settings, get_settings

__all__ = [
    'Settings',
    'get_settings'
]
