"""Configuration package for the agent resource catalog.

Re-exports :mod:`config.config` so that ``from config import get_settings``
works throughout the code base.
"""

from .config import Settings, TargetSettings, get_settings

__all__ = [
    "get_settings",
    "Settings",
    "TargetSettings",
]
