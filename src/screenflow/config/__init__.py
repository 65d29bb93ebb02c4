"""Configuration for the screening engine."""

from .settings import Settings, settings  # noqa: F401
