"""Persistence and import helpers."""

from .store import ScreeningStore  # noqa: F401
