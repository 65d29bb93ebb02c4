"""Screening workflow engine for systematic literature reviews.

The package tracks reviewer decisions on candidate studies, derives
per-study quorum and conflict state, gates phase completion and
advances qualifying studies between the title/abstract, full-text and
final phases.  The main entry point is :class:`ScreeningService`.
"""

__version__ = "0.1.0"

from .service import ScreeningService  # noqa: E402,F401
