"""Queue priority scoring.

Scores start at 50 and are nudged by recency, preferred venues, boosted
keywords and the AI suggestion's confidence.  Low-confidence suggestions
rank higher because they need human attention most.
"""

from datetime import datetime, timezone
from typing import Optional, Sequence

from .models import Study

BASE_SCORE = 50


def compute_priority_score(
    study: Study,
    venue_boost: Sequence[str] = (),
    keyword_boost: Sequence[str] = (),
    current_year: Optional[int] = None,
) -> int:
    """Return a 0-100 priority score for ``study``."""
    meta = study.metadata
    year_now = current_year or datetime.now(timezone.utc).year
    score = BASE_SCORE

    if meta.year:
        age = year_now - meta.year
        if age <= 2:
            score += 20
        elif age <= 5:
            score += 10
        elif age > 10:
            score -= 10

    if venue_boost and meta.venue:
        venue = meta.venue.lower()
        if any(v.lower() in venue for v in venue_boost):
            score += 15

    if keyword_boost:
        matches = [
            kw for kw in meta.keywords
            if any(b.lower() in kw.lower() for b in keyword_boost)
        ]
        score += min(len(matches) * 5, 20)

    if study.ai_suggestion is not None:
        if study.ai_suggestion.confidence < 60:
            score += 15
        elif study.ai_suggestion.confidence > 90:
            score -= 5

    return max(0, min(100, score))
