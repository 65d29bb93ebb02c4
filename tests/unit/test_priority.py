"""Unit tests for queue priority scoring."""

from screenflow.core.models import AISuggestion, BibliographicMetadata, Study, Verdict
from screenflow.core.priority import compute_priority_score


def _study(year=None, venue=None, keywords=None, ai=None) -> Study:
    return Study(
        study_id="s",
        project_id="p",
        metadata=BibliographicMetadata(title="T", year=year, venue=venue, keywords=keywords or []),
        ai_suggestion=AISuggestion(verdict=Verdict.INCLUDE, confidence=ai) if ai is not None else None,
    )


def test_base_score_without_signals() -> None:
    assert compute_priority_score(_study(), current_year=2025) == 50


def test_recency_boosts() -> None:
    assert compute_priority_score(_study(year=2024), current_year=2025) == 70
    assert compute_priority_score(_study(year=2021), current_year=2025) == 60
    assert compute_priority_score(_study(year=2012), current_year=2025) == 40


def test_venue_and_keyword_boosts() -> None:
    study = _study(venue="The Lancet", keywords=["sepsis care", "sepsis outcomes", "icu", "sepsis", "sepsis risk"])
    score = compute_priority_score(study, venue_boost=["lancet"], keyword_boost=["sepsis"], current_year=2025)
    # 50 + 15 venue + min(4 * 5, 20) keywords
    assert score == 85


def test_low_ai_confidence_raises_priority() -> None:
    assert compute_priority_score(_study(ai=40), current_year=2025) == 65
    assert compute_priority_score(_study(ai=95), current_year=2025) == 45


def test_score_clamped() -> None:
    study = _study(year=2025, venue="Nature", keywords=["a", "b", "c", "d", "e"], ai=10)
    score = compute_priority_score(study, venue_boost=["nature"], keyword_boost=["a", "b", "c", "d", "e"], current_year=2025)
    assert score == 100
