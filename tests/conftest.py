"""Shared fixtures for the screening engine tests."""

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

import pytest

from screenflow.core.models import (
    Actor,
    AISuggestion,
    Author,
    BibliographicMetadata,
    Phase,
    Role,
    Study,
    Verdict,
)
from screenflow.io.store import ScreeningStore
from screenflow.service import ScreeningService

from tests.helpers import PROJECT_ID


@pytest.fixture
def store(tmp_path):
    """A fresh SQLite store in a temporary directory."""
    s = ScreeningStore(tmp_path / "screening.db")
    yield s
    s.close()


@pytest.fixture
def service(store):
    return ScreeningService(store=store)


@pytest.fixture
def project(service):
    """A dual-screening project with blind screening on."""
    return service.create_project(PROJECT_ID, name="Test review", quorum_size=2, blind_screening=True)


@pytest.fixture
def alice() -> Actor:
    return Actor(user_id="alice", role=Role.REVIEWER)


@pytest.fixture
def bob() -> Actor:
    return Actor(user_id="bob", role=Role.REVIEWER)


@pytest.fixture
def carol() -> Actor:
    return Actor(user_id="carol", role=Role.REVIEWER)


@pytest.fixture
def lead() -> Actor:
    return Actor(user_id="lead", role=Role.LEAD)


@pytest.fixture
def make_study(store, project) -> Callable[..., Study]:
    """Factory adding a study to the test project."""
    counter = {"n": 0}
    base_time = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def _make(
        study_id: Optional[str] = None,
        title: Optional[str] = None,
        year: Optional[int] = 2022,
        ai: Optional[tuple] = None,
        phase: Phase = Phase.TITLE_ABSTRACT,
        tags: Optional[List[str]] = None,
        venue: Optional[str] = None,
        keywords: Optional[List[str]] = None,
        authors: Optional[List[str]] = None,
    ) -> Study:
        counter["n"] += 1
        n = counter["n"]
        suggestion = None
        if ai is not None:
            suggestion = AISuggestion(verdict=Verdict(ai[0]), confidence=ai[1])
        study = Study(
            study_id=study_id or f"S{n}",
            project_id=PROJECT_ID,
            metadata=BibliographicMetadata(
                title=title or f"Study number {n}",
                abstract=f"Abstract for study {n}.",
                authors=[Author(name=a) for a in (authors or [f"Author {n}"])],
                year=year,
                venue=venue,
                keywords=keywords or [],
            ),
            ai_suggestion=suggestion,
            phase=phase,
            tags=tags or [],
            created_at=base_time + timedelta(minutes=n),
        )
        return store.add_study(study)

    return _make

