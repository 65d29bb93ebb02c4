"""Unit tests for core data models (Study, Decision, enums, etc.)."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from screenflow.core.models import (
    Actor,
    AISuggestion,
    BatchFailure,
    BatchKind,
    BatchResult,
    BibliographicMetadata,
    Decision,
    Phase,
    ProjectConfig,
    QuorumStatus,
    Role,
    Study,
    Verdict,
)


class TestPhase:
    """Tests for the fixed phase order."""

    def test_next_phase_order(self) -> None:
        assert Phase.TITLE_ABSTRACT.next_phase == Phase.FULL_TEXT
        assert Phase.FULL_TEXT.next_phase == Phase.FINAL
        assert Phase.FINAL.next_phase is None

    def test_phase_values_serialize_as_names(self) -> None:
        assert Phase("FULL_TEXT") is Phase.FULL_TEXT
        assert Verdict.INCLUDE.value == "INCLUDE"


class TestBibliographicMetadata:
    """Tests for BibliographicMetadata model."""

    def test_doi_normalized(self) -> None:
        meta = BibliographicMetadata(title="T", doi="https://doi.org/10.1234/ABC")
        assert meta.doi == "10.1234/abc"

    def test_empty_doi_becomes_none(self) -> None:
        assert BibliographicMetadata(title="T", doi="  ").doi is None

    def test_metadata_is_immutable(self) -> None:
        meta = BibliographicMetadata(title="Original")
        with pytest.raises(ValidationError):
            meta.title = "Changed"

    def test_title_required(self) -> None:
        with pytest.raises(ValidationError):
            BibliographicMetadata(title="")


class TestStudy:
    """Tests for Study model."""

    def test_defaults(self) -> None:
        study = Study(study_id="s1", project_id="p", metadata=BibliographicMetadata(title="T"))
        assert study.phase == Phase.TITLE_ABSTRACT
        assert study.ai_suggestion is None
        assert study.tags == []
        assert isinstance(study.created_at, datetime)
        assert study.created_at.tzinfo == timezone.utc

    def test_tags_deduplicated_in_order(self) -> None:
        study = Study(
            study_id="s1",
            project_id="p",
            metadata=BibliographicMetadata(title="T"),
            tags=["rct", " rct ", "", "adults"],
        )
        assert study.tags == ["rct", "adults"]

    def test_naive_timestamps_read_as_utc(self) -> None:
        study = Study(
            study_id="s1",
            project_id="p",
            metadata=BibliographicMetadata(title="T"),
            created_at=datetime(2024, 1, 1, 12),
        )
        assert study.created_at == datetime(2024, 1, 1, 12, tzinfo=timezone.utc)
        decision = Decision(
            study_id="s1",
            phase=Phase.TITLE_ABSTRACT,
            reviewer_id="r",
            verdict=Verdict.INCLUDE,
            submitted_at=datetime(2024, 1, 1, 14, tzinfo=timezone(timedelta(hours=2))),
        )
        assert decision.submitted_at == datetime(2024, 1, 1, 12, tzinfo=timezone.utc)
        assert decision.submitted_at.tzinfo == timezone.utc

    def test_ai_confidence_bounds(self) -> None:
        with pytest.raises(ValidationError):
            AISuggestion(verdict=Verdict.INCLUDE, confidence=101)


class TestActorAndProject:
    def test_elevated_roles(self) -> None:
        assert Actor(user_id="u", role=Role.OWNER).is_elevated
        assert Actor(user_id="u", role=Role.LEAD).is_elevated
        assert not Actor(user_id="u", role=Role.REVIEWER).is_elevated
        assert not Actor(user_id="u", role=Role.VIEWER).is_elevated

    def test_project_quorum_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            ProjectConfig(project_id="p", quorum_size=0)

    def test_project_defaults(self) -> None:
        config = ProjectConfig(project_id="p")
        assert config.quorum_size == 2
        assert config.blind_screening is True


class TestDerivedModels:
    def test_quorum_completed_property(self) -> None:
        status = QuorumStatus(study_id="s", phase=Phase.FULL_TEXT, reviewers_voted=2, reviewers_needed=2)
        assert status.is_completed
        status = QuorumStatus(study_id="s", phase=Phase.FULL_TEXT, reviewers_voted=1, reviewers_needed=2)
        assert not status.is_completed

    def test_batch_result_failed_counts_failures(self) -> None:
        result = BatchResult(
            kind=BatchKind.ASSIGN,
            processed=3,
            failures=[BatchFailure(study_id="x", reason="missing")],
        )
        assert result.failed == 1

    def test_decision_confidence_bounds(self) -> None:
        with pytest.raises(ValidationError):
            Decision(study_id="s", phase=Phase.TITLE_ABSTRACT, reviewer_id="r", verdict=Verdict.MAYBE, confidence=-1)
