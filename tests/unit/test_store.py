"""Unit tests for the SQLite screening store."""

from datetime import datetime

import pytest

from screenflow.core.errors import NotFoundError, PreconditionError, ValidationError
from screenflow.core.models import (
    BibliographicMetadata,
    Decision,
    HarmonizedDecision,
    Phase,
    ProjectConfig,
    Study,
    Verdict,
)
from screenflow.io.store import ScreeningStore

from tests.helpers import PROJECT_ID


def _decision(study_id: str, reviewer: str, verdict: Verdict = Verdict.INCLUDE) -> Decision:
    return Decision(study_id=study_id, phase=Phase.TITLE_ABSTRACT, reviewer_id=reviewer, verdict=verdict)


class TestProjects:
    """Tests for project persistence."""

    def test_create_and_get(self, store) -> None:
        store.create_project(ProjectConfig(project_id="p1", name="Review", quorum_size=3, blind_screening=False))
        loaded = store.get_project("p1")
        assert loaded.name == "Review"
        assert loaded.quorum_size == 3
        assert loaded.blind_screening is False

    def test_duplicate_project_rejected(self, store) -> None:
        store.create_project(ProjectConfig(project_id="p1"))
        with pytest.raises(ValidationError):
            store.create_project(ProjectConfig(project_id="p1"))

    def test_missing_project(self, store) -> None:
        with pytest.raises(NotFoundError):
            store.get_project("nope")

    def test_update_project(self, store) -> None:
        config = store.create_project(ProjectConfig(project_id="p1"))
        config.quorum_size = 1
        store.update_project(config)
        assert store.get_project("p1").quorum_size == 1


class TestStudies:
    """Tests for study persistence."""

    def test_round_trip_preserves_ai_and_tags(self, store, make_study) -> None:
        make_study("S1", ai=("INCLUDE", 85.0), tags=["rct"], venue="BMJ", keywords=["sepsis"])
        study = store.get_study("S1")
        assert study.ai_suggestion.verdict == Verdict.INCLUDE
        assert study.ai_suggestion.confidence == 85.0
        assert study.tags == ["rct"]
        assert study.metadata.venue == "BMJ"
        assert study.metadata.keywords == ["sepsis"]
        assert study.phase == Phase.TITLE_ABSTRACT

    def test_study_requires_existing_project(self, store) -> None:
        study = Study(study_id="x", project_id="missing", metadata=BibliographicMetadata(title="T"))
        with pytest.raises(NotFoundError):
            store.add_study(study)

    def test_duplicate_study_rejected(self, store, make_study) -> None:
        make_study("S1")
        with pytest.raises(ValidationError):
            make_study("S1")

    def test_find_study_missing_returns_none(self, store) -> None:
        assert store.find_study("nope") is None
        with pytest.raises(NotFoundError):
            store.get_study("nope")

    def test_list_studies_by_phase(self, store, make_study) -> None:
        make_study("S1")
        make_study("S2", phase=Phase.FULL_TEXT)
        assert [s.study_id for s in store.list_studies(PROJECT_ID)] == ["S1", "S2"]
        assert [s.study_id for s in store.list_studies(PROJECT_ID, Phase.FULL_TEXT)] == ["S2"]

    def test_set_phase_returns_rowcount(self, store, make_study) -> None:
        make_study("S1")
        make_study("S2")
        assert store.set_phase(["S1", "S2"], Phase.FULL_TEXT) == 2
        assert store.set_phase([], Phase.FULL_TEXT) == 0
        assert store.get_study("S1").phase == Phase.FULL_TEXT


class TestDecisions:
    """Tests for decision upserts."""

    def test_upsert_replaces_existing(self, store, make_study) -> None:
        make_study("S1")
        store.upsert_decision(_decision("S1", "alice", Verdict.INCLUDE))
        store.upsert_decision(_decision("S1", "alice", Verdict.MAYBE))
        decisions = store.decisions_for("S1", Phase.TITLE_ABSTRACT)
        assert len(decisions) == 1
        assert decisions[0].verdict == Verdict.MAYBE

    def test_decisions_in_phase_only_current_members(self, store, make_study) -> None:
        make_study("S1")
        make_study("S2")
        store.upsert_decision(_decision("S1", "alice"))
        store.upsert_decision(_decision("S2", "alice"))
        store.set_phase(["S2"], Phase.FULL_TEXT)
        grouped = store.decisions_in_phase(PROJECT_ID, Phase.TITLE_ABSTRACT)
        assert list(grouped) == ["S1"]

    def test_delete_decisions(self, store, make_study) -> None:
        make_study("S1")
        store.upsert_decision(_decision("S1", "alice"))
        store.upsert_decision(_decision("S1", "bob"))
        assert store.delete_decisions("S1", Phase.TITLE_ABSTRACT) == 2
        assert store.decisions_for("S1", Phase.TITLE_ABSTRACT) == []


class TestHarmonized:
    def test_second_harmonization_rejected(self, store, make_study) -> None:
        make_study("S1")
        h = HarmonizedDecision(study_id="S1", phase=Phase.TITLE_ABSTRACT, verdict=Verdict.EXCLUDE, resolved_by="lead")
        store.save_harmonized(h)
        with pytest.raises(PreconditionError) as exc_info:
            store.save_harmonized(h)
        assert exc_info.value.conditions == ["already_resolved"]
        assert store.get_harmonized("S1", Phase.TITLE_ABSTRACT).verdict == Verdict.EXCLUDE


class TestTransactions:
    """Tests for atomic units of work."""

    def test_rollback_on_error(self, store, make_study) -> None:
        make_study("S1")
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.upsert_decision(_decision("S1", "alice"))
                raise RuntimeError("boom")
        assert store.decisions_for("S1", Phase.TITLE_ABSTRACT) == []

    def test_nested_transaction_joins_outer(self, store, make_study) -> None:
        make_study("S1")
        with pytest.raises(RuntimeError):
            with store.transaction():
                with store.transaction():
                    store.upsert_decision(_decision("S1", "alice"))
                raise RuntimeError("boom")
        assert store.decisions_for("S1", Phase.TITLE_ABSTRACT) == []

    def test_persisted_across_connections(self, tmp_path) -> None:
        path = tmp_path / "db.sqlite"
        with ScreeningStore(path) as first:
            first.create_project(ProjectConfig(project_id="p"))
        with ScreeningStore(path) as second:
            assert second.get_project("p").project_id == "p"


class TestAuditAndAssignments:
    def test_audit_newest_first(self, store, project) -> None:
        store.record_audit(PROJECT_ID, "lead", "first", {"n": 1})
        store.record_audit(PROJECT_ID, "lead", "second", {"when": datetime(2024, 1, 1)})
        entries = store.audit_log(PROJECT_ID)
        assert [e.kind for e in entries] == ["second", "first"]
        assert entries[1].payload == {"n": 1}

    def test_assign_is_idempotent(self, store, make_study) -> None:
        make_study("S1")
        store.assign("S1", Phase.TITLE_ABSTRACT, "alice")
        store.assign("S1", Phase.TITLE_ABSTRACT, "alice")
        assert store.assignees_for("S1", Phase.TITLE_ABSTRACT) == ["alice"]

    def test_assignments_in_phase_follow_current_phase(self, store, make_study) -> None:
        make_study("S1")
        make_study("S2")
        make_study("S3", phase=Phase.FULL_TEXT)
        store.assign("S1", Phase.TITLE_ABSTRACT, "bob")
        store.assign("S2", Phase.TITLE_ABSTRACT, "bob")
        store.assign("S1", Phase.TITLE_ABSTRACT, "alice")
        store.assign("S3", Phase.FULL_TEXT, "alice")
        assert store.assignments_in_phase(PROJECT_ID, Phase.TITLE_ABSTRACT) == {"alice": ["S1"], "bob": ["S1", "S2"]}
        store.set_phase(["S1"], Phase.FULL_TEXT)
        assert store.assignments_in_phase(PROJECT_ID, Phase.TITLE_ABSTRACT) == {"bob": ["S2"]}
