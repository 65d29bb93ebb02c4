"""Unit tests for conflict detection and harmonization."""

import pytest

from screenflow.core.errors import AuthorizationError, NotFoundError, PreconditionError, ValidationError
from screenflow.core.models import Decision, HarmonizedDecision, Phase, Verdict
from screenflow.workflow.conflicts import DISAGREEMENT, UNCERTAIN, UNRESOLVED_MAYBE, conflict_reason, final_verdict_of
from tests.helpers import PROJECT_ID, vote

PHASE = Phase.TITLE_ABSTRACT


def _d(reviewer: str, verdict: str) -> Decision:
    return Decision(study_id="s", phase=PHASE, reviewer_id=reviewer, verdict=Verdict(verdict))


class TestConflictReason:
    def test_incomplete_quorum_is_never_a_conflict(self) -> None:
        assert conflict_reason([_d("a", "INCLUDE")], 2) is None

    def test_disagreement(self) -> None:
        assert conflict_reason([_d("a", "INCLUDE"), _d("b", "EXCLUDE")], 2) == DISAGREEMENT
        assert conflict_reason([_d("a", "INCLUDE"), _d("b", "MAYBE"), _d("c", "EXCLUDE")], 2) == DISAGREEMENT

    def test_maybe_against_terminal_verdict(self) -> None:
        assert conflict_reason([_d("a", "INCLUDE"), _d("b", "MAYBE")], 2) == UNCERTAIN
        assert conflict_reason([_d("a", "MAYBE"), _d("b", "EXCLUDE")], 2) == UNCERTAIN

    def test_unanimous_maybe_stays_unresolved(self) -> None:
        decisions = [_d("a", "MAYBE"), _d("b", "MAYBE")]
        assert conflict_reason(decisions, 2) == UNRESOLVED_MAYBE
        assert final_verdict_of(decisions, 2) == Verdict.MAYBE

    def test_unanimous_terminal_verdict(self) -> None:
        assert conflict_reason([_d("a", "EXCLUDE"), _d("b", "EXCLUDE")], 2) is None

    def test_harmonized_clears_conflict(self) -> None:
        h = HarmonizedDecision(study_id="s", phase=PHASE, verdict=Verdict.INCLUDE, resolved_by="lead")
        decisions = [_d("a", "INCLUDE"), _d("b", "EXCLUDE")]
        assert conflict_reason(decisions, 2, h) is None
        assert final_verdict_of(decisions, 2, h) == Verdict.INCLUDE

    def test_final_verdict(self) -> None:
        assert final_verdict_of([_d("a", "INCLUDE")], 2) is None
        assert final_verdict_of([_d("a", "INCLUDE"), _d("b", "INCLUDE")], 2) == Verdict.INCLUDE
        assert final_verdict_of([_d("a", "INCLUDE"), _d("b", "EXCLUDE")], 2) is None


class TestConflictResolver:
    """Tests for listing and resolving conflicts through the service."""

    def test_lists_conflicts(self, service, make_study, alice, bob, lead) -> None:
        make_study("S1", title="Disputed")
        make_study("S2")
        make_study("S3")
        vote(service, alice, "S1", "INCLUDE")
        vote(service, bob, "S1", "EXCLUDE")
        vote(service, alice, "S2", "INCLUDE")
        vote(service, bob, "S2", "INCLUDE")
        vote(service, alice, "S3", "INCLUDE")
        vote(service, bob, "S3", "MAYBE")

        conflicts = service.get_conflicts(lead, PROJECT_ID, PHASE)
        assert [(c.study_id, c.reason) for c in conflicts] == [("S1", DISAGREEMENT), ("S3", UNCERTAIN)]
        assert conflicts[0].title == "Disputed"
        assert set(conflicts[0].verdicts) == {Verdict.INCLUDE, Verdict.EXCLUDE}
        assert len(conflicts[0].decisions) == 2

    def test_resolve_keeps_individual_decisions(self, service, make_study, alice, bob, lead) -> None:
        make_study("S1")
        vote(service, alice, "S1", "INCLUDE")
        vote(service, bob, "S1", "EXCLUDE")

        harmonized = service.resolve_conflict(lead, "S1", PHASE, "EXCLUDE", notes="Adults only")
        assert harmonized.verdict == Verdict.EXCLUDE
        assert harmonized.resolved_by == "lead"
        assert service.get_conflicts(lead, PROJECT_ID, PHASE) == []
        assert len(service.store.decisions_for("S1", PHASE)) == 2
        assert service.conflicts.final_verdict("S1", PHASE) == Verdict.EXCLUDE
        assert not service.conflicts.is_conflict("S1", PHASE)
        entry = service.audit_log(lead, PROJECT_ID)[0]
        assert entry.kind == "conflict_resolved"
        assert entry.payload["verdict"] == "EXCLUDE"

    def test_resolve_twice_rejected(self, service, make_study, alice, bob, lead) -> None:
        make_study("S1")
        vote(service, alice, "S1", "INCLUDE")
        vote(service, bob, "S1", "EXCLUDE")
        service.resolve_conflict(lead, "S1", PHASE, "EXCLUDE")
        with pytest.raises(PreconditionError):
            service.resolve_conflict(lead, "S1", PHASE, "INCLUDE")
        assert service.conflicts.final_verdict("S1", PHASE) == Verdict.EXCLUDE

    def test_resolve_requires_verdict(self, service, make_study, alice, bob, lead) -> None:
        make_study("S1")
        vote(service, alice, "S1", "INCLUDE")
        vote(service, bob, "S1", "EXCLUDE")
        with pytest.raises(PreconditionError):
            service.resolve_conflict(lead, "S1", PHASE, None)

    def test_resolve_rejects_maybe(self, service, make_study, alice, bob, lead) -> None:
        make_study("S1")
        vote(service, alice, "S1", "MAYBE")
        vote(service, bob, "S1", "MAYBE")
        with pytest.raises(ValidationError):
            service.resolve_conflict(lead, "S1", PHASE, "MAYBE")

    def test_lead_can_settle_agreed_maybe(self, service, make_study, alice, bob, lead) -> None:
        make_study("S1")
        vote(service, alice, "S1", "MAYBE")
        vote(service, bob, "S1", "MAYBE")
        conflicts = service.get_conflicts(lead, PROJECT_ID, PHASE)
        assert [(c.study_id, c.reason) for c in conflicts] == [("S1", UNRESOLVED_MAYBE)]
        service.resolve_conflict(lead, "S1", PHASE, "INCLUDE")
        assert service.get_conflicts(lead, PROJECT_ID, PHASE) == []
        assert service.conflicts.final_verdict("S1", PHASE) == Verdict.INCLUDE

    def test_resolve_before_quorum(self, service, make_study, alice, lead) -> None:
        make_study("S1")
        vote(service, alice, "S1", "INCLUDE")
        with pytest.raises(PreconditionError) as exc_info:
            service.resolve_conflict(lead, "S1", PHASE, "INCLUDE")
        assert exc_info.value.conditions == ["quorum_not_completed"]

    def test_reviewer_cannot_resolve(self, service, make_study, alice, bob) -> None:
        make_study("S1")
        vote(service, alice, "S1", "INCLUDE")
        vote(service, bob, "S1", "EXCLUDE")
        with pytest.raises(AuthorizationError):
            service.resolve_conflict(alice, "S1", PHASE, "INCLUDE")

    def test_resolve_scoped_to_project(self, service, make_study, alice, bob, lead) -> None:
        make_study("S1")
        vote(service, alice, "S1", "INCLUDE")
        vote(service, bob, "S1", "EXCLUDE")
        service.create_project("other")
        with pytest.raises(NotFoundError):
            service.resolve_conflict(lead, "S1", PHASE, "INCLUDE", project_id="other")
        assert service.conflicts.is_conflict("S1", PHASE)
        assert service.resolve_conflict(lead, "S1", PHASE, "INCLUDE", project_id=PROJECT_ID).verdict == Verdict.INCLUDE
