"""Unit tests for inter-rater reliability and workload reports."""

import pytest

from screenflow.core.errors import NotFoundError
from screenflow.core.models import BatchKind, BatchOperation, Phase, Verdict
from screenflow.workflow.analytics import (
    agreement_rate,
    cohens_kappa,
    confusion_matrix,
    interpret_kappa,
)
from tests.helpers import PROJECT_ID, vote

PHASE = Phase.TITLE_ABSTRACT
I, E, M = Verdict.INCLUDE, Verdict.EXCLUDE, Verdict.MAYBE


class TestKappa:
    def test_no_pairs(self) -> None:
        assert cohens_kappa([]) == 0.0
        assert agreement_rate([]) == 0

    def test_moderate_agreement(self) -> None:
        pairs = [(I, I), (E, E), (I, E), (E, E)]
        assert cohens_kappa(pairs) == 0.5
        assert agreement_rate(pairs) == 75

    def test_same_verdict_everywhere_is_perfect(self) -> None:
        assert cohens_kappa([(E, E), (E, E)]) == 1.0

    def test_systematic_disagreement_is_negative(self) -> None:
        kappa = cohens_kappa([(I, E), (E, I)])
        assert kappa == -1.0
        assert interpret_kappa(kappa)[0] == "Poor"

    def test_maybe_counts_as_its_own_category(self) -> None:
        # po = 2/3, pe = 4/9
        assert cohens_kappa([(I, I), (M, M), (I, M)]) == pytest.approx(0.4)

    @pytest.mark.parametrize(
        "kappa,level",
        [
            (-0.01, "Poor"),
            (0.0, "Slight"),
            (0.2, "Fair"),
            (0.59, "Moderate"),
            (0.6, "Substantial"),
            (0.8, "Almost Perfect"),
            (1.0, "Almost Perfect"),
        ],
    )
    def test_interpretation_levels(self, kappa, level) -> None:
        found, recommendation = interpret_kappa(kappa)
        assert found == level
        assert recommendation

    def test_confusion_matrix(self) -> None:
        matrix = confusion_matrix([(I, I), (I, E), (E, E), (E, E)])
        assert matrix["INCLUDE"] == {"INCLUDE": 1, "EXCLUDE": 1, "MAYBE": 0}
        assert matrix["EXCLUDE"] == {"INCLUDE": 0, "EXCLUDE": 2, "MAYBE": 0}
        assert matrix["MAYBE"] == {"INCLUDE": 0, "EXCLUDE": 0, "MAYBE": 0}
        assert confusion_matrix([])["INCLUDE"]["INCLUDE"] == 0


class TestReliabilityReport:
    """Reliability derived from stored decisions through the service."""

    def test_insufficient_data(self, service, make_study, alice, lead) -> None:
        make_study("S1")
        vote(service, alice, "S1", "INCLUDE")
        report = service.get_reliability(lead, PROJECT_ID, PHASE)
        assert report.kappa is None
        assert report.studies_analyzed == 0
        assert report.interpretation == "Insufficient Data"
        assert report.agreement_rate is None

    def test_dual_screened_studies(self, service, make_study, alice, bob, carol, lead) -> None:
        for sid, first, second in (
            ("S1", "INCLUDE", "INCLUDE"),
            ("S2", "EXCLUDE", "EXCLUDE"),
            ("S3", "INCLUDE", "EXCLUDE"),
            ("S4", "EXCLUDE", "EXCLUDE"),
        ):
            make_study(sid)
            vote(service, alice, sid, first)
            vote(service, bob, sid, second)
        # a third review keeps S5 out of kappa but not out of agreement
        make_study("S5")
        vote(service, alice, "S5", "INCLUDE")
        vote(service, bob, "S5", "INCLUDE")
        vote(service, carol, "S5", "EXCLUDE")

        report = service.get_reliability(alice, PROJECT_ID, PHASE)
        assert report.studies_analyzed == 4
        assert report.kappa == 0.5
        assert report.interpretation == "Moderate"
        assert (report.agreements, report.disagreements) == (4, 1)
        assert report.agreement_rate == 80
        assert report.confusion_matrix["INCLUDE"]["EXCLUDE"] == 1

    def test_system_reviewer_not_a_rater(self, service, make_study, alice, lead) -> None:
        make_study("S1", ai=("INCLUDE", 95))
        service.run_batch(lead, PROJECT_ID, BatchOperation(kind=BatchKind.APPLY_AI, study_ids=["S1"]))
        vote(service, alice, "S1", "EXCLUDE")
        assert service.get_reliability(lead, PROJECT_ID, PHASE).studies_analyzed == 0

    def test_unknown_project(self, service, lead) -> None:
        with pytest.raises(NotFoundError):
            service.get_reliability(lead, "nope", PHASE)


class TestWorkload:
    def test_distribution(self, service, make_study, alice, bob, lead) -> None:
        make_study("S1")
        make_study("S2")
        make_study("S3", ai=("INCLUDE", 95))
        vote(service, alice, "S1", "INCLUDE", time_spent_ms=30000)
        vote(service, alice, "S2", "INCLUDE", time_spent_ms=50000)
        vote(service, bob, "S1", "INCLUDE")
        service.run_batch(lead, PROJECT_ID, BatchOperation(kind=BatchKind.APPLY_AI, study_ids=["S3"]))
        service.run_batch(
            lead, PROJECT_ID, BatchOperation(kind=BatchKind.ASSIGN, study_ids=["S2", "S3"], assignee_id="carol")
        )
        service.run_batch(lead, PROJECT_ID, BatchOperation(kind=BatchKind.ASSIGN, study_ids=["S1"], assignee_id="bob"))

        rows = service.get_workload(lead, PROJECT_ID, PHASE)
        assert [r.reviewer_id for r in rows] == ["alice", "bob", "carol"]
        alice_row, bob_row, carol_row = rows
        assert (alice_row.completed, alice_row.pending, alice_row.assigned) == (2, 1, 0)
        assert alice_row.avg_time_seconds == 40
        assert (bob_row.completed, bob_row.assigned, bob_row.assigned_pending) == (1, 1, 0)
        assert bob_row.avg_time_seconds is None
        assert (carol_row.completed, carol_row.pending, carol_row.assigned_pending) == (0, 3, 2)

    def test_empty_phase(self, service, project, lead) -> None:
        assert service.get_workload(lead, PROJECT_ID, Phase.FULL_TEXT) == []
