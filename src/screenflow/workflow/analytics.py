"""Inter-rater reliability and reviewer workload for one phase.

Reliability follows the dual-screening convention: every study with
exactly two human decisions contributes one (first, second) pair in
submission order.  Cohen's kappa compares the observed agreement of
those pairs with the agreement expected by chance from each position's
verdict distribution.  Both reports are derived from stored decisions
and assignments on every call.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

import pandas as pd

from ..core.models import Decision, Phase, ReliabilityReport, ReviewerWorkload, Verdict
from ..io.store import ScreeningStore
from ..utils.logging import get_logger
from .decisions import coerce_phase

logger = get_logger(__name__)

Pair = Tuple[Verdict, Verdict]

VERDICTS: List[str] = [v.value for v in Verdict]

# (upper bound, level, recommendation), checked in order
KAPPA_LEVELS: List[Tuple[float, str, str]] = [
    (0.0, "Poor", "Agreement is worse than chance. Review eligibility criteria and consider retraining reviewers."),
    (0.2, "Slight", "Very low agreement. Conduct calibration round and clarify eligibility criteria."),
    (0.4, "Fair", "Below acceptable threshold. Consider calibration and team discussion."),
    (0.6, "Moderate", "Acceptable for exploratory work. Consider improving for publication."),
    (0.8, "Substantial", "Good agreement. Suitable for most systematic reviews."),
]
ALMOST_PERFECT = ("Almost Perfect", "Excellent agreement. Meets highest standards for systematic reviews.")


def decision_pairs(
    decisions_by_study: Mapping[str, List[Decision]],
    exact: bool = True,
    ignore: Iterable[str] = (),
) -> List[Pair]:
    """First two verdicts of each study, in submission order.

    With ``exact`` only studies holding exactly two decisions count;
    otherwise any study with two or more contributes its first two.
    Reviewers in ``ignore`` are left out before counting.
    """
    skipped = set(ignore)
    pairs: List[Pair] = []
    for study_id in sorted(decisions_by_study):
        votes = [d for d in decisions_by_study[study_id] if d.reviewer_id not in skipped]
        if len(votes) == 2 or (not exact and len(votes) > 2):
            pairs.append((votes[0].verdict, votes[1].verdict))
    return pairs


def _frame(pairs: List[Pair]) -> pd.DataFrame:
    return pd.DataFrame([(a.value, b.value) for a, b in pairs], columns=["first", "second"])


def cohens_kappa(pairs: List[Pair]) -> float:
    """Cohen's kappa rounded to three places; 0 for no pairs."""
    if not pairs:
        return 0.0
    df = _frame(pairs)
    observed = float((df["first"] == df["second"]).mean())
    first = df["first"].value_counts(normalize=True)
    second = df["second"].value_counts(normalize=True)
    expected = float(sum(first.get(v, 0.0) * second.get(v, 0.0) for v in VERDICTS))
    if expected == 1.0:
        return 1.0
    return round((observed - expected) / (1 - expected), 3)


def interpret_kappa(kappa: float) -> Tuple[str, str]:
    """Return the Landis-Koch level and a recommendation for ``kappa``."""
    for bound, level, recommendation in KAPPA_LEVELS:
        if kappa < bound:
            return level, recommendation
    return ALMOST_PERFECT


def agreement_rate(pairs: List[Pair]) -> int:
    """Share of pairs with matching verdicts, as a whole percentage."""
    if not pairs:
        return 0
    agreements = sum(1 for a, b in pairs if a == b)
    return int(agreements * 100 / len(pairs) + 0.5)


def confusion_matrix(pairs: List[Pair]) -> Dict[str, Dict[str, int]]:
    if not pairs:
        return {row: {col: 0 for col in VERDICTS} for row in VERDICTS}
    df = _frame(pairs)
    table = pd.crosstab(df["first"], df["second"]).reindex(index=VERDICTS, columns=VERDICTS, fill_value=0)
    return {row: {col: int(table.at[row, col]) for col in VERDICTS} for row in VERDICTS}


class ScreeningAnalytics:
    """Read-only reliability and workload reports over the store."""

    def __init__(self, store: ScreeningStore, system_reviewer_id: str = "system:ai") -> None:
        self.store = store
        self.system_reviewer_id = system_reviewer_id

    def reliability(self, project_id: str, phase: Union[Phase, str]) -> ReliabilityReport:
        phase = coerce_phase(phase)
        self.store.get_project(project_id)
        decisions = self.store.decisions_in_phase(project_id, phase)
        ignore = [self.system_reviewer_id]
        pairs = decision_pairs(decisions, ignore=ignore)
        report = ReliabilityReport(project_id=project_id, phase=phase, confusion_matrix=confusion_matrix(pairs))
        if pairs:
            report.studies_analyzed = len(pairs)
            report.kappa = cohens_kappa(pairs)
            report.interpretation, report.recommendation = interpret_kappa(report.kappa)

        agreement_pairs = decision_pairs(decisions, exact=False, ignore=ignore)
        if agreement_pairs:
            report.agreements = sum(1 for a, b in agreement_pairs if a == b)
            report.disagreements = len(agreement_pairs) - report.agreements
            report.agreement_rate = agreement_rate(agreement_pairs)
        logger.info(
            f"Reliability for {project_id} {phase.value}: kappa={report.kappa} over {report.studies_analyzed} studies"
        )
        return report

    def workload(self, project_id: str, phase: Union[Phase, str]) -> List[ReviewerWorkload]:
        """Per-reviewer progress, most productive first.

        ``pending`` counts every study in the phase the reviewer has not
        decided; ``assigned_pending`` only those assigned to them.
        """
        phase = coerce_phase(phase)
        self.store.get_project(project_id)
        total = len(self.store.list_studies(project_id, phase))
        assignments = self.store.assignments_in_phase(project_id, phase)
        rows = [
            (d.reviewer_id, d.study_id, d.time_spent_ms)
            for votes in self.store.decisions_in_phase(project_id, phase).values()
            for d in votes
            if d.reviewer_id != self.system_reviewer_id
        ]
        done: Dict[str, set] = {}
        avg_ms: Dict[str, float] = {}
        if rows:
            df = pd.DataFrame(rows, columns=["reviewer_id", "study_id", "time_spent_ms"])
            df["time_spent_ms"] = pd.to_numeric(df["time_spent_ms"], errors="coerce")
            grouped = df.groupby("reviewer_id")
            done = grouped["study_id"].agg(set).to_dict()
            avg_ms = grouped["time_spent_ms"].mean().to_dict()

        reviewers = (set(done) | set(assignments)) - {self.system_reviewer_id}
        result: List[ReviewerWorkload] = []
        for reviewer_id in reviewers:
            completed = done.get(reviewer_id, set())
            assigned = set(assignments.get(reviewer_id, []))
            mean: Optional[float] = avg_ms.get(reviewer_id)
            result.append(
                ReviewerWorkload(
                    reviewer_id=reviewer_id,
                    assigned=len(assigned),
                    completed=len(completed),
                    pending=total - len(completed),
                    assigned_pending=len(assigned - completed),
                    avg_time_seconds=None if mean is None or pd.isna(mean) else int(round(mean / 1000)),
                )
            )
        result.sort(key=lambda w: (-w.completed, w.reviewer_id))
        return result
