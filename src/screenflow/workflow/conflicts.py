"""Conflict detection and harmonization.

A study is in conflict for a phase once its quorum is complete and the
reviewers did not all reach the same verdict.  MAYBE counts as
its own verdict, so INCLUDE against MAYBE is a conflict too.  A quorum
that agreed only on MAYBE is reported as an unresolved MAYBE: it has no
terminal verdict, so it blocks the phase until a lead harmonizes it.

Resolving a conflict stores a harmonized verdict next to the individual
decisions; the decisions themselves are kept for the audit trail.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Union

from ..core.errors import PreconditionError, ValidationError
from ..core.models import Conflict, Decision, HarmonizedDecision, Phase, Verdict
from ..io.store import ScreeningStore
from ..utils.logging import get_logger
from .decisions import coerce_phase, coerce_verdict

logger = get_logger(__name__)

DISAGREEMENT = "disagreement"
UNCERTAIN = "uncertain"
UNRESOLVED_MAYBE = "unresolved_maybe"


def _distinct_verdicts(decisions: Sequence[Decision]) -> List[Verdict]:
    verdicts: List[Verdict] = []
    for d in decisions:
        if d.verdict not in verdicts:
            verdicts.append(d.verdict)
    return verdicts


def _quorum_met(decisions: Sequence[Decision], quorum_size: int) -> bool:
    return len({d.reviewer_id for d in decisions}) >= quorum_size


def conflict_reason(
    decisions: Sequence[Decision],
    quorum_size: int,
    harmonized: Optional[HarmonizedDecision] = None,
) -> Optional[str]:
    """Return why a study and phase is in conflict, or None if it is not."""
    if harmonized is not None or not _quorum_met(decisions, quorum_size):
        return None
    verdicts = _distinct_verdicts(decisions)
    if verdicts == [Verdict.MAYBE]:
        return UNRESOLVED_MAYBE
    if len(verdicts) < 2:
        return None
    if Verdict.INCLUDE in verdicts and Verdict.EXCLUDE in verdicts:
        return DISAGREEMENT
    return UNCERTAIN


def final_verdict_of(
    decisions: Sequence[Decision],
    quorum_size: int,
    harmonized: Optional[HarmonizedDecision] = None,
) -> Optional[Verdict]:
    """Harmonized verdict if any, else the unanimous verdict of a completed quorum."""
    if harmonized is not None:
        return harmonized.verdict
    if not _quorum_met(decisions, quorum_size):
        return None
    verdicts = _distinct_verdicts(decisions)
    if len(verdicts) == 1:
        return verdicts[0]
    return None


class ConflictResolver:
    """Surface disagreements and accept harmonized verdicts."""

    def __init__(self, store: ScreeningStore) -> None:
        self.store = store

    def conflicts_for(self, project_id: str, phase: Union[Phase, str]) -> List[Conflict]:
        phase = coerce_phase(phase)
        project = self.store.get_project(project_id)
        decisions = self.store.decisions_in_phase(project_id, phase)
        harmonized: Dict[str, HarmonizedDecision] = self.store.harmonized_in_phase(project_id, phase)
        conflicts: List[Conflict] = []
        for study in self.store.list_studies(project_id, phase):
            votes = decisions.get(study.study_id, [])
            reason = conflict_reason(votes, project.quorum_size, harmonized.get(study.study_id))
            if reason is None:
                continue
            conflicts.append(
                Conflict(
                    study_id=study.study_id,
                    phase=phase,
                    title=study.metadata.title,
                    reason=reason,
                    verdicts=_distinct_verdicts(votes),
                    decisions=list(votes),
                )
            )
        return conflicts

    def is_conflict(self, study_id: str, phase: Phase) -> bool:
        study = self.store.get_study(study_id)
        project = self.store.get_project(study.project_id)
        return (
            conflict_reason(
                self.store.decisions_for(study_id, phase),
                project.quorum_size,
                self.store.get_harmonized(study_id, phase),
            )
            is not None
        )

    def final_verdict(self, study_id: str, phase: Phase) -> Optional[Verdict]:
        study = self.store.get_study(study_id)
        project = self.store.get_project(study.project_id)
        return final_verdict_of(
            self.store.decisions_for(study_id, phase),
            project.quorum_size,
            self.store.get_harmonized(study_id, phase),
        )

    def resolve(
        self,
        study_id: str,
        phase: Union[Phase, str],
        harmonized_verdict: Union[Verdict, str, None],
        notes: Optional[str],
        resolver_id: str,
    ) -> HarmonizedDecision:
        """Record the final verdict for a completed quorum.

        Resolution is final for the phase; a second call fails until the
        study's decisions are reset.
        """
        phase = coerce_phase(phase)
        if not harmonized_verdict:
            raise PreconditionError("A harmonized verdict is required", ["missing_verdict"])
        verdict = coerce_verdict(harmonized_verdict)
        if verdict == Verdict.MAYBE:
            raise ValidationError("A harmonized verdict must be INCLUDE or EXCLUDE")

        study = self.store.get_study(study_id)
        project = self.store.get_project(study.project_id)
        with self.store.transaction():
            if study.phase != phase:
                raise PreconditionError(
                    f"Study {study_id} is in {study.phase.value}, not {phase.value}",
                    ["study_not_in_phase"],
                )
            decisions = self.store.decisions_for(study_id, phase)
            if not _quorum_met(decisions, project.quorum_size):
                raise PreconditionError(
                    f"Quorum not reached for {study_id} in {phase.value}",
                    ["quorum_not_completed"],
                )
            harmonized = self.store.save_harmonized(
                HarmonizedDecision(
                    study_id=study_id,
                    phase=phase,
                    verdict=verdict,
                    notes=notes,
                    resolved_by=resolver_id,
                )
            )
            self.store.record_audit(
                study.project_id,
                resolver_id,
                "conflict_resolved",
                {"study_id": study_id, "phase": phase.value, "verdict": verdict.value, "notes": notes},
            )
        logger.info(f"Resolved {study_id} ({phase.value}) as {verdict.value} by {resolver_id}")
        return harmonized
