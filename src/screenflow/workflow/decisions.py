"""Validated writes of reviewer decisions.

Each reviewer holds at most one decision per study and phase.  A second
submission replaces the first entirely, so duplicate network retries
from the same reviewer are harmless (last writer wins).
"""

from __future__ import annotations

from typing import List, Optional, Union

from ..core.errors import PreconditionError, ValidationError
from ..core.models import Decision, Phase, Verdict, utcnow
from ..io.store import ScreeningStore
from ..utils.logging import get_logger

logger = get_logger(__name__)


def coerce_verdict(value: Union[Verdict, str, None]) -> Verdict:
    if isinstance(value, Verdict):
        return value
    if not value:
        raise ValidationError("A verdict is required")
    try:
        return Verdict(str(value).strip().upper())
    except ValueError as exc:
        raise ValidationError(f"Unknown verdict: {value}") from exc


def coerce_phase(value: Union[Phase, str, None]) -> Phase:
    if isinstance(value, Phase):
        return value
    if not value:
        raise ValidationError("A phase is required")
    try:
        return Phase(str(value).strip().upper())
    except ValueError as exc:
        raise ValidationError(f"Unknown phase: {value}") from exc


class DecisionStore:
    """Durable record of each reviewer's verdict per study and phase."""

    def __init__(self, store: ScreeningStore) -> None:
        self.store = store

    def submit(
        self,
        study_id: str,
        phase: Union[Phase, str],
        reviewer_id: str,
        verdict: Union[Verdict, str],
        confidence: Optional[float] = None,
        reasoning: Optional[str] = None,
        exclusion_reason: Optional[str] = None,
        time_spent_ms: Optional[int] = None,
    ) -> Decision:
        """Record ``reviewer_id``'s verdict, replacing any earlier one.

        Raises
        ------
        ValidationError
            Missing reviewer, unknown verdict, confidence outside 0-100,
            negative time or an EXCLUDE without an exclusion reason.
        PreconditionError
            The study is not currently in ``phase`` or the phase has
            already been harmonized for this study.
        """
        phase = coerce_phase(phase)
        verdict = coerce_verdict(verdict)
        if not reviewer_id:
            raise ValidationError("A reviewer id is required")
        if confidence is not None and not 0 <= confidence <= 100:
            raise ValidationError(f"Confidence must be between 0 and 100, got {confidence}")
        if time_spent_ms is not None and time_spent_ms < 0:
            raise ValidationError("time_spent_ms cannot be negative")
        exclusion_reason = exclusion_reason.strip() if exclusion_reason else None
        if verdict == Verdict.EXCLUDE and not exclusion_reason:
            raise ValidationError("An exclusion reason is required when excluding a study")

        with self.store.transaction():
            study = self.store.get_study(study_id)
            if study.phase != phase:
                raise PreconditionError(
                    f"Study {study_id} is in {study.phase.value}, not {phase.value}",
                    ["study_not_in_phase"],
                )
            if self.store.get_harmonized(study_id, phase) is not None:
                raise PreconditionError(
                    f"Study {study_id} has a harmonized decision for {phase.value}; reset it first",
                    ["already_resolved"],
                )

            followed_ai = None
            if study.ai_suggestion is not None:
                followed_ai = study.ai_suggestion.verdict == verdict

            decision = Decision(
                study_id=study_id,
                phase=phase,
                reviewer_id=reviewer_id,
                verdict=verdict,
                confidence=confidence,
                reasoning=reasoning,
                exclusion_reason=exclusion_reason if verdict == Verdict.EXCLUDE else None,
                time_spent_ms=time_spent_ms,
                followed_ai=followed_ai,
                submitted_at=utcnow(),
            )
            self.store.upsert_decision(decision)
        logger.info(
            f"Recorded {verdict.value} for {study_id} ({phase.value}) by {reviewer_id}",
            extra={"context": {"study_id": study_id, "phase": phase.value, "reviewer_id": reviewer_id}},
        )
        return decision

    def decisions_for(self, study_id: str, phase: Phase) -> List[Decision]:
        return self.store.decisions_for(study_id, phase)

    def reset(self, study_id: str, phase: Phase) -> int:
        """Delete every decision and any harmonization for the study and phase."""
        with self.store.transaction():
            removed = self.store.delete_decisions(study_id, phase)
            self.store.delete_harmonized(study_id, phase)
        logger.info(f"Reset {removed} decisions for {study_id} ({phase.value})")
        return removed
