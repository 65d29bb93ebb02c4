"""Reviewer quorum status and blind-screening visibility.

Status is always derived from the stored decisions; nothing here is
persisted.  ``COMPLETED`` reflects participation only.  Whether the
completed votes agree is the conflict resolver's concern.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from ..core.models import Decision, Phase, QuorumStatus, ReviewerStatus, VoteView
from ..io.store import ScreeningStore


def evaluate_quorum(
    study_id: str,
    phase: Phase,
    decisions: Sequence[Decision],
    caller_id: Optional[str],
    quorum_size: int,
) -> QuorumStatus:
    """Derive the quorum status of one study and phase for ``caller_id``.

    With no caller (a team-level view) an incomplete quorum is reported
    as ``AWAITING_OTHER``.
    """
    voters: List[str] = []
    for decision in decisions:
        if decision.reviewer_id not in voters:
            voters.append(decision.reviewer_id)
    count = len(voters)

    status: Optional[ReviewerStatus]
    if count == 0:
        status = None
    elif count >= quorum_size:
        status = ReviewerStatus.COMPLETED
    elif caller_id is not None and caller_id not in voters:
        status = ReviewerStatus.SECOND_REVIEWER
    elif count == 1 and caller_id is not None:
        status = ReviewerStatus.FIRST_REVIEWER
    else:
        status = ReviewerStatus.AWAITING_OTHER

    return QuorumStatus(
        study_id=study_id,
        phase=phase,
        status=status,
        voted_reviewers=voters,
        reviewers_voted=count,
        reviewers_needed=quorum_size,
    )


def visible_votes(
    decisions: Sequence[Decision],
    status: QuorumStatus,
    caller_id: Optional[str],
    blind: bool,
) -> List[VoteView]:
    """Filter decisions down to what ``caller_id`` may see.

    Under blind screening a reviewer sees only their own decision until
    quorum completes; the vote count on ``status`` stays visible.
    """
    views: List[VoteView] = []
    for d in decisions:
        if blind and not status.is_completed and d.reviewer_id != caller_id:
            continue
        views.append(
            VoteView(
                reviewer_id=d.reviewer_id,
                verdict=d.verdict,
                confidence=d.confidence,
                reasoning=d.reasoning,
                exclusion_reason=d.exclusion_reason,
                submitted_at=d.submitted_at,
            )
        )
    return views


class QuorumEvaluator:
    """Read-side quorum evaluation against the store."""

    def __init__(self, store: ScreeningStore) -> None:
        self.store = store

    def status_for(self, study_id: str, phase: Phase, caller_id: Optional[str] = None) -> QuorumStatus:
        study = self.store.get_study(study_id)
        project = self.store.get_project(study.project_id)
        decisions = self.store.decisions_for(study_id, phase)
        return evaluate_quorum(study_id, phase, decisions, caller_id, project.quorum_size)

    def visible_decisions(self, study_id: str, phase: Phase, caller_id: Optional[str]) -> List[VoteView]:
        study = self.store.get_study(study_id)
        project = self.store.get_project(study.project_id)
        decisions = self.store.decisions_for(study_id, phase)
        status = evaluate_quorum(study_id, phase, decisions, caller_id, project.quorum_size)
        return visible_votes(decisions, status, caller_id, project.blind_screening)
