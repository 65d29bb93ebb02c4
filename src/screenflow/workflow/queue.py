"""Reviewer-facing screening queue.

Builds the list of studies in a phase for one reviewer, with their AI
suggestion, quorum status, priority score and the peer decisions the
reviewer is allowed to see.  Sorting is stable (ties keep study-id
order) and never touches stored data.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Sequence, Union

from ..core.errors import ValidationError
from ..core.models import (
    Phase,
    QueueFilters,
    QueueItem,
    QueuePage,
    ReviewerStatus,
    SortKey,
    SortOrder,
    StatusFilter,
    Study,
)
from ..core.priority import compute_priority_score
from ..io.store import ScreeningStore
from .conflicts import conflict_reason
from .decisions import coerce_phase
from .quorum import evaluate_quorum, visible_votes

SORT_KEYS: Dict[SortKey, Callable[[QueueItem], object]] = {
    SortKey.AI_CONFIDENCE: lambda item: item.ai_suggestion.confidence if item.ai_suggestion else None,
    SortKey.PRIORITY: lambda item: item.priority_score,
    SortKey.RECENCY: lambda item: item.created_at,
    SortKey.TITLE: lambda item: item.title.casefold(),
    SortKey.YEAR: lambda item: item.year,
}


def _matches(study: Study, term: str) -> bool:
    meta = study.metadata
    haystack = [meta.title, meta.abstract or "", meta.venue or ""]
    haystack.extend(a.name for a in meta.authors)
    haystack.extend(meta.keywords)
    haystack.extend(study.tags)
    return any(term in text.lower() for text in haystack)


def sort_items(items: Sequence[QueueItem], sort_by: SortKey, order: SortOrder) -> List[QueueItem]:
    """Stable sort; items without a value for the key go last."""
    key = SORT_KEYS[sort_by]
    base = sorted(items, key=lambda item: item.study_id)
    present = [item for item in base if key(item) is not None]
    missing = [item for item in base if key(item) is None]
    present.sort(key=key, reverse=order == SortOrder.DESC)
    return present + missing


class ScreeningQueue:
    """Filtered, sorted and paginated view of a phase for one reviewer."""

    def __init__(
        self,
        store: ScreeningStore,
        venue_boost: Sequence[str] = (),
        keyword_boost: Sequence[str] = (),
    ) -> None:
        self.store = store
        self.venue_boost = list(venue_boost)
        self.keyword_boost = list(keyword_boost)

    def get_queue(
        self,
        project_id: str,
        phase: Union[Phase, str],
        caller_id: str,
        filters: Optional[QueueFilters] = None,
        page: int = 1,
        page_size: int = 25,
    ) -> QueuePage:
        if page < 1:
            raise ValidationError("page must be >= 1")
        if not 1 <= page_size <= 500:
            raise ValidationError("page_size must be between 1 and 500")
        phase = coerce_phase(phase)
        filters = filters or QueueFilters()
        project = self.store.get_project(project_id)
        decisions = self.store.decisions_in_phase(project_id, phase)
        harmonized = self.store.harmonized_in_phase(project_id, phase)
        term = filters.search.strip().lower() if filters.search else ""

        items: List[QueueItem] = []
        for study in self.store.list_studies(project_id, phase):
            if term and not _matches(study, term):
                continue
            votes = decisions.get(study.study_id, [])
            status = evaluate_quorum(study.study_id, phase, votes, caller_id, project.quorum_size)
            has_conflict = conflict_reason(votes, project.quorum_size, harmonized.get(study.study_id)) is not None
            mine = next((d.verdict for d in votes if d.reviewer_id == caller_id), None)
            if not self._keep(filters.status_filter, status.status, mine is not None, has_conflict):
                continue
            items.append(
                QueueItem(
                    study_id=study.study_id,
                    title=study.metadata.title,
                    authors=[a.name for a in study.metadata.authors],
                    year=study.metadata.year,
                    venue=study.metadata.venue,
                    phase=study.phase,
                    tags=study.tags,
                    ai_suggestion=study.ai_suggestion,
                    priority_score=compute_priority_score(study, self.venue_boost, self.keyword_boost),
                    reviewer_status=status.status,
                    reviewers_voted=status.reviewers_voted,
                    reviewers_needed=status.reviewers_needed,
                    my_decision=mine,
                    visible_decisions=visible_votes(votes, status, caller_id, project.blind_screening),
                    has_conflict=has_conflict,
                    created_at=study.created_at,
                )
            )

        ordered = sort_items(items, filters.sort_by, filters.sort_order)
        start = (page - 1) * page_size
        return QueuePage(items=ordered[start:start + page_size], total=len(ordered), page=page, page_size=page_size)

    @staticmethod
    def _keep(
        status_filter: StatusFilter,
        status: Optional[ReviewerStatus],
        voted: bool,
        has_conflict: bool,
    ) -> bool:
        if status_filter == StatusFilter.ALL:
            return True
        if status_filter == StatusFilter.PENDING:
            return not voted
        if status_filter == StatusFilter.AWAITING:
            return voted and status != ReviewerStatus.COMPLETED
        if status_filter == StatusFilter.CONFLICT:
            return has_conflict
        return status == ReviewerStatus.COMPLETED and not has_conflict
