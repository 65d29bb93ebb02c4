"""Core domain models for studies, decisions and derived screening state.

Stored records (studies, decisions, harmonized decisions, projects) and
derived views (quorum status, conflicts, phase statistics) are plain
Pydantic models.  Closed vocabularies such as verdicts, phases and batch
operation kinds are ``str`` enums so they serialize as their values.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Read naive timestamps as UTC so stored and fresh values compare."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Phase(str, Enum):
    """Sequential screening stages a study passes through."""

    TITLE_ABSTRACT = "TITLE_ABSTRACT"
    FULL_TEXT = "FULL_TEXT"
    FINAL = "FINAL"

    @property
    def next_phase(self) -> Optional["Phase"]:
        index = PHASE_ORDER.index(self)
        if index + 1 < len(PHASE_ORDER):
            return PHASE_ORDER[index + 1]
        return None


PHASE_ORDER: List[Phase] = [Phase.TITLE_ABSTRACT, Phase.FULL_TEXT, Phase.FINAL]


class Verdict(str, Enum):
    """A reviewer's judgment on a study."""

    INCLUDE = "INCLUDE"
    EXCLUDE = "EXCLUDE"
    MAYBE = "MAYBE"


class ReviewerStatus(str, Enum):
    """Quorum status of a study and phase as seen by one reviewer."""

    FIRST_REVIEWER = "FIRST_REVIEWER"
    SECOND_REVIEWER = "SECOND_REVIEWER"
    AWAITING_OTHER = "AWAITING_OTHER"
    COMPLETED = "COMPLETED"


class Role(str, Enum):
    """Project roles supplied by the surrounding membership system."""

    OWNER = "OWNER"
    LEAD = "LEAD"
    REVIEWER = "REVIEWER"
    VIEWER = "VIEWER"

    @property
    def is_elevated(self) -> bool:
        return self in (Role.OWNER, Role.LEAD)


class BatchKind(str, Enum):
    """Operations the batch operator can apply to a set of studies."""

    ASSIGN = "assign"
    APPLY_AI = "apply_ai"
    MOVE_PHASE = "move_phase"
    RESET = "reset"


class StatusFilter(str, Enum):
    ALL = "all"
    PENDING = "pending"  # caller has not voted
    AWAITING = "awaiting"  # caller voted, quorum not met
    CONFLICT = "conflict"
    COMPLETED = "completed"


class SortKey(str, Enum):
    AI_CONFIDENCE = "ai_confidence"
    PRIORITY = "priority"
    RECENCY = "recency"
    TITLE = "title"
    YEAR = "year"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class Author(BaseModel):
    """Author information."""

    name: str
    orcid: Optional[str] = None
    affiliation: Optional[str] = None


class BibliographicMetadata(BaseModel):
    """Immutable bibliographic description of a study."""

    model_config = ConfigDict(frozen=True)

    title: str = Field(..., min_length=1)
    abstract: Optional[str] = None
    authors: List[Author] = Field(default_factory=list)
    year: Optional[int] = Field(None, ge=1800, le=2100)
    venue: Optional[str] = None
    doi: Optional[str] = None
    external_ids: Dict[str, str] = Field(default_factory=dict)
    keywords: List[str] = Field(default_factory=list)

    @field_validator("doi")
    @classmethod
    def _normalize_doi(cls, v: Optional[str]) -> Optional[str]:
        """Normalize DOI: lowercase, remove prefixes."""
        if not v:
            return None
        doi = v.lower().strip()
        for prefix in ["https://doi.org/", "http://doi.org/", "https://dx.doi.org/", "http://dx.doi.org/", "doi:"]:
            if doi.startswith(prefix):
                doi = doi[len(prefix):]
        return doi.strip() or None


class AISuggestion(BaseModel):
    """Opaque relevance suggestion produced outside the engine."""

    verdict: Verdict
    confidence: float = Field(..., ge=0.0, le=100.0)
    reasoning: Optional[str] = None


class Study(BaseModel):
    """A candidate study within a project."""

    study_id: str
    project_id: str
    metadata: BibliographicMetadata
    ai_suggestion: Optional[AISuggestion] = None
    phase: Phase = Phase.TITLE_ABSTRACT
    tags: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at")
    @classmethod
    def _created_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, v: List[str]) -> List[str]:
        seen: List[str] = []
        for tag in v:
            tag = tag.strip()
            if tag and tag not in seen:
                seen.append(tag)
        return seen


class ProjectConfig(BaseModel):
    """Per-project screening configuration.

    ``quorum_size`` and ``blind_screening`` are independent: blinding only
    changes what a reviewer may see before quorum, never how many
    reviewers are required.
    """

    project_id: str
    name: str = ""
    quorum_size: int = Field(2, ge=1)
    blind_screening: bool = True
    created_at: datetime = Field(default_factory=utcnow)


class Actor(BaseModel):
    """The authenticated caller of an operation."""

    user_id: str = Field(..., min_length=1)
    role: Role = Role.REVIEWER

    @property
    def is_elevated(self) -> bool:
        return self.role.is_elevated


class Decision(BaseModel):
    """One reviewer's verdict on one study in one phase."""

    study_id: str
    phase: Phase
    reviewer_id: str
    verdict: Verdict
    confidence: Optional[float] = Field(None, ge=0.0, le=100.0)
    reasoning: Optional[str] = None
    exclusion_reason: Optional[str] = None
    time_spent_ms: Optional[int] = Field(None, ge=0)
    followed_ai: Optional[bool] = None
    submitted_at: datetime = Field(default_factory=utcnow)

    @field_validator("submitted_at")
    @classmethod
    def _submitted_utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class HarmonizedDecision(BaseModel):
    """Authoritative verdict recorded when a conflict is resolved."""

    study_id: str
    phase: Phase
    verdict: Verdict
    notes: Optional[str] = None
    resolved_by: str
    resolved_at: datetime = Field(default_factory=utcnow)


class VoteView(BaseModel):
    """A decision as exposed to a particular caller."""

    reviewer_id: str
    verdict: Verdict
    confidence: Optional[float] = None
    reasoning: Optional[str] = None
    exclusion_reason: Optional[str] = None
    submitted_at: datetime


class QuorumStatus(BaseModel):
    """Derived participation state of a study and phase."""

    study_id: str
    phase: Phase
    status: Optional[ReviewerStatus] = None
    voted_reviewers: List[str] = Field(default_factory=list)
    reviewers_voted: int = 0
    reviewers_needed: int = 2

    @property
    def is_completed(self) -> bool:
        return self.reviewers_voted >= self.reviewers_needed


class Conflict(BaseModel):
    """Disagreement among reviewers once quorum has been reached."""

    study_id: str
    phase: Phase
    title: str
    reason: str  # "disagreement", "uncertain" or "unresolved_maybe"
    verdicts: List[Verdict]
    decisions: List[Decision]


class PhaseStats(BaseModel):
    """Aggregate state of one phase as seen by one caller."""

    project_id: str
    phase: Phase
    total: int = 0
    included: int = 0
    excluded: int = 0
    maybe: int = 0
    total_pending: int = 0
    conflicts: int = 0
    remaining_reviewers: int = 0
    progress: int = 0
    can_advance: bool = False
    next_phase: Optional[Phase] = None
    blockers: List[str] = Field(default_factory=list)


class BatchOperation(BaseModel):
    """A bulk action over an explicit list of studies."""

    kind: BatchKind
    study_ids: List[str]
    assignee_id: Optional[str] = None
    ai_threshold: Optional[float] = Field(None, ge=0.0, le=100.0)
    target_phase: Optional[Phase] = None


class BatchFailure(BaseModel):
    study_id: str
    reason: str


class BatchResult(BaseModel):
    """Outcome of a batch; failures are reported, not raised."""

    kind: BatchKind
    processed: int = 0
    failures: List[BatchFailure] = Field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)


class AdvanceResult(BaseModel):
    from_phase: Phase
    to_phase: Phase
    advanced_count: int
    study_ids: List[str] = Field(default_factory=list)


class QueueFilters(BaseModel):
    search: Optional[str] = None
    sort_by: SortKey = SortKey.PRIORITY
    sort_order: SortOrder = SortOrder.DESC
    status_filter: StatusFilter = StatusFilter.ALL


class QueueItem(BaseModel):
    """One row of a reviewer's screening queue."""

    study_id: str
    title: str
    authors: List[str] = Field(default_factory=list)
    year: Optional[int] = None
    venue: Optional[str] = None
    phase: Phase
    tags: List[str] = Field(default_factory=list)
    ai_suggestion: Optional[AISuggestion] = None
    priority_score: int = 50
    reviewer_status: Optional[ReviewerStatus] = None
    reviewers_voted: int = 0
    reviewers_needed: int = 2
    my_decision: Optional[Verdict] = None
    visible_decisions: List[VoteView] = Field(default_factory=list)
    has_conflict: bool = False
    created_at: datetime


class QueuePage(BaseModel):
    items: List[QueueItem]
    total: int
    page: int
    page_size: int


class AuditEntry(BaseModel):
    """Append-only record of lifecycle and override actions."""

    entry_id: int
    project_id: str
    actor_id: str
    kind: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class ReliabilityReport(BaseModel):
    """Inter-rater agreement for the dual-screened studies of one phase.

    ``kappa`` is None until at least one study has exactly two human
    decisions.  ``confusion_matrix`` is keyed first-reviewer verdict ->
    second-reviewer verdict.
    """

    project_id: str
    phase: Phase
    studies_analyzed: int = 0
    kappa: Optional[float] = None
    interpretation: str = "Insufficient Data"
    recommendation: str = "Need at least one study with two independent reviews."
    agreement_rate: Optional[int] = None
    agreements: int = 0
    disagreements: int = 0
    confusion_matrix: Dict[str, Dict[str, int]] = Field(default_factory=dict)


class ReviewerWorkload(BaseModel):
    """How much of a phase one reviewer has screened."""

    reviewer_id: str
    assigned: int = 0
    completed: int = 0
    pending: int = 0
    assigned_pending: int = 0
    avg_time_seconds: Optional[int] = None
