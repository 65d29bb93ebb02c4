"""Operation facade for the screening engine.

``ScreeningService`` wires the workflow components to one store and
exposes the operations transports call: submitting decisions, reading
queues and phase statistics, resolving conflicts, advancing phases and
running batches.  Authorization is checked here, against the role the
external auth layer reports for the caller.  The service holds no state
between calls beyond the store connection.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Union

from .config.settings import settings
from .core.errors import AuthorizationError, ConflictStateError, NotFoundError, PreconditionError, ValidationError
from .core.models import (
    Actor,
    AdvanceResult,
    AuditEntry,
    BatchOperation,
    BatchResult,
    Conflict,
    Decision,
    HarmonizedDecision,
    Phase,
    PhaseStats,
    ProjectConfig,
    QueueFilters,
    QueuePage,
    QuorumStatus,
    ReliabilityReport,
    ReviewerWorkload,
    Role,
    Study,
    Verdict,
    VoteView,
)
from .io.store import ScreeningStore
from .io.studies import load_studies
from .utils.logging import get_logger
from .workflow import (
    BatchOperator,
    ConflictResolver,
    DecisionStore,
    PhaseAdvancer,
    PhaseGate,
    QuorumEvaluator,
    ScreeningAnalytics,
    ScreeningQueue,
)
from .workflow.decisions import coerce_phase

logger = get_logger(__name__)


def _require_elevated(actor: Actor, action: str) -> None:
    if not actor.is_elevated:
        raise AuthorizationError(f"Only project owners and leads can {action}")


class ScreeningService:
    """Entry point for all screening operations."""

    def __init__(
        self,
        store: Optional[ScreeningStore] = None,
        db_path: Optional[Union[Path, str]] = None,
    ) -> None:
        self.store = store or ScreeningStore(db_path or settings.database_path)
        self.decisions = DecisionStore(self.store)
        self.quorum = QuorumEvaluator(self.store)
        self.conflicts = ConflictResolver(self.store)
        self.gate = PhaseGate(self.store)
        self.advancer = PhaseAdvancer(self.store, self.gate)
        self.batch = BatchOperator(
            self.store,
            self.decisions,
            system_reviewer_id=settings.system_reviewer_id,
            default_ai_threshold=settings.ai_confidence_threshold,
        )
        self.queue = ScreeningQueue(
            self.store,
            venue_boost=settings.priority_venue_boost,
            keyword_boost=settings.priority_keyword_boost,
        )
        self.analytics = ScreeningAnalytics(self.store, system_reviewer_id=settings.system_reviewer_id)

    # ------------------------------------------------------------------
    # Projects and studies

    def create_project(
        self,
        project_id: str,
        name: str = "",
        quorum_size: Optional[int] = None,
        blind_screening: Optional[bool] = None,
    ) -> ProjectConfig:
        if not project_id:
            raise ValidationError("A project id is required")
        quorum = settings.default_quorum_size if quorum_size is None else quorum_size
        if quorum < 1:
            raise ValidationError("quorum_size must be at least 1")
        config = ProjectConfig(
            project_id=project_id,
            name=name,
            quorum_size=quorum,
            blind_screening=settings.default_blind_screening if blind_screening is None else blind_screening,
        )
        return self.store.create_project(config)

    def configure_project(
        self,
        actor: Actor,
        project_id: str,
        quorum_size: Optional[int] = None,
        blind_screening: Optional[bool] = None,
    ) -> ProjectConfig:
        _require_elevated(actor, "change project settings")
        config = self.store.get_project(project_id)
        if quorum_size is not None:
            if quorum_size < 1:
                raise ValidationError("quorum_size must be at least 1")
            config.quorum_size = quorum_size
        if blind_screening is not None:
            config.blind_screening = blind_screening
        self.store.update_project(config)
        self.store.record_audit(
            project_id,
            actor.user_id,
            "project_configured",
            {"quorum_size": config.quorum_size, "blind_screening": config.blind_screening},
        )
        return config

    def get_project(self, project_id: str) -> ProjectConfig:
        return self.store.get_project(project_id)

    def add_study(self, study: Study) -> Study:
        return self.store.add_study(study)

    def import_studies(self, project_id: str, path: Path) -> List[str]:
        """Add studies from a file, skipping IDs that already exist."""
        self.store.get_project(project_id)
        added: List[str] = []
        for study in load_studies(path, project_id):
            if self.store.find_study(study.study_id) is not None:
                logger.warning(f"Skipping existing study {study.study_id}")
                continue
            self.store.add_study(study)
            added.append(study.study_id)
        logger.info(f"Imported {len(added)} studies into {project_id}")
        return added

    # ------------------------------------------------------------------
    # Decisions and quorum

    def _check_scope(self, study_id: str, project_id: Optional[str]) -> None:
        """Treat a study outside the caller's project as missing."""
        if project_id is None:
            return
        study = self.store.get_study(study_id)
        if study.project_id != project_id:
            raise NotFoundError(f"Study {study_id} not found in project {project_id}")

    def submit_decision(
        self,
        actor: Actor,
        study_id: str,
        phase: Union[Phase, str],
        verdict: Union[Verdict, str],
        confidence: Optional[float] = None,
        reasoning: Optional[str] = None,
        exclusion_reason: Optional[str] = None,
        time_spent_ms: Optional[int] = None,
        project_id: Optional[str] = None,
    ) -> Decision:
        if actor.role == Role.VIEWER:
            raise AuthorizationError("Viewers cannot submit screening decisions")
        self._check_scope(study_id, project_id)
        return self.decisions.submit(
            study_id,
            phase,
            actor.user_id,
            verdict,
            confidence=confidence,
            reasoning=reasoning,
            exclusion_reason=exclusion_reason,
            time_spent_ms=time_spent_ms,
        )

    def get_status(
        self,
        actor: Actor,
        study_id: str,
        phase: Union[Phase, str],
        project_id: Optional[str] = None,
    ) -> QuorumStatus:
        self._check_scope(study_id, project_id)
        return self.quorum.status_for(study_id, coerce_phase(phase), actor.user_id)

    def get_visible_decisions(
        self,
        actor: Actor,
        study_id: str,
        phase: Union[Phase, str],
        project_id: Optional[str] = None,
    ) -> List[VoteView]:
        self._check_scope(study_id, project_id)
        return self.quorum.visible_decisions(study_id, coerce_phase(phase), actor.user_id)

    # ------------------------------------------------------------------
    # Reads

    def get_queue(
        self,
        actor: Actor,
        project_id: str,
        phase: Union[Phase, str],
        filters: Optional[QueueFilters] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> QueuePage:
        return self.queue.get_queue(
            project_id,
            phase,
            actor.user_id,
            filters=filters,
            page=page,
            page_size=page_size or settings.queue_page_size,
        )

    def get_phase_stats(self, actor: Actor, project_id: str, phase: Union[Phase, str]) -> PhaseStats:
        return self.gate.stats(project_id, phase, actor.user_id)

    def get_conflicts(self, actor: Actor, project_id: str, phase: Union[Phase, str]) -> List[Conflict]:
        return self.conflicts.conflicts_for(project_id, phase)

    def get_reliability(self, actor: Actor, project_id: str, phase: Union[Phase, str]) -> ReliabilityReport:
        return self.analytics.reliability(project_id, phase)

    def get_workload(self, actor: Actor, project_id: str, phase: Union[Phase, str]) -> List[ReviewerWorkload]:
        return self.analytics.workload(project_id, phase)

    def audit_log(self, actor: Actor, project_id: str, limit: int = 100) -> List[AuditEntry]:
        _require_elevated(actor, "read the audit log")
        self.store.get_project(project_id)
        return self.store.audit_log(project_id, limit)

    # ------------------------------------------------------------------
    # Lead operations

    def resolve_conflict(
        self,
        actor: Actor,
        study_id: str,
        phase: Union[Phase, str],
        harmonized_verdict: Union[Verdict, str, None],
        notes: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> HarmonizedDecision:
        _require_elevated(actor, "resolve conflicts")
        self._check_scope(study_id, project_id)
        return self.conflicts.resolve(study_id, phase, harmonized_verdict, notes, actor.user_id)

    def advance_phase(self, actor: Actor, project_id: str, current_phase: Union[Phase, str]) -> AdvanceResult:
        """Promote included studies, retrying once if the phase changed mid-flight.

        The gate is re-validated at team level: every study must have
        reached quorum and no conflict may be open.
        """
        _require_elevated(actor, "advance phases")
        try:
            return self.advancer.advance(project_id, current_phase, actor.user_id)
        except ConflictStateError as first:
            logger.warning(f"Retrying advancement after concurrent change: {first.changed_study_ids}")
            try:
                return self.advancer.advance(project_id, current_phase, actor.user_id)
            except PreconditionError as exc:
                # the first plan passed the gate; only the concurrent change can fail it
                raise ConflictStateError(
                    first.message,
                    changed_study_ids=first.changed_study_ids,
                    conditions=exc.conditions,
                ) from exc

    def run_batch(self, actor: Actor, project_id: str, operation: BatchOperation) -> BatchResult:
        return self.batch.run_batch(project_id, operation, actor)

    def close(self) -> None:
        self.store.close()
