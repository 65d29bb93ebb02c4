"""Bulk operations over an explicit list of studies.

Each study is its own unit of work: one failure is recorded with its
reason and the batch carries on, so ``processed + failed`` always equals
the number of requested studies.  Force moves and resets are override
operations reserved for project leads and are logged as such.
"""

from __future__ import annotations

import sqlite3
from typing import Callable, Dict

from ..core.errors import AuthorizationError, NotFoundError, PreconditionError, ScreeningError, ValidationError
from ..core.models import Actor, BatchFailure, BatchKind, BatchOperation, BatchResult, Study, Verdict
from ..io.store import ScreeningStore
from ..utils.logging import get_logger
from .decisions import DecisionStore

logger = get_logger(__name__)

ELEVATED_KINDS = {BatchKind.MOVE_PHASE, BatchKind.RESET}


class BatchOperator:
    """Apply one operation to many studies with per-item isolation."""

    def __init__(
        self,
        store: ScreeningStore,
        decisions: DecisionStore,
        system_reviewer_id: str = "system:ai",
        default_ai_threshold: float = 80.0,
    ) -> None:
        self.store = store
        self.decisions = decisions
        self.system_reviewer_id = system_reviewer_id
        self.default_ai_threshold = default_ai_threshold
        self._handlers: Dict[BatchKind, Callable[[Study, BatchOperation, Actor], None]] = {
            BatchKind.ASSIGN: self._assign,
            BatchKind.APPLY_AI: self._apply_ai,
            BatchKind.MOVE_PHASE: self._move_phase,
            BatchKind.RESET: self._reset,
        }

    def run_batch(self, project_id: str, operation: BatchOperation, actor: Actor) -> BatchResult:
        if not operation.study_ids:
            raise ValidationError("A batch needs at least one study id")
        if len(set(operation.study_ids)) != len(operation.study_ids):
            raise ValidationError("Batch study ids must be unique")
        if operation.kind in ELEVATED_KINDS and not actor.is_elevated:
            raise AuthorizationError(f"Only project leads can run {operation.kind.value}")
        self.store.get_project(project_id)

        handler = self._handlers[operation.kind]
        result = BatchResult(kind=operation.kind)
        for study_id in operation.study_ids:
            try:
                study = self._load(project_id, study_id)
                with self.store.transaction():
                    handler(study, operation, actor)
            except ScreeningError as exc:
                result.failures.append(BatchFailure(study_id=study_id, reason=exc.message))
                continue
            except sqlite3.Error as exc:
                logger.error(
                    f"Storage error in batch {operation.kind.value} for {study_id}: {exc}",
                    extra={"context": {"project_id": project_id, "study_id": study_id}},
                )
                result.failures.append(BatchFailure(study_id=study_id, reason=f"Storage error: {exc}"))
                continue
            result.processed += 1

        self.store.record_audit(
            project_id,
            actor.user_id,
            f"batch_{operation.kind.value}",
            {
                "study_count": len(operation.study_ids),
                "processed": result.processed,
                "failed": result.failed,
                "target_phase": operation.target_phase.value if operation.target_phase else None,
                "assignee_id": operation.assignee_id,
            },
        )
        logger.info(
            f"Batch {operation.kind.value}: {result.processed} processed, {result.failed} failed",
            extra={"context": {"project_id": project_id, "actor_id": actor.user_id}},
        )
        return result

    def _load(self, project_id: str, study_id: str) -> Study:
        study = self.store.find_study(study_id)
        if study is None or study.project_id != project_id:
            raise NotFoundError(f"Study {study_id} not found in project {project_id}")
        return study

    def _assign(self, study: Study, operation: BatchOperation, actor: Actor) -> None:
        if not operation.assignee_id:
            raise ValidationError("assignee_id is required for assign")
        self.store.assign(study.study_id, study.phase, operation.assignee_id)

    def _apply_ai(self, study: Study, operation: BatchOperation, actor: Actor) -> None:
        threshold = self.default_ai_threshold if operation.ai_threshold is None else operation.ai_threshold
        suggestion = study.ai_suggestion
        if suggestion is None:
            raise PreconditionError("No AI suggestion", ["no_ai_suggestion"])
        if suggestion.confidence < threshold:
            raise PreconditionError(
                f"AI confidence {suggestion.confidence:.0f} is below threshold {threshold:.0f}",
                ["below_threshold"],
            )
        if self.store.get_decision(study.study_id, study.phase, self.system_reviewer_id) is not None:
            raise PreconditionError("AI suggestion already applied", ["already_applied"])
        self.decisions.submit(
            study.study_id,
            study.phase,
            self.system_reviewer_id,
            suggestion.verdict,
            confidence=suggestion.confidence,
            reasoning=f"Applied AI suggestion (confidence: {suggestion.confidence:.0f}%)",
            exclusion_reason="AI suggestion" if suggestion.verdict == Verdict.EXCLUDE else None,
        )

    def _move_phase(self, study: Study, operation: BatchOperation, actor: Actor) -> None:
        target = operation.target_phase
        if target is None:
            raise ValidationError("target_phase is required for move_phase")
        if study.phase == target:
            raise PreconditionError(f"Study is already in {target.value}", ["already_in_phase"])
        self.store.set_phase([study.study_id], target)
        self.store.record_audit(
            study.project_id,
            actor.user_id,
            "force_move",
            {"study_id": study.study_id, "from_phase": study.phase.value, "to_phase": target.value},
        )
        logger.warning(
            f"Override: {actor.user_id} force-moved {study.study_id} from {study.phase.value} to {target.value}",
            extra={"context": {"override": "move_phase", "study_id": study.study_id}},
        )

    def _reset(self, study: Study, operation: BatchOperation, actor: Actor) -> None:
        removed = self.decisions.reset(study.study_id, study.phase)
        self.store.record_audit(
            study.project_id,
            actor.user_id,
            "reset",
            {"study_id": study.study_id, "phase": study.phase.value, "decisions_removed": removed},
        )
        logger.warning(
            f"Override: {actor.user_id} reset {removed} decisions on {study.study_id} ({study.phase.value})",
            extra={"context": {"override": "reset", "study_id": study.study_id}},
        )
