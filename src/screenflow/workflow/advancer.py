"""Atomic promotion of included studies to the next phase.

Advancement is optimistic: a plan records the gate result and a
fingerprint of every study in the phase, then the commit re-runs the
gate inside a write transaction.  If the gate no longer passes or the
set of studies to promote has changed, nothing moves and a
``ConflictStateError`` names the studies that changed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from ..core.errors import ConflictStateError, PreconditionError
from ..core.models import AdvanceResult, Phase
from ..io.store import ScreeningStore
from ..utils.logging import get_logger
from .decisions import coerce_phase
from .gate import PhaseGate, PhaseSnapshot

logger = get_logger(__name__)


@dataclass
class AdvancePlan:
    project_id: str
    from_phase: Phase
    to_phase: Phase
    caller_id: Optional[str]
    snapshot: PhaseSnapshot


class PhaseAdvancer:
    """Promote every INCLUDE study in a phase, or none of them."""

    def __init__(self, store: ScreeningStore, gate: PhaseGate) -> None:
        self.store = store
        self.gate = gate

    def plan(self, project_id: str, from_phase: Union[Phase, str], caller_id: Optional[str] = None) -> AdvancePlan:
        from_phase = coerce_phase(from_phase)
        to_phase = from_phase.next_phase
        if to_phase is None:
            raise PreconditionError(f"{from_phase.value} is the final phase", ["final_phase"])
        snapshot = self.gate.snapshot(project_id, from_phase, caller_id)
        if not snapshot.stats.can_advance:
            raise PreconditionError(
                f"Cannot advance {from_phase.value}: " + "; ".join(snapshot.stats.blockers),
                snapshot.stats.blockers,
            )
        return AdvancePlan(project_id, from_phase, to_phase, caller_id, snapshot)

    def commit(self, plan: AdvancePlan, actor_id: str) -> AdvanceResult:
        """Re-validate the gate and move the qualifying studies in one transaction."""
        with self.store.transaction():
            current = self.gate.snapshot(plan.project_id, plan.from_phase, plan.caller_id)
            if not current.stats.can_advance or current.qualifying != plan.snapshot.qualifying:
                changed = current.changed_since(plan.snapshot)
                logger.warning(
                    f"Aborted advancement of {plan.from_phase.value}: {len(changed)} studies changed",
                    extra={"context": {"project_id": plan.project_id, "changed": changed}},
                )
                raise ConflictStateError(
                    f"Phase {plan.from_phase.value} changed during advancement",
                    changed_study_ids=changed,
                    conditions=current.stats.blockers,
                )
            moved = self.store.set_phase(current.qualifying, plan.to_phase)
            self.store.record_audit(
                plan.project_id,
                actor_id,
                "phase_advanced",
                {
                    "from_phase": plan.from_phase.value,
                    "to_phase": plan.to_phase.value,
                    "count": moved,
                    "study_ids": current.qualifying,
                },
            )
        logger.info(f"Advanced {moved} studies from {plan.from_phase.value} to {plan.to_phase.value}")
        return AdvanceResult(
            from_phase=plan.from_phase,
            to_phase=plan.to_phase,
            advanced_count=moved,
            study_ids=list(current.qualifying),
        )

    def advance(
        self,
        project_id: str,
        from_phase: Union[Phase, str],
        actor_id: str,
        caller_id: Optional[str] = None,
    ) -> AdvanceResult:
        return self.commit(self.plan(project_id, from_phase, caller_id), actor_id)
