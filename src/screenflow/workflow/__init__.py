"""Screening workflow components.

* :class:`DecisionStore` – validate and upsert reviewer decisions.
* :class:`QuorumEvaluator` – derive per-reviewer quorum status and
  enforce blind screening on the read path.
* :class:`ConflictResolver` – list disagreements and record harmonized
  verdicts.
* :class:`PhaseGate` – aggregate phase statistics and the advance gate.
* :class:`PhaseAdvancer` – atomically promote included studies.
* :class:`BatchOperator` – apply one operation to many studies with
  per-item failure isolation.
* :class:`ScreeningQueue` – filtered, sorted and paginated review queue.
* :class:`ScreeningAnalytics` – inter-rater reliability and reviewer
  workload reports.
"""

from .decisions import DecisionStore
from .quorum import QuorumEvaluator, evaluate_quorum, visible_votes
from .conflicts import ConflictResolver, conflict_reason, final_verdict_of
from .gate import PhaseGate, PhaseSnapshot
from .advancer import AdvancePlan, PhaseAdvancer
from .batch import BatchOperator
from .queue import ScreeningQueue
from .analytics import ScreeningAnalytics, cohens_kappa, interpret_kappa

__all__ = [
    "DecisionStore",
    "QuorumEvaluator",
    "evaluate_quorum",
    "visible_votes",
    "ConflictResolver",
    "conflict_reason",
    "final_verdict_of",
    "PhaseGate",
    "PhaseSnapshot",
    "AdvancePlan",
    "PhaseAdvancer",
    "BatchOperator",
    "ScreeningQueue",
    "ScreeningAnalytics",
    "cohens_kappa",
    "interpret_kappa",
]
