"""Phase statistics and the advance gate.

A phase may advance only when the caller has nothing left to screen, no
conflicts are open and every study has reached quorum.  All three must
hold: a fast reviewer finishing their own queue must not promote studies
while a disagreement or a missing second review is outstanding.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple, Union

from ..core.models import Phase, PhaseStats, Verdict
from ..io.store import ScreeningStore
from .conflicts import conflict_reason, final_verdict_of
from .decisions import coerce_phase

Fingerprint = Tuple[Tuple[Tuple[str, str, str], ...], Optional[str]]


@dataclass
class PhaseSnapshot:
    """Statistics plus per-study fingerprints used to detect concurrent change."""

    stats: PhaseStats
    qualifying: List[str] = field(default_factory=list)
    fingerprints: Dict[str, Fingerprint] = field(default_factory=dict)

    def changed_since(self, earlier: "PhaseSnapshot") -> List[str]:
        """Study IDs whose decisions, harmonization or membership differ."""
        ids: Set[str] = set(self.fingerprints) | set(earlier.fingerprints)
        return sorted(sid for sid in ids if self.fingerprints.get(sid) != earlier.fingerprints.get(sid))


class PhaseGate:
    """Aggregate per-phase statistics and compute ``can_advance``."""

    def __init__(self, store: ScreeningStore) -> None:
        self.store = store

    def stats(self, project_id: str, phase: Union[Phase, str], caller_id: Optional[str] = None) -> PhaseStats:
        return self.snapshot(project_id, phase, caller_id).stats

    def snapshot(self, project_id: str, phase: Union[Phase, str], caller_id: Optional[str] = None) -> PhaseSnapshot:
        """Compute statistics for ``phase``.

        ``total_pending`` counts studies ``caller_id`` has not voted on.
        Without a caller it counts studies nobody has voted on yet.
        """
        phase = coerce_phase(phase)
        project = self.store.get_project(project_id)
        studies = self.store.list_studies(project_id, phase)
        decisions = self.store.decisions_in_phase(project_id, phase)
        harmonized = self.store.harmonized_in_phase(project_id, phase)
        quorum = project.quorum_size

        stats = PhaseStats(project_id=project_id, phase=phase, total=len(studies), next_phase=phase.next_phase)
        snapshot = PhaseSnapshot(stats=stats)
        completed = 0
        for study in studies:
            sid = study.study_id
            votes = decisions.get(sid, [])
            resolution = harmonized.get(sid)
            voters = {d.reviewer_id for d in votes}

            if caller_id is not None:
                if caller_id not in voters:
                    stats.total_pending += 1
            elif not voters:
                stats.total_pending += 1
            if len(voters) < quorum:
                stats.remaining_reviewers += 1
            else:
                completed += 1
            if conflict_reason(votes, quorum, resolution) is not None:
                stats.conflicts += 1

            verdict = final_verdict_of(votes, quorum, resolution)
            if verdict == Verdict.INCLUDE:
                stats.included += 1
                snapshot.qualifying.append(sid)
            elif verdict == Verdict.EXCLUDE:
                stats.excluded += 1
            elif verdict == Verdict.MAYBE:
                stats.maybe += 1

            snapshot.fingerprints[sid] = (
                tuple(sorted((d.reviewer_id, d.verdict.value, d.submitted_at.isoformat()) for d in votes)),
                resolution.verdict.value if resolution else None,
            )

        stats.progress = round(completed * 100 / stats.total) if stats.total else 100
        if stats.total_pending:
            stats.blockers.append(f"{stats.total_pending} studies still pending")
        if stats.conflicts:
            stats.blockers.append(f"{stats.conflicts} unresolved conflicts")
        if stats.remaining_reviewers:
            stats.blockers.append(f"{stats.remaining_reviewers} studies awaiting another reviewer")
        stats.can_advance = stats.total_pending == 0 and stats.conflicts == 0 and stats.remaining_reviewers == 0
        return snapshot
