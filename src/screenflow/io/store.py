"""SQLite persistence for projects, studies and screening decisions.

The store is the authoritative record the workflow components derive
their state from.  It holds no derived state: quorum, conflicts and
phase statistics are recomputed from these tables on every read.

A single connection is shared between threads and guarded by a
re-entrant lock, so writes to the same (study, phase, reviewer) key are
serialized.  ``transaction`` opens a ``BEGIN IMMEDIATE`` block for
multi-statement units of work such as phase advancement.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Union

from ..core.errors import NotFoundError, PreconditionError, ValidationError
from ..core.models import (
    AISuggestion,
    AuditEntry,
    BibliographicMetadata,
    Decision,
    HarmonizedDecision,
    Phase,
    ProjectConfig,
    Study,
    Verdict,
    utcnow,
)
from ..utils.logging import get_logger

logger = get_logger(__name__)


class ScreeningStore:
    """SQLite-backed store for the screening workflow."""

    def __init__(self, db_path: Union[Path, str]) -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, isolation_level=None, check_same_thread=False)
        self._lock = threading.RLock()
        self._tx_depth = 0
        if self.db_path != ":memory:":
            self.conn.execute("PRAGMA journal_mode = WAL")
        self.conn.execute("PRAGMA synchronous = NORMAL")
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._init_schema()

    def _init_schema(self) -> None:
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS projects (
                project_id TEXT PRIMARY KEY,
                name TEXT NOT NULL DEFAULT '',
                quorum_size INTEGER NOT NULL DEFAULT 2,
                blind_screening BOOLEAN NOT NULL DEFAULT TRUE,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS studies (
                study_id TEXT PRIMARY KEY,
                project_id TEXT NOT NULL,
                metadata TEXT NOT NULL,
                ai_suggestion TEXT,
                phase TEXT NOT NULL,
                tags TEXT NOT NULL DEFAULT '[]',
                created_at TEXT NOT NULL,
                FOREIGN KEY (project_id) REFERENCES projects(project_id)
            );

            CREATE INDEX IF NOT EXISTS idx_studies_phase ON studies(project_id, phase);

            CREATE TABLE IF NOT EXISTS decisions (
                study_id TEXT NOT NULL,
                phase TEXT NOT NULL,
                reviewer_id TEXT NOT NULL,
                verdict TEXT NOT NULL,
                confidence REAL,
                reasoning TEXT,
                exclusion_reason TEXT,
                time_spent_ms INTEGER,
                followed_ai BOOLEAN,
                submitted_at TEXT NOT NULL,
                PRIMARY KEY (study_id, phase, reviewer_id),
                FOREIGN KEY (study_id) REFERENCES studies(study_id)
            );

            CREATE TABLE IF NOT EXISTS harmonized_decisions (
                study_id TEXT NOT NULL,
                phase TEXT NOT NULL,
                verdict TEXT NOT NULL,
                notes TEXT,
                resolved_by TEXT NOT NULL,
                resolved_at TEXT NOT NULL,
                PRIMARY KEY (study_id, phase),
                FOREIGN KEY (study_id) REFERENCES studies(study_id)
            );

            CREATE TABLE IF NOT EXISTS assignments (
                study_id TEXT NOT NULL,
                phase TEXT NOT NULL,
                reviewer_id TEXT NOT NULL,
                assigned_at TEXT NOT NULL,
                PRIMARY KEY (study_id, phase, reviewer_id),
                FOREIGN KEY (study_id) REFERENCES studies(study_id)
            );

            CREATE TABLE IF NOT EXISTS audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                project_id TEXT NOT NULL,
                actor_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                payload TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_audit_project ON audit_log(project_id, id);
            """
        )

    # ------------------------------------------------------------------
    # Transactions

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block as one atomic unit of work.

        Nested calls join the outermost transaction.
        """
        with self._lock:
            if self._tx_depth:
                self._tx_depth += 1
                try:
                    yield self.conn
                finally:
                    self._tx_depth -= 1
                return
            self.conn.execute("BEGIN IMMEDIATE")
            self._tx_depth = 1
            try:
                yield self.conn
            except BaseException:
                self.conn.execute("ROLLBACK")
                raise
            else:
                self.conn.execute("COMMIT")
            finally:
                self._tx_depth = 0

    def _execute(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        with self._lock:
            return self.conn.execute(sql, tuple(params))

    def _fetchall(self, sql: str, params: Iterable[Any] = ()) -> List[tuple]:
        with self._lock:
            return self.conn.execute(sql, tuple(params)).fetchall()

    def _fetchone(self, sql: str, params: Iterable[Any] = ()) -> Optional[tuple]:
        with self._lock:
            return self.conn.execute(sql, tuple(params)).fetchone()

    # ------------------------------------------------------------------
    # Projects

    def create_project(self, config: ProjectConfig) -> ProjectConfig:
        try:
            self._execute(
                """INSERT INTO projects (project_id, name, quorum_size, blind_screening, created_at)
                VALUES (?, ?, ?, ?, ?)""",
                (
                    config.project_id,
                    config.name,
                    config.quorum_size,
                    config.blind_screening,
                    config.created_at.isoformat(),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise ValidationError(f"Project {config.project_id} already exists") from exc
        logger.info(f"Created project {config.project_id} (quorum={config.quorum_size})")
        return config

    def update_project(self, config: ProjectConfig) -> ProjectConfig:
        cur = self._execute(
            "UPDATE projects SET name = ?, quorum_size = ?, blind_screening = ? WHERE project_id = ?",
            (config.name, config.quorum_size, config.blind_screening, config.project_id),
        )
        if cur.rowcount == 0:
            raise NotFoundError(f"Project {config.project_id} not found")
        return config

    def get_project(self, project_id: str) -> ProjectConfig:
        row = self._fetchone(
            "SELECT project_id, name, quorum_size, blind_screening, created_at FROM projects WHERE project_id = ?",
            (project_id,),
        )
        if not row:
            raise NotFoundError(f"Project {project_id} not found")
        return ProjectConfig(
            project_id=row[0],
            name=row[1],
            quorum_size=row[2],
            blind_screening=bool(row[3]),
            created_at=datetime.fromisoformat(row[4]),
        )

    # ------------------------------------------------------------------
    # Studies

    _STUDY_COLUMNS = "study_id, project_id, metadata, ai_suggestion, phase, tags, created_at"

    @staticmethod
    def _row_to_study(row: tuple) -> Study:
        return Study(
            study_id=row[0],
            project_id=row[1],
            metadata=BibliographicMetadata.model_validate_json(row[2]),
            ai_suggestion=AISuggestion.model_validate_json(row[3]) if row[3] else None,
            phase=Phase(row[4]),
            tags=json.loads(row[5]),
            created_at=datetime.fromisoformat(row[6]),
        )

    def add_study(self, study: Study) -> Study:
        self.get_project(study.project_id)
        try:
            self._execute(
                f"INSERT INTO studies ({self._STUDY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    study.study_id,
                    study.project_id,
                    study.metadata.model_dump_json(),
                    study.ai_suggestion.model_dump_json() if study.ai_suggestion else None,
                    study.phase.value,
                    json.dumps(study.tags),
                    study.created_at.isoformat(),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise ValidationError(f"Study {study.study_id} already exists") from exc
        return study

    def find_study(self, study_id: str) -> Optional[Study]:
        row = self._fetchone(f"SELECT {self._STUDY_COLUMNS} FROM studies WHERE study_id = ?", (study_id,))
        return self._row_to_study(row) if row else None

    def get_study(self, study_id: str) -> Study:
        study = self.find_study(study_id)
        if study is None:
            raise NotFoundError(f"Study {study_id} not found")
        return study

    def list_studies(self, project_id: str, phase: Optional[Phase] = None) -> List[Study]:
        if phase is None:
            rows = self._fetchall(
                f"SELECT {self._STUDY_COLUMNS} FROM studies WHERE project_id = ? ORDER BY created_at, study_id",
                (project_id,),
            )
        else:
            rows = self._fetchall(
                f"""SELECT {self._STUDY_COLUMNS} FROM studies
                WHERE project_id = ? AND phase = ? ORDER BY created_at, study_id""",
                (project_id, phase.value),
            )
        return [self._row_to_study(r) for r in rows]

    def set_tags(self, study_id: str, tags: List[str]) -> None:
        self._execute("UPDATE studies SET tags = ? WHERE study_id = ?", (json.dumps(tags), study_id))

    def set_phase(self, study_ids: List[str], phase: Phase) -> int:
        """Point every listed study at ``phase`` in one statement."""
        if not study_ids:
            return 0
        placeholders = ",".join("?" for _ in study_ids)
        cur = self._execute(
            f"UPDATE studies SET phase = ? WHERE study_id IN ({placeholders})",
            [phase.value, *study_ids],
        )
        return cur.rowcount

    # ------------------------------------------------------------------
    # Decisions

    _DECISION_COLUMNS = (
        "study_id, phase, reviewer_id, verdict, confidence, reasoning, "
        "exclusion_reason, time_spent_ms, followed_ai, submitted_at"
    )

    @staticmethod
    def _row_to_decision(row: tuple) -> Decision:
        return Decision(
            study_id=row[0],
            phase=Phase(row[1]),
            reviewer_id=row[2],
            verdict=Verdict(row[3]),
            confidence=row[4],
            reasoning=row[5],
            exclusion_reason=row[6],
            time_spent_ms=row[7],
            followed_ai=None if row[8] is None else bool(row[8]),
            submitted_at=datetime.fromisoformat(row[9]),
        )

    def upsert_decision(self, decision: Decision) -> Decision:
        """Insert or fully replace the decision for its (study, phase, reviewer) key."""
        self._execute(
            f"""INSERT INTO decisions ({self._DECISION_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (study_id, phase, reviewer_id) DO UPDATE SET
                verdict = excluded.verdict,
                confidence = excluded.confidence,
                reasoning = excluded.reasoning,
                exclusion_reason = excluded.exclusion_reason,
                time_spent_ms = excluded.time_spent_ms,
                followed_ai = excluded.followed_ai,
                submitted_at = excluded.submitted_at""",
            (
                decision.study_id,
                decision.phase.value,
                decision.reviewer_id,
                decision.verdict.value,
                decision.confidence,
                decision.reasoning,
                decision.exclusion_reason,
                decision.time_spent_ms,
                decision.followed_ai,
                decision.submitted_at.isoformat(),
            ),
        )
        return decision

    def get_decision(self, study_id: str, phase: Phase, reviewer_id: str) -> Optional[Decision]:
        row = self._fetchone(
            f"SELECT {self._DECISION_COLUMNS} FROM decisions WHERE study_id = ? AND phase = ? AND reviewer_id = ?",
            (study_id, phase.value, reviewer_id),
        )
        return self._row_to_decision(row) if row else None

    def decisions_for(self, study_id: str, phase: Phase) -> List[Decision]:
        rows = self._fetchall(
            f"""SELECT {self._DECISION_COLUMNS} FROM decisions
            WHERE study_id = ? AND phase = ? ORDER BY submitted_at, reviewer_id""",
            (study_id, phase.value),
        )
        return [self._row_to_decision(r) for r in rows]

    def decisions_in_phase(self, project_id: str, phase: Phase) -> Dict[str, List[Decision]]:
        """Decisions for ``phase`` keyed by study, limited to studies currently in it."""
        columns = ", ".join("d." + c.strip() for c in self._DECISION_COLUMNS.split(","))
        rows = self._fetchall(
            f"""SELECT {columns}
            FROM decisions d JOIN studies s ON s.study_id = d.study_id
            WHERE s.project_id = ? AND s.phase = ? AND d.phase = ?
            ORDER BY d.submitted_at, d.reviewer_id""",
            (project_id, phase.value, phase.value),
        )
        by_study: Dict[str, List[Decision]] = {}
        for row in rows:
            decision = self._row_to_decision(row)
            by_study.setdefault(decision.study_id, []).append(decision)
        return by_study

    def delete_decisions(self, study_id: str, phase: Phase) -> int:
        cur = self._execute(
            "DELETE FROM decisions WHERE study_id = ? AND phase = ?",
            (study_id, phase.value),
        )
        return cur.rowcount

    # ------------------------------------------------------------------
    # Harmonized decisions

    @staticmethod
    def _row_to_harmonized(row: tuple) -> HarmonizedDecision:
        return HarmonizedDecision(
            study_id=row[0],
            phase=Phase(row[1]),
            verdict=Verdict(row[2]),
            notes=row[3],
            resolved_by=row[4],
            resolved_at=datetime.fromisoformat(row[5]),
        )

    def save_harmonized(self, harmonized: HarmonizedDecision) -> HarmonizedDecision:
        try:
            self._execute(
                """INSERT INTO harmonized_decisions
                (study_id, phase, verdict, notes, resolved_by, resolved_at)
                VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    harmonized.study_id,
                    harmonized.phase.value,
                    harmonized.verdict.value,
                    harmonized.notes,
                    harmonized.resolved_by,
                    harmonized.resolved_at.isoformat(),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise PreconditionError(
                f"Study {harmonized.study_id} is already resolved for {harmonized.phase.value}",
                ["already_resolved"],
            ) from exc
        return harmonized

    def get_harmonized(self, study_id: str, phase: Phase) -> Optional[HarmonizedDecision]:
        row = self._fetchone(
            """SELECT study_id, phase, verdict, notes, resolved_by, resolved_at
            FROM harmonized_decisions WHERE study_id = ? AND phase = ?""",
            (study_id, phase.value),
        )
        return self._row_to_harmonized(row) if row else None

    def harmonized_in_phase(self, project_id: str, phase: Phase) -> Dict[str, HarmonizedDecision]:
        rows = self._fetchall(
            """SELECT h.study_id, h.phase, h.verdict, h.notes, h.resolved_by, h.resolved_at
            FROM harmonized_decisions h JOIN studies s ON s.study_id = h.study_id
            WHERE s.project_id = ? AND s.phase = ? AND h.phase = ?""",
            (project_id, phase.value, phase.value),
        )
        return {r[0]: self._row_to_harmonized(r) for r in rows}

    def delete_harmonized(self, study_id: str, phase: Phase) -> int:
        cur = self._execute(
            "DELETE FROM harmonized_decisions WHERE study_id = ? AND phase = ?",
            (study_id, phase.value),
        )
        return cur.rowcount

    # ------------------------------------------------------------------
    # Assignments

    def assign(self, study_id: str, phase: Phase, reviewer_id: str) -> None:
        self._execute(
            """INSERT OR IGNORE INTO assignments (study_id, phase, reviewer_id, assigned_at)
            VALUES (?, ?, ?, ?)""",
            (study_id, phase.value, reviewer_id, utcnow().isoformat()),
        )

    def assignees_for(self, study_id: str, phase: Phase) -> List[str]:
        rows = self._fetchall(
            "SELECT reviewer_id FROM assignments WHERE study_id = ? AND phase = ? ORDER BY assigned_at, reviewer_id",
            (study_id, phase.value),
        )
        return [r[0] for r in rows]

    def assignments_in_phase(self, project_id: str, phase: Phase) -> Dict[str, List[str]]:
        """Assigned study IDs per reviewer, limited to studies currently in ``phase``."""
        rows = self._fetchall(
            """SELECT a.reviewer_id, a.study_id
            FROM assignments a JOIN studies s ON s.study_id = a.study_id
            WHERE s.project_id = ? AND s.phase = ? AND a.phase = ?
            ORDER BY a.reviewer_id, a.assigned_at, a.study_id""",
            (project_id, phase.value, phase.value),
        )
        by_reviewer: Dict[str, List[str]] = {}
        for reviewer_id, study_id in rows:
            by_reviewer.setdefault(reviewer_id, []).append(study_id)
        return by_reviewer

    # ------------------------------------------------------------------
    # Audit log

    def record_audit(self, project_id: str, actor_id: str, kind: str, payload: Dict[str, Any]) -> None:
        self._execute(
            "INSERT INTO audit_log (project_id, actor_id, kind, payload, created_at) VALUES (?, ?, ?, ?, ?)",
            (project_id, actor_id, kind, json.dumps(payload, default=str), utcnow().isoformat()),
        )

    def audit_log(self, project_id: str, limit: int = 100) -> List[AuditEntry]:
        rows = self._fetchall(
            """SELECT id, project_id, actor_id, kind, payload, created_at FROM audit_log
            WHERE project_id = ? ORDER BY id DESC LIMIT ?""",
            (project_id, limit),
        )
        return [
            AuditEntry(
                entry_id=r[0],
                project_id=r[1],
                actor_id=r[2],
                kind=r[3],
                payload=json.loads(r[4]),
                created_at=datetime.fromisoformat(r[5]),
            )
            for r in rows
        ]

    def close(self) -> None:
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
