"""Load candidate studies from tabular files.

Bibliography parsing is handled upstream; this module only reads the
flat CSV or JSON exports it produces.  Multi-valued columns (authors,
keywords, tags) are semicolon separated.  Rows without a ``study_id``
get a stable identifier derived from their DOI or normalized title.
"""

from __future__ import annotations

import hashlib
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from ..core.errors import ValidationError
from ..core.models import AISuggestion, Author, BibliographicMetadata, Phase, Study, Verdict
from ..utils.logging import get_logger

logger = get_logger(__name__)


def generate_study_id(project_id: str, doi: Optional[str], title: str) -> str:
    """Derive a deterministic study ID from the DOI, falling back to the title."""
    if doi:
        key = f"doi:{doi.lower().strip()}"
    else:
        normalized = re.sub(r"[^\w\s]", "", title.lower())
        key = "title:" + " ".join(normalized.split())
    digest = hashlib.sha256(f"{project_id}|{key}".encode()).hexdigest()[:16]
    return f"{project_id}:{digest}"


def _split(value: Any) -> List[str]:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return []
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    return [part.strip() for part in str(value).split(";") if part.strip()]


def _clean(value: Any) -> Optional[Any]:
    if value is None:
        return None
    if isinstance(value, float) and pd.isna(value):
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return value


def row_to_study(project_id: str, row: Dict[str, Any]) -> Study:
    """Build a :class:`Study` from one flat record."""
    title = _clean(row.get("title"))
    if not title:
        raise ValidationError("Study record is missing a title")
    doi = _clean(row.get("doi"))
    year = _clean(row.get("year"))
    metadata = BibliographicMetadata(
        title=str(title).strip(),
        abstract=_clean(row.get("abstract")),
        authors=[Author(name=name) for name in _split(row.get("authors"))],
        year=int(year) if year is not None else None,
        venue=_clean(row.get("venue")),
        doi=doi,
        keywords=_split(row.get("keywords")),
    )
    suggestion = None
    ai_verdict = _clean(row.get("ai_verdict"))
    if ai_verdict:
        ai_confidence = _clean(row.get("ai_confidence"))
        suggestion = AISuggestion(
            verdict=Verdict(str(ai_verdict).strip().upper()),
            confidence=float(ai_confidence) if ai_confidence is not None else 0.0,
            reasoning=_clean(row.get("ai_reasoning")),
        )
    study_id = _clean(row.get("study_id")) or generate_study_id(project_id, metadata.doi, metadata.title)
    return Study(
        study_id=str(study_id),
        project_id=project_id,
        metadata=metadata,
        ai_suggestion=suggestion,
        phase=Phase.TITLE_ABSTRACT,
        tags=_split(row.get("tags")),
    )


def load_studies(path: Path, project_id: str) -> List[Study]:
    """Read studies from a ``.csv`` or ``.json`` file."""
    if not path.exists():
        raise ValidationError(f"File not found: {path}")
    suffix = path.suffix.lower()
    if suffix == ".csv":
        df = pd.read_csv(path)
    elif suffix == ".json":
        df = pd.read_json(path, orient="records")
    else:
        raise ValidationError(f"Unsupported study file format: {suffix}")
    studies = [row_to_study(project_id, record) for record in df.to_dict("records")]
    logger.info(f"Loaded {len(studies)} studies from {path}")
    return studies
