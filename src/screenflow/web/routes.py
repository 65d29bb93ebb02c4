"""API routes for the screening engine.

Every endpoint is a thin translation between JSON and a
:class:`~screenflow.service.ScreeningService` call.  Engine errors are
turned into responses by the handler registered in ``app.py``.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from pydantic import BaseModel, Field

from ..core.models import (
    Actor,
    AdvanceResult,
    AuditEntry,
    BatchKind,
    BatchOperation,
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
    SortKey,
    SortOrder,
    StatusFilter,
    Study,
    Verdict,
    VoteView,
)
from ..service import ScreeningService

router = APIRouter(prefix="/api")


class ProjectRequest(BaseModel):
    project_id: str
    name: str = ""
    quorum_size: Optional[int] = Field(None, ge=1)
    blind_screening: Optional[bool] = None


class DecisionRequest(BaseModel):
    study_id: str
    phase: Phase
    verdict: Verdict
    confidence: Optional[float] = None
    reasoning: Optional[str] = None
    exclusion_reason: Optional[str] = None
    time_spent_ms: Optional[int] = None


class AdvanceRequest(BaseModel):
    current_phase: Phase


class BatchRequest(BaseModel):
    operation: BatchKind
    study_ids: List[str]
    assignee_id: Optional[str] = None
    ai_threshold: Optional[float] = None
    target_phase: Optional[Phase] = None


class ResolveRequest(BaseModel):
    phase: Phase
    harmonized_verdict: Optional[Verdict] = None
    notes: Optional[str] = None


class BatchResponse(BaseModel):
    operation: BatchKind
    processed: int
    failed: int
    failures: List[Dict[str, str]]


def get_service(request: Request) -> ScreeningService:
    return request.app.state.service


def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: str = Header(Role.REVIEWER.value),
) -> Actor:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    try:
        role = Role(x_user_role.upper())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown role: {x_user_role}")
    return Actor(user_id=x_user_id, role=role)


@router.post("/projects", response_model=ProjectConfig)
async def create_project(
    req: ProjectRequest,
    service: ScreeningService = Depends(get_service),
    actor: Actor = Depends(get_actor),
) -> ProjectConfig:
    return service.create_project(req.project_id, req.name, req.quorum_size, req.blind_screening)


@router.post("/projects/{project_id}/studies", response_model=Study)
async def add_study(
    project_id: str,
    study: Study,
    service: ScreeningService = Depends(get_service),
    actor: Actor = Depends(get_actor),
) -> Study:
    if study.project_id != project_id:
        raise HTTPException(status_code=422, detail="Study project_id does not match the URL")
    return service.add_study(study)


@router.post("/projects/{project_id}/screening/decisions", response_model=Decision)
async def submit_decision(
    project_id: str,
    req: DecisionRequest,
    service: ScreeningService = Depends(get_service),
    actor: Actor = Depends(get_actor),
) -> Decision:
    return service.submit_decision(
        actor,
        req.study_id,
        req.phase,
        req.verdict,
        confidence=req.confidence,
        reasoning=req.reasoning,
        exclusion_reason=req.exclusion_reason,
        time_spent_ms=req.time_spent_ms,
        project_id=project_id,
    )


@router.get("/projects/{project_id}/screening/queue", response_model=QueuePage)
async def get_queue(
    project_id: str,
    phase: Phase = Query(Phase.TITLE_ABSTRACT),
    search: Optional[str] = None,
    sort_by: SortKey = SortKey.PRIORITY,
    sort_order: SortOrder = SortOrder.DESC,
    status_filter: StatusFilter = StatusFilter.ALL,
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1, le=500),
    service: ScreeningService = Depends(get_service),
    actor: Actor = Depends(get_actor),
) -> QueuePage:
    filters = QueueFilters(search=search, sort_by=sort_by, sort_order=sort_order, status_filter=status_filter)
    return service.get_queue(actor, project_id, phase, filters=filters, page=page, page_size=page_size)


@router.get("/projects/{project_id}/screening/stats", response_model=PhaseStats)
async def get_phase_stats(
    project_id: str,
    phase: Phase = Query(Phase.TITLE_ABSTRACT),
    service: ScreeningService = Depends(get_service),
    actor: Actor = Depends(get_actor),
) -> PhaseStats:
    return service.get_phase_stats(actor, project_id, phase)


@router.get("/projects/{project_id}/screening/reliability", response_model=ReliabilityReport)
async def get_reliability(
    project_id: str,
    phase: Phase = Query(Phase.TITLE_ABSTRACT),
    service: ScreeningService = Depends(get_service),
    actor: Actor = Depends(get_actor),
) -> ReliabilityReport:
    return service.get_reliability(actor, project_id, phase)


@router.get("/projects/{project_id}/screening/workload", response_model=List[ReviewerWorkload])
async def get_workload(
    project_id: str,
    phase: Phase = Query(Phase.TITLE_ABSTRACT),
    service: ScreeningService = Depends(get_service),
    actor: Actor = Depends(get_actor),
) -> List[ReviewerWorkload]:
    return service.get_workload(actor, project_id, phase)


@router.get("/projects/{project_id}/studies/{study_id}/status", response_model=QuorumStatus)
async def get_status(
    project_id: str,
    study_id: str,
    phase: Phase = Query(Phase.TITLE_ABSTRACT),
    service: ScreeningService = Depends(get_service),
    actor: Actor = Depends(get_actor),
) -> QuorumStatus:
    return service.get_status(actor, study_id, phase, project_id=project_id)


@router.get("/projects/{project_id}/studies/{study_id}/decisions", response_model=List[VoteView])
async def get_visible_decisions(
    project_id: str,
    study_id: str,
    phase: Phase = Query(Phase.TITLE_ABSTRACT),
    service: ScreeningService = Depends(get_service),
    actor: Actor = Depends(get_actor),
) -> List[VoteView]:
    return service.get_visible_decisions(actor, study_id, phase, project_id=project_id)


@router.post("/projects/{project_id}/screening/advance-phase", response_model=AdvanceResult)
async def advance_phase(
    project_id: str,
    req: AdvanceRequest,
    service: ScreeningService = Depends(get_service),
    actor: Actor = Depends(get_actor),
) -> AdvanceResult:
    return service.advance_phase(actor, project_id, req.current_phase)


@router.post("/projects/{project_id}/screening/batch", response_model=BatchResponse)
async def run_batch(
    project_id: str,
    req: BatchRequest,
    service: ScreeningService = Depends(get_service),
    actor: Actor = Depends(get_actor),
) -> BatchResponse:
    operation = BatchOperation(
        kind=req.operation,
        study_ids=req.study_ids,
        assignee_id=req.assignee_id,
        ai_threshold=req.ai_threshold,
        target_phase=req.target_phase,
    )
    result = service.run_batch(actor, project_id, operation)
    return BatchResponse(
        operation=result.kind,
        processed=result.processed,
        failed=result.failed,
        failures=[f.model_dump() for f in result.failures],
    )


@router.get("/projects/{project_id}/conflicts", response_model=List[Conflict])
async def get_conflicts(
    project_id: str,
    phase: Phase = Query(Phase.TITLE_ABSTRACT),
    service: ScreeningService = Depends(get_service),
    actor: Actor = Depends(get_actor),
) -> List[Conflict]:
    return service.get_conflicts(actor, project_id, phase)


@router.post("/projects/{project_id}/conflicts/{study_id}/resolve", response_model=HarmonizedDecision)
async def resolve_conflict(
    project_id: str,
    study_id: str,
    req: ResolveRequest,
    service: ScreeningService = Depends(get_service),
    actor: Actor = Depends(get_actor),
) -> HarmonizedDecision:
    return service.resolve_conflict(
        actor, study_id, req.phase, req.harmonized_verdict, req.notes, project_id=project_id
    )


@router.get("/projects/{project_id}/audit", response_model=List[AuditEntry])
async def get_audit_log(
    project_id: str,
    limit: int = Query(100, ge=1, le=1000),
    service: ScreeningService = Depends(get_service),
    actor: Actor = Depends(get_actor),
) -> List[AuditEntry]:
    return service.audit_log(actor, project_id, limit)
