"""Session and progress endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ..dependencies import get_progress_ledger
from ..progress import ProgressLedger
from ..schemas import (
    ProgressSnapshot,
    Session,
    SessionCreate,
    SessionUpdate,
    StageCompletionRequest,
    StageCompletionResponse,
    TrackingSummary,
)


router = APIRouter(tags=["sessions"])


@router.post("/sessions", response_model=Session, status_code=status.HTTP_201_CREATED)
def create_session(payload: SessionCreate, ledger: ProgressLedger = Depends(get_progress_ledger)) -> Session:
    """Start a session; an id is generated when the client does not send one."""

    return ledger.create_session(
        session_id=payload.session_id,
        current_stage=payload.current_stage,
        completed_stages=payload.completed_stages,
        data=payload.data,
    )


@router.get("/sessions/{session_id}", response_model=Session)
def fetch_session(session_id: str, ledger: ProgressLedger = Depends(get_progress_ledger)) -> Session:
    return ledger.get_session(session_id)


@router.patch("/sessions/{session_id}", response_model=Session)
def patch_session(
    session_id: str,
    payload: SessionUpdate,
    ledger: ProgressLedger = Depends(get_progress_ledger),
) -> Session:
    return ledger.update_session(
        session_id,
        current_stage=payload.current_stage,
        completed_stages=payload.completed_stages,
        data=payload.data,
    )


@router.post("/sessions/{session_id}/stages/{stage}/complete", response_model=StageCompletionResponse)
def complete_stage(
    session_id: str,
    stage: str,
    payload: StageCompletionRequest,
    ledger: ProgressLedger = Depends(get_progress_ledger),
) -> StageCompletionResponse:
    """Mark a stage complete; legacy stage names in the path are accepted."""

    return ledger.record_completion(session_id, stage, payload.data, target_stage=payload.next_stage)


@router.get("/sessions/{session_id}/progress", response_model=ProgressSnapshot)
def fetch_progress(session_id: str, ledger: ProgressLedger = Depends(get_progress_ledger)) -> ProgressSnapshot:
    return ledger.snapshot(session_id)


@router.get("/admin/tracking", response_model=TrackingSummary)
def tracking(ledger: ProgressLedger = Depends(get_progress_ledger)) -> TrackingSummary:
    """Progress across all sessions for the admin dashboard."""

    return ledger.tracking_summary()
