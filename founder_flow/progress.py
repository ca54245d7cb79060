"""Progress ledger: per-session stage completion and accumulated stage data."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .errors import NotFoundError
from .payloads import validate_payload
from .schemas import (
    ProgressSnapshot,
    Session,
    StageCompletionResponse,
    StageDetail,
    StageStatus,
    TrackingRow,
    TrackingSummary,
)
from .stages import STAGE_LABELS, CanonicalStage, all_ids, first_stage, next_stage, require
from .store import DurableStore
from .store.base import utcnow

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Derived views (pure)
# ---------------------------------------------------------------------------


def _completed_set(session: Session) -> set:
    return set(session.completed_stages) & set(all_ids())


def progress_percentage(session: Session) -> int:
    """Return the rounded share of canonical stages the session has completed."""

    total = len(all_ids())
    completed = len(_completed_set(session))
    # round-half-up, matching how the dashboard has always displayed it
    return min(100, int(100 * completed / total + 0.5))


def _has_data(session: Session, stage: CanonicalStage) -> bool:
    return bool(session.data.get(stage.value) or session.data.get(stage.value.replace("-", "")))


def stage_detail(session: Session) -> List[StageDetail]:
    """Return one status row per canonical stage, in workflow order."""

    completed = _completed_set(session)
    details = []
    for index, stage in enumerate(all_ids(), start=1):
        if stage in completed:
            status = StageStatus.COMPLETED
        elif stage == session.current_stage:
            status = StageStatus.IN_PROGRESS
        else:
            status = StageStatus.PENDING
        details.append(
            StageDetail(
                stage=stage,
                label=STAGE_LABELS[stage],
                index=index,
                status=status,
                has_data=_has_data(session, stage),
            )
        )
    return details


def build_snapshot(session: Session) -> ProgressSnapshot:
    completed = _completed_set(session)
    return ProgressSnapshot(
        session_id=session.session_id,
        current_stage=session.current_stage,
        completed_stages=session.completed_stages,
        progress_percent=progress_percentage(session),
        stages_completed=len(completed),
        total_stages=len(all_ids()),
        stage_details=stage_detail(session),
    )


# ---------------------------------------------------------------------------
# Input normalization
# ---------------------------------------------------------------------------


def _strict_stages(raw_stages: Iterable[str]) -> List[CanonicalStage]:
    """Normalize a caller-supplied stage list, rejecting anything unknown."""

    stages: List[CanonicalStage] = []
    for raw in raw_stages:
        stage = require(raw)
        if stage not in stages:
            stages.append(stage)
    return stages


def _strict_data(data: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Validate caller-supplied stage data and key it by canonical stage."""

    validated: Dict[str, Dict[str, Any]] = {}
    for key, payload in data.items():
        stage = require(key)
        validated.setdefault(stage.value, {}).update(validate_payload(stage, payload))
    return validated


def _merge_data(
    existing: Dict[str, Dict[str, Any]], incoming: Dict[str, Dict[str, Any]]
) -> Dict[str, Dict[str, Any]]:
    merged = {key: dict(value) for key, value in existing.items()}
    for stage, payload in incoming.items():
        merged.setdefault(stage, {}).update(payload)
    return merged


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class ProgressLedger:
    """Advance sessions through the canonical workflow.

    Every operation runs inside one store transaction that locks the session
    row for the whole read-modify-write cycle.
    """

    def __init__(self, store: DurableStore) -> None:
        self._store = store

    def create_session(
        self,
        session_id: Optional[str] = None,
        current_stage: Optional[str] = None,
        completed_stages: Optional[Iterable[str]] = None,
        data: Optional[Mapping[str, Any]] = None,
    ) -> Session:
        now = utcnow()
        session = Session(
            session_id=session_id or uuid.uuid4().hex,
            current_stage=require(current_stage) if current_stage else first_stage(),
            completed_stages=_strict_stages(completed_stages or []),
            data=_strict_data(data or {}),
            created_at=now,
            updated_at=now,
        )
        with self._store.transaction() as tx:
            tx.insert_session(session)
        logger.info("Created session %s", session.session_id, extra={"session_id": session.session_id})
        return session

    def get_session(self, session_id: str) -> Session:
        with self._store.transaction() as tx:
            session = tx.get_session(session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        return session

    def update_session(
        self,
        session_id: str,
        current_stage: Optional[str] = None,
        completed_stages: Optional[Iterable[str]] = None,
        data: Optional[Mapping[str, Any]] = None,
    ) -> Session:
        """Apply a partial update. Stage data is merged, never replaced."""

        target = require(current_stage) if current_stage is not None else None
        completed = _strict_stages(completed_stages) if completed_stages is not None else None
        incoming = _strict_data(data) if data is not None else None

        with self._store.transaction() as tx:
            session = tx.get_session(session_id, lock=True)
            if session is None:
                raise NotFoundError("Session", session_id)
            changes: Dict[str, Any] = {"updated_at": utcnow()}
            if target is not None:
                changes["current_stage"] = target
            if completed is not None:
                changes["completed_stages"] = completed
            if incoming is not None:
                changes["data"] = _merge_data(session.data, incoming)
            session = session.model_copy(update=changes)
            tx.update_session(session)
        return session

    def record_completion(
        self,
        session_id: str,
        raw_stage: str,
        payload: Optional[Mapping[str, Any]] = None,
        target_stage: Optional[str] = None,
    ) -> StageCompletionResponse:
        """Mark a stage complete, merge its payload and advance the session.

        Completing a stage twice is harmless: the completed set is unchanged
        and only the payload merge applies. ``target_stage`` lets workflow
        branches jump somewhere other than the next stage in order.
        """

        stage = require(raw_stage)
        target = require(target_stage) if target_stage else None
        validated = validate_payload(stage, payload if payload is not None else {})

        with self._store.transaction() as tx:
            session = tx.get_session(session_id, lock=True)
            if session is None:
                raise NotFoundError("Session", session_id)

            completed = list(session.completed_stages)
            if stage not in completed:
                completed.append(stage)

            session = session.model_copy(
                update={
                    "completed_stages": completed,
                    "data": _merge_data(session.data, {stage.value: validated}),
                    "current_stage": target or next_stage(stage) or stage,
                    "updated_at": utcnow(),
                }
            )
            tx.update_session(session)

        snapshot = build_snapshot(session)
        logger.info(
            "Session %s completed stage %s (%d%%)",
            session_id,
            stage.value,
            snapshot.progress_percent,
            extra={"session_id": session_id, "stage": stage.value},
        )
        return StageCompletionResponse(session=session, progress=snapshot)

    def snapshot(self, session_id: str) -> ProgressSnapshot:
        return build_snapshot(self.get_session(session_id))

    def tracking_summary(self) -> TrackingSummary:
        """Summarize progress across every session, most recent first."""

        with self._store.transaction() as tx:
            sessions = tx.list_sessions()

        total_stages = len(all_ids())
        rows = [
            TrackingRow(
                session_id=session.session_id,
                current_stage=session.current_stage,
                progress_percent=progress_percentage(session),
                stages_completed=len(_completed_set(session)),
                updated_at=session.updated_at,
            )
            for session in sessions
        ]
        rows.sort(key=lambda row: row.updated_at.timestamp(), reverse=True)
        average = int(sum(row.progress_percent for row in rows) / len(rows) + 0.5) if rows else 0
        return TrackingSummary(
            total_sessions=len(rows),
            completed_workflows=sum(1 for row in rows if row.stages_completed >= total_stages),
            average_progress=average,
            total_stages=total_stages,
            sessions=rows,
        )
