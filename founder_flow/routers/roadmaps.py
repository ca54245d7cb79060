"""Roadmap board endpoints: seeding, milestone CRUD and drag-and-drop moves."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Response, status

from ..dependencies import get_ordering_engine, get_progress_ledger
from ..ordering import OrderingEngine
from ..progress import ProgressLedger
from ..schemas import (
    Milestone,
    MilestoneDraft,
    MilestoneUpdate,
    MoveRequest,
    ReorderRequest,
    RoadmapUpdate,
    RoadmapView,
    SeedRequest,
)
from ..seeding import generate_initial_milestones


router = APIRouter(tags=["roadmaps"])


@router.post(
    "/sessions/{session_id}/roadmap/seed",
    response_model=RoadmapView,
    status_code=status.HTTP_201_CREATED,
)
def seed_roadmap(
    session_id: str,
    payload: Optional[SeedRequest] = Body(default=None),
    engine: OrderingEngine = Depends(get_ordering_engine),
    ledger: ProgressLedger = Depends(get_progress_ledger),
) -> RoadmapView:
    """Create the session's roadmap, generating milestones from its data if none are sent."""

    payload = payload or SeedRequest()
    drafts = payload.milestones
    if drafts is None:
        drafts = generate_initial_milestones(ledger.get_session(session_id).data)
    return engine.seed(session_id, drafts, name=payload.name, layout=payload.layout)


@router.get("/roadmaps/{session_id}", response_model=RoadmapView)
def fetch_roadmap(session_id: str, engine: OrderingEngine = Depends(get_ordering_engine)) -> RoadmapView:
    return engine.get_roadmap_for_session(session_id)


@router.patch("/roadmaps/{roadmap_id}", response_model=RoadmapView)
def patch_roadmap(
    roadmap_id: int,
    payload: RoadmapUpdate,
    engine: OrderingEngine = Depends(get_ordering_engine),
) -> RoadmapView:
    return engine.update_roadmap(roadmap_id, name=payload.name, layout=payload.layout)


@router.delete("/roadmaps/{roadmap_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_roadmap(roadmap_id: int, engine: OrderingEngine = Depends(get_ordering_engine)) -> Response:
    engine.delete_roadmap(roadmap_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/roadmaps/{roadmap_id}/milestones",
    response_model=Milestone,
    status_code=status.HTTP_201_CREATED,
)
def create_milestone(
    roadmap_id: int,
    payload: MilestoneDraft,
    engine: OrderingEngine = Depends(get_ordering_engine),
) -> Milestone:
    return engine.create_milestone(roadmap_id, payload)


@router.post("/roadmaps/{roadmap_id}/milestones/reorder", response_model=RoadmapView)
def reorder_milestones(
    roadmap_id: int,
    payload: ReorderRequest,
    engine: OrderingEngine = Depends(get_ordering_engine),
) -> RoadmapView:
    """Apply a full ``{id, bucket, sortIndex}`` batch as one atomic write."""

    return engine.reorder_whole(roadmap_id, payload.milestones)


@router.patch("/milestones/{milestone_id}", response_model=Milestone)
def patch_milestone(
    milestone_id: int,
    payload: MilestoneUpdate,
    engine: OrderingEngine = Depends(get_ordering_engine),
) -> Milestone:
    return engine.update_milestone(milestone_id, payload)


@router.delete("/milestones/{milestone_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_milestone(milestone_id: int, engine: OrderingEngine = Depends(get_ordering_engine)) -> Response:
    engine.remove(milestone_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/milestones/{milestone_id}/move", response_model=RoadmapView)
def move_milestone(
    milestone_id: int,
    payload: MoveRequest,
    engine: OrderingEngine = Depends(get_ordering_engine),
) -> RoadmapView:
    """Drop a milestone on another milestone, or on a bucket (optionally at an index)."""

    if payload.over_milestone_id is not None:
        return engine.move_onto(milestone_id, payload.over_milestone_id)
    return engine.move_to_bucket(milestone_id, payload.bucket, payload.target_index)
