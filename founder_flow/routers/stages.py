"""Stage registry and health endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from ..schemas import StageDefinition
from ..stages import LEGACY_ALIASES, STAGE_LABELS, all_ids


router = APIRouter(tags=["stages"])


@router.get("/health")
def healthcheck() -> dict[str, str]:
    """Simple health check endpoint."""

    return {"status": "ok"}


@router.get("/stages", response_model=list[StageDefinition])
def list_stages() -> list[StageDefinition]:
    """Expose the canonical stages, in order, with their legacy aliases."""

    return [
        StageDefinition(
            id=stage,
            label=STAGE_LABELS[stage],
            order=stage.order,
            legacy_aliases=list(LEGACY_ALIASES.get(stage, ())),
        )
        for stage in all_ids()
    ]
