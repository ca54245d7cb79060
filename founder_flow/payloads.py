"""Per-stage payload models for the data a session accumulates.

Each canonical stage owns one payload shape. The known fields are typed; any
additional keys the UI sends are kept as-is, since stage content comes from
AI generation and changes more often than this service does.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .errors import ValidationError
from .stages import CanonicalStage


class StagePayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    learning_notes: Optional[str] = None


class ThinkLikeAFounderPayload(StagePayload):
    mindset: Optional[str] = None


class ProblemDefinitionPayload(StagePayload):
    problem_statement: Optional[str] = None
    target_user: Optional[str] = None


class MarketResearchPayload(StagePayload):
    market_size: Optional[str] = None
    competitors: Optional[List[Any]] = None


class RootCausePayload(StagePayload):
    primary_cause: Optional[str] = None
    whys: Optional[List[Any]] = None


class ExistingSolutionsPayload(StagePayload):
    solutions: Optional[List[Any]] = None


class CustomerProfilePayload(StagePayload):
    name: Optional[str] = None
    pain_points: Optional[List[Any]] = None


class UseCasePayload(StagePayload):
    use_cases: Optional[List[Any]] = None


class RequirementsPayload(StagePayload):
    functional_requirements: Optional[List[Any]] = None


class PrioritizationPayload(StagePayload):
    features: Optional[List[Any]] = None


class ExportDocumentPayload(StagePayload):
    format: Optional[str] = None
    go_to_market_strategy: Optional[Dict[str, Any]] = None


class FeedbackPayload(StagePayload):
    rating: Optional[int] = None
    comments: Optional[str] = None


STAGE_PAYLOADS: Dict[CanonicalStage, Type[StagePayload]] = {
    CanonicalStage.THINK_LIKE_A_FOUNDER: ThinkLikeAFounderPayload,
    CanonicalStage.PROBLEM_DEFINITION: ProblemDefinitionPayload,
    CanonicalStage.MARKET_RESEARCH: MarketResearchPayload,
    CanonicalStage.ROOT_CAUSE: RootCausePayload,
    CanonicalStage.EXISTING_SOLUTIONS: ExistingSolutionsPayload,
    CanonicalStage.CUSTOMER_PROFILE: CustomerProfilePayload,
    CanonicalStage.USE_CASE: UseCasePayload,
    CanonicalStage.REQUIREMENTS: RequirementsPayload,
    CanonicalStage.PRIORITIZATION: PrioritizationPayload,
    CanonicalStage.EXPORT_DOCUMENT: ExportDocumentPayload,
    CanonicalStage.FEEDBACK: FeedbackPayload,
}

if set(STAGE_PAYLOADS) != set(CanonicalStage):
    raise RuntimeError("Every canonical stage needs a payload model")


def validate_payload(stage: CanonicalStage, payload: Any) -> Dict[str, Any]:
    """Validate *payload* against the stage's model and return it as a dict.

    Only keys present in the input are returned, under the spelling the
    caller used for extra keys and camelCase for typed ones.
    """

    if not isinstance(payload, dict):
        raise ValidationError(
            f"Payload for stage '{stage.value}' must be an object",
            details={"stage": stage.value},
        )
    try:
        model = STAGE_PAYLOADS[stage].model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Invalid payload for stage '{stage.value}'",
            details={"stage": stage.value, "errors": exc.errors(include_url=False, include_context=False)},
        ) from exc
    return model.model_dump(mode="json", by_alias=True, exclude_unset=True)
