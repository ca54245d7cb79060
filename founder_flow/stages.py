"""Canonical workflow stages and the legacy identifiers that map onto them.

Stage names drifted over the life of the product, so every computation over
"which stages are done" must go through :func:`normalize` first. The module is
pure and holds no mutable state.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import UnknownStageError


class CanonicalStage(str, Enum):
    """Enumerate the canonical founder workflow stages, in order."""

    THINK_LIKE_A_FOUNDER = "think-like-a-founder"
    PROBLEM_DEFINITION = "problem-definition"
    MARKET_RESEARCH = "market-research"
    ROOT_CAUSE = "root-cause"
    EXISTING_SOLUTIONS = "existing-solutions"
    CUSTOMER_PROFILE = "customer-profile"
    USE_CASE = "use-case"
    REQUIREMENTS = "requirements"
    PRIORITIZATION = "prioritization"
    EXPORT_DOCUMENT = "export-document"
    FEEDBACK = "feedback"

    @property
    def order(self) -> int:
        """Return the 1-based position of the stage in the workflow."""

        return _ORDER[self]


_ORDER: Dict[CanonicalStage, int] = {stage: index for index, stage in enumerate(CanonicalStage, start=1)}

STAGE_LABELS: Dict[CanonicalStage, str] = {
    CanonicalStage.THINK_LIKE_A_FOUNDER: "Think Like A Founder",
    CanonicalStage.PROBLEM_DEFINITION: "Problem Definition",
    CanonicalStage.MARKET_RESEARCH: "Market Research",
    CanonicalStage.ROOT_CAUSE: "Root Cause Analysis",
    CanonicalStage.EXISTING_SOLUTIONS: "Existing Solutions",
    CanonicalStage.CUSTOMER_PROFILE: "Customer Profile",
    CanonicalStage.USE_CASE: "Use Case",
    CanonicalStage.REQUIREMENTS: "Requirements",
    CanonicalStage.PRIORITIZATION: "Prioritization",
    CanonicalStage.EXPORT_DOCUMENT: "Export Document",
    CanonicalStage.FEEDBACK: "Feedback",
}

# Historical identifiers, declared per canonical stage. Flattened and checked
# for collisions by ``_build_alias_table`` at import time.
LEGACY_ALIASES: Dict[CanonicalStage, Tuple[str, ...]] = {
    CanonicalStage.PROBLEM_DEFINITION: ("problem-discovery", "problem-analysis", "problem"),
    CanonicalStage.MARKET_RESEARCH: ("market",),
    CanonicalStage.ROOT_CAUSE: ("root-cause-analysis",),
    CanonicalStage.CUSTOMER_PROFILE: ("icp", "icp-definition", "customer-interview", "customer"),
    CanonicalStage.USE_CASE: ("use-case-definition",),
    CanonicalStage.REQUIREMENTS: ("product-requirements", "mvp-scope", "mvp"),
    CanonicalStage.PRIORITIZATION: ("prototype",),
    CanonicalStage.EXPORT_DOCUMENT: ("export", "go-to-market", "go-to-market-strategy", "gtm-download"),
    CanonicalStage.FEEDBACK: ("user-testing", "product-market-fit"),
}

LEARNING_PREFIX = "learning-"


def _compact(value: str) -> str:
    return value.replace("-", "")


def _build_alias_table(
    aliases: Dict[CanonicalStage, Tuple[str, ...]],
) -> Dict[str, CanonicalStage]:
    """Flatten the per-stage alias declarations into one lookup table.

    Every identifier is also registered in its compact, hyphen-less form,
    which is how older session data keyed its stage payloads (``rootCause``).
    Raises ``RuntimeError`` when a key is claimed by two stages or an alias
    repeats a canonical identifier.
    """

    table: Dict[str, CanonicalStage] = {}

    def claim(key: str, stage: CanonicalStage) -> None:
        owner = table.get(key)
        if owner is not None and owner is not stage:
            raise RuntimeError(f"Stage key '{key}' maps to both '{owner.value}' and '{stage.value}'")
        table[key] = stage

    for stage in CanonicalStage:
        claim(stage.value, stage)
        claim(_compact(stage.value), stage)

    for stage, names in aliases.items():
        for name in names:
            key = name.strip().lower()
            if key in {stage.value, _compact(stage.value)}:
                raise RuntimeError(f"Stage alias '{name}' duplicates canonical id '{stage.value}'")
            claim(key, stage)
            claim(_compact(key), stage)
    return table


_LOOKUP = _build_alias_table(LEGACY_ALIASES)


def normalize(raw: str | None) -> Optional[CanonicalStage]:
    """Resolve a legacy or canonical identifier to its canonical stage.

    Returns ``None`` for identifiers that match nothing so callers can decide
    whether to drop or surface them.
    """

    if raw is None:
        return None
    if isinstance(raw, CanonicalStage):
        return raw
    key = str(raw).strip().lower()
    if not key:
        return None
    if key.startswith(LEARNING_PREFIX):
        key = key[len(LEARNING_PREFIX):]
    return _LOOKUP.get(key)


def require(raw: str | None) -> CanonicalStage:
    """Like :func:`normalize` but raise ``UnknownStageError`` on a miss."""

    stage = normalize(raw)
    if stage is None:
        raise UnknownStageError(str(raw))
    return stage


def rank(raw: str | CanonicalStage) -> int:
    """Return the 1-based ordinal of a stage after normalization."""

    return require(raw).order


def all_ids() -> List[CanonicalStage]:
    """Return every canonical stage in workflow order."""

    return list(CanonicalStage)


def first_stage() -> CanonicalStage:
    return all_ids()[0]


def next_stage(stage: CanonicalStage) -> Optional[CanonicalStage]:
    """Return the stage after *stage*, or ``None`` when it is the last one."""

    ordered = all_ids()
    position = ordered.index(stage)
    if position + 1 < len(ordered):
        return ordered[position + 1]
    return None


def normalize_many(raw_stages: Iterable[str]) -> Tuple[List[CanonicalStage], List[str]]:
    """Normalize and de-duplicate a stage list, preserving first-seen order.

    Returns ``(canonical, unrecognized)``.
    """

    seen: List[CanonicalStage] = []
    unrecognized: List[str] = []
    for raw in raw_stages:
        stage = normalize(raw)
        if stage is None:
            unrecognized.append(str(raw))
        elif stage not in seen:
            seen.append(stage)
    return seen, unrecognized


def normalize_stage_data(data: Mapping[str, Any] | None) -> Tuple[Dict[str, Dict[str, Any]], List[str]]:
    """Re-key stage payloads by canonical id.

    Payloads stored under different aliases of one stage are shallow-merged in
    iteration order. Keys that resolve to no stage, or whose value is not an
    object, are returned in the second element instead.
    """

    merged: Dict[str, Dict[str, Any]] = {}
    dropped: List[str] = []
    for key, value in (data or {}).items():
        stage = normalize(key)
        if stage is None or not isinstance(value, dict):
            dropped.append(str(key))
            continue
        merged.setdefault(stage.value, {}).update(value)
    return merged, dropped
