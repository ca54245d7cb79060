"""Heuristic initial milestones derived from a session's workflow data."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping

from .schemas import Bucket, MilestoneCategory, MilestoneDraft
from .stages import CanonicalStage

MVP_LAUNCH = "MVP Launch"
BETA_COHORT = "Beta Cohort Onboarding"
FEATURE_ENHANCEMENT = "Feature Enhancement Phase"
MARKETING_EXPANSION = "Marketing Channel Expansion"
SCALE_INTEGRATIONS = "Scale & Integrations"


def _stage(data: Mapping[str, Any], stage: CanonicalStage) -> Dict[str, Any]:
    value = data.get(stage.value)
    return value if isinstance(value, dict) else {}


def _names(items: Any, limit: int) -> List[str]:
    names = []
    for item in items if isinstance(items, list) else []:
        name = item.get("name") if isinstance(item, dict) else item
        if isinstance(name, str) and name.strip():
            names.append(name.strip())
        if len(names) == limit:
            break
    return names


def _is_top_feature(feature: Any) -> bool:
    if not isinstance(feature, dict):
        return False
    score = feature.get("score")
    return feature.get("priority") == "Must Have" or (isinstance(score, (int, float)) and score > 7)


def _draft(bucket: Bucket, title: str, description: str, category: MilestoneCategory, *deps: str) -> MilestoneDraft:
    return MilestoneDraft(
        bucket=bucket,
        title=title,
        description=description,
        category=category,
        dependencies=list(deps),
    )


def generate_initial_milestones(data: Mapping[str, Any]) -> List[MilestoneDraft]:
    """Propose now/next/later milestones from prioritization, ICP and GTM data.

    Sections that are missing from the session simply contribute nothing, so
    a fresh session still gets the baseline analytics, onboarding, scale and
    partnership milestones.
    """

    drafts: List[MilestoneDraft] = []

    prioritization = _stage(data, CanonicalStage.PRIORITIZATION)
    features = prioritization.get("features")
    top_features = _names([f for f in features if _is_top_feature(f)] if isinstance(features, list) else [], 2)
    if top_features:
        drafts.append(
            _draft(
                Bucket.NOW,
                MVP_LAUNCH,
                f"Launch with core features: {', '.join(top_features)}",
                MilestoneCategory.FEATURE,
            )
        )

    profile = _stage(data, CanonicalStage.CUSTOMER_PROFILE)
    if profile:
        drafts.append(
            _draft(
                Bucket.NOW,
                BETA_COHORT,
                f"Onboard initial users matching ICP: {profile.get('name') or 'target customer'}",
                MilestoneCategory.GROWTH,
                MVP_LAUNCH,
            )
        )

    drafts.append(
        _draft(
            Bucket.NOW,
            "Analytics & Feedback Loop Setup",
            "Implement user analytics and feedback collection system",
            MilestoneCategory.TECH,
        )
    )

    primary_cause = _stage(data, CanonicalStage.ROOT_CAUSE).get("primaryCause")
    if primary_cause:
        drafts.append(
            _draft(
                Bucket.NOW,
                "Address Core Technical Risk",
                f"Mitigate primary risk: {primary_cause}",
                MilestoneCategory.TECH,
            )
        )

    requirements = _stage(data, CanonicalStage.REQUIREMENTS).get("functionalRequirements")
    prioritized = set(_names(features, 100))
    future = [
        name
        for name in _names(requirements, 100)
        if not any(name in feature for feature in prioritized)
    ][:2]
    if future:
        drafts.append(
            _draft(
                Bucket.NEXT,
                FEATURE_ENHANCEMENT,
                f"Add features: {', '.join(future)}",
                MilestoneCategory.FEATURE,
                MVP_LAUNCH,
                BETA_COHORT,
            )
        )

    drafts.append(
        _draft(
            Bucket.NEXT,
            "Onboarding UX Improvement",
            "Optimize user onboarding based on beta feedback",
            MilestoneCategory.GROWTH,
            BETA_COHORT,
        )
    )

    gtm = _stage(data, CanonicalStage.EXPORT_DOCUMENT).get("goToMarketStrategy") or {}
    channels = gtm.get("channels") if isinstance(gtm, dict) else None
    acquisition = _names(channels.get("acquisition"), 2) if isinstance(channels, dict) else []
    if acquisition:
        drafts.append(
            _draft(
                Bucket.NEXT,
                MARKETING_EXPANSION,
                f"Launch marketing channels: {', '.join(acquisition)}",
                MilestoneCategory.GROWTH,
                MVP_LAUNCH,
            )
        )

    drafts.append(
        _draft(
            Bucket.LATER,
            SCALE_INTEGRATIONS,
            "Add enterprise features and third-party integrations",
            MilestoneCategory.FEATURE,
            FEATURE_ENHANCEMENT,
        )
    )

    pricing = gtm.get("pricing") if isinstance(gtm, dict) else None
    tiers = _names(pricing.get("tiers"), 10) if isinstance(pricing, dict) else []
    if len(tiers) > 1:
        drafts.append(
            _draft(
                Bucket.LATER,
                "Paid Plan Rollout",
                f"Launch paid tiers: {', '.join(tiers)}",
                MilestoneCategory.GROWTH,
                MARKETING_EXPANSION,
            )
        )

    drafts.append(
        _draft(
            Bucket.LATER,
            "Partnership Development",
            "Establish strategic partnerships and distribution channels",
            MilestoneCategory.OPS,
            SCALE_INTEGRATIONS,
        )
    )
    return drafts
