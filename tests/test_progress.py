from __future__ import annotations

from datetime import datetime, timezone

import pytest

from founder_flow.errors import ConflictError, NotFoundError, UnknownStageError, ValidationError
from founder_flow.progress import ProgressLedger, progress_percentage, stage_detail
from founder_flow.schemas import Session, StageStatus
from founder_flow.stages import LEGACY_ALIASES, CanonicalStage


def _session(**overrides: object) -> Session:
    now = datetime.now(timezone.utc)
    values = {
        "session_id": "s1",
        "current_stage": CanonicalStage.THINK_LIKE_A_FOUNDER,
        "created_at": now,
        "updated_at": now,
    }
    values.update(overrides)
    return Session(**values)


def test_new_session_starts_at_first_stage(progress: ProgressLedger) -> None:
    session = progress.create_session()

    assert session.current_stage is CanonicalStage.THINK_LIKE_A_FOUNDER
    assert session.completed_stages == []
    assert len(session.session_id) == 32
    stored = progress.get_session(session.session_id)
    assert stored.current_stage is session.current_stage
    assert stored.data == {}


def test_create_session_normalizes_legacy_input(progress: ProgressLedger) -> None:
    session = progress.create_session(
        session_id="legacy",
        current_stage="icp",
        completed_stages=["problem-discovery", "problem", "market"],
        data={"rootCause": {"primaryCause": "manual spreadsheets"}},
    )

    assert session.current_stage is CanonicalStage.CUSTOMER_PROFILE
    assert session.completed_stages == [CanonicalStage.PROBLEM_DEFINITION, CanonicalStage.MARKET_RESEARCH]
    assert session.data == {"root-cause": {"primaryCause": "manual spreadsheets"}}


def test_create_session_twice_conflicts(progress: ProgressLedger) -> None:
    progress.create_session(session_id="dup")
    with pytest.raises(ConflictError):
        progress.create_session(session_id="dup")


def test_create_session_rejects_unknown_stage(progress: ProgressLedger) -> None:
    with pytest.raises(UnknownStageError):
        progress.create_session(session_id="bad", completed_stages=["ideation"])
    with pytest.raises(NotFoundError):
        progress.get_session("bad")


def test_missing_session_is_not_found(progress: ProgressLedger) -> None:
    with pytest.raises(NotFoundError):
        progress.get_session("nope")
    with pytest.raises(NotFoundError):
        progress.record_completion("nope", "problem-definition")
    with pytest.raises(NotFoundError):
        progress.update_session("nope", current_stage="feedback")


def test_completion_advances_to_next_stage(progress: ProgressLedger) -> None:
    progress.create_session(session_id="s1")

    result = progress.record_completion("s1", "think-like-a-founder", {"mindset": "bias to action"})

    assert result.session.current_stage is CanonicalStage.PROBLEM_DEFINITION
    assert result.session.completed_stages == [CanonicalStage.THINK_LIKE_A_FOUNDER]
    assert result.session.data["think-like-a-founder"] == {"mindset": "bias to action"}
    assert result.progress.progress_percent == 9
    assert result.progress.stages_completed == 1
    assert result.progress.total_stages == len(CanonicalStage)


def test_completion_is_idempotent_and_merges_payload(progress: ProgressLedger) -> None:
    progress.create_session(session_id="s1")
    progress.record_completion("s1", "problem-definition", {"problemStatement": "v1", "targetUser": "PMs"})

    result = progress.record_completion("s1", "problem-discovery", {"problemStatement": "v2"})

    assert result.session.completed_stages == [CanonicalStage.PROBLEM_DEFINITION]
    assert result.session.data["problem-definition"] == {"problemStatement": "v2", "targetUser": "PMs"}
    assert result.progress.progress_percent == 9


def test_completion_honours_explicit_target(progress: ProgressLedger) -> None:
    progress.create_session(session_id="s1")

    result = progress.record_completion("s1", "market-research", target_stage="icp")

    assert result.session.current_stage is CanonicalStage.CUSTOMER_PROFILE


def test_completing_last_stage_keeps_it_current(progress: ProgressLedger) -> None:
    progress.create_session(session_id="s1", current_stage="feedback")

    result = progress.record_completion("s1", "feedback", {"rating": 5})

    assert result.session.current_stage is CanonicalStage.FEEDBACK


def test_unknown_stage_leaves_session_untouched(progress: ProgressLedger) -> None:
    before = progress.create_session(session_id="s1")

    with pytest.raises(UnknownStageError):
        progress.record_completion("s1", "ideation", {"idea": "x"})

    after = progress.get_session("s1")
    assert after.completed_stages == before.completed_stages
    assert after.data == before.data


@pytest.mark.parametrize(
    "payload",
    [["not", "an", "object"], [("rating", 5)], {"rating": "five stars"}],
)
def test_invalid_payload_is_rejected(progress: ProgressLedger, payload: object) -> None:
    progress.create_session(session_id="s1")

    with pytest.raises(ValidationError):
        progress.record_completion("s1", "feedback", payload)  # type: ignore[arg-type]

    assert progress.get_session("s1").completed_stages == []


def test_percentage_is_monotonic_across_every_identifier(progress: ProgressLedger) -> None:
    progress.create_session(session_id="s1")
    identifiers = [stage.value for stage in CanonicalStage]
    identifiers += [alias for aliases in LEGACY_ALIASES.values() for alias in aliases]

    last = 0
    for identifier in identifiers:
        percent = progress.record_completion("s1", identifier).progress.progress_percent
        assert last <= percent <= 100
        last = percent

    assert last == 100


def test_percentage_counts_each_canonical_stage_once() -> None:
    session = _session(
        completed_stages=[CanonicalStage.PROBLEM_DEFINITION, CanonicalStage.PROBLEM_DEFINITION, CanonicalStage.FEEDBACK]
    )

    assert progress_percentage(session) == 18


def test_stage_detail_statuses() -> None:
    session = _session(
        current_stage=CanonicalStage.MARKET_RESEARCH,
        completed_stages=[CanonicalStage.THINK_LIKE_A_FOUNDER, CanonicalStage.PROBLEM_DEFINITION],
        data={"problem-definition": {"problemStatement": "x"}, "marketresearch": {"marketSize": "1B"}},
    )

    details = stage_detail(session)

    assert [detail.index for detail in details] == list(range(1, len(CanonicalStage) + 1))
    assert details[0].status is StageStatus.COMPLETED
    assert details[1].status is StageStatus.COMPLETED and details[1].has_data
    assert details[2].status is StageStatus.IN_PROGRESS and details[2].has_data
    assert all(detail.status is StageStatus.PENDING for detail in details[3:])


def test_update_session_merges_data(progress: ProgressLedger) -> None:
    progress.create_session(session_id="s1", data={"problem-definition": {"problemStatement": "v1"}})

    session = progress.update_session(
        "s1",
        current_stage="mvp",
        data={"problem": {"targetUser": "founders"}, "use-case": {"useCases": ["weekly planning"]}},
    )

    assert session.current_stage is CanonicalStage.REQUIREMENTS
    assert session.data["problem-definition"] == {"problemStatement": "v1", "targetUser": "founders"}
    assert session.data["use-case"] == {"useCases": ["weekly planning"]}


def test_tracking_summary(progress: ProgressLedger) -> None:
    progress.create_session(session_id="idle")
    progress.create_session(session_id="done", completed_stages=[stage.value for stage in CanonicalStage])
    progress.create_session(session_id="half")
    progress.record_completion("half", "think-like-a-founder")

    summary = progress.tracking_summary()

    assert summary.total_sessions == 3
    assert summary.completed_workflows == 1
    assert summary.total_stages == len(CanonicalStage)
    assert summary.average_progress == 36
    assert {row.session_id: row.progress_percent for row in summary.sessions} == {
        "idle": 0,
        "done": 100,
        "half": 9,
    }
