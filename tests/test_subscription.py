from __future__ import annotations

import pytest

from founder_flow.errors import ConflictError, NotFoundError, ValidationError
from founder_flow.schemas import SubscriptionStatus
from founder_flow.subscription import (
    FREE_PLAN_DEFAULTS,
    REASON_INACTIVE,
    REASON_QUOTA_EXHAUSTED,
    SubscriptionLedger,
    apply_free_plan_defaults,
    has_paid_signal,
)


def test_free_plan_defaults_are_applied(subscriptions: SubscriptionLedger) -> None:
    customer = subscriptions.create_customer({"customer_id": "c1", "email": "ada@example.com"})

    assert customer.plan_name == "Free"
    assert customer.subscribe_plan_name == "Free"
    assert customer.subscription_status is SubscriptionStatus.ACTIVE
    assert customer.actual_attempts == 3
    assert customer.used_attempt == 0
    assert customer.subscription_plan_price == 0


def test_free_plan_defaults_are_idempotent() -> None:
    once = apply_free_plan_defaults({"customer_id": "c1"})
    assert apply_free_plan_defaults(once) == once
    assert {key: once[key] for key in FREE_PLAN_DEFAULTS} == FREE_PLAN_DEFAULTS


def test_explicit_free_values_win() -> None:
    values = apply_free_plan_defaults({"customer_id": "c1", "plan_name": "Free", "actual_attempts": 5})

    assert values["actual_attempts"] == 5
    assert values["subscription_status"] is SubscriptionStatus.ACTIVE


@pytest.mark.parametrize(
    ("fields", "expected"),
    [
        ({"subscription_id": "sub_123"}, True),
        ({"plan_name": "Pro"}, True),
        ({"subscribe_plan_name": "Team"}, True),
        ({"plan_name": "Free"}, False),
        ({}, False),
    ],
)
def test_has_paid_signal(fields: dict, expected: bool) -> None:
    assert has_paid_signal(fields) is expected


def test_paid_customer_keeps_supplied_plan(subscriptions: SubscriptionLedger) -> None:
    customer = subscriptions.create_customer(
        {
            "customer_id": "c1",
            "subscription_id": "sub_123",
            "plan_name": "Pro",
            "subscription_status": SubscriptionStatus.ACTIVE,
            "actual_attempts": 10,
        }
    )

    assert customer.plan_name == "Pro"
    assert customer.actual_attempts == 10
    assert customer.subscription_plan_price is None


def test_duplicate_customer_conflicts(subscriptions: SubscriptionLedger) -> None:
    subscriptions.create_customer({"customer_id": "c1"})
    with pytest.raises(ConflictError):
        subscriptions.create_customer({"customer_id": "c1", "email": "other@example.com"})
    assert subscriptions.get_customer("c1").email is None


def test_used_attempts_cannot_exceed_quota(subscriptions: SubscriptionLedger) -> None:
    with pytest.raises(ValidationError):
        subscriptions.create_customer({"customer_id": "c1", "actual_attempts": 2, "used_attempt": 3})


def test_attempts_exhaust_free_quota(subscriptions: SubscriptionLedger) -> None:
    subscriptions.create_customer({"customer_id": "c1"})

    results = [subscriptions.complete_attempt("c1") for _ in range(3)]

    assert [result.success for result in results] == [True, True, True]
    assert [result.remaining_attempts for result in results] == [2, 1, 0]
    assert results[1].subscription_status is SubscriptionStatus.ACTIVE
    assert results[2].subscription_status is SubscriptionStatus.INACTIVE

    fourth = subscriptions.complete_attempt("c1")
    assert not fourth.success
    assert fourth.reason == REASON_QUOTA_EXHAUSTED

    customer = subscriptions.get_customer("c1")
    assert customer.used_attempt == 3
    assert customer.subscription_status is SubscriptionStatus.INACTIVE


def test_paused_subscription_refuses_attempts(subscriptions: SubscriptionLedger) -> None:
    subscriptions.create_customer({"customer_id": "c1"})
    subscriptions.change_status("c1", SubscriptionStatus.PAUSED)

    result = subscriptions.complete_attempt("c1")

    assert not result.success
    assert result.reason == REASON_INACTIVE
    assert subscriptions.get_customer("c1").used_attempt == 0


def test_attempt_for_missing_customer(subscriptions: SubscriptionLedger) -> None:
    with pytest.raises(NotFoundError):
        subscriptions.complete_attempt("ghost")


def test_paid_upgrade_resets_usage(subscriptions: SubscriptionLedger) -> None:
    subscriptions.create_customer({"customer_id": "c1"})
    for _ in range(3):
        subscriptions.complete_attempt("c1")

    customer = subscriptions.apply_paid_subscription(
        "c1", subscription_id="sub_9", plan_name="Pro", subscription_interval="month", actual_attempts=20
    )

    assert customer.subscription_status is SubscriptionStatus.ACTIVE
    assert customer.used_attempt == 0
    assert customer.actual_attempts == 20
    assert customer.plan_name == customer.subscribe_plan_name == "Pro"
    assert customer.subscription_interval == "month"
    assert subscriptions.complete_attempt("c1").success


def test_paid_upgrade_keeps_quota_when_not_given(subscriptions: SubscriptionLedger) -> None:
    subscriptions.create_customer({"customer_id": "c1"})
    subscriptions.complete_attempt("c1")

    customer = subscriptions.apply_paid_subscription("c1", subscription_id="sub_9", plan_name="Pro")

    assert customer.actual_attempts == 3
    assert customer.used_attempt == 0


def test_paid_upgrade_reactivates_cancelled(subscriptions: SubscriptionLedger) -> None:
    subscriptions.create_customer({"customer_id": "c1"})
    subscriptions.change_status("c1", "cancelled")

    with pytest.raises(ValidationError):
        subscriptions.change_status("c1", "active")

    customer = subscriptions.apply_paid_subscription("c1", subscription_id="sub_9", plan_name="Pro")
    assert customer.subscription_status is SubscriptionStatus.ACTIVE


def test_status_transitions(subscriptions: SubscriptionLedger) -> None:
    subscriptions.create_customer({"customer_id": "c1"})

    assert subscriptions.change_status("c1", "paused").subscription_status is SubscriptionStatus.PAUSED
    assert subscriptions.change_status("c1", "paused").subscription_status is SubscriptionStatus.PAUSED
    assert subscriptions.change_status("c1", "active").subscription_status is SubscriptionStatus.ACTIVE
    assert subscriptions.change_status("c1", "expired").subscription_status is SubscriptionStatus.EXPIRED

    with pytest.raises(ValidationError) as excinfo:
        subscriptions.change_status("c1", "paused")
    assert excinfo.value.details == {"from": "expired", "to": "paused"}


def test_exhausted_quota_cannot_be_reactivated_by_status(subscriptions: SubscriptionLedger) -> None:
    subscriptions.create_customer({"customer_id": "c1", "actual_attempts": 1})
    subscriptions.complete_attempt("c1")

    with pytest.raises(ValidationError):
        subscriptions.change_status("c1", "active")


def test_status_view(subscriptions: SubscriptionLedger) -> None:
    subscriptions.create_customer({"customer_id": "c1"})
    subscriptions.complete_attempt("c1")

    view = subscriptions.status("c1")

    assert view.status is SubscriptionStatus.ACTIVE
    assert view.remaining == 2
    assert view.plan_name == "Free"

    subscriptions.complete_attempt("c1")
    subscriptions.complete_attempt("c1")
    assert subscriptions.status("c1").status is SubscriptionStatus.INACTIVE


def test_update_customer_only_touches_contact_fields(subscriptions: SubscriptionLedger) -> None:
    subscriptions.create_customer({"customer_id": "c1"})

    customer = subscriptions.update_customer(
        "c1", {"email": "new@example.com", "first_name": "Ada", "actual_attempts": 99}
    )

    assert customer.email == "new@example.com"
    assert customer.first_name == "Ada"
    assert customer.actual_attempts == 3
    assert [c.customer_id for c in subscriptions.list_customers()] == ["c1"]
