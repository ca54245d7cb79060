"""Subscription ledger: plans, attempt quota and subscription status."""

from __future__ import annotations

import logging
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from .errors import NotFoundError, ValidationError
from .schemas import AttemptResult, Customer, SubscriptionStatus, SubscriptionStatusView
from .store import DurableStore
from .store.base import utcnow

logger = logging.getLogger(__name__)

FREE_PLAN_NAME = "Free"

FREE_PLAN_DEFAULTS: Dict[str, Any] = {
    "plan_name": FREE_PLAN_NAME,
    "subscribe_plan_name": FREE_PLAN_NAME,
    "subscription_status": SubscriptionStatus.ACTIVE,
    "actual_attempts": 3,
    "used_attempt": 0,
    "subscription_plan_price": 0,
}

# Edges reachable through ``change_status``. ``apply_paid_subscription`` may
# move any state back to active on top of these.
STATUS_TRANSITIONS: Dict[SubscriptionStatus, FrozenSet[SubscriptionStatus]] = {
    SubscriptionStatus.ACTIVE: frozenset(
        {
            SubscriptionStatus.INACTIVE,
            SubscriptionStatus.PAUSED,
            SubscriptionStatus.CANCELLED,
            SubscriptionStatus.EXPIRED,
        }
    ),
    SubscriptionStatus.PAUSED: frozenset(
        {SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED}
    ),
    SubscriptionStatus.INACTIVE: frozenset({SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED}),
    SubscriptionStatus.CANCELLED: frozenset(),
    SubscriptionStatus.EXPIRED: frozenset(),
}

REASON_INACTIVE = "subscription_inactive"
REASON_QUOTA_EXHAUSTED = "quota_exhausted"


def has_paid_signal(fields: Mapping[str, Any]) -> bool:
    """True when the payload carries a subscription id or a non-Free plan."""

    if fields.get("subscription_id"):
        return True
    for key in ("plan_name", "subscribe_plan_name"):
        plan = fields.get(key)
        if plan and plan != FREE_PLAN_NAME:
            return True
    return False


def apply_free_plan_defaults(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Fill in Free-plan values for customers without a paid subscription.

    Only missing (``None``) fields are filled, so applying this twice is the
    same as applying it once and explicit values always win.
    """

    result = dict(fields)
    if has_paid_signal(result):
        return result
    for key, value in FREE_PLAN_DEFAULTS.items():
        if result.get(key) is None:
            result[key] = value
    return result


def remaining_attempts(customer: Customer) -> int:
    return max(0, customer.actual_attempts - customer.used_attempt)


def _attempt_result(customer: Customer, success: bool, message: str, reason: Optional[str] = None) -> AttemptResult:
    return AttemptResult(
        success=success,
        reason=reason,
        message=message,
        subscription_status=customer.subscription_status,
        used_attempt=customer.used_attempt,
        actual_attempts=customer.actual_attempts,
        remaining_attempts=remaining_attempts(customer),
    )


def _check_quota(actual_attempts: int, used_attempt: int) -> None:
    if actual_attempts < 0 or used_attempt < 0:
        raise ValidationError(
            "Attempt counts must not be negative",
            details={"actual_attempts": actual_attempts, "used_attempt": used_attempt},
        )
    if used_attempt > actual_attempts:
        raise ValidationError(
            "used_attempt cannot exceed actual_attempts",
            details={"actual_attempts": actual_attempts, "used_attempt": used_attempt},
        )


class SubscriptionLedger:
    """Gate continued use of the workflow on a per-customer attempt quota."""

    def __init__(self, store: DurableStore) -> None:
        self._store = store

    def create_customer(self, fields: Mapping[str, Any]) -> Customer:
        """Create a customer; creating an existing key is a conflict, not an upsert."""

        values = apply_free_plan_defaults({k: v for k, v in fields.items() if v is not None})
        values.setdefault("actual_attempts", 0)
        values.setdefault("used_attempt", 0)
        _check_quota(values["actual_attempts"], values["used_attempt"])

        now = utcnow()
        customer = Customer(**{**values, "created_at": now, "updated_at": now})
        with self._store.transaction() as tx:
            tx.insert_customer(customer)
        logger.info(
            "Created customer %s on plan %s",
            customer.customer_id,
            customer.plan_name,
            extra={"customer_id": customer.customer_id},
        )
        return customer

    def get_customer(self, customer_id: str) -> Customer:
        with self._store.transaction() as tx:
            customer = tx.get_customer(customer_id)
        if customer is None:
            raise NotFoundError("Customer", customer_id)
        return customer

    def list_customers(self) -> List[Customer]:
        with self._store.transaction() as tx:
            return tx.list_customers()

    def update_customer(self, customer_id: str, changes: Mapping[str, Any]) -> Customer:
        """Edit contact details. Plan and quota fields are not editable here."""

        allowed = {key: value for key, value in changes.items() if key in {"email", "first_name", "last_name"}}
        with self._store.transaction() as tx:
            customer = tx.get_customer(customer_id, lock=True)
            if customer is None:
                raise NotFoundError("Customer", customer_id)
            customer = customer.model_copy(update={**allowed, "updated_at": utcnow()})
            tx.update_customer(customer)
        return customer

    def complete_attempt(self, customer_id: str) -> AttemptResult:
        """Consume one attempt.

        Not idempotent: each call consumes an attempt, so callers must invoke
        it at most once per finished workflow. Inactive subscriptions and
        exhausted quotas are reported through ``success=False`` with state
        left untouched.
        """

        with self._store.transaction() as tx:
            customer = tx.get_customer(customer_id, lock=True)
            if customer is None:
                raise NotFoundError("Customer", customer_id)

            # An exhausted quota is reported ahead of the status it caused.
            if customer.used_attempt >= customer.actual_attempts:
                logger.warning(
                    "Attempt refused for %s: no attempts left",
                    customer_id,
                    extra={"customer_id": customer_id, "error_code": REASON_QUOTA_EXHAUSTED},
                )
                return _attempt_result(
                    customer, False, "No remaining attempts available.", REASON_QUOTA_EXHAUSTED
                )

            if customer.subscription_status != SubscriptionStatus.ACTIVE:
                logger.warning(
                    "Attempt refused for %s: subscription is %s",
                    customer_id,
                    customer.subscription_status.value,
                    extra={"customer_id": customer_id, "error_code": REASON_INACTIVE},
                )
                return _attempt_result(
                    customer, False, "Subscription is not active. Cannot complete attempt.", REASON_INACTIVE
                )

            used = customer.used_attempt + 1
            status = SubscriptionStatus.INACTIVE if used >= customer.actual_attempts else SubscriptionStatus.ACTIVE
            customer = customer.model_copy(
                update={"used_attempt": used, "subscription_status": status, "updated_at": utcnow()}
            )
            tx.update_customer(customer)

        remaining = remaining_attempts(customer)
        if status == SubscriptionStatus.INACTIVE:
            message = "Attempt completed. No remaining attempts. Subscription is now inactive."
        else:
            message = f"Attempt completed. {remaining} attempt(s) remaining."
        logger.info(
            "Customer %s used attempt %d/%d",
            customer_id,
            customer.used_attempt,
            customer.actual_attempts,
            extra={"customer_id": customer_id},
        )
        return _attempt_result(customer, True, message)

    def apply_paid_subscription(
        self,
        customer_id: str,
        subscription_id: str,
        plan_name: str,
        subscription_interval: Optional[str] = None,
        subscription_plan_price: Optional[int] = None,
        actual_attempts: Optional[int] = None,
    ) -> Customer:
        """Record a paid plan: status becomes active and the quota window resets."""

        with self._store.transaction() as tx:
            customer = tx.get_customer(customer_id, lock=True)
            if customer is None:
                raise NotFoundError("Customer", customer_id)

            quota = customer.actual_attempts if actual_attempts is None else actual_attempts
            _check_quota(quota, 0)
            changes: Dict[str, Any] = {
                "subscription_id": subscription_id,
                "plan_name": plan_name,
                "subscribe_plan_name": plan_name,
                "subscription_status": SubscriptionStatus.ACTIVE,
                "actual_attempts": quota,
                "used_attempt": 0,
                "updated_at": utcnow(),
            }
            if subscription_interval is not None:
                changes["subscription_interval"] = subscription_interval
            if subscription_plan_price is not None:
                changes["subscription_plan_price"] = subscription_plan_price
            customer = customer.model_copy(update=changes)
            tx.update_customer(customer)

        logger.info(
            "Customer %s moved to paid plan %s",
            customer_id,
            plan_name,
            extra={"customer_id": customer_id},
        )
        return customer

    def change_status(self, customer_id: str, new_status: SubscriptionStatus | str) -> Customer:
        """Move a subscription along one of ``STATUS_TRANSITIONS``."""

        target = SubscriptionStatus(new_status)
        with self._store.transaction() as tx:
            customer = tx.get_customer(customer_id, lock=True)
            if customer is None:
                raise NotFoundError("Customer", customer_id)
            current = customer.subscription_status
            if target == current:
                return customer
            if target not in STATUS_TRANSITIONS[current]:
                raise ValidationError(
                    f"Cannot change subscription from {current.value} to {target.value}",
                    details={"from": current.value, "to": target.value},
                )
            if target == SubscriptionStatus.ACTIVE and remaining_attempts(customer) == 0:
                raise ValidationError(
                    "Cannot activate a subscription with no remaining attempts",
                    details={"from": current.value, "to": target.value},
                )
            customer = customer.model_copy(update={"subscription_status": target, "updated_at": utcnow()})
            tx.update_customer(customer)

        logger.info(
            "Customer %s subscription %s -> %s",
            customer_id,
            current.value,
            target.value,
            extra={"customer_id": customer_id},
        )
        return customer

    def status(self, customer_id: str) -> SubscriptionStatusView:
        customer = self.get_customer(customer_id)
        remaining = remaining_attempts(customer)
        usable = customer.subscription_status == SubscriptionStatus.ACTIVE and remaining > 0
        return SubscriptionStatusView(
            status=SubscriptionStatus.ACTIVE if usable else SubscriptionStatus.INACTIVE,
            remaining=remaining,
            plan_name=customer.plan_name,
            used_attempt=customer.used_attempt,
            actual_attempts=customer.actual_attempts,
        )
