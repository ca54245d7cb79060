"""Customer subscription endpoints. Responses are snake_case."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ..dependencies import get_subscription_ledger
from ..schemas import (
    AttemptResult,
    Customer,
    CustomerCreate,
    CustomerUpdate,
    PaidSubscriptionRequest,
    StatusChangeRequest,
    SubscriptionStatusView,
)
from ..subscription import SubscriptionLedger


router = APIRouter(prefix="/customers", tags=["customers"])


@router.post("", response_model=Customer, status_code=status.HTTP_201_CREATED)
def create_customer(
    payload: CustomerCreate,
    ledger: SubscriptionLedger = Depends(get_subscription_ledger),
) -> Customer:
    """Create a customer, applying Free-plan defaults when no paid plan is given."""

    return ledger.create_customer(payload.model_dump(exclude_none=True))


@router.get("", response_model=list[Customer])
def list_customers(ledger: SubscriptionLedger = Depends(get_subscription_ledger)) -> list[Customer]:
    return ledger.list_customers()


@router.get("/{customer_id}", response_model=Customer)
def fetch_customer(customer_id: str, ledger: SubscriptionLedger = Depends(get_subscription_ledger)) -> Customer:
    return ledger.get_customer(customer_id)


@router.patch("/{customer_id}", response_model=Customer)
def patch_customer(
    customer_id: str,
    payload: CustomerUpdate,
    ledger: SubscriptionLedger = Depends(get_subscription_ledger),
) -> Customer:
    return ledger.update_customer(customer_id, payload.model_dump(exclude_unset=True))


@router.get("/{customer_id}/subscription-status", response_model=SubscriptionStatusView)
def subscription_status(
    customer_id: str,
    ledger: SubscriptionLedger = Depends(get_subscription_ledger),
) -> SubscriptionStatusView:
    return ledger.status(customer_id)


@router.post("/{customer_id}/complete-attempt", response_model=AttemptResult)
def complete_attempt(
    customer_id: str,
    ledger: SubscriptionLedger = Depends(get_subscription_ledger),
) -> AttemptResult:
    """Consume one attempt; an exhausted quota is reported with ``success: false``."""

    return ledger.complete_attempt(customer_id)


@router.post("/{customer_id}/subscription", response_model=Customer)
def apply_paid_subscription(
    customer_id: str,
    payload: PaidSubscriptionRequest,
    ledger: SubscriptionLedger = Depends(get_subscription_ledger),
) -> Customer:
    return ledger.apply_paid_subscription(
        customer_id,
        subscription_id=payload.subscription_id,
        plan_name=payload.plan_name,
        subscription_interval=payload.subscription_interval,
        subscription_plan_price=payload.subscription_plan_price,
        actual_attempts=payload.actual_attempts,
    )


@router.post("/{customer_id}/status", response_model=Customer)
def change_status(
    customer_id: str,
    payload: StatusChangeRequest,
    ledger: SubscriptionLedger = Depends(get_subscription_ledger),
) -> Customer:
    return ledger.change_status(customer_id, payload.status)
