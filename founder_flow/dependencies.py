"""FastAPI dependency helpers resolving the components stored on ``app.state``."""

from __future__ import annotations

from fastapi import Request

from .ordering import OrderingEngine
from .progress import ProgressLedger
from .subscription import SubscriptionLedger


def get_progress_ledger(request: Request) -> ProgressLedger:
    return request.app.state.progress


def get_subscription_ledger(request: Request) -> SubscriptionLedger:
    return request.app.state.subscriptions


def get_ordering_engine(request: Request) -> OrderingEngine:
    return request.app.state.ordering
