"""Durable store interface shared by the memory and SQL implementations.

Components never talk to a backend directly. They open a unit of work with
``store.transaction()`` and perform every read, recomputation and write of a
request inside it: leaving the block commits, raising rolls back.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from ..schemas import Customer, Milestone, MilestonePosition, Roadmap, Session


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StoreTransaction(ABC):
    """Operations available inside one transaction."""

    # Sessions ---------------------------------------------------------------

    @abstractmethod
    def get_session(self, session_id: str, *, lock: bool = False) -> Optional[Session]:
        """Return the session, optionally locking its row for the transaction."""

    @abstractmethod
    def list_sessions(self) -> List[Session]:
        ...

    @abstractmethod
    def insert_session(self, session: Session) -> Session:
        """Insert a new session; raises ``ConflictError`` on a duplicate id."""

    @abstractmethod
    def update_session(self, session: Session) -> Session:
        ...

    # Customers --------------------------------------------------------------

    @abstractmethod
    def get_customer(self, customer_id: str, *, lock: bool = False) -> Optional[Customer]:
        ...

    @abstractmethod
    def list_customers(self) -> List[Customer]:
        ...

    @abstractmethod
    def insert_customer(self, customer: Customer) -> Customer:
        """Insert a new customer; raises ``ConflictError`` on a duplicate key."""

    @abstractmethod
    def update_customer(self, customer: Customer) -> Customer:
        ...

    # Roadmaps ---------------------------------------------------------------

    @abstractmethod
    def get_roadmap(self, roadmap_id: int, *, lock: bool = False) -> Optional[Roadmap]:
        ...

    @abstractmethod
    def get_roadmap_for_session(self, session_id: str, *, lock: bool = False) -> Optional[Roadmap]:
        ...

    @abstractmethod
    def insert_roadmap(self, session_id: str, name: str, layout: str) -> Roadmap:
        """Insert a roadmap; raises ``ConflictError`` if the session has one."""

    @abstractmethod
    def update_roadmap(self, roadmap_id: int, **fields: Any) -> Roadmap:
        ...

    @abstractmethod
    def delete_roadmap(self, roadmap_id: int) -> None:
        """Delete the roadmap and, in the same transaction, its milestones."""

    # Milestones -------------------------------------------------------------

    @abstractmethod
    def get_milestone(self, milestone_id: int) -> Optional[Milestone]:
        ...

    @abstractmethod
    def list_milestones(self, roadmap_id: int) -> List[Milestone]:
        """Return the roadmap's milestones ordered by ``(sort_index, id)``."""

    @abstractmethod
    def insert_milestone(self, roadmap_id: int, fields: Dict[str, Any]) -> Milestone:
        ...

    @abstractmethod
    def update_milestone(self, milestone_id: int, **fields: Any) -> Milestone:
        ...

    @abstractmethod
    def delete_milestone(self, milestone_id: int) -> None:
        ...

    @abstractmethod
    def apply_positions(self, batch: Iterable[MilestonePosition]) -> None:
        """Write ``(id, bucket, sort_index)`` for every entry of *batch*."""


class DurableStore(ABC):
    """Factory for transactions against one backend."""

    @abstractmethod
    def transaction(self) -> AbstractContextManager[StoreTransaction]:
        ...

    def close(self) -> None:
        """Release backend resources. No-op by default."""
