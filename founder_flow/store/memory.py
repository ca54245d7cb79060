"""In-process durable store used for local runs and the test-suite."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Iterator, List, Optional

from ..errors import ConflictError, NotFoundError
from ..schemas import Customer, Milestone, MilestonePosition, Roadmap, Session
from .base import DurableStore, StoreTransaction, utcnow


@dataclass
class _State:
    sessions: Dict[str, Session] = field(default_factory=dict)
    customers: Dict[str, Customer] = field(default_factory=dict)
    roadmaps: Dict[int, Roadmap] = field(default_factory=dict)
    milestones: Dict[int, Milestone] = field(default_factory=dict)
    next_roadmap_id: int = 1
    next_milestone_id: int = 1

    def staged(self) -> "_State":
        # Records are never mutated in place, so copying the dicts is enough
        # to isolate a transaction from the committed state.
        return replace(
            self,
            sessions=dict(self.sessions),
            customers=dict(self.customers),
            roadmaps=dict(self.roadmaps),
            milestones=dict(self.milestones),
        )


class MemoryTransaction(StoreTransaction):
    def __init__(self, state: _State) -> None:
        self._state = state

    # Sessions ---------------------------------------------------------------

    def get_session(self, session_id: str, *, lock: bool = False) -> Optional[Session]:
        session = self._state.sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    def list_sessions(self) -> List[Session]:
        return [session.model_copy(deep=True) for session in self._state.sessions.values()]

    def insert_session(self, session: Session) -> Session:
        if session.session_id in self._state.sessions:
            raise ConflictError("Session", "session_id", session.session_id)
        self._state.sessions[session.session_id] = session.model_copy(deep=True)
        return session

    def update_session(self, session: Session) -> Session:
        if session.session_id not in self._state.sessions:
            raise NotFoundError("Session", session.session_id)
        self._state.sessions[session.session_id] = session.model_copy(deep=True)
        return session

    # Customers --------------------------------------------------------------

    def get_customer(self, customer_id: str, *, lock: bool = False) -> Optional[Customer]:
        customer = self._state.customers.get(customer_id)
        return customer.model_copy() if customer else None

    def list_customers(self) -> List[Customer]:
        return [customer.model_copy() for customer in self._state.customers.values()]

    def insert_customer(self, customer: Customer) -> Customer:
        if customer.customer_id in self._state.customers:
            raise ConflictError("Customer", "customer_id", customer.customer_id)
        self._state.customers[customer.customer_id] = customer.model_copy()
        return customer

    def update_customer(self, customer: Customer) -> Customer:
        if customer.customer_id not in self._state.customers:
            raise NotFoundError("Customer", customer.customer_id)
        self._state.customers[customer.customer_id] = customer.model_copy()
        return customer

    # Roadmaps ---------------------------------------------------------------

    def get_roadmap(self, roadmap_id: int, *, lock: bool = False) -> Optional[Roadmap]:
        return self._state.roadmaps.get(roadmap_id)

    def get_roadmap_for_session(self, session_id: str, *, lock: bool = False) -> Optional[Roadmap]:
        for roadmap in self._state.roadmaps.values():
            if roadmap.session_id == session_id:
                return roadmap
        return None

    def insert_roadmap(self, session_id: str, name: str, layout: str) -> Roadmap:
        if self.get_roadmap_for_session(session_id) is not None:
            raise ConflictError("Roadmap", "session_id", session_id)
        now = utcnow()
        roadmap = Roadmap(
            id=self._state.next_roadmap_id,
            session_id=session_id,
            name=name,
            layout=layout,
            created_at=now,
            updated_at=now,
        )
        self._state.next_roadmap_id += 1
        self._state.roadmaps[roadmap.id] = roadmap
        return roadmap

    def update_roadmap(self, roadmap_id: int, **fields: Any) -> Roadmap:
        current = self._state.roadmaps.get(roadmap_id)
        if current is None:
            raise NotFoundError("Roadmap", roadmap_id)
        updated = current.model_copy(update={**fields, "updated_at": utcnow()})
        self._state.roadmaps[roadmap_id] = updated
        return updated

    def delete_roadmap(self, roadmap_id: int) -> None:
        if self._state.roadmaps.pop(roadmap_id, None) is None:
            raise NotFoundError("Roadmap", roadmap_id)
        for milestone_id in [m.id for m in self._state.milestones.values() if m.roadmap_id == roadmap_id]:
            del self._state.milestones[milestone_id]

    # Milestones -------------------------------------------------------------

    def get_milestone(self, milestone_id: int) -> Optional[Milestone]:
        return self._state.milestones.get(milestone_id)

    def list_milestones(self, roadmap_id: int) -> List[Milestone]:
        rows = [m for m in self._state.milestones.values() if m.roadmap_id == roadmap_id]
        return sorted(rows, key=lambda m: (m.sort_index, m.id))

    def insert_milestone(self, roadmap_id: int, fields: Dict[str, Any]) -> Milestone:
        if roadmap_id not in self._state.roadmaps:
            raise NotFoundError("Roadmap", roadmap_id)
        now = utcnow()
        milestone = Milestone(
            **fields,
            id=self._state.next_milestone_id,
            roadmap_id=roadmap_id,
            created_at=now,
            updated_at=now,
        )
        self._state.next_milestone_id += 1
        self._state.milestones[milestone.id] = milestone
        return milestone

    def update_milestone(self, milestone_id: int, **fields: Any) -> Milestone:
        current = self._state.milestones.get(milestone_id)
        if current is None:
            raise NotFoundError("Milestone", milestone_id)
        updated = Milestone.model_validate(
            {**current.model_dump(), **fields, "updated_at": utcnow()}
        )
        self._state.milestones[milestone_id] = updated
        return updated

    def delete_milestone(self, milestone_id: int) -> None:
        if self._state.milestones.pop(milestone_id, None) is None:
            raise NotFoundError("Milestone", milestone_id)

    def apply_positions(self, batch: Iterable[MilestonePosition]) -> None:
        for position in batch:
            self.update_milestone(position.id, bucket=position.bucket, sort_index=position.sort_index)


class MemoryStore(DurableStore):
    """Keep every record in process memory.

    A single re-entrant lock serializes transactions, which gives the same
    isolation the SQL store gets from row locks. Writes land in a staged copy
    of the state that replaces the committed state only when the block exits
    cleanly.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._state = _State()

    @contextmanager
    def transaction(self) -> Iterator[MemoryTransaction]:
        with self._lock:
            staged = self._state.staged()
            yield MemoryTransaction(staged)
            self._state = staged
