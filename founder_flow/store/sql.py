"""Relational durable store built on SQLAlchemy 2.0.

Rows keep whatever stage identifiers were written historically; sessions are
normalized through the stage registry when they are read back.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager, nullcontext
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    create_engine,
    delete,
    event,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session as DbSession, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from ..errors import ConflictError, NotFoundError, PersistenceError
from ..schemas import Customer, Milestone, MilestonePosition, Roadmap, Session
from ..stages import first_stage, normalize, normalize_many, normalize_stage_data
from .base import DurableStore, StoreTransaction, utcnow

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class SessionRow(Base):
    __tablename__ = "sessions"

    session_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    current_stage: Mapped[str] = mapped_column(String(64), nullable=False)
    completed_stages: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    data: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class CustomerRow(Base):
    __tablename__ = "customers"

    customer_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[Optional[str]] = mapped_column(String(320))
    first_name: Mapped[Optional[str]] = mapped_column(String(120))
    last_name: Mapped[Optional[str]] = mapped_column(String(120))
    subscription_id: Mapped[Optional[str]] = mapped_column(String(128))
    subscription_status: Mapped[Optional[str]] = mapped_column(String(20))
    subscription_interval: Mapped[Optional[str]] = mapped_column(String(40))
    plan_name: Mapped[Optional[str]] = mapped_column(String(120))
    subscribe_plan_name: Mapped[Optional[str]] = mapped_column(String(120))
    subscription_plan_price: Mapped[Optional[int]] = mapped_column(Integer)
    actual_attempts: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    used_attempt: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class RoadmapRow(Base):
    __tablename__ = "roadmaps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    layout: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class MilestoneRow(Base):
    __tablename__ = "milestones"
    __table_args__ = (Index("ix_milestones_roadmap_bucket", "roadmap_id", "bucket", "sort_index"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    roadmap_id: Mapped[int] = mapped_column(
        ForeignKey("roadmaps.id", ondelete="CASCADE"), nullable=False
    )
    bucket: Mapped[str] = mapped_column(String(10), nullable=False)
    sort_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    category: Mapped[str] = mapped_column(String(20), nullable=False, default="Feature")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="Planned")
    owner: Mapped[Optional[str]] = mapped_column(String(200))
    dependencies: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    due_date: Mapped[Optional[str]] = mapped_column(String(40))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


def _plain(value: Any) -> Any:
    """Unwrap enums so rows store their plain string value."""

    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return [_plain(item) for item in value]
    return value


def _plain_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {key: _plain(value) for key, value in fields.items()}


def _session_from_row(row: SessionRow) -> Session:
    completed, unknown = normalize_many(row.completed_stages or [])
    data, dropped = normalize_stage_data(row.data)
    current = normalize(row.current_stage) or first_stage()
    if unknown or dropped or normalize(row.current_stage) is None:
        logger.warning(
            "Dropped unrecognized stage data while reading session %s: stages=%s data_keys=%s current=%s",
            row.session_id,
            unknown,
            dropped,
            row.current_stage,
            extra={"session_id": row.session_id},
        )
    return Session(
        session_id=row.session_id,
        current_stage=current,
        completed_stages=completed,
        data=data,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _customer_from_row(row: CustomerRow) -> Customer:
    return Customer(
        customer_id=row.customer_id,
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        subscription_id=row.subscription_id,
        subscription_status=row.subscription_status or "inactive",
        subscription_interval=row.subscription_interval,
        plan_name=row.plan_name,
        subscribe_plan_name=row.subscribe_plan_name,
        subscription_plan_price=row.subscription_plan_price,
        actual_attempts=row.actual_attempts or 0,
        used_attempt=row.used_attempt or 0,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _roadmap_from_row(row: RoadmapRow) -> Roadmap:
    return Roadmap(
        id=row.id,
        session_id=row.session_id,
        name=row.name,
        layout=row.layout,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _milestone_from_row(row: MilestoneRow) -> Milestone:
    return Milestone(
        id=row.id,
        roadmap_id=row.roadmap_id,
        bucket=row.bucket,
        sort_index=row.sort_index,
        title=row.title,
        description=row.description,
        category=row.category,
        status=row.status,
        owner=row.owner,
        dependencies=list(row.dependencies or []),
        due_date=row.due_date,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlTransaction(StoreTransaction):
    def __init__(self, db: DbSession) -> None:
        self._db = db

    def _one(self, stmt: Any, lock: bool) -> Any:
        if lock:
            stmt = stmt.with_for_update()
        return self._db.execute(stmt).scalar_one_or_none()

    def _flush_insert(self, resource: str, field: str, value: Any) -> None:
        try:
            self._db.flush()
        except IntegrityError as exc:
            raise ConflictError(resource, field, value) from exc

    # Sessions ---------------------------------------------------------------

    def _session_row(self, session_id: str, lock: bool = False) -> Optional[SessionRow]:
        return self._one(select(SessionRow).where(SessionRow.session_id == session_id), lock)

    def get_session(self, session_id: str, *, lock: bool = False) -> Optional[Session]:
        row = self._session_row(session_id, lock)
        return _session_from_row(row) if row else None

    def list_sessions(self) -> List[Session]:
        rows = self._db.execute(select(SessionRow).order_by(SessionRow.updated_at.desc())).scalars()
        return [_session_from_row(row) for row in rows]

    def insert_session(self, session: Session) -> Session:
        if self._session_row(session.session_id) is not None:
            raise ConflictError("Session", "session_id", session.session_id)
        self._db.add(
            SessionRow(
                session_id=session.session_id,
                current_stage=_plain(session.current_stage),
                completed_stages=_plain(session.completed_stages),
                data=session.data,
                created_at=session.created_at,
                updated_at=session.updated_at,
            )
        )
        self._flush_insert("Session", "session_id", session.session_id)
        return session

    def update_session(self, session: Session) -> Session:
        row = self._session_row(session.session_id)
        if row is None:
            raise NotFoundError("Session", session.session_id)
        row.current_stage = _plain(session.current_stage)
        row.completed_stages = _plain(session.completed_stages)
        row.data = session.data
        row.updated_at = session.updated_at
        self._db.flush()
        return session

    # Customers --------------------------------------------------------------

    def _customer_row(self, customer_id: str, lock: bool = False) -> Optional[CustomerRow]:
        return self._one(select(CustomerRow).where(CustomerRow.customer_id == customer_id), lock)

    def get_customer(self, customer_id: str, *, lock: bool = False) -> Optional[Customer]:
        row = self._customer_row(customer_id, lock)
        return _customer_from_row(row) if row else None

    def list_customers(self) -> List[Customer]:
        rows = self._db.execute(select(CustomerRow).order_by(CustomerRow.updated_at.desc())).scalars()
        return [_customer_from_row(row) for row in rows]

    def insert_customer(self, customer: Customer) -> Customer:
        if self._customer_row(customer.customer_id) is not None:
            raise ConflictError("Customer", "customer_id", customer.customer_id)
        self._db.add(CustomerRow(**_plain_fields(customer.model_dump())))
        self._flush_insert("Customer", "customer_id", customer.customer_id)
        return customer

    def update_customer(self, customer: Customer) -> Customer:
        row = self._customer_row(customer.customer_id)
        if row is None:
            raise NotFoundError("Customer", customer.customer_id)
        for key, value in _plain_fields(customer.model_dump(exclude={"customer_id", "created_at"})).items():
            setattr(row, key, value)
        self._db.flush()
        return customer

    # Roadmaps ---------------------------------------------------------------

    def _roadmap_row(self, roadmap_id: int, lock: bool = False) -> Optional[RoadmapRow]:
        return self._one(select(RoadmapRow).where(RoadmapRow.id == roadmap_id), lock)

    def get_roadmap(self, roadmap_id: int, *, lock: bool = False) -> Optional[Roadmap]:
        row = self._roadmap_row(roadmap_id, lock)
        return _roadmap_from_row(row) if row else None

    def get_roadmap_for_session(self, session_id: str, *, lock: bool = False) -> Optional[Roadmap]:
        row = self._one(select(RoadmapRow).where(RoadmapRow.session_id == session_id), lock)
        return _roadmap_from_row(row) if row else None

    def insert_roadmap(self, session_id: str, name: str, layout: str) -> Roadmap:
        if self.get_roadmap_for_session(session_id) is not None:
            raise ConflictError("Roadmap", "session_id", session_id)
        now = utcnow()
        row = RoadmapRow(session_id=session_id, name=name, layout=_plain(layout), created_at=now, updated_at=now)
        self._db.add(row)
        self._flush_insert("Roadmap", "session_id", session_id)
        return _roadmap_from_row(row)

    def update_roadmap(self, roadmap_id: int, **fields: Any) -> Roadmap:
        row = self._roadmap_row(roadmap_id)
        if row is None:
            raise NotFoundError("Roadmap", roadmap_id)
        for key, value in _plain_fields(fields).items():
            setattr(row, key, value)
        row.updated_at = utcnow()
        self._db.flush()
        return _roadmap_from_row(row)

    def delete_roadmap(self, roadmap_id: int) -> None:
        row = self._roadmap_row(roadmap_id)
        if row is None:
            raise NotFoundError("Roadmap", roadmap_id)
        # Explicit cascade: SQLite only enforces ON DELETE with foreign keys enabled.
        self._db.execute(delete(MilestoneRow).where(MilestoneRow.roadmap_id == roadmap_id))
        self._db.delete(row)
        self._db.flush()

    # Milestones -------------------------------------------------------------

    def get_milestone(self, milestone_id: int) -> Optional[Milestone]:
        row = self._db.get(MilestoneRow, milestone_id)
        return _milestone_from_row(row) if row else None

    def list_milestones(self, roadmap_id: int) -> List[Milestone]:
        rows = self._db.execute(
            select(MilestoneRow)
            .where(MilestoneRow.roadmap_id == roadmap_id)
            .order_by(MilestoneRow.sort_index, MilestoneRow.id)
        ).scalars()
        return [_milestone_from_row(row) for row in rows]

    def insert_milestone(self, roadmap_id: int, fields: Dict[str, Any]) -> Milestone:
        if self._roadmap_row(roadmap_id) is None:
            raise NotFoundError("Roadmap", roadmap_id)
        now = utcnow()
        row = MilestoneRow(**_plain_fields(fields), roadmap_id=roadmap_id, created_at=now, updated_at=now)
        self._db.add(row)
        self._db.flush()
        return _milestone_from_row(row)

    def update_milestone(self, milestone_id: int, **fields: Any) -> Milestone:
        row = self._db.get(MilestoneRow, milestone_id)
        if row is None:
            raise NotFoundError("Milestone", milestone_id)
        for key, value in _plain_fields(fields).items():
            setattr(row, key, value)
        row.updated_at = utcnow()
        self._db.flush()
        return _milestone_from_row(row)

    def delete_milestone(self, milestone_id: int) -> None:
        row = self._db.get(MilestoneRow, milestone_id)
        if row is None:
            raise NotFoundError("Milestone", milestone_id)
        self._db.delete(row)
        self._db.flush()

    def apply_positions(self, batch: Iterable[MilestonePosition]) -> None:
        now = utcnow()
        for position in batch:
            result = self._db.execute(
                update(MilestoneRow)
                .where(MilestoneRow.id == position.id)
                .values(bucket=_plain(position.bucket), sort_index=position.sort_index, updated_at=now)
            )
            if result.rowcount != 1:
                raise NotFoundError("Milestone", position.id)


def _begin_immediate(engine: Engine) -> None:
    """Make every SQLite transaction take the database write lock at BEGIN.

    SQLite ignores ``FOR UPDATE`` and pysqlite defers BEGIN until the first
    write, so without this two transactions could both read a roadmap before
    either writes it.
    """

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class SqlStore(DurableStore):
    """Durable store over any SQLAlchemy engine (SQLite, PostgreSQL)."""

    def __init__(self, engine: Engine, *, create_schema: bool = True) -> None:
        self.engine = engine
        self._sessionmaker = sessionmaker(bind=engine, expire_on_commit=False)
        if engine.dialect.name == "sqlite":
            _begin_immediate(engine)
        # A StaticPool hands every thread the same connection, which can
        # only carry one transaction at a time.
        self._gate = threading.RLock() if isinstance(engine.pool, StaticPool) else nullcontext()
        if create_schema:
            Base.metadata.create_all(engine)

    @classmethod
    def from_url(cls, url: str, *, echo: bool = False) -> "SqlStore":
        kwargs: Dict[str, Any] = {"echo": echo}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in url or url.rstrip("/") in {"sqlite:", "sqlite+pysqlite:"}:
                # One shared connection, otherwise every pooled connection
                # would see its own empty in-memory database.
                kwargs["poolclass"] = StaticPool
        return cls(create_engine(url, **kwargs))

    @contextmanager
    def transaction(self) -> Iterator[SqlTransaction]:
        with self._gate:
            db = self._sessionmaker()
            try:
                with db.begin():
                    yield SqlTransaction(db)
            except SQLAlchemyError as exc:
                logger.error("Store transaction aborted: %s", exc.__class__.__name__, exc_info=True)
                raise PersistenceError("transaction", exc) from exc
            finally:
                db.close()

    def close(self) -> None:
        self.engine.dispose()
