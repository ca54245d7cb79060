"""Durable store implementations and the factory that picks one."""

from __future__ import annotations

import logging

from ..config import Settings
from .base import DurableStore, StoreTransaction
from .memory import MemoryStore
from .sql import SqlStore

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> DurableStore:
    """Return the store selected by configuration.

    A database URL selects the SQL store; otherwise records live in memory.
    """

    if settings.database_url:
        logger.info("Using SQL store")
        return SqlStore.from_url(settings.database_url, echo=settings.sql_echo)
    logger.info("Using in-memory store")
    return MemoryStore()


__all__ = ["DurableStore", "MemoryStore", "SqlStore", "StoreTransaction", "build_store"]
