from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from sqlalchemy import select, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..db import dialect_name
from ..models import OccurrenceSlot

log = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = {"40001", "40P01"}


@dataclass(frozen=True)
class OccurrenceKey:
    """Identity of one event instance; everything that moves its counts is serialized on it."""

    tenant_id: uuid.UUID
    event_id: uuid.UUID
    occurrence_key: str


_local_locks: "weakref.WeakValueDictionary[OccurrenceKey, asyncio.Lock]" = weakref.WeakValueDictionary()


def _local_lock(key: OccurrenceKey) -> asyncio.Lock:
    lock = _local_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _local_locks[key] = lock
    return lock


async def begin_serializable_tx(db: AsyncSession) -> None:
    """
    Ensure we're not inside an active transaction, then start a new one where
    the very first statement is 'SET TRANSACTION ISOLATION LEVEL SERIALIZABLE'.
    SQLite has no isolation levels to pick from; there we only reset the session.
    """
    # End any auto-begun tx from earlier reads on the same session (safe if none).
    if db.in_transaction():
        await db.rollback()

    if dialect_name(db) == "postgresql":
        # This execute will implicitly BEGIN a new tx; SET TRANSACTION is its first statement.
        await db.execute(text("SET TRANSACTION ISOLATION LEVEL SERIALIZABLE"))


async def lock_occurrence(db: AsyncSession, key: OccurrenceKey) -> None:
    """Create the occurrence's slot row if missing, then hold it FOR UPDATE until commit."""
    insert = postgresql.insert if dialect_name(db) == "postgresql" else sqlite.insert
    await db.execute(
        insert(OccurrenceSlot)
        .values(tenant_id=key.tenant_id, event_id=key.event_id, occurrence_key=key.occurrence_key)
        .on_conflict_do_nothing(index_elements=["event_id", "occurrence_key"])
    )
    await db.execute(
        select(OccurrenceSlot.id)
        .where(
            OccurrenceSlot.event_id == key.event_id,
            OccurrenceSlot.occurrence_key == key.occurrence_key,
        )
        .with_for_update()
    )


def _is_retryable(exc: DBAPIError) -> bool:
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code in RETRYABLE_SQLSTATES


async def run_serialized(
    db: AsyncSession,
    key: OccurrenceKey,
    work: Callable[[AsyncSession], Awaitable[T]],
) -> T:
    """
    Run `work` inside the occurrence's critical section and commit.

    `work` reads and mutates through `db`; it raises to abort, which rolls back.
    Serialization failures are retried a bounded number of times; `work` must
    therefore be safe to re-run from scratch.
    """
    attempts = max(1, get_settings().SERIALIZATION_RETRIES)
    async with _local_lock(key):
        for attempt in range(1, attempts + 1):
            await begin_serializable_tx(db)
            try:
                await lock_occurrence(db, key)
                result = await work(db)
                await db.commit()
                return result
            except DBAPIError as e:
                await db.rollback()
                if _is_retryable(e) and attempt < attempts:
                    log.warning(
                        "serialization_retry",
                        extra={"event_id": str(key.event_id), "occurrence": key.occurrence_key, "attempt": attempt},
                    )
                    continue
                raise
            except BaseException:
                await db.rollback()
                raise
    raise RuntimeError("unreachable")
