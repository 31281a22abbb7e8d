"""Basic sqla-batches usage examples.

Demonstrates plucking columns in batches from sync and async sessions,
per-page access, resumption, filtering and non-integer keys.

NOTE: This file is illustrative; it won't run standalone
without a database and seeded data.
"""

from __future__ import annotations

from collections.abc import Iterator

import sqlalchemy as sa
from sqlalchemy import orm
from sqlalchemy.ext.asyncio import AsyncSession

from sqla_batches import (
    AsyncKeysetBatchIterator,
    AsyncSessionExecutor,
    KeysetBatchIterator,
    SessionExecutor,
    apluck_in_batches,
    pluck_in_batches,
)

from .models import Country, User, events


# ── 1. Several columns -> tuples ─────────────────────────────────────


def export_users(session: orm.Session) -> Iterator[str]:
    for user_id, email in pluck_in_batches(session, User, User.id, User.email, batch_size=500):
        yield f"{user_id},{email}"


# ── 2. One column -> scalars (the primary key stays internal) ────────


def all_emails(session: orm.Session) -> list[str]:
    return list(pluck_in_batches(session, User, "email"))


# ── 3. Filtering with a base query ───────────────────────────────────


def active_user_ids(session: orm.Session) -> list[int]:
    base = sa.select(User).where(User.active.is_(True))
    return list(pluck_in_batches(session, User, "id", batch_size=2000, query=base))


# ── 4. Page-level access and resumption ──────────────────────────────


def reindex_events(session: orm.Session, resume_from: int | None = None) -> int | None:
    """Process events page by page; return the cursor to resume from."""
    iterator = KeysetBatchIterator(SessionExecutor(session, events))
    for batch in iterator.batches(["payload"], batch_size=1000, start=resume_from):
        for payload in batch.rows:
            ...  # push payload somewhere
        if batch.is_last:
            return None
        resume_from = batch.next_start
    return resume_from


# ── 5. Non-integer primary keys need an explicit successor ──────────


def country_names(session: orm.Session) -> list[str]:
    return list(
        pluck_in_batches(
            session,
            Country,
            "name",
            batch_size=50,
            # smallest string sorting after `code` under binary collation
            successor=lambda code: code + "\x00",
        )
    )


# ── 6. Async ─────────────────────────────────────────────────────────


async def async_user_names(session: AsyncSession) -> list[str]:
    return [name async for name in apluck_in_batches(session, User, "name", batch_size=500)]


async def async_consumer(session: AsyncSession) -> None:
    async def handle(row: tuple[int, str]) -> None:
        ...

    iterator = AsyncKeysetBatchIterator(AsyncSessionExecutor(session, User))
    await iterator.iterate(["id", "name"], 1000, handle)
