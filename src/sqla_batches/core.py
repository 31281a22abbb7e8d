from __future__ import annotations

import inspect
import logging
import sys
from collections.abc import AsyncIterator, Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Final, Generic, TypeVar


if sys.version_info >= (3, 11):
    from typing import TypedDict, Unpack
else:
    from typing_extensions import TypedDict, Unpack

import sqlalchemy as sa

from .datastructures import Batch, ColumnRef
from .exceptions import InvalidArgumentError
from .executor import (
    AsyncBind,
    AsyncQueryExecutor,
    AsyncSessionExecutor,
    QueryExecutor,
    SessionExecutor,
    SyncBind,
)
from .tools import Source


logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE: Final[int] = 1000

_E = TypeVar("_E", QueryExecutor, AsyncQueryExecutor)
Successor = Callable[[Any], Any]


@dataclass(slots=True, frozen=True)
class _BatchPlan:
    """Static part of one iteration: what to select and how to reshape rows."""

    select_columns: tuple[ColumnRef, ...]
    primary_key: ColumnRef
    pk_index: int
    pk_was_injected: bool
    scalar: bool


@lru_cache(maxsize=512)
def _plan(columns: tuple[ColumnRef, ...], primary_key: ColumnRef) -> _BatchPlan:
    """Work out the selected columns and where the cursor sits in each row.

    The primary key is needed to compute the next cursor even when the
    caller did not ask for it; in that case it is prepended to the selection
    and stripped again before rows are delivered.
    """
    try:
        pk_index = columns.index(primary_key)
    except ValueError:
        return _BatchPlan(
            select_columns=(primary_key, *columns),
            primary_key=primary_key,
            pk_index=0,
            pk_was_injected=True,
            scalar=len(columns) == 1,
        )

    return _BatchPlan(
        select_columns=columns,
        primary_key=primary_key,
        pk_index=pk_index,
        pk_was_injected=False,
        scalar=len(columns) == 1,
    )


def next_key(last_id: Any) -> Any:
    """Default successor: ``last_id + 1`` for integer keys.

    Raises:
        InvalidArgumentError: For any other key type; pass ``successor=``.
    """
    if isinstance(last_id, int) and not isinstance(last_id, bool):
        return last_id + 1

    raise InvalidArgumentError(
        f"Cannot compute the key following {last_id!r} "
        f"({type(last_id).__name__}); pass an explicit successor"
    )


def _check_arguments(columns: Sequence[Any], batch_size: Any) -> None:
    if not columns:
        raise InvalidArgumentError("at least one column required")

    if isinstance(batch_size, bool) or not isinstance(batch_size, int):
        raise InvalidArgumentError(
            f"batch_size must be an int, got {type(batch_size).__name__}"
        )

    if batch_size <= 0:
        raise InvalidArgumentError(f"batch_size must be positive, got {batch_size}")


def _shape(rows: Sequence[tuple[Any, ...]], plan: _BatchPlan) -> tuple[Any, ...]:
    offset = 1 if plan.pk_was_injected else 0
    if plan.scalar:
        return tuple(row[offset] for row in rows)
    if offset:
        return tuple(tuple(row[offset:]) for row in rows)

    return tuple(tuple(row) for row in rows)


class _BaseBatchIterator(Generic[_E]):
    __slots__ = ("executor",)

    def __init__(self, executor: _E) -> None:
        self.executor = executor

    def _prepare(self, columns: Iterable[Any], batch_size: int) -> _BatchPlan:
        columns = (columns,) if isinstance(columns, str) else tuple(columns)
        _check_arguments(columns, batch_size)
        refs = tuple(self.executor.resolve_column(column) for column in columns)

        return _plan(refs, self.executor.primary_key)

    @staticmethod
    def _make_batch(
        rows: Sequence[tuple[Any, ...]],
        plan: _BatchPlan,
        batch_size: int,
        batch_start: Any,
        successor: Successor,
    ) -> Batch[Any]:
        last_id = rows[-1][plan.pk_index]
        next_start = None
        # A short page is the last one; no extra round-trip to confirm.
        if len(rows) >= batch_size:
            next_start = successor(last_id)
            if not next_start > last_id:
                raise InvalidArgumentError(
                    f"successor({last_id!r}) returned {next_start!r}, "
                    "which does not advance the cursor"
                )

        logger.debug(
            "Fetched %d rows of %s (batch_start=%r, last_id=%r)",
            len(rows),
            plan.primary_key.table,
            batch_start,
            last_id,
        )

        return Batch(rows=_shape(rows, plan), last_id=last_id, next_start=next_start)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.executor!r}>"


class KeysetBatchIterator(_BaseBatchIterator[QueryExecutor]):
    """Walk a table in primary-key order, one bounded page at a time.

    Each page is fetched with ``WHERE pk >= :batch_start ORDER BY pk LIMIT
    batch_size``, so the cost of a query does not grow with the number of
    rows already consumed and at most one page is held in memory.

    There is no snapshot isolation between pages: rows inserted behind the
    cursor while iterating are not seen, rows inserted ahead of it are.

    Example::

        iterator = KeysetBatchIterator(SessionExecutor(session, User))
        for batch in iterator.batches([User.id, User.name], batch_size=500):
            process(batch.rows)
    """

    __slots__ = ()

    def batches(
        self,
        columns: Iterable[Any],
        batch_size: int = DEFAULT_BATCH_SIZE,
        *,
        start: Any = None,
        successor: Successor | None = None,
    ) -> Iterator[Batch[Any]]:
        """Yield one :class:`Batch` per page.

        Arguments are validated immediately; pages are fetched lazily as the
        returned iterator is consumed.

        Args:
            columns: Columns to deliver (names, ORM attributes or ``ColumnRef``).
            batch_size: Maximum rows per page.
            start: Inclusive lower bound of the first page; ``None`` starts at
                the smallest key in the table.
            successor: Computes the next cursor from the last key of a full
                page.  Defaults to :func:`next_key` (integer keys).

        Raises:
            InvalidArgumentError: Empty ``columns`` or non-positive ``batch_size``.
            UnknownColumnError: A column does not exist on the source.
        """
        plan = self._prepare(columns, batch_size)

        return self._pages(plan, batch_size, start, successor or next_key)

    def rows(
        self,
        columns: Iterable[Any],
        batch_size: int = DEFAULT_BATCH_SIZE,
        *,
        start: Any = None,
        successor: Successor | None = None,
    ) -> Iterator[Any]:
        """Like :meth:`batches`, but yield individual rows."""
        pages = self.batches(columns, batch_size, start=start, successor=successor)

        return (row for batch in pages for row in batch.rows)

    def iterate(
        self,
        columns: Iterable[Any],
        batch_size: int,
        consumer: Callable[[Any], object],
        *,
        start: Any = None,
        successor: Successor | None = None,
    ) -> None:
        """Deliver every row to *consumer*, in ascending primary-key order.

        Rows are scalars when one column is requested, tuples in ``columns``
        order otherwise.  An exception from *consumer* stops the iteration
        and propagates unchanged.
        """
        if not callable(consumer):
            raise InvalidArgumentError("consumer must be callable")

        for batch in self.batches(columns, batch_size, start=start, successor=successor):
            for row in batch.rows:
                consumer(row)

    def _pages(
        self,
        plan: _BatchPlan,
        batch_size: int,
        start: Any,
        successor: Successor,
    ) -> Iterator[Batch[Any]]:
        batch_start = start
        total = pages = 0

        while True:
            rows = self.executor.run_range_query(
                plan.select_columns, plan.primary_key, batch_start, batch_size
            )
            if not rows:
                break

            batch = self._make_batch(rows, plan, batch_size, batch_start, successor)
            total += len(batch)
            pages += 1
            yield batch

            if batch.is_last:
                break
            batch_start = batch.next_start

        logger.debug("Finished %s: %d rows in %d batches", plan.primary_key.table, total, pages)


class AsyncKeysetBatchIterator(_BaseBatchIterator[AsyncQueryExecutor]):
    """Async variant of :class:`KeysetBatchIterator`.

    Pages are awaited one after another; there is never more than one query
    in flight.

    Example::

        iterator = AsyncKeysetBatchIterator(AsyncSessionExecutor(session, User))
        async for name in iterator.rows(["name"], batch_size=500):
            ...
    """

    __slots__ = ()

    def batches(
        self,
        columns: Iterable[Any],
        batch_size: int = DEFAULT_BATCH_SIZE,
        *,
        start: Any = None,
        successor: Successor | None = None,
    ) -> AsyncIterator[Batch[Any]]:
        """Async-iterate one :class:`Batch` per page.  See :meth:`KeysetBatchIterator.batches`."""
        plan = self._prepare(columns, batch_size)

        return self._pages(plan, batch_size, start, successor or next_key)

    def rows(
        self,
        columns: Iterable[Any],
        batch_size: int = DEFAULT_BATCH_SIZE,
        *,
        start: Any = None,
        successor: Successor | None = None,
    ) -> AsyncIterator[Any]:
        pages = self.batches(columns, batch_size, start=start, successor=successor)

        return self._flatten(pages)

    async def iterate(
        self,
        columns: Iterable[Any],
        batch_size: int,
        consumer: Callable[[Any], object],
        *,
        start: Any = None,
        successor: Successor | None = None,
    ) -> None:
        """Deliver every row to *consumer*; awaitable results are awaited in order."""
        if not callable(consumer):
            raise InvalidArgumentError("consumer must be callable")

        async for batch in self.batches(columns, batch_size, start=start, successor=successor):
            for row in batch.rows:
                result = consumer(row)
                if inspect.isawaitable(result):
                    await result

    @staticmethod
    async def _flatten(pages: AsyncIterator[Batch[Any]]) -> AsyncIterator[Any]:
        async for batch in pages:
            for row in batch.rows:
                yield row

    async def _pages(
        self,
        plan: _BatchPlan,
        batch_size: int,
        start: Any,
        successor: Successor,
    ) -> AsyncIterator[Batch[Any]]:
        batch_start = start
        total = pages = 0

        while True:
            rows = await self.executor.run_range_query(
                plan.select_columns, plan.primary_key, batch_start, batch_size
            )
            if not rows:
                break

            batch = self._make_batch(rows, plan, batch_size, batch_start, successor)
            total += len(batch)
            pages += 1
            yield batch

            if batch.is_last:
                break
            batch_start = batch.next_start

        logger.debug("Finished %s: %d rows in %d batches", plan.primary_key.table, total, pages)


class _PluckParamsType(TypedDict, total=False):
    batch_size: int
    start: Any
    successor: Successor
    query: sa.Select[Any]


def pluck_in_batches(
    bind: SyncBind,
    source: Source,
    *columns: Any,
    **params: Unpack[_PluckParamsType],
) -> Iterator[Any]:
    """Iterate *columns* of *source* in primary-key order, one page at a time.

    Args:
        bind: ``orm.Session`` or ``sa.Connection`` to run the queries on.
        source: SQLAlchemy model class or ``sa.Table``.
        *columns: Columns to pluck (names, ORM attributes or ``sa.Column``).
        batch_size: int
            Rows per query. Defaults to 1000.
        start: Any
            Inclusive primary key to start from. Defaults to None (first row).
        successor: Callable[[Any], Any]
            Computes the next cursor from the last key of a full page.
            Defaults to ``last_id + 1``.
        query: sa.Select
            Base SELECT scoping the rows (joins filter, never repeat).

    Returns:
        An iterator of scalars (one column) or tuples (several columns).

    Examples:
        Single column, scalars::

            for email in pluck_in_batches(session, User, User.email):
                send(email)

        Filtered, resuming after a known key::

            rows = pluck_in_batches(
                session,
                User,
                "id",
                "name",
                batch_size=500,
                start=last_seen + 1,
                query=sa.select(User).where(User.active.is_(True)),
            )
    """
    executor = SessionExecutor(bind, source, query=params.get("query"), stacklevel=2)

    return KeysetBatchIterator(executor).rows(
        columns,
        params.get("batch_size", DEFAULT_BATCH_SIZE),
        start=params.get("start"),
        successor=params.get("successor"),
    )


def apluck_in_batches(
    bind: AsyncBind,
    source: Source,
    *columns: Any,
    **params: Unpack[_PluckParamsType],
) -> AsyncIterator[Any]:
    """Async variant of :func:`pluck_in_batches` for ``AsyncSession`` / ``AsyncConnection``.

    Example (async)::

        async for user_id, name in apluck_in_batches(session, User, "id", "name"):
            ...
    """
    executor = AsyncSessionExecutor(bind, source, query=params.get("query"), stacklevel=2)

    return AsyncKeysetBatchIterator(executor).rows(
        columns,
        params.get("batch_size", DEFAULT_BATCH_SIZE),
        start=params.get("start"),
        successor=params.get("successor"),
    )


def sqla_cache_info() -> dict[str, Any]:
    """Return LRU cache statistics for all internal caches."""
    from .tools import _get_columns, _get_table_name, _range_select

    return {
        fn.__name__: fn.cache_info()
        for fn in (
            _plan,
            _range_select,
            _get_columns,
            _get_table_name,
        )
    }


def sqla_cache_clear() -> None:
    """Clear all internal LRU caches."""
    from .tools import _get_columns, _get_table_name, _range_select

    for fn in (
        _plan,
        _range_select,
        _get_columns,
        _get_table_name,
    ):
        fn.cache_clear()
