from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol, Union, runtime_checkable

import sqlalchemy as sa
from sqlalchemy import orm
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession

from .datastructures import ColumnRef, ColumnSet
from .tools import BATCH_START_PARAM, Source, check_base_query, get_columns, range_select


SyncBind = Union[orm.Session, sa.Connection]
AsyncBind = Union[AsyncSession, AsyncConnection]


@runtime_checkable
class QueryExecutor(Protocol):
    """Capability the batch iterator needs from a data source.

    ``run_range_query`` must return the rows with ``primary_key >= lower_bound``
    (all rows when ``lower_bound`` is ``None``), ascending by primary key, at
    most ``limit`` of them, each a tuple aligned to ``columns``.
    """

    @property
    def primary_key(self) -> ColumnRef: ...

    def resolve_column(self, column: Any) -> ColumnRef: ...

    def run_range_query(
        self,
        columns: Sequence[ColumnRef],
        primary_key: ColumnRef,
        lower_bound: Any,
        limit: int,
    ) -> Sequence[tuple[Any, ...]]: ...


@runtime_checkable
class AsyncQueryExecutor(Protocol):
    """Async counterpart of :class:`QueryExecutor`."""

    @property
    def primary_key(self) -> ColumnRef: ...

    def resolve_column(self, column: Any) -> ColumnRef: ...

    async def run_range_query(
        self,
        columns: Sequence[ColumnRef],
        primary_key: ColumnRef,
        lower_bound: Any,
        limit: int,
    ) -> Sequence[tuple[Any, ...]]: ...


class _BaseSessionExecutor:
    __slots__ = ("bind", "columns", "query", "source")

    def __init__(
        self,
        bind: Any,
        source: Source,
        *,
        query: sa.Select[Any] | None = None,
        stacklevel: int = 1,
    ) -> None:
        # stacklevel 1 is whoever constructs the executor
        check_base_query(query, stacklevel=stacklevel + 1)

        self.bind = bind
        self.source = source
        self.query = query
        self.columns: ColumnSet = get_columns(source)

    @property
    def primary_key(self) -> ColumnRef:
        return self.columns.primary_key

    def resolve_column(self, column: Any) -> ColumnRef:
        return self.columns.resolve(column)

    def _statement(
        self,
        columns: Sequence[ColumnRef],
        primary_key: ColumnRef,
        lower_bound: Any,
        limit: int,
    ) -> tuple[sa.Select[Any], dict[str, Any]]:
        stmt = range_select(
            self.source,
            columns,
            primary_key,
            limit,
            bounded=lower_bound is not None,
            query=self.query,
        )
        params = {BATCH_START_PARAM: lower_bound} if lower_bound is not None else {}

        return stmt, params

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.columns.table!r}>"


class SessionExecutor(_BaseSessionExecutor):
    """:class:`QueryExecutor` backed by a sync ``Session`` or ``Connection``.

    Example::

        with Session(engine) as session:
            executor = SessionExecutor(session, User)
            KeysetBatchIterator(executor).iterate(["id", "name"], 500, print)
    """

    __slots__ = ()

    bind: SyncBind

    def run_range_query(
        self,
        columns: Sequence[ColumnRef],
        primary_key: ColumnRef,
        lower_bound: Any,
        limit: int,
    ) -> Sequence[tuple[Any, ...]]:
        stmt, params = self._statement(columns, primary_key, lower_bound, limit)
        return [tuple(row) for row in self.bind.execute(stmt, params)]


class AsyncSessionExecutor(_BaseSessionExecutor):
    """:class:`AsyncQueryExecutor` backed by an ``AsyncSession`` or ``AsyncConnection``.

    Example::

        async with AsyncSession(engine) as session:
            executor = AsyncSessionExecutor(session, User)
            await AsyncKeysetBatchIterator(executor).iterate(["name"], 500, handle)
    """

    __slots__ = ()

    bind: AsyncBind

    async def run_range_query(
        self,
        columns: Sequence[ColumnRef],
        primary_key: ColumnRef,
        lower_bound: Any,
        limit: int,
    ) -> Sequence[tuple[Any, ...]]:
        stmt, params = self._statement(columns, primary_key, lower_bound, limit)
        result = await self.bind.execute(stmt, params)
        return [tuple(row) for row in result]
