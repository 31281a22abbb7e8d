from __future__ import annotations

import warnings
from collections.abc import Sequence
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Final, TypeVar, Union

import sqlalchemy as sa
from sqlalchemy import orm

from .datastructures import ColumnRef, ColumnSet
from .exceptions import InvalidArgumentError


T = TypeVar("T", bound=orm.DeclarativeBase)
Source = Union[type[orm.DeclarativeBase], sa.Table]

BATCH_START_PARAM: Final[str] = "batch_start"
RANGE_SELECT_CACHE_SIZE: Final[int] = 256


@lru_cache
def _get_table_name(source: Source) -> str:
    """Return the table name for *source*, preferring ``__tablename__`` (cached)."""
    if isinstance(source, sa.Table):
        return source.name

    result = getattr(
        source,
        "__tablename__",
        source.__table__.description,
    )
    if not result:
        raise ValueError(f"Cannot determine tablename for {source}")

    return result


@lru_cache
def _get_columns(source: Source) -> ColumnSet:
    """Build the :class:`ColumnSet` of *source* (cached)."""
    table_name = _get_table_name(source)

    if isinstance(source, sa.Table):
        return ColumnSet(
            table_name,
            (
                ColumnRef(
                    table_name,
                    column.key,
                    column.primary_key,
                    element=column,
                    source=source,
                )
                for column in source.c
            ),
        )

    mapper = sa.inspect(source)
    return ColumnSet(
        table_name,
        (
            ColumnRef(
                table_name,
                attr.key,
                any(column.primary_key for column in attr.columns),
                element=getattr(source, attr.key),
                source=source,
            )
            for attr in mapper.column_attrs
        ),
    )


def get_table_name(source: Source) -> str:
    """Get the table name for a SQLAlchemy model or ``sa.Table``.

    Raises:
        ValueError: If the table name cannot be determined.
    """
    return _get_table_name(source)


def get_columns(source: Source) -> ColumnSet:
    """Get the column registry for a SQLAlchemy model or ``sa.Table``.

    ORM models are keyed by attribute name, tables by column key.

    Raises:
        InvalidArgumentError: If the table has no primary key or a composite one.
    """
    return _get_columns(source)


def get_primary_key(source: Source) -> ColumnRef:
    """Get the single primary key column used as the pagination cursor."""
    return _get_columns(source).primary_key


def resolve_column(source: Source, column: Any) -> ColumnRef:
    """Resolve *column* (name, ORM attribute, ``sa.Column`` or ``ColumnRef``) on *source*.

    Raises:
        UnknownColumnError: If the column does not exist on *source*.
    """
    return _get_columns(source).resolve(column)


def check_base_query(query: sa.Select[Any] | None, *, stacklevel: int = 2) -> None:
    """Validate a caller-supplied base query used to scope an iteration.

    The base query only decides which primary keys qualify.  A LIMIT or
    OFFSET would silently change which rows exist, so it is rejected; an
    ORDER BY is replaced by primary-key order.  *stacklevel* is passed to
    ``warnings.warn`` and counts from the caller of this function.
    """
    if query is None:
        return

    if query._limit_clause is not None or query._offset_clause is not None:  # noqa: SLF001
        raise InvalidArgumentError(
            "Base query must not carry LIMIT/OFFSET; use batch_size and start instead"
        )

    if query._order_by_clauses:  # noqa: SLF001
        warnings.warn(
            "Base query ORDER BY is ignored; batches are always ordered by primary key.",
            stacklevel=stacklevel + 1,
        )


@dataclass(slots=True, frozen=True)
class _RangeParams:
    source: Source
    columns: tuple[ColumnRef, ...]
    primary_key: ColumnRef
    limit: int
    bounded: bool = True
    query: sa.Select[Any] | None = None


@lru_cache(maxsize=RANGE_SELECT_CACHE_SIZE)
def _range_select(params: _RangeParams) -> sa.Select[Any]:
    pk = params.primary_key.element
    stmt = sa.select(*(column.element for column in params.columns))

    # Joins in the base query may repeat a key; only its key set is used.
    if params.query is not None:
        scope = params.query.with_only_columns(pk).order_by(None).correlate(None)
        stmt = stmt.where(pk.in_(scope))

    if params.bounded:
        stmt = stmt.where(pk >= sa.bindparam(BATCH_START_PARAM, type_=pk.type))

    return stmt.order_by(pk.asc()).limit(params.limit)


def range_select(
    source: Source,
    columns: Sequence[ColumnRef],
    primary_key: ColumnRef,
    limit: int,
    *,
    bounded: bool = True,
    query: sa.Select[Any] | None = None,
) -> sa.Select[Any]:
    """Build ``SELECT columns WHERE pk >= :batch_start ORDER BY pk ASC LIMIT limit``.

    The lower bound is a bind parameter named :data:`BATCH_START_PARAM`, so
    one cached statement serves every page of an iteration.  With
    ``bounded=False`` the predicate is omitted (first page of an unbounded
    pass).

    Args:
        source: SQLAlchemy model class or ``sa.Table`` to select from.
        columns: Resolved columns, in result order.
        primary_key: The cursor column; must be one of the source's columns.
        limit: Page size.
        bounded: Whether to add the ``pk >= :batch_start`` predicate.
        query: Optional base SELECT scoping the rows.  It is applied as
            ``pk IN (SELECT pk FROM <query>)``, so joins in it filter rows
            but never repeat them.

    Returns:
        A ``sa.Select`` shared between calls with the same arguments.
    """
    return _range_select(
        _RangeParams(
            source=source,
            columns=tuple(columns),
            primary_key=primary_key,
            limit=limit,
            bounded=bounded,
            query=query,
        )
    )
