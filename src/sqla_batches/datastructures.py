from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

import sqlalchemy as sa

from .exceptions import InvalidArgumentError, UnknownColumnError


_K = TypeVar("_K")


@dataclass(slots=True, frozen=True)
class ColumnRef:
    """Resolved reference to one selectable column of a data source.

    Two references are equal when they name the same column of the same
    ``source`` (model class or ``sa.Table``).  Single-table inheritance
    subclasses and same-named tables in different schemas share a table name,
    so the name alone does not identify a column.  The bound ``element`` is
    carried along for query building but does not take part in comparison or
    hashing.
    """

    table: str
    name: str
    primary_key: bool = False
    element: sa.ColumnElement[Any] = field(compare=False, hash=False, repr=False, kw_only=True)
    source: Any = field(default=None, repr=False, kw_only=True)

    def __str__(self) -> str:
        return f"{self.table}.{self.name}"


class ColumnSet(Mapping[str, ColumnRef]):
    """Immutable, hashable registry of the columns of one table.

    Maps column names to :class:`ColumnRef` and knows which of them is the
    single primary key.  Instances are safe to use as ``lru_cache`` keys.

    Example:
        >>> columns = get_columns(User)
        >>> columns.primary_key
        ColumnRef(table='users', name='id', primary_key=True)
        >>> columns.resolve(User.name) is columns["name"]
        True
    """

    __slots__ = ("_columns", "_hash", "_primary_key", "table")

    def __init__(self, table: str, refs: Iterable[ColumnRef]) -> None:
        self.table = table
        self._columns: dict[str, ColumnRef] = {ref.name: ref for ref in refs}

        keys = [ref for ref in self._columns.values() if ref.primary_key]
        if len(keys) != 1:
            raise InvalidArgumentError(
                f"Table {table!r} must have exactly one primary key column "
                f"for keyset pagination, found {[ref.name for ref in keys]}"
            )
        self._primary_key = keys[0]
        self._hash = hash((table, frozenset(self._columns)))

    @property
    def primary_key(self) -> ColumnRef:
        """The column used as the pagination cursor."""
        return self._primary_key

    def resolve(self, column: Any) -> ColumnRef:
        """Resolve a column name, ORM attribute, ``sa.Column`` or ``ColumnRef``.

        Raises:
            UnknownColumnError: If *column* does not belong to this table.
        """
        if isinstance(column, ColumnRef):
            ref = self._columns.get(column.name)
            if ref is not None and ref == column:
                return ref
            raise UnknownColumnError(
                f"Column {str(column)!r} does not belong to table {self.table!r}"
            )

        table, name = _column_name(column)
        if table is not None and table != self.table:
            raise UnknownColumnError(
                f"Column {table}.{name} does not belong to table {self.table!r}"
            )
        try:
            return self._columns[name]
        except KeyError:
            raise UnknownColumnError(
                f"Column {name!r} not found in table {self.table!r}. "
                f"Available: {list(self._columns)}"
            ) from None

    def __getitem__(self, key: str) -> ColumnRef:
        return self._columns[key]

    def __contains__(self, key: Any) -> bool:
        return key in self._columns

    def __iter__(self) -> Iterator[str]:
        return iter(self._columns)

    def __len__(self) -> int:
        return len(self._columns)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.table!r} {list(self._columns)!r}>"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ColumnSet):
            return self.table == other.table and self._columns == other._columns

        return NotImplemented

    def __hash__(self) -> int:
        return self._hash


@dataclass(slots=True, frozen=True)
class Batch(Generic[_K]):
    """One page of delivered rows.

    ``rows`` are already shaped for the caller (injected primary key dropped,
    single columns unwrapped to scalars).  ``next_start`` is the inclusive
    cursor of the following page, or ``None`` when this page is the last one.
    """

    rows: tuple[Any, ...]
    last_id: _K
    next_start: _K | None = None

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.rows)

    @property
    def is_last(self) -> bool:
        return self.next_start is None


def _column_name(column: Any) -> tuple[str | None, str]:
    """Return ``(table_name, key)`` for a column-like argument."""
    if isinstance(column, str):
        return None, column

    # ORM attributes are keyed by attribute name, which may differ from the
    # database-side column name.
    prop = getattr(column, "property", None)
    if prop is not None and hasattr(prop, "columns"):
        return prop.columns[0].table.name, prop.key

    if isinstance(column, sa.Column):
        return column.table.name, column.key

    raise UnknownColumnError(f"Cannot resolve {column!r} to a column name")
