"""Keyset batch iteration for SQLAlchemy.

sqla_batches walks large tables in primary-key order, one bounded page at a
time: ``WHERE pk >= :batch_start ORDER BY pk LIMIT :batch_size``.  Use
``pluck_in_batches(session, Model, "id", "name")`` for the common case, or
build a ``KeysetBatchIterator`` over any ``QueryExecutor`` for full control
over pages and resumption.
"""

from ._version import __version__, __version_tuple__
from .core import (
    DEFAULT_BATCH_SIZE,
    AsyncKeysetBatchIterator,
    KeysetBatchIterator,
    apluck_in_batches,
    next_key,
    pluck_in_batches,
    sqla_cache_clear,
    sqla_cache_info,
)
from .datastructures import Batch, ColumnRef, ColumnSet
from .exceptions import InvalidArgumentError, SqlaBatchesError, UnknownColumnError
from .executor import AsyncQueryExecutor, AsyncSessionExecutor, QueryExecutor, SessionExecutor
from .tools import get_columns, get_primary_key, get_table_name, range_select, resolve_column


__all__ = (
    "DEFAULT_BATCH_SIZE",
    "AsyncKeysetBatchIterator",
    "AsyncQueryExecutor",
    "AsyncSessionExecutor",
    "Batch",
    "ColumnRef",
    "ColumnSet",
    "InvalidArgumentError",
    "KeysetBatchIterator",
    "QueryExecutor",
    "SessionExecutor",
    "SqlaBatchesError",
    "UnknownColumnError",
    "__version__",
    "__version_tuple__",
    "apluck_in_batches",
    "get_columns",
    "get_primary_key",
    "get_table_name",
    "next_key",
    "pluck_in_batches",
    "range_select",
    "resolve_column",
    "sqla_cache_clear",
    "sqla_cache_info",
)
