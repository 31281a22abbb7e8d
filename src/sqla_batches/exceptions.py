from __future__ import annotations


class SqlaBatchesError(Exception):
    """Base class for errors raised by sqla_batches."""


class InvalidArgumentError(SqlaBatchesError, ValueError):
    """An argument can never produce a valid iteration.

    Raised before any query is issued whenever the problem is knowable up
    front (empty column list, non-positive ``batch_size``, composite primary
    key, ...).
    """


class UnknownColumnError(SqlaBatchesError, ValueError):
    """A requested column does not exist on the data source."""
