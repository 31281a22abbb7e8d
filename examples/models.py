"""Minimal models for sqla-batches examples."""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy import orm


class Base(orm.DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    name: orm.Mapped[str] = orm.mapped_column(sa.String(100))
    email: orm.Mapped[str] = orm.mapped_column(sa.String(200))
    active: orm.Mapped[bool] = orm.mapped_column(default=True)


class Country(Base):
    __tablename__ = "countries"

    iso_code: orm.Mapped[str] = orm.mapped_column(sa.String(2), primary_key=True)
    name: orm.Mapped[str] = orm.mapped_column(sa.String(100))


events = sa.Table(
    "events",
    Base.metadata,
    sa.Column("id", sa.BigInteger, primary_key=True),
    sa.Column("payload", sa.JSON, nullable=False),
)
