from __future__ import annotations

import os
from collections.abc import AsyncIterator, Iterator
from typing import Any

import pytest
import sqlalchemy as sa
from sqlalchemy import orm
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from sqla_batches import sqla_cache_clear

from .fakes import QueryCounter
from .models import (
    EMPLOYEES,
    POST_IDS,
    READING_IDS,
    TAG_CODES,
    USER_COUNT,
    Base,
    Employee,
    Post,
    Reading,
    Tag,
    User,
    audit_log,
)


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--db",
        default="sqlite",
        choices=["postgres", "mysql", "mariadb", "sqlite"],
        help="Database backend to test against",
    )


@pytest.fixture(scope="session")
def db_backend(request: pytest.FixtureRequest) -> str:
    value: str = request.config.getoption("--db")

    return value


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(scope="session")
def db_config(db_backend: str, tmp_path_factory: pytest.TempPathFactory) -> Iterator[str]:
    match db_backend:
        case "postgres":
            from testcontainers.postgres import PostgresContainer

            pg = PostgresContainer(image="postgres:latest")
            if os.name == "nt":
                pg.get_container_host_ip = lambda: "127.0.0.1"
            with pg:
                host = pg.get_container_host_ip()
                dsn = (
                    f"postgresql+asyncpg://{pg.username}:{pg.password}"
                    f"@{host}:{pg.get_exposed_port(pg.port)}/{pg.dbname}"
                )
                yield dsn

        case "mysql" | "mariadb":
            from testcontainers.mysql import MySqlContainer

            image = "mysql:8.0" if db_backend == "mysql" else "mariadb:latest"
            my = MySqlContainer(image=image)
            if os.name == "nt":
                my.get_container_host_ip = lambda: "127.0.0.1"
            with my:
                host = my.get_container_host_ip()
                port = my.get_exposed_port(my.port)
                dsn = (
                    f"mysql+asyncmy://{my.username}:{my.password}"
                    f"@{host}:{port}/{my.dbname}"
                )
                yield dsn

        case "sqlite":
            tmp = tmp_path_factory.mktemp("db")
            yield f"sqlite+aiosqlite:///{tmp}/test.db"


@pytest.fixture(scope="session")
def engine(db_config: str) -> AsyncEngine:
    return create_async_engine(db_config, echo=False)


@pytest.fixture(scope="session")
async def _create_tables(engine: AsyncEngine) -> AsyncIterator[None]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def connection(
    engine: AsyncEngine, _create_tables: None
) -> AsyncIterator[AsyncConnection]:
    async with engine.connect() as conn:
        trans = await conn.begin()
        yield conn
        await trans.rollback()


@pytest.fixture
async def session(connection: AsyncConnection) -> AsyncIterator[AsyncSession]:
    sess = AsyncSession(bind=connection, expire_on_commit=False)
    yield sess
    await sess.close()


def _seed_rows() -> list[tuple[Any, list[dict[str, Any]]]]:
    return [
        (
            User.__table__,
            [
                {"id": i, "name": f"user_{i:04d}", "active": i % 2 == 0}
                for i in range(1, USER_COUNT + 1)
            ],
        ),
        (
            Post.__table__,
            [
                {"id": i, "title": f"post {i}", "body": f"body {i}", "author_id": 1}
                for i in POST_IDS
            ],
        ),
        (Tag.__table__, [{"code": code, "label": code.upper()} for code in TAG_CODES]),
        (Reading.__table__, [{"id": i, "value": i / 10} for i in READING_IDS]),
        (audit_log, [{"id": i, "message": f"event {i}"} for i in range(1, 26)]),
        (
            Employee.__table__,
            [{"id": i, "name": name, "kind": kind} for i, name, kind in EMPLOYEES],
        ),
    ]


@pytest.fixture
async def seed_data(session: AsyncSession) -> None:
    for table, rows in _seed_rows():
        await session.execute(table.insert(), rows)
    await session.flush()


# Sync side: in-memory sqlite, independent of --db.


@pytest.fixture(scope="session")
def sync_engine() -> Iterator[sa.Engine]:
    eng = sa.create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def sync_connection(sync_engine: sa.Engine) -> Iterator[sa.Connection]:
    with sync_engine.connect() as conn:
        trans = conn.begin()
        for table, rows in _seed_rows():
            conn.execute(table.insert(), rows)
        yield conn
        trans.rollback()


@pytest.fixture
def sync_session(sync_connection: sa.Connection) -> Iterator[orm.Session]:
    with orm.Session(bind=sync_connection, expire_on_commit=False) as sess:
        yield sess


@pytest.fixture
def sync_queries(sync_engine: sa.Engine) -> Iterator[QueryCounter]:
    counter = QueryCounter()
    sa.event.listen(sync_engine, "before_cursor_execute", counter)
    yield counter
    sa.event.remove(sync_engine, "before_cursor_execute", counter)


@pytest.fixture
def queries(engine: AsyncEngine) -> Iterator[QueryCounter]:
    counter = QueryCounter()
    sa.event.listen(engine.sync_engine, "before_cursor_execute", counter)
    yield counter
    sa.event.remove(engine.sync_engine, "before_cursor_execute", counter)


@pytest.fixture(autouse=True)
def clear_lru_caches() -> Iterator[None]:
    yield
    sqla_cache_clear()
