from __future__ import annotations

import os
from collections.abc import AsyncIterator, Iterator
from typing import Any

import pytest
import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from sqla_eagerloads import eager_cache_clear
from sqla_eagerloads.node import Node, get_node, init_node

from .models import (
    Album,
    Artist,
    Base,
    Category,
    Genre,
    Note,
    Review,
    Tag,
    Track,
    album_tags,
    metadata,
)


pytestmark = pytest.mark.anyio


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--db",
        default="sqlite",
        choices=["sqlite", "postgres", "mysql"],
        help="Database backend to test against",
    )


@pytest.fixture(scope="session")
def db_backend(request: pytest.FixtureRequest) -> str:
    value: str = request.config.getoption("--db")

    return value


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(scope="session", autouse=True)
def _init_node() -> None:
    """Initialize the Node singleton with model associations.

    Sync, no DB needed -- safe to run for all tests including unit tests.
    """
    try:
        Node()
    except RuntimeError:
        Node.reset()
        init_node(get_node(Base))


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

        case "mysql":
            from testcontainers.mysql import MySqlContainer

            my = MySqlContainer(image="mysql:8.0")
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
        await conn.run_sync(metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def connection(
    engine: AsyncEngine, _create_tables: None
) -> AsyncIterator[AsyncConnection]:
    async with engine.connect() as conn:
        trans = await conn.begin()
        yield conn
        await trans.rollback()


@pytest.fixture
async def seed_data(connection: AsyncConnection) -> dict[str, list[dict[str, Any]]]:
    data: dict[str, list[dict[str, Any]]] = {
        "artists": [
            {"id": 1, "name": "Miles Davis", "active": True},
            {"id": 2, "name": "John Coltrane", "active": True},
            {"id": 3, "name": "Thelonious Monk", "active": False},
        ],
        "genres": [
            {"id": 1, "name": "modal"},
            {"id": 2, "name": "spiritual"},
        ],
        "albums": [
            {"id": 1, "name": "Kind of Blue", "artist_id": 1, "genre_id": 1, "min_rating": 4},
            {"id": 2, "name": "Bitches Brew", "artist_id": 1, "genre_id": 1, "min_rating": 0},
            {"id": 3, "name": "A Love Supreme", "artist_id": 2, "genre_id": 2, "min_rating": 0},
            {"id": 4, "name": "Orphan Tapes", "artist_id": None, "genre_id": None, "min_rating": 0},
        ],
        # ids deliberately out of track-number order
        "tracks": [
            {"id": 1, "name": "Blue in Green", "number": 3, "album_id": 1},
            {"id": 2, "name": "So What", "number": 1, "album_id": 1},
            {"id": 3, "name": "Freddie Freeloader", "number": 2, "album_id": 1},
            {"id": 4, "name": "Resolution", "number": 2, "album_id": 3},
            {"id": 5, "name": "Acknowledgement", "number": 1, "album_id": 3},
        ],
        "tags": [
            {"id": 1, "name": "classic"},
            {"id": 2, "name": "fusion"},
            {"id": 3, "name": "devotional"},
        ],
        "album_tags": [
            {"album_id": 1, "tag_id": 1},
            {"album_id": 2, "tag_id": 1},
            {"album_id": 2, "tag_id": 2},
            {"album_id": 3, "tag_id": 3},
        ],
        "reviews": [
            {"id": 1, "rating": 5, "album_id": 1},
            {"id": 2, "rating": 2, "album_id": 1},
            {"id": 3, "rating": 4, "album_id": 3},
        ],
        "notes": [
            {"album_id": 1, "text": "remastered"},
            {"album_id": 1, "text": "remastered"},
            {"album_id": 2, "text": "live"},
        ],
        "categories": [
            {"id": 1, "name": "root", "parent_id": None},
            {"id": 2, "name": "child_1", "parent_id": 1},
            {"id": 3, "name": "child_2", "parent_id": 1},
            {"id": 4, "name": "grandchild", "parent_id": 2},
        ],
    }
    tables = {
        "artists": Artist.__table__,
        "genres": Genre.__table__,
        "albums": Album.__table__,
        "tracks": Track.__table__,
        "tags": Tag.__table__,
        "album_tags": album_tags,
        "reviews": Review.__table__,
        "notes": Note.__table__,
        "categories": Category.__table__,
    }
    for name, table in tables.items():
        await connection.execute(table.insert(), data[name])

    return data


@pytest.fixture
def queries(engine: AsyncEngine, seed_data: dict[str, list[dict[str, Any]]]) -> Iterator[list[str]]:
    """SQL statements executed after seeding, in order."""
    statements: list[str] = []

    def _record(
        conn: sa.Connection,
        cursor: Any,
        statement: str,
        parameters: Any,
        context: Any,
        executemany: bool,
    ) -> None:
        statements.append(statement)

    sa.event.listen(engine.sync_engine, "before_cursor_execute", _record)
    yield statements
    sa.event.remove(engine.sync_engine, "before_cursor_execute", _record)


@pytest.fixture(autouse=True)
def clear_lru_caches() -> Iterator[None]:
    yield
    eager_cache_clear()


@pytest.fixture
def reset_node_singleton() -> Iterator[None]:
    saved = Node._Node__instance  # type: ignore[attr-defined]
    yield
    Node._Node__instance = saved  # type: ignore[attr-defined]
