"""Basic sqla-eagerloads usage examples.

Demonstrates initialization, batched and joined eager loading, cascades,
filtering on joined tables and per-record loading.

NOTE: This file is illustrative. It will not run standalone
without a database and seeded data.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncConnection, create_async_engine

from sqla_eagerloads import get_node, init_node, load_association

from .models import Base, Category, Post, Role, User, metadata


# ── 1. Initialize once at startup ────────────────────────────────────

engine = create_async_engine("sqlite+aiosqlite:///:memory:")


async def setup() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    # Call once: registers every model's associations
    init_node(get_node(Base))


# ── 2. Batched loading: one query per association ───────────────────


async def get_users_with_posts(conn: AsyncConnection) -> list[Any]:
    return await User.dataset().eager("posts").all_async(conn)


async def get_users_with_all(conn: AsyncConnection) -> list[Any]:
    return await User.dataset().eager("posts", "roles").all_async(conn)


# ── 3. Cascades ──────────────────────────────────────────────────────


async def get_users_deep(conn: AsyncConnection) -> list[Any]:
    # posts -> comments -> reactions (reactions come from the association's default)
    return await User.dataset().eager({"posts": "comments"}).all_async(conn)


# ── 4. Joined graph: a single query ──────────────────────────────────


async def get_posts_with_author_and_comments(conn: AsyncConnection) -> list[Any]:
    return await Post.dataset().eager_graph("author", "comments").all_async(conn)


async def get_posts_by_author_name(conn: AsyncConnection, name: str) -> list[Any]:
    ds = Post.dataset().eager_graph("author")
    ds = ds.where(ds.col("author.name") == name)
    return await ds.all_async(conn)


# ── 5. Mixing both strategies ───────────────────────────────────────


async def get_posts_mixed(conn: AsyncConnection) -> list[Any]:
    # author is joined, comments are fetched afterwards in one batch
    return await Post.dataset().eager_graph("author").eager("comments").all_async(conn)


# ── 6. Extending an existing dataset ────────────────────────────────


async def get_senior_roles_with_users(conn: AsyncConnection) -> list[Any]:
    ds = Role.dataset().where(Role.__table__.c.level > 3).order_by(Role.__table__.c.name)  # noqa: PLR2004
    return await ds.eager("users").all_async(conn)


# ── 7. Self-referential ─────────────────────────────────────────────


async def get_category_tree(conn: AsyncConnection) -> list[Any]:
    roots = Category.dataset().where(Category.__table__.c.parent_id.is_(None))
    return await roots.eager({"children": "children"}).all_async(conn)


# ── 8. Per-record associations ──────────────────────────────────────


async def get_author_replies(conn: AsyncConnection, post: Any) -> list[Any]:
    return await conn.run_sync(lambda sync_conn: load_association(post, "author_replies", sync_conn))
