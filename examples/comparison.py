"""Before/after comparison: per-record queries vs sqla-eagerloads.

Shows the N+1 loop the two strategies replace.
"""

from __future__ import annotations

from typing import Any

import sqlalchemy as sa

from sqla_eagerloads import Dataset

from .models import Comment, Post


def get_posts_n_plus_one(conn: sa.Connection) -> list[Any]:
    posts = Post.dataset().all(conn)
    comments = Comment.__table__

    # one query per post
    for post in posts:
        rows = conn.execute(
            sa.select(comments).where(comments.c.post_id == post.id).order_by(comments.c.id)
        ).mappings()
        post.set_association("comments", [Comment.load(row) for row in rows])

    return posts


def get_posts_batched(conn: sa.Connection) -> list[Any]:
    # two queries, however many posts there are
    return Post.dataset().eager("comments").all(conn)


def get_posts_joined(conn: sa.Connection) -> list[Any]:
    # one query; rows repeated per comment are folded back into one post
    return Post.dataset().eager_graph("comments").all(conn)


def count_posts_with_comments(conn: sa.Connection, dataset: Dataset | None = None) -> int:
    dataset = dataset or Post.dataset().eager("comments")
    return sum(1 for post in dataset.all(conn) if post.comments)
