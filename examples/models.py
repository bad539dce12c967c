"""Minimal models for sqla-eagerloads examples."""

from __future__ import annotations

import sqlalchemy as sa

from sqla_eagerloads import Dataset, Model, many_to_many, many_to_one, one_to_many


metadata = sa.MetaData()


class Base(Model):
    __abstract__ = True


user_roles = sa.Table(
    "user_roles",
    metadata,
    sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), primary_key=True),
    sa.Column("role_id", sa.Integer, sa.ForeignKey("roles.id"), primary_key=True),
)


def _own_comments(dataset: Dataset, post: Model) -> Dataset:
    return dataset.where(Comment.__table__.c.author_id == post.author_id)


class User(Base):
    __table__ = sa.Table(
        "users",
        metadata,
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(100)),
    )
    __associations__ = (
        one_to_many("posts", "Post", key="author_id", order_by="title"),
        many_to_many("roles", "Role", join_table=user_roles, left_key="user_id", right_key="role_id"),
    )


class Post(Base):
    __table__ = sa.Table(
        "posts",
        metadata,
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("title", sa.String(200)),
        sa.Column("author_id", sa.Integer, sa.ForeignKey("users.id")),
    )
    __associations__ = (
        many_to_one("author", "User"),
        one_to_many("comments", "Comment", key="post_id", order_by="id", eager="reactions"),
        # per-post filter: only loadable through load_association
        one_to_many("author_replies", "Comment", key="post_id", block=_own_comments),
    )


class Comment(Base):
    __table__ = sa.Table(
        "comments",
        metadata,
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("text", sa.Text),
        sa.Column("post_id", sa.Integer, sa.ForeignKey("posts.id")),
        sa.Column("author_id", sa.Integer, sa.ForeignKey("users.id")),
    )
    __associations__ = (
        many_to_one("post", "Post"),
        one_to_many("reactions", "Reaction", key="comment_id"),
    )


class Reaction(Base):
    __table__ = sa.Table(
        "reactions",
        metadata,
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("emoji", sa.String(10)),
        sa.Column("comment_id", sa.Integer, sa.ForeignKey("comments.id")),
    )
    __associations__ = (many_to_one("comment", "Comment"),)


class Role(Base):
    __table__ = sa.Table(
        "roles",
        metadata,
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(50)),
        sa.Column("level", sa.Integer, default=0),
    )
    __associations__ = (
        many_to_many("users", "User", join_table="user_roles", left_key="role_id", right_key="user_id"),
    )


class Category(Base):
    __table__ = sa.Table(
        "categories",
        metadata,
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(100)),
        sa.Column("parent_id", sa.Integer, sa.ForeignKey("categories.id"), nullable=True),
    )
    __associations__ = (
        many_to_one("parent", "Category"),
        one_to_many("children", "Category", key="parent_id"),
    )
