from __future__ import annotations

import enum
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal, Union

import sqlalchemy as sa


if TYPE_CHECKING:
    from .dataset import Dataset
    from .model import Model


EagerArgument = Union[str, Mapping[str, Any], Sequence[Any], None]
OrderBy = tuple[Union[str, sa.ColumnElement[Any]], ...]


class AssociationType(str, enum.Enum):
    MANY_TO_ONE = "many_to_one"
    ONE_TO_MANY = "one_to_many"
    MANY_TO_MANY = "many_to_many"

    @property
    def uselist(self) -> bool:
        """Whether the association holds a list of records."""
        return self is not AssociationType.MANY_TO_ONE


@dataclass(frozen=True, slots=True)
class Association:
    """Reflection of one named association declared on a model.

    ``key`` is the foreign key column: on the owner for many-to-one, on the
    target for one-to-many.  Many-to-many goes through ``join_table``, whose
    ``left_key`` references the owner and ``right_key`` the target.

    ``block`` refines the dataset for one concrete owner; associations that
    have one can only be loaded per record, never eagerly.
    """

    name: str
    type: AssociationType
    target: type[Model] | str
    key: str | None = None
    join_table: sa.Table | str | None = None
    left_key: str | None = None
    right_key: str | None = None
    order_by: OrderBy = field(default=(), compare=False)
    eager: EagerArgument = field(default=None, compare=False)
    reciprocal: str | Literal[False] | None = None
    block: Callable[[Dataset, Model], Dataset] | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.type is AssociationType.MANY_TO_ONE and self.key is None:
            object.__setattr__(self, "key", f"{self.name}_id")

        if self.type is AssociationType.ONE_TO_MANY and self.key is None:
            raise ValueError(f"one_to_many {self.name!r} requires `key`")

        if self.type is AssociationType.MANY_TO_MANY and not (
            self.join_table is not None and self.left_key and self.right_key
        ):
            raise ValueError(
                f"many_to_many {self.name!r} requires `join_table`, `left_key` and `right_key`"
            )


def _order(order_by: str | sa.ColumnElement[Any] | Sequence[Any] | None) -> OrderBy:
    if order_by is None:
        return ()
    if isinstance(order_by, (str, sa.ColumnElement)):
        return (order_by,)

    return tuple(order_by)


def many_to_one(
    name: str,
    target: type[Model] | str,
    *,
    key: str | None = None,
    order_by: Any = None,
    eager: EagerArgument = None,
    block: Callable[[Dataset, Model], Dataset] | None = None,
) -> Association:
    """Declare that the owner's ``key`` column references one *target* row.

    Example:
        >>> many_to_one("artist", "Artist")  # key defaults to "artist_id"
    """
    return Association(
        name=name,
        type=AssociationType.MANY_TO_ONE,
        target=target,
        key=key,
        order_by=_order(order_by),
        eager=eager,
        block=block,
    )


def one_to_many(
    name: str,
    target: type[Model] | str,
    *,
    key: str,
    order_by: Any = None,
    eager: EagerArgument = None,
    reciprocal: str | Literal[False] | None = None,
    block: Callable[[Dataset, Model], Dataset] | None = None,
) -> Association:
    """Declare that *target* rows reference the owner through their ``key`` column.

    ``reciprocal`` names the many-to-one association on *target* pointing back
    at the owner.  Left as ``None`` it is detected from the target's
    associations; ``False`` disables back-references.
    """
    return Association(
        name=name,
        type=AssociationType.ONE_TO_MANY,
        target=target,
        key=key,
        order_by=_order(order_by),
        eager=eager,
        reciprocal=reciprocal,
        block=block,
    )


def many_to_many(
    name: str,
    target: type[Model] | str,
    *,
    join_table: sa.Table | str,
    left_key: str,
    right_key: str,
    order_by: Any = None,
    eager: EagerArgument = None,
    block: Callable[[Dataset, Model], Dataset] | None = None,
) -> Association:
    """Declare a link through *join_table* (``left_key`` -> owner, ``right_key`` -> target)."""
    return Association(
        name=name,
        type=AssociationType.MANY_TO_MANY,
        target=target,
        join_table=join_table,
        left_key=left_key,
        right_key=right_key,
        order_by=_order(order_by),
        eager=eager,
        block=block,
    )
