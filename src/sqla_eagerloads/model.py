from __future__ import annotations

import sys
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, ClassVar, Final

import sqlalchemy as sa

from .exceptions import AssociationNotLoaded
from .tools import get_primary_key


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

if TYPE_CHECKING:
    from .association import Association
    from .dataset import Dataset
    from .node import Node


_UNSET: Final[Any] = object()


class Model:
    """Base class for records fetched from a ``sa.Table``.

    Subclass once with ``__abstract__ = True`` to get a base that collects its
    concrete models (the counterpart of a declarative base), then bind each
    concrete model to a table::

        metadata = sa.MetaData()

        class Base(Model):
            __abstract__ = True

        class Album(Base):
            __table__ = sa.Table("albums", metadata, ...)
            __associations__ = (many_to_one("artist", "Artist"),)

    Column values live in ``values`` and are readable as attributes.
    Associations start unloaded; reading one before it has been loaded raises
    :class:`AssociationNotLoaded`, so an empty list always means "loaded, no
    rows".

    Record members win over column names in attribute access: a column
    named ``key``, ``pk``, ``values``, ``load`` or ``dataset`` (or after any
    other method of this class) is only reachable as ``record.values[name]``.
    """

    __abstract__: ClassVar[bool] = True
    __table__: ClassVar[sa.Table]
    __associations__: ClassVar[tuple[Association, ...]] = ()
    __models__: ClassVar[list[type[Model]]] = []

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if cls.__dict__.get("__abstract__", False):
            cls.__models__ = []
            return

        if not isinstance(cls.__dict__.get("__table__"), sa.Table):
            raise TypeError(f"{cls.__name__} must define `__table__` as a sa.Table")

        cls.__models__.append(cls)

    def __init__(self, **values: Any) -> None:
        self.values: dict[str, Any] = values
        self._associations: dict[str, Any] = {}
        self._key: Any = _UNSET

    @classmethod
    def load(cls, values: Mapping[str, Any]) -> Self:
        """Build a record from a fetched row mapping."""
        return cls(**values)

    @classmethod
    def dataset(cls, node: Node | None = None) -> Dataset:
        """Return a dataset selecting every row of this model's table."""
        from .dataset import Dataset

        if node is None:
            return Dataset(model=cls, query=sa.select(cls.__table__))

        return Dataset(model=cls, query=sa.select(cls.__table__), node=node)

    @property
    def pk(self) -> Any:
        """Primary key value: scalar for one column, tuple for several, ``None`` if undeclared."""
        columns = get_primary_key(type(self))
        if not columns:
            return None
        if len(columns) == 1:
            return self.values.get(columns[0])

        values = tuple(self.values.get(column) for column in columns)
        return None if all(v is None for v in values) else values

    @property
    def key(self) -> Any:
        """Identity key: the primary key, or the sorted ``(name, value)`` pairs without one."""
        if self._key is _UNSET:
            pk = self.pk
            self._key = pk if pk is not None else tuple(sorted(self.values.items()))

        return self._key

    def is_loaded(self, name: str) -> bool:
        return name in self._associations

    def get_association(self, name: str) -> Any:
        try:
            return self._associations[name]
        except KeyError:
            raise AssociationNotLoaded(type(self), name) from None

    def set_association(self, name: str, value: Any) -> None:
        self._associations[name] = value

    def __getattr__(self, name: str) -> Any:
        # Only called for names not found normally.
        if name.startswith("_") or name == "values":
            raise AttributeError(name)

        if name in self.values:
            return self.values[name]

        if name in self._associations:
            return self._associations[name]

        if any(association.name == name for association in type(self).__associations__):
            raise AssociationNotLoaded(type(self), name)

        raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Model):
            return NotImplemented

        return type(self) is type(other) and self.values == other.values

    def __hash__(self) -> int:
        return hash((type(self), self.key))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.values!r}>"
