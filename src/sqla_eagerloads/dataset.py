from __future__ import annotations

import sys
import warnings
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Union

import sqlalchemy as sa
from sqlalchemy import orm

from .datastructures import EagerSpec, merge_specs
from .eager import eager_load
from .graph import JoinPlan, build_associations, eager_graph_associations, labelled_columns, new_plan, split_row
from .node import Node
from .tools import build_eager_spec, check_model, get_table_name, resolve_col


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession

    from .model import Model


Connection = Union[sa.Connection, orm.Session]


@dataclass(frozen=True, slots=True, eq=False)
class Dataset:
    """Immutable query over one model, carrying its eager-loading requests.

    Every method returns a new dataset; a dataset that has been handed out is
    never modified, so chained calls compose freely::

        base = Artist.dataset().where(Artist.__table__.c.active.is_(True))
        with_albums = base.eager("albums")          # batched, one query per level
        graphed = base.eager_graph({"albums": "tracks"})  # single joined query
        artists = with_albums.all(connection)

    ``eager`` and ``eager_graph`` accept association names, mappings of
    name -> nested arguments (cascading to any depth), and lists of either.
    Both can be used on the same dataset: the joined graph is built first,
    then batched associations are loaded onto its records.
    """

    model: type[Model] | None
    query: sa.Select[Any]
    node: Node = field(default_factory=Node)
    eager_spec: EagerSpec | None = None
    graph: JoinPlan | None = None
    row_limit: int | None = None

    def clone(self, **changes: Any) -> Self:
        return replace(self, **changes)

    def derive(self, model: type[Model], query: sa.Select[Any]) -> Dataset:
        """A fresh dataset over *model* sharing this dataset's registry."""
        return Dataset(model=model, query=query, node=self.node)

    def where(self, *clauses: sa.ColumnExpressionArgument[bool]) -> Self:
        return self.clone(query=self.query.where(*clauses))

    def order_by(self, *clauses: Any) -> Self:
        return self.clone(query=self.query.order_by(*clauses))

    def limit(self, limit: int | None) -> Self:
        dataset = self.clone(query=self.query.limit(limit), row_limit=limit)
        dataset._warn_graph_limit()
        return dataset

    def filter_by_keys(self, column: str, keys: Iterable[Any]) -> Self:
        """Keep rows whose *column* value is in *keys*."""
        model = check_model(self)
        return self.where(model.__table__.c[column].in_(list(keys)))

    def col(self, ref: str) -> sa.ColumnElement[Any]:
        """Resolve ``'alias.column'`` against the joined aliases; see :func:`resolve_col`."""
        return resolve_col(self.query, ref)

    def eager(self, *associations: Any) -> Self:
        """Request batched loading of *associations*: one query per association per level.

        Raises:
            NoEntityBound: If the dataset has no model.
            UnknownAssociation: If a name is not an association of its model.
            NotEagerLoadable: If an association has a per-instance block.
            MalformedEagerArgument: If an argument is not a name or mapping.
        """
        model = check_model(self)
        spec = build_eager_spec(model, associations, self.node)
        return self.clone(eager_spec=merge_specs(self.eager_spec, spec))

    def eager_graph(self, *associations: Any) -> Self:
        """Join *associations* into this query and rebuild the object graph from its rows.

        Columns of joined tables can be filtered through :meth:`col`.  The
        associations' own ``order_by`` is not applied; order the dataset.

        Raises:
            Same as :meth:`eager`.
        """
        model = check_model(self)
        spec = build_eager_spec(model, associations, self.node)
        dataset = self
        if dataset.graph is None:
            master = get_table_name(model)
            dataset = dataset.clone(
                query=dataset.query.with_only_columns(*labelled_columns(model.__table__, master)),
                graph=new_plan(model, master),
            )

        assert dataset.graph is not None
        dataset = eager_graph_associations(dataset, model, dataset.graph.master, (), spec)
        dataset._warn_graph_limit()
        return dataset

    def fetch(self, connection: Connection) -> list[Any]:
        """Execute the query without post-processing.

        Returns records, ``alias -> record`` mappings for graphed datasets, or
        plain dicts for datasets without a model.
        """
        rows = connection.execute(self.query).mappings()
        if self.model is None:
            return [dict(row) for row in rows]
        if self.graph is not None:
            return [split_row(row, self.graph) for row in rows]

        return [self.model.load(row) for row in rows]

    def post_load(self, rows: Sequence[Any], connection: Connection) -> list[Any]:
        """Turn fetched rows into records with every requested association loaded."""
        records = build_associations(rows, self.graph) if self.graph is not None else list(rows)
        if self.eager_spec:
            eager_load(records, self, connection)

        return records

    def all(self, connection: Connection) -> list[Any]:
        """Execute and return all records with their eager associations loaded."""
        return self.post_load(self.fetch(connection), connection)

    async def all_async(self, connection: AsyncConnection | AsyncSession) -> list[Any]:
        """:meth:`all` for async connections; runs the whole load in one ``run_sync``."""
        return await connection.run_sync(self.all)

    def _warn_graph_limit(self) -> None:
        if self.row_limit is not None and self.graph is not None and self.graph.to_many_count:
            warnings.warn(
                "limit() applies to joined rows: with to-many associations in "
                "eager_graph it can cut a record's associations short",
                stacklevel=3,
            )
