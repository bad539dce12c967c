from __future__ import annotations

from collections.abc import Mapping, Sequence
from functools import lru_cache
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa

from .datastructures import EagerSpec
from .exceptions import MalformedEagerArgument, NoEntityBound, NotEagerLoadable, UnknownAssociation


if TYPE_CHECKING:
    from .association import Association
    from .dataset import Dataset
    from .model import Model
    from .node import Node


@lru_cache
def _get_primary_key(model: type[Model]) -> tuple[str, ...]:
    """Return the primary-key column names of *model* (cached)."""
    return tuple(column.name for column in model.__table__.primary_key)


@lru_cache
def _get_table_name(model: type[Model]) -> str:
    """Return the table name for *model* (cached)."""
    result = model.__table__.name
    if not result:
        raise ValueError(f"Cannot determine tablename for {model}")

    return result


def get_table_name(model: type[Model]) -> str:
    """Get the table name of a model.

    Raises:
        ValueError: If the table name cannot be determined.
    """
    return _get_table_name(model)


def get_primary_key(model: type[Model]) -> tuple[str, ...]:
    """Get the primary-key column names of a model (empty when none is declared)."""
    return _get_primary_key(model)


def get_single_primary_key(model: type[Model], association: str) -> str:
    """Return the only primary-key column of *model*.

    Associations are keyed on one column, so the model on the primary-key side
    of *association* must have exactly one.

    Raises:
        ValueError: If *model* has no or a composite primary key.
    """
    columns = _get_primary_key(model)
    if len(columns) != 1:
        raise ValueError(
            f"{model.__name__} needs a single-column primary key "
            f"to load {association!r}, got {columns!r}"
        )

    return columns[0]


def get_join_table(model: type[Model], association: Association) -> sa.Table:
    """Return the link table of a many-to-many *association* declared on *model*.

    Names are looked up in the owner table's ``MetaData``.
    """
    join_table = association.join_table
    if isinstance(join_table, sa.Table):
        return join_table

    try:
        return model.__table__.metadata.tables[join_table]
    except KeyError:
        raise ValueError(
            f"Join table {join_table!r} of {model.__name__}.{association.name} "
            "is not in the model's MetaData"
        ) from None


def get_table_names(query: sa.Select[Any]) -> Sequence[str]:
    """Extract all table and alias names from a select's FROM tree.

    Aliases contribute both their own name and the name of the table they
    wrap.

    Args:
        query: SQLAlchemy select query.

    Returns:
        Names in discovery order, without duplicates.
    """
    seen: set[str] = set()
    out: list[str] = []

    def add(name: str | None) -> None:
        if name and name not in seen:
            seen.add(name)
            out.append(name)

    for root in query.get_final_froms():
        stack: list[Any] = [root]
        while stack:
            node = stack.pop()

            if isinstance(node, sa.Table):
                add(node.name)
                continue

            if isinstance(node, sa.Join):
                stack.extend([node.right, node.left])
                continue

            add(getattr(node, "name", None))
            if hasattr(node, "element"):
                stack.append(node.element)

    return out


def unique_alias(query: sa.Select[Any], name: str, reserved: Sequence[str] = ()) -> str:
    """Return *name*, or ``name_N`` with the smallest free N, unused in *query*.

    *reserved* holds names allocated but not joined into *query* yet.
    """
    taken = {*get_table_names(query), *reserved}
    if name not in taken:
        return name

    i = 0
    while f"{name}_{i}" in taken:
        i += 1

    return f"{name}_{i}"


def _find_from_by_name(root: sa.FromClause, name: str) -> sa.FromClause | None:
    """Find an alias or table named *name* in the FROM tree (iterative)."""
    stack: list[sa.FromClause] = [root]
    while stack:
        node = stack.pop()
        if isinstance(node, sa.Join):
            stack.append(node.left)
            stack.append(node.right)
            continue
        if getattr(node, "name", None) == name:
            return node
        element = getattr(node, "element", None)
        if element is not None:
            stack.append(element)
    return None


def resolve_col(query: sa.Select[Any], ref: str) -> sa.ColumnElement[Any]:
    """Resolve ``'alias.column'`` to a bound column of *query*.

    Used to filter on tables joined by ``eager_graph``, whose aliases are the
    association names (``artist``, ``tracks``, ``tracks_0``, ...)::

        ds = Album.dataset().eager_graph("artist")
        ds = ds.where(resolve_col(ds.query, "artist.name") == "Miles")

    Raises ``ValueError`` if alias or column not found.
    """
    alias_name, sep, col_name = ref.partition(".")
    if not sep:
        raise ValueError(f"Expected 'alias.column' format, got {ref!r}")
    for root in query.get_final_froms():
        found = _find_from_by_name(root, alias_name)
        if found is not None and hasattr(found, "c"):
            try:
                return found.c[col_name]
            except KeyError:
                raise ValueError(
                    f"Column {col_name!r} not found in alias {alias_name!r}. "
                    f"Available: {[c.key for c in found.c]}"
                ) from None
    raise ValueError(
        f"Alias {alias_name!r} not found in query. "
        f"Available: {get_table_names(query)}"
    )


def check_model(dataset: Dataset) -> type[Model]:
    """Return the model bound to *dataset*.

    Raises:
        NoEntityBound: For raw datasets built without a model.
    """
    if dataset.model is None:
        raise NoEntityBound()

    return dataset.model


@lru_cache(maxsize=1028)
def _check_association(model: type[Model], name: str, node: Node) -> Association:
    reflection = node.association(model, name)
    if reflection is None:
        raise UnknownAssociation(model, name)
    if reflection.block is not None:
        raise NotEagerLoadable(model, name)

    return reflection


def check_association(model: type[Model], name: str, node: Node) -> Association:
    """Look up association *name* on *model* and make sure it can be eager loaded.

    Raises:
        UnknownAssociation: If *model* declares no such association.
        NotEagerLoadable: If the association has a per-instance ``block``.
    """
    if not isinstance(name, str):
        raise MalformedEagerArgument(name)

    return _check_association(model, name, node)


def build_eager_spec(model: type[Model], associations: Any, node: Node) -> EagerSpec:
    """Normalize eager arguments into a validated :class:`EagerSpec`.

    Accepts association names, mappings of name -> nested arguments, and
    lists/tuples of either, at any depth.  Nested names are checked against
    the associated model, so every error surfaces before the query runs.

    Example:
        >>> build_eager_spec(Artist, ("albums", {"albums": "tracks"}), node)
        <EagerSpec {'albums': <EagerSpec {'tracks': None}>}>
    """
    spec = EagerSpec()
    if associations is None:
        return spec

    if isinstance(associations, (str, Mapping)):
        associations = (associations,)
    elif not isinstance(associations, (list, tuple)):
        raise MalformedEagerArgument(associations)

    for association in associations:
        if isinstance(association, str):
            check_association(model, association, node)
            spec = spec.merge({association: None})
        elif isinstance(association, Mapping):
            for name, nested in association.items():
                reflection = check_association(model, name, node)
                nested_spec = build_eager_spec(node.associated_model(reflection), nested, node)
                spec = spec.merge({name: nested_spec or None})
        elif isinstance(association, (list, tuple)):
            spec = spec.merge(build_eager_spec(model, association, node))
        else:
            raise MalformedEagerArgument(association)

    return spec


def eager_cache_info() -> dict[str, Any]:
    """Return LRU cache statistics for all internal caches."""
    return {
        fn.__name__: fn.cache_info()
        for fn in (_check_association, _get_primary_key, _get_table_name)
    }


def eager_cache_clear() -> None:
    """Clear all internal LRU caches (needed after re-initializing the Node)."""
    for fn in (_check_association, _get_primary_key, _get_table_name):
        fn.cache_clear()
