"""Batched eager loading (``Dataset.eager``).

Records are loaded normally first.  Then every requested association is
fetched with one query over all owners, keyed by the observed foreign or
primary key values, and attached back.  Cascaded associations are loaded by
the fetched dataset itself, one query per association per level.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, Final, Protocol

import sqlalchemy as sa

from .association import AssociationType
from .exceptions import UnknownAssociation
from .identity import IdentityMap
from .node import Node
from .tools import check_association, check_model, get_join_table, get_single_primary_key


if TYPE_CHECKING:
    from .association import Association
    from .dataset import Connection, Dataset
    from .datastructures import EagerSpec
    from .model import Model


logger = logging.getLogger(__name__)

LINK_KEY_LABEL: Final[str] = "_eager_link_key"

_Index = dict[Any, list["Model"]]
_Refine = Callable[["Dataset"], "Dataset"]


class _Loader(Protocol):
    def __call__(
        self,
        owners: Sequence[Model],
        dataset: Dataset,
        reflection: Association,
        index: _Index,
        nested: EagerSpec | None,
        connection: Connection,
        refine: _Refine | None = None,
    ) -> None: ...


def eager_load(records: Sequence[Model], dataset: Dataset, connection: Connection) -> None:
    """Load every association in ``dataset.eager_spec`` onto *records*, in place.

    Issues at most one query per association; an association none of the
    records has a key value for is skipped without a query.
    """
    spec = dataset.eager_spec
    if not records or not spec:
        return

    model = check_model(dataset)
    reflections = [check_association(model, name, dataset.node) for name in spec]
    indexes = _build_indexes(records, model, reflections)

    for reflection in reflections:
        loader = _LOADERS[reflection.type]
        loader(
            records,
            dataset,
            reflection,
            indexes[_grouping_key(model, reflection)],
            spec.get(reflection.name),
            connection,
        )


def load_association(
    record: Model,
    name: str,
    connection: Connection,
    node: Node | None = None,
) -> Any:
    """Load association *name* for a single *record* and return its value.

    Unlike eager loading this works for associations with a ``block``: the
    block receives the association dataset and *record* and returns the
    refined dataset.

    Raises:
        UnknownAssociation: If the record's model has no such association.
    """
    node = node or Node()
    model = type(record)
    reflection = node.association(model, name)
    if reflection is None:
        raise UnknownAssociation(model, name)

    index = _build_indexes((record,), model, (reflection,))[_grouping_key(model, reflection)]
    block = reflection.block
    refine: _Refine | None = (lambda ds: block(ds, record)) if block is not None else None

    _LOADERS[reflection.type](
        (record,), model.dataset(node), reflection, index, None, connection, refine
    )

    return record.get_association(name)


def _grouping_key(model: type[Model], reflection: Association) -> str:
    """Owner column whose values map fetched rows back to their owners."""
    if reflection.type is AssociationType.MANY_TO_ONE:
        assert reflection.key
        return reflection.key

    return get_single_primary_key(model, reflection.name)


def _build_indexes(
    records: Sequence[Model],
    model: type[Model],
    reflections: Sequence[Association],
) -> dict[str, _Index]:
    """Index *records* by every grouping key the reflections need (each key once)."""
    indexes: dict[str, _Index] = {}
    for reflection in reflections:
        indexes.setdefault(_grouping_key(model, reflection), {})

    for record in records:
        for key, index in indexes.items():
            if (value := record.values.get(key)) is not None:
                index.setdefault(value, []).append(record)

    return indexes


def _prepare(
    dataset: Dataset,
    table: sa.FromClause,
    reflection: Association,
    nested: EagerSpec | None,
    refine: _Refine | None,
) -> Dataset:
    """Apply the association's order, the per-record refinement and cascades."""
    if reflection.order_by:
        dataset = dataset.order_by(
            *(table.c[by] if isinstance(by, str) else by for by in reflection.order_by)
        )
    if refine is not None:
        dataset = refine(dataset)
    if nested:
        dataset = dataset.eager(nested)
    if reflection.eager:
        dataset = dataset.eager(reflection.eager)

    return dataset


def _load_many_to_one(
    owners: Sequence[Model],
    dataset: Dataset,
    reflection: Association,
    index: _Index,
    nested: EagerSpec | None,
    connection: Connection,
    refine: _Refine | None = None,
) -> None:
    name = reflection.name
    for owner in owners:
        owner.set_association(name, None)

    if not index:
        logger.debug("Skipping %s: no owner has a %s value", name, reflection.key)
        return

    target = dataset.node.associated_model(reflection)
    table = target.__table__
    target_pk = get_single_primary_key(target, name)
    ds = dataset.derive(target, sa.select(table).where(table.c[target_pk].in_(list(index))))
    ds = _prepare(ds, table, reflection, nested, refine)

    logger.debug("Eager loading %s (many_to_one) for %d keys", name, len(index))
    for record in ds.all(connection):
        for owner in index.get(record.values.get(target_pk), ()):
            owner.set_association(name, record)


def _load_one_to_many(
    owners: Sequence[Model],
    dataset: Dataset,
    reflection: Association,
    index: _Index,
    nested: EagerSpec | None,
    connection: Connection,
    refine: _Refine | None = None,
) -> None:
    name = reflection.name
    for owner in owners:
        owner.set_association(name, [])

    if not index:
        logger.debug("Skipping %s: no owner has a primary key value", name)
        return

    model = check_model(dataset)
    target = dataset.node.associated_model(reflection)
    table = target.__table__
    key = reflection.key
    assert key
    ds = dataset.derive(target, sa.select(table).where(table.c[key].in_(list(index))))
    ds = _prepare(ds, table, reflection, nested, refine)
    reciprocal = dataset.node.reciprocal(model, reflection)

    logger.debug("Eager loading %s (one_to_many) for %d keys", name, len(index))
    for record in ds.all(connection):
        for owner in index.get(record.values.get(key), ()):
            owner.get_association(name).append(record)
            if reciprocal:
                record.set_association(reciprocal, owner)


def _load_many_to_many(
    owners: Sequence[Model],
    dataset: Dataset,
    reflection: Association,
    index: _Index,
    nested: EagerSpec | None,
    connection: Connection,
    refine: _Refine | None = None,
) -> None:
    name = reflection.name
    for owner in owners:
        owner.set_association(name, [])

    if not index:
        logger.debug("Skipping %s: no owner has a primary key value", name)
        return

    model = check_model(dataset)
    target = dataset.node.associated_model(reflection)
    table = target.__table__
    target_pk = get_single_primary_key(target, name)
    join_table = get_join_table(model, reflection)
    left = join_table.c[reflection.left_key]
    query = (
        sa.select(table, left.label(LINK_KEY_LABEL))
        .join(join_table, join_table.c[reflection.right_key] == table.c[target_pk])
        .where(left.in_(list(index)))
    )
    ds = _prepare(dataset.derive(target, query), table, reflection, nested, refine)

    logger.debug("Eager loading %s (many_to_many) for %d keys", name, len(index))
    # One target row comes back per link row; keep one instance per target.
    identity = IdentityMap()
    fetched: list[Model] = []
    links: list[tuple[Any, Model]] = []
    for record in ds.fetch(connection):
        link_key = record.values.pop(LINK_KEY_LABEL)
        record, is_new = identity.resolve(record)
        if is_new:
            fetched.append(record)
        links.append((link_key, record))

    ds.post_load(fetched, connection)

    for link_key, record in links:
        for owner in index.get(link_key, ()):
            owner.get_association(name).append(record)


_LOADERS: Final[Mapping[AssociationType, _Loader]] = {
    AssociationType.MANY_TO_ONE: _load_many_to_one,
    AssociationType.ONE_TO_MANY: _load_one_to_many,
    AssociationType.MANY_TO_MANY: _load_many_to_many,
}
