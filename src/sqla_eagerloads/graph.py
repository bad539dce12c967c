"""Single-query eager loading (``Dataset.eager_graph``).

Every requested association is LEFT OUTER JOINed into the main query under a
unique alias, and its columns are selected as ``f"{alias}__{column}"``.  The
:class:`JoinPlan` records, per alias, which association it fills and which
aliases it hangs from; after execution :func:`build_associations` turns the
flat rows back into a deduplicated object tree.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Final

import sqlalchemy as sa

from .association import AssociationType
from .datastructures import EagerSpec, frozendict
from .identity import IdentityMap
from .tools import check_association, get_join_table, get_single_primary_key, unique_alias


if TYPE_CHECKING:
    from .association import Association
    from .dataset import Dataset
    from .model import Model


logger = logging.getLogger(__name__)

LABEL_SEPARATOR: Final[str] = "__"


@dataclass(frozen=True, slots=True)
class JoinPlanEntry:
    association: str
    type: AssociationType
    model: type[Model]
    selectable: sa.FromClause = field(compare=False)
    requirements: tuple[str, ...] = ()
    reciprocal: str | None = None


@dataclass(slots=True)
class DependencyNode:
    alias: str
    children: list[DependencyNode] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class JoinPlan:
    """Aliases joined by ``eager_graph``, keyed by alias, in join order.

    ``master`` is the alias of the dataset's own table (its table name); it is
    the implicit root every entry with empty ``requirements`` hangs from.
    """

    master: str
    model: type[Model]
    selectable: sa.FromClause = field(compare=False)
    entries: frozendict[str, JoinPlanEntry] = field(default_factory=frozendict)

    def add(self, alias: str, entry: JoinPlanEntry) -> JoinPlan:
        return replace(self, entries=self.entries.copy(**{alias: entry}))

    def selectable_for(self, alias: str) -> sa.FromClause:
        if alias == self.master:
            return self.selectable

        return self.entries[alias].selectable

    def find(self, association: str, requirements: tuple[str, ...]) -> str | None:
        """Alias already joining *association* under the *requirements* chain, if any."""
        return next(
            (
                alias
                for alias, entry in self.entries.items()
                if entry.association == association and entry.requirements == requirements
            ),
            None,
        )

    @property
    def to_many_count(self) -> int:
        """Number of joined one-to-many / many-to-many aliases."""
        return sum(1 for entry in self.entries.values() if entry.type.uselist)

    def dependency_tree(self) -> list[DependencyNode]:
        """Group aliases under their parents, shallowest first; returns the roots."""
        roots: list[DependencyNode] = []
        nodes: dict[str, DependencyNode] = {}
        for alias, entry in sorted(self.entries.items(), key=lambda item: len(item[1].requirements)):
            node = nodes[alias] = DependencyNode(alias)
            if entry.requirements:
                nodes[entry.requirements[-1]].children.append(node)
            else:
                roots.append(node)

        return roots


def labelled_columns(selectable: sa.FromClause, alias: str) -> list[sa.Label[Any]]:
    return [column.label(f"{alias}{LABEL_SEPARATOR}{column.name}") for column in selectable.c]


def new_plan(model: type[Model], master: str) -> JoinPlan:
    return JoinPlan(master=master, model=model, selectable=model.__table__)


def eager_graph_associations(
    dataset: Dataset,
    model: type[Model],
    parent_alias: str,
    requirements: tuple[str, ...],
    spec: EagerSpec,
) -> Dataset:
    """Join every association of *spec* under *parent_alias*, recursing into nested specs.

    Args:
        dataset: Dataset whose query and plan are extended (a copy is returned).
        model: Model of the table behind *parent_alias*.
        parent_alias: Alias the associations are joined to.
        requirements: Aliases from the master down to *parent_alias* (exclusive of master).
        spec: Associations to join.
    """
    for name, nested in spec.items():
        reflection = check_association(model, name, dataset.node)
        dataset = eager_graph_association(
            dataset, model, parent_alias, requirements, reflection, nested
        )

    return dataset


def eager_graph_association(
    dataset: Dataset,
    model: type[Model],
    parent_alias: str,
    requirements: tuple[str, ...],
    reflection: Association,
    nested: EagerSpec | None = None,
) -> Dataset:
    """Join one association, register its alias in the plan, then its nested associations.

    An association already joined under the same parent is not joined again;
    only *nested* is added below its existing alias.
    """
    plan = dataset.graph
    assert plan is not None, "eager_graph plan must be created before joining"

    node = dataset.node
    target = node.associated_model(reflection)
    requirements = tuple(requirements)
    if (existing := plan.find(reflection.name, requirements)) is not None:
        if nested:
            dataset = eager_graph_associations(
                dataset, target, existing, (*requirements, existing), nested
            )
        return dataset

    query = dataset.query
    alias = unique_alias(query, reflection.name)
    target_sel = target.__table__.alias(alias)
    parent_sel = plan.selectable_for(parent_alias)
    reciprocal: str | None = None

    match reflection.type:
        case AssociationType.MANY_TO_ONE:
            target_pk = get_single_primary_key(target, reflection.name)
            query = query.outerjoin_from(
                parent_sel,
                target_sel,
                target_sel.c[target_pk] == parent_sel.c[reflection.key],
            )
        case AssociationType.ONE_TO_MANY:
            owner_pk = get_single_primary_key(model, reflection.name)
            query = query.outerjoin_from(
                parent_sel,
                target_sel,
                target_sel.c[reflection.key] == parent_sel.c[owner_pk],
            )
            reciprocal = node.reciprocal(model, reflection)
        case AssociationType.MANY_TO_MANY:
            owner_pk = get_single_primary_key(model, reflection.name)
            target_pk = get_single_primary_key(target, reflection.name)
            join_table = get_join_table(model, reflection)
            link = join_table.alias(unique_alias(query, join_table.name, reserved=(alias,)))
            query = query.outerjoin_from(
                parent_sel,
                link,
                link.c[reflection.left_key] == parent_sel.c[owner_pk],
            ).outerjoin_from(
                link,
                target_sel,
                target_sel.c[target_pk] == link.c[reflection.right_key],
            )

    query = query.add_columns(*labelled_columns(target_sel, alias))
    plan = plan.add(
        alias,
        JoinPlanEntry(
            association=reflection.name,
            type=reflection.type,
            model=target,
            selectable=target_sel,
            requirements=tuple(requirements),
            reciprocal=reciprocal,
        ),
    )
    dataset = dataset.clone(query=query, graph=plan)

    if nested:
        dataset = eager_graph_associations(
            dataset, target, alias, (*requirements, alias), nested
        )

    return dataset


def _extract(row: Mapping[str, Any], alias: str, model: type[Model]) -> Model | None:
    values: dict[str, Any] = {}
    for column in model.__table__.c:
        label = f"{alias}{LABEL_SEPARATOR}{column.name}"
        if label not in row:
            return None
        values[column.name] = row[label]

    # An unmatched outer join yields nothing but NULLs.
    if all(value is None for value in values.values()):
        return None

    return model.load(values)


def split_row(row: Mapping[str, Any], plan: JoinPlan) -> dict[str, Model | None]:
    """Split one labelled result row into ``alias -> record`` (``None`` when absent)."""
    graph: dict[str, Model | None] = {plan.master: _extract(row, plan.master, plan.model)}
    for alias, entry in plan.entries.items():
        graph[alias] = _extract(row, alias, entry.model)

    return graph


def build_associations(
    record_graphs: Iterable[Mapping[str, Model | None]],
    plan: JoinPlan,
) -> list[Model]:
    """Reconstruct master records and their associations from split rows.

    Records are canonicalised per alias, so a row repeated by a to-many join
    yields a single instance, and every association list holds each child
    once.

    Returns:
        Master records in order of first appearance.
    """
    tree = plan.dependency_tree()
    records_map: dict[str, IdentityMap] = {plan.master: IdentityMap()}
    for alias in plan.entries:
        records_map[alias] = IdentityMap()
    attached: dict[tuple[int, str], set[int]] = {}

    records: list[Model] = []
    rows = 0
    for record_graph in record_graphs:
        rows += 1
        primary = record_graph.get(plan.master)
        if primary is None:
            continue

        primary, is_new = records_map[plan.master].resolve(primary)
        if is_new:
            records.append(primary)

        _build_graph(tree, plan, records_map, attached, primary, record_graph)

    # Two to-many joins can multiply each other's rows.
    if plan.to_many_count > 1:
        _make_unique(records, tree, plan)

    logger.debug(
        "Reconstructed %d %s records from %d rows across %d aliases",
        len(records),
        plan.model.__name__,
        rows,
        len(plan.entries),
    )

    return records


def _build_graph(
    nodes: Sequence[DependencyNode],
    plan: JoinPlan,
    records_map: Mapping[str, IdentityMap],
    attached: dict[tuple[int, str], set[int]],
    current: Model,
    record_graph: Mapping[str, Model | None],
) -> None:
    for node in nodes:
        entry = plan.entries[node.alias]
        if not current.is_loaded(entry.association):
            current.set_association(entry.association, [] if entry.type.uselist else None)

    for node in nodes:
        entry = plan.entries[node.alias]
        record = record_graph.get(node.alias)
        if record is None:
            continue

        record, _ = records_map[node.alias].resolve(record)
        if entry.type.uselist:
            seen = attached.setdefault((id(current), entry.association), set())
            if id(record) not in seen:
                seen.add(id(record))
                current.get_association(entry.association).append(record)
            if entry.reciprocal:
                record.set_association(entry.reciprocal, current)
        else:
            current.set_association(entry.association, record)

        _build_graph(node.children, plan, records_map, attached, record, record_graph)


def _make_unique(records: Iterable[Model], nodes: Sequence[DependencyNode], plan: JoinPlan) -> None:
    for record in records:
        for node in nodes:
            entry = plan.entries[node.alias]
            if not record.is_loaded(entry.association):
                continue

            value = record.get_association(entry.association)
            if entry.type.uselist:
                seen: set[tuple[type[Model], Any]] = set()
                unique: list[Model] = []
                for item in value:
                    identity = (type(item), item.key)
                    if identity not in seen:
                        seen.add(identity)
                        unique.append(item)
                value[:] = unique
                _make_unique(value, node.children, plan)
            elif value is not None:
                _make_unique((value,), node.children, plan)
