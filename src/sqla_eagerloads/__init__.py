"""Eager loading of associations over SQLAlchemy Core tables.

Declare associations on ``Model`` subclasses, initialize the ``Node`` registry
once at startup, then load related records without one query per record:

* ``Dataset.eager(...)`` loads each association with one query per nesting
  level, keyed by the fetched records' keys;
* ``Dataset.eager_graph(...)`` joins every association into the main query and
  rebuilds the object graph, deduplicating the rows the joins multiply.
"""

from ._version import __version__, __version_tuple__
from .association import Association, AssociationType, many_to_many, many_to_one, one_to_many
from .dataset import Dataset
from .datastructures import EagerSpec, frozendict
from .eager import eager_load, load_association
from .exceptions import (
    AssociationNotLoaded,
    BlockedAssociation,
    EagerLoadError,
    MalformedEagerArgument,
    NoEntityBound,
    NotEagerLoadable,
    UnknownAssociation,
)
from .graph import JoinPlan, JoinPlanEntry, build_associations, split_row
from .identity import IdentityMap
from .model import Model
from .node import Node, get_node, init_node
from .tools import (
    build_eager_spec,
    eager_cache_clear,
    eager_cache_info,
    get_primary_key,
    get_table_name,
    get_table_names,
    resolve_col,
    unique_alias,
)


__all__ = (
    "Association",
    "AssociationNotLoaded",
    "AssociationType",
    "BlockedAssociation",
    "Dataset",
    "EagerLoadError",
    "EagerSpec",
    "IdentityMap",
    "JoinPlan",
    "JoinPlanEntry",
    "MalformedEagerArgument",
    "Model",
    "NoEntityBound",
    "Node",
    "NotEagerLoadable",
    "UnknownAssociation",
    "__version__",
    "__version_tuple__",
    "build_associations",
    "build_eager_spec",
    "eager_cache_clear",
    "eager_cache_info",
    "eager_load",
    "frozendict",
    "get_node",
    "get_primary_key",
    "get_table_name",
    "get_table_names",
    "init_node",
    "load_association",
    "many_to_many",
    "many_to_one",
    "one_to_many",
    "resolve_col",
    "split_row",
    "unique_alias",
)
