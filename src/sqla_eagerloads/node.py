from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, ClassVar, final

from .association import AssociationType
from .datastructures import frozendict


if TYPE_CHECKING:
    from .association import Association
    from .model import Model


@final
class Node:
    """Singleton registry of every model and the associations it declares.

    This is the schema registry the loaders consult: association lookup by
    name, associated-model resolution (targets may be given as class names)
    and reciprocal detection.
    """

    __instance: ClassVar[Node | None] = None
    _node: Mapping[type[Model], Sequence[Association]]
    _models: Mapping[str, type[Model]]

    def __new__(
        cls,
        node: Mapping[type[Model], Sequence[Association]] | None = None,
    ) -> Node:
        if cls.__instance is None:
            instance = super().__new__(cls)
            if node is not None:
                instance.set_node(node)

            cls.__instance = instance

        if not getattr(cls.__instance, "_node", None):
            raise RuntimeError("Node is not initialized or empty")

        return cls.__instance

    def get(self, model: type[Model]) -> Sequence[Association]:
        """Get associations for a model, returning an empty sequence if not found."""
        return self.node.get(model, ())

    def __getitem__(self, model: type[Model]) -> Sequence[Association]:
        """Look up associations for *model*, raising ``KeyError`` if not found."""
        return self.node[model]

    @property
    def node(self) -> Mapping[type[Model], Sequence[Association]]:
        """The underlying model-to-associations mapping (read-only)."""
        return self._node

    def set_node(self, node: Mapping[type[Model], Sequence[Association]]) -> None:
        """Set the association mapping for this node instance."""
        self._node = node
        self._models = frozendict({model.__name__: model for model in node})

    def association(self, model: type[Model], name: str) -> Association | None:
        """Return the association *name* declared on *model*, or ``None``."""
        return next((a for a in self.get(model) if a.name == name), None)

    def associated_model(self, association: Association) -> type[Model]:
        """Resolve the target model of *association*.

        Raises:
            ValueError: If the target is a name no registered model carries.
        """
        target = association.target
        if not isinstance(target, str):
            return target

        try:
            return self._models[target]
        except KeyError:
            raise ValueError(
                f"Association {association.name!r} targets unknown model {target!r}"
            ) from None

    def reciprocal(self, model: type[Model], association: Association) -> str | None:
        """Name of the many-to-one on the target that points back at *model*.

        Only one-to-many associations have reciprocals.  An explicit
        ``reciprocal`` on the association wins; ``False`` disables detection.
        """
        if association.type is not AssociationType.ONE_TO_MANY:
            return None
        if association.reciprocal is not None:
            return association.reciprocal or None

        target = self.associated_model(association)
        return next(
            (
                candidate.name
                for candidate in self.get(target)
                if candidate.type is AssociationType.MANY_TO_ONE
                and candidate.key == association.key
                and self.associated_model(candidate) is model
            ),
            None,
        )

    @classmethod
    def reset(cls) -> None:
        """Destroy the singleton, allowing re-initialization (primarily for tests)."""
        cls._node = {}
        cls.__instance = None


def get_node(base: type[Model]) -> Mapping[type[Model], Sequence[Association]]:
    """Collect the associations of every concrete model under *base*.

    Args:
        base: Abstract ``Model`` subclass (``__abstract__ = True``).

    Returns:
        Frozen mapping of model classes to their associations.

    Raises:
        AssertionError: If *base* is not an abstract model base.
        ValueError: If a model declares two associations with the same name.
    """
    assert base.__dict__.get("__abstract__", False), "base must be an abstract Model subclass"

    for model in base.__models__:
        names = [association.name for association in model.__associations__]
        if len(names) != len(set(names)):
            raise ValueError(f"{model.__name__} declares duplicate association names: {names}")

    return frozendict({model: tuple(model.__associations__) for model in base.__models__})


def init_node(node: Mapping[type[Model], Sequence[Association]]) -> None:
    """Initialize the global Node singleton with association mappings.

    Call once at startup::

        init_node(get_node(Base))
    """
    Node(node)
