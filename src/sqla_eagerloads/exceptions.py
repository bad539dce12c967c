"""Errors raised while building or running eager loads.

Every error is raised synchronously at the call that caused it and is never
retried.
"""

from __future__ import annotations

from typing import Any


class EagerLoadError(Exception):
    """Base exception for all sqla_eagerloads errors."""


class UnknownAssociation(EagerLoadError, ValueError):
    """Raised when a model has no association with the requested name."""

    def __init__(self, model: type[Any], name: str) -> None:
        self.model = model
        self.name = name
        super().__init__(f"No association {name!r} on {model.__name__}")


class NotEagerLoadable(EagerLoadError, ValueError):
    """Raised when an association carries a per-instance ``block``."""

    def __init__(self, model: type[Any], name: str) -> None:
        self.model = model
        self.name = name
        super().__init__(
            f"Cannot eagerly load {model.__name__}.{name}: "
            "associations with a block are evaluated per instance"
        )


BlockedAssociation = NotEagerLoadable


class NoEntityBound(EagerLoadError, TypeError):
    """Raised when eager loading is requested on a dataset without a model."""

    def __init__(self) -> None:
        super().__init__("No model for this dataset")


class MalformedEagerArgument(EagerLoadError, TypeError):
    """Raised when an eager argument is neither a name nor a mapping."""

    def __init__(self, argument: Any) -> None:
        self.argument = argument
        super().__init__(
            "Associations must be given as names or mappings, "
            f"got {type(argument).__name__}: {argument!r}"
        )


class AssociationNotLoaded(EagerLoadError, AttributeError):
    """Raised when reading an association that has not been loaded."""

    def __init__(self, model: type[Any], name: str) -> None:
        self.model = model
        self.name = name
        super().__init__(f"Association {model.__name__}.{name} is not loaded")
