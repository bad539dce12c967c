from __future__ import annotations

import sys
from collections.abc import Iterator, Mapping
from typing import Any, Optional, TypeVar


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


K = TypeVar("K")
V = TypeVar("V")


class frozendict(Mapping[K, V]):  # noqa: N801
    """Immutable, hashable mapping.

    Backs every value that must not change once a dataset has been built
    (eager specs, join plans), so a dataset can be cloned and extended without
    affecting the datasets it was derived from.

    Example:
        >>> fd = frozendict({"artist": None})
        >>> fd2 = fd.copy(genre=None)
        >>> sorted(fd2)
        ['artist', 'genre']
        >>> "genre" in fd
        False
    """

    __slots__ = ("_dict", "_hash")

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self._dict: dict[K, V] = dict(*args, **kwargs)
        self._hash: int | None = None

    def __getitem__(self, key: K) -> V:
        return self._dict[key]

    def __contains__(self, key: Any) -> bool:
        return key in self._dict

    def copy(self, **add_or_replace: Any) -> Self:
        """Return a new instance with *add_or_replace* applied on top."""
        return type(self)(self._dict, **add_or_replace)

    def __iter__(self) -> Iterator[K]:
        return iter(self._dict)

    def __len__(self) -> int:
        return len(self._dict)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._dict!r}>"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, frozendict):
            return self._dict == other._dict

        if isinstance(other, dict):
            return self._dict == other

        return NotImplemented

    def __hash__(self) -> int:
        # Computed on first use; values may be other frozendicts.
        if self._hash is None:
            self._hash = hash(frozenset(self._dict.items()))

        return self._hash


class EagerSpec(frozendict[str, Optional["EagerSpec"]]):
    """Association name -> nested spec (``None`` marks a leaf).

    Example:
        >>> a = EagerSpec(albums=EagerSpec(tracks=None))
        >>> b = EagerSpec(albums=EagerSpec(genre=None))
        >>> a.merge(b)
        <EagerSpec {'albums': <EagerSpec {'tracks': None, 'genre': None}>}>
    """

    __slots__ = ()

    def merge(self, other: Mapping[str, EagerSpec | None] | None) -> EagerSpec:
        """Union two specs, merging nested specs of shared names recursively."""
        if not other:
            return self

        merged: dict[str, EagerSpec | None] = dict(self._dict)
        for name, nested in other.items():
            current = merged.get(name)
            if current is None:
                merged[name] = nested
            elif nested is not None:
                merged[name] = current.merge(nested)

        return EagerSpec(merged)


def merge_specs(*specs: EagerSpec | None) -> EagerSpec | None:
    """Merge any number of optional specs; ``None`` if all are empty."""
    result: EagerSpec | None = None
    for spec in specs:
        if not spec:
            continue
        result = spec if result is None else result.merge(spec)

    return result
