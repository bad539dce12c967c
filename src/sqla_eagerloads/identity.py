from __future__ import annotations

from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from .model import Model


class IdentityMap:
    """Canonical record per identity key, for one table alias.

    The same logical row fetched several times (once per joined child row,
    or once per link-table row) collapses into the first instance seen.
    Create a fresh map per load; never share one between queries.
    """

    __slots__ = ("_records",)

    def __init__(self) -> None:
        self._records: dict[Any, Model] = {}

    def resolve(self, record: Model) -> tuple[Model, bool]:
        """Return ``(canonical, is_new)`` for *record*, registering it if unseen."""
        key = record.key
        if (canonical := self._records.get(key)) is not None:
            return canonical, False

        self._records[key] = record
        return record, True
