"""Store protocol and the dual-store accessor.

A ``RecordStore`` is one database seen through the declared record
types.  ``DualStore`` pairs the source and target stores and exposes
every operation with an explicit ``StoreRole``.  There is no notion of a
"current" connection: each call names the store it runs against.

Every read returns a fully built ``list`` (or ``set``), so no lazily
evaluated result can outlive the call that produced it.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum
from typing import Protocol

from db_surgeon.merge.models import Record
from db_surgeon.schema import RecordType


class StoreRole(str, Enum):
    SOURCE = "source"
    TARGET = "target"


class RecordStore(Protocol):
    """Protocol that every record store backend must satisfy."""

    name: str

    def select(
        self, record_type: RecordType, *, parent_id: int | None = None
    ) -> list[Record]:
        """Return all records of *record_type*, optionally only the
        direct children of *parent_id*."""
        ...  # pragma: no cover

    def get(self, record_type: RecordType, record_id: int) -> Record | None:
        """Return the record with *record_id*, or ``None``."""
        ...  # pragma: no cover

    def insert(self, record_type: RecordType, record: Record) -> int:
        """Insert *record* ignoring its id; return the new id."""
        ...  # pragma: no cover

    def update(self, record_type: RecordType, record: Record) -> None:
        """Overwrite the stored record with ``record.id``."""
        ...  # pragma: no cover

    def delete(self, record_type: RecordType, ids: Iterable[int]) -> int:
        """Remove *ids* (clearing every declared stage); return the
        number of records removed."""
        ...  # pragma: no cover

    def related_ids(
        self, record_type: RecordType, record_id: int, relation: str
    ) -> set[int]:
        """Members of a many-to-many relation."""
        ...  # pragma: no cover

    def set_related_ids(
        self,
        record_type: RecordType,
        record_id: int,
        relation: str,
        ids: Iterable[int],
    ) -> None:
        """Replace the members of a many-to-many relation."""
        ...  # pragma: no cover


class DualStore:
    """The source and target stores, addressed explicitly by role.

    Args:
        source: Store changes are read from.
        target: Store changes are written to.
    """

    def __init__(self, source: RecordStore, target: RecordStore) -> None:
        if source is target:
            raise ValueError("source and target must be distinct stores")
        self.source = source
        self.target = target

    def with_store(self, role: StoreRole) -> RecordStore:
        """Return the store handle for *role*."""
        return self.source if role == StoreRole.SOURCE else self.target

    def select_from_source(
        self, record_type: RecordType, *, parent_id: int | None = None
    ) -> list[Record]:
        return self.source.select(record_type, parent_id=parent_id)

    def select_from_target(
        self, record_type: RecordType, *, parent_id: int | None = None
    ) -> list[Record]:
        return self.target.select(record_type, parent_id=parent_id)

    def lookup_by_id(
        self,
        record_type: RecordType,
        record_id: int,
        role: StoreRole = StoreRole.TARGET,
    ) -> Record | None:
        return self.with_store(role).get(record_type, record_id)

    def insert(
        self,
        record_type: RecordType,
        record: Record,
        role: StoreRole = StoreRole.TARGET,
    ) -> int:
        return self.with_store(role).insert(record_type, record)

    def update(
        self,
        record_type: RecordType,
        record: Record,
        role: StoreRole = StoreRole.TARGET,
    ) -> None:
        self.with_store(role).update(record_type, record)

    def delete(
        self,
        record_type: RecordType,
        ids: Iterable[int],
        role: StoreRole = StoreRole.TARGET,
    ) -> int:
        return self.with_store(role).delete(record_type, ids)
