"""Run-scoped identifier map.

Associates ``(record type, source id)`` with the record's identity in the
target store.  It is a cache of what this run wrote, not a source of
truth: records that existed at the bookmark are matched by id across the
stores, and a re-run rebuilds the map by comparing the stores again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from db_surgeon.errors import IdentifierMapError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MappedRecord:
    """Target-side identity of a migrated record."""

    target_id: int
    target_parent_id: int | None = None
    duplicate: bool = False


class IdentifierMap:
    """Insert-only map of source identities to target identities.

    Entries for newly created records point at their fresh target id;
    entries for records matched by id (updated, or with changed join
    sets) map the id to itself.  A ``duplicate`` entry points at a copy
    created next to a target record that keeps the source id (a
    keep-both conflict).
    """

    def __init__(self) -> None:
        self._entries: dict[tuple[str, int], MappedRecord] = {}
        self._targets: set[tuple[str, int]] = set()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def store(
        self,
        type_name: str,
        source_id: int,
        target_id: int,
        target_parent_id: int | None = None,
        duplicate: bool = False,
    ) -> MappedRecord:
        """Record the target identity of ``(type_name, source_id)``.

        Storing an identical entry twice is a no-op.

        Raises:
            IdentifierMapError: If the key is already mapped to a
                different target identity.
        """
        key = (type_name, source_id)
        entry = MappedRecord(target_id, target_parent_id, duplicate)
        existing = self._entries.get(key)
        if existing is not None:
            if existing != entry:
                raise IdentifierMapError(
                    f"{type_name} #{source_id} is already mapped to "
                    f"target #{existing.target_id}; refusing to remap to "
                    f"#{target_id}"
                )
            return existing
        self._entries[key] = entry
        self._targets.add((type_name, target_id))
        logger.debug(
            "Mapped %s #%s -> target #%s (parent %s)",
            type_name,
            source_id,
            target_id,
            target_parent_id,
        )
        return entry

    def lookup(self, type_name: str, source_id: int | None) -> MappedRecord | None:
        """Return the mapping for ``(type_name, source_id)``, if any."""
        if source_id is None:
            return None
        return self._entries.get((type_name, source_id))

    def target_id(self, type_name: str, source_id: int | None) -> int | None:
        entry = self.lookup(type_name, source_id)
        return entry.target_id if entry else None

    def claims(self, type_name: str, target_id: int) -> bool:
        """True if some source record is already mapped to *target_id*."""
        return (type_name, target_id) in self._targets
