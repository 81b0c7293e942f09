"""Re-linking of migrated records.

Runs after every family has been created and pruned, when the identifier
map knows the target identity of everything this run wrote.

* **One-to-one** foreign keys are rewritten to the mapped target id of
  the related record.  A relation whose related record was never mapped
  is left alone.
* **Many-to-many** join sets are compared across the stores.  Source
  members are translated through the identifier map first; records that
  predate the bookmark are relied on to share ids in both stores.
  Extra members on the target side mean the target edited the set on
  its own: that is a conflict and the set is left untouched.  Extra
  members on the source side cause the target set to be replaced with
  the translated source set.
"""

from __future__ import annotations

import logging
from collections.abc import Set
from typing import TYPE_CHECKING

from db_surgeon.errors import StoreError
from db_surgeon.merge.idmap import IdentifierMap, MappedRecord
from db_surgeon.merge.models import (
    MergeResult,
    Phase,
    Record,
    RelationStatus,
    RunCounters,
)
from db_surgeon.schema import RecordType

if TYPE_CHECKING:
    from db_surgeon.stores.base import DualStore

logger = logging.getLogger(__name__)


def compare_members(
    source_ids: Set[int], target_ids: Set[int]
) -> RelationStatus:
    """Compare a many-to-many join set across the two stores.

    Returns:
        ``CONFLICT`` if the target holds a member the source does not,
        ``CHANGED`` if only the source holds extra members, otherwise
        ``UNCHANGED``.
    """
    if target_ids - source_ids:
        return RelationStatus.CONFLICT
    if source_ids - target_ids:
        return RelationStatus.CHANGED
    return RelationStatus.UNCHANGED


class RelationReconciler:
    """Rewrite foreign keys and join sets using the identifier map.

    Args:
        stores: The source and target stores.
        idmap: The run's identifier map.
        counters: Run-wide counters.
    """

    def __init__(
        self,
        stores: DualStore,
        idmap: IdentifierMap,
        counters: RunCounters,
    ) -> None:
        self.stores = stores
        self.idmap = idmap
        self.counters = counters
        self._reported: set[tuple[str, int, str]] = set()

    # ------------------------------------------------------------------
    # Membership check (update phase, unchanged records)
    # ------------------------------------------------------------------

    def check_members(
        self, record_type: RecordType, source: Record
    ) -> dict[str, RelationStatus]:
        """Compare every many-to-many set of a matched record.

        Used for records whose fields did not change: join table edits do
        not touch the owner's edit timestamp, so they have to be looked
        for separately.  Source members already mapped in this run are
        compared by their target id.  Conflicts are counted here;
        ``CHANGED`` relations are left for the relate phase.

        Returns:
            Relation name to status, for every non-excluded relation.
        """
        statuses: dict[str, RelationStatus] = {}
        for rel in record_type.many_to_many:
            source_ids = self.stores.source.related_ids(
                record_type, source.id, rel.name
            )
            target_ids = self.stores.target.related_ids(
                record_type, source.id, rel.name
            )
            status = compare_members(
                self._resolve(rel.related_type, source_ids), target_ids
            )
            statuses[rel.name] = status
            if status == RelationStatus.CONFLICT:
                self._report_conflict(record_type, source, rel.name)
            elif status == RelationStatus.CHANGED:
                logger.info(
                    "Source %s has an updated many-to-many relation %s",
                    source.describe(),
                    rel.name,
                )
        return statuses

    # ------------------------------------------------------------------
    # Relate phase
    # ------------------------------------------------------------------

    def relate(
        self, record_type: RecordType, source: Record, mapped: MappedRecord
    ) -> list[MergeResult]:
        """Re-link one mapped record.  Returns one result per change."""
        results: list[MergeResult] = []
        one = self._relate_one_to_one(record_type, source, mapped)
        if one is not None:
            results.append(one)
        for rel in record_type.many_to_many:
            result = self._relate_many_to_many(
                record_type, source, mapped, rel.name
            )
            if result is not None:
                results.append(result)
        return results

    def _relate_one_to_one(
        self, record_type: RecordType, source: Record, mapped: MappedRecord
    ) -> MergeResult | None:
        relations = record_type.one_to_one
        if not relations:
            return None

        try:
            target = self.stores.lookup_by_id(record_type, mapped.target_id)
        except StoreError as exc:
            return self._failure(record_type, source, mapped, str(exc))
        if target is None:
            return self._failure(
                record_type,
                source,
                mapped,
                f"target #{mapped.target_id} has disappeared",
            )

        links = dict(target.links)
        rewritten: list[str] = []
        for rel in relations:
            foreign = self.idmap.lookup(
                rel.related_type, source.links.get(rel.name)
            )
            if foreign is None:
                continue
            if links.get(rel.name) != foreign.target_id:
                links[rel.name] = foreign.target_id
                rewritten.append(rel.name)

        if not rewritten:
            return None

        try:
            self.stores.update(
                record_type, target.model_copy(update={"links": links})
            )
        except StoreError as exc:
            return self._failure(record_type, source, mapped, str(exc))

        names = ", ".join(rewritten)
        logger.info(
            "%s one-to-one relation(s) %s updated on target",
            source.describe(),
            names,
        )
        return MergeResult(
            phase=Phase.RELATE,
            type_name=record_type.name,
            source_id=source.id,
            target_id=mapped.target_id,
            message=f"relinked {names}",
        )

    def _relate_many_to_many(
        self,
        record_type: RecordType,
        source: Record,
        mapped: MappedRecord,
        relation: str,
    ) -> MergeResult | None:
        rel = record_type.relation(relation)
        try:
            source_ids = self.stores.source.related_ids(
                record_type, source.id, relation
            )
            target_ids = self.stores.target.related_ids(
                record_type, mapped.target_id, relation
            )
        except StoreError as exc:
            return self._failure(record_type, source, mapped, str(exc))

        resolved = self._resolve(rel.related_type, source_ids)
        status = compare_members(resolved, target_ids)
        if status == RelationStatus.UNCHANGED:
            return None

        if status == RelationStatus.CONFLICT:
            if not self._report_conflict(record_type, source, relation):
                return None
            return MergeResult(
                phase=Phase.RELATE,
                type_name=record_type.name,
                source_id=source.id,
                target_id=mapped.target_id,
                conflict=True,
                message=f"target modified {relation} since the bookmark",
            )

        try:
            self.stores.target.set_related_ids(
                record_type, mapped.target_id, relation, resolved
            )
        except StoreError as exc:
            return self._failure(record_type, source, mapped, str(exc))

        self.counters.updated += 1
        logger.info(
            "Updated many-to-many relation %s for %s",
            relation,
            source.describe(),
        )
        return MergeResult(
            phase=Phase.RELATE,
            type_name=record_type.name,
            source_id=source.id,
            target_id=mapped.target_id,
            message=f"replaced {relation} ({len(resolved)} members)",
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve(self, related_type: str, source_ids: Set[int]) -> set[int]:
        """Translate source member ids through the map, keeping unmapped ids."""
        return {
            self.idmap.target_id(related_type, sid) or sid for sid in source_ids
        }

    def _report_conflict(
        self, record_type: RecordType, source: Record, relation: str
    ) -> bool:
        """Count a relation conflict once per run.  True if new."""
        key = (record_type.name, source.id, relation)
        if key in self._reported:
            return False
        self._reported.add(key)
        self.counters.conflicts += 1
        logger.error(
            "[CONFLICT] Target %s has modified its many-to-many relation "
            "%s since the bookmark. Skipping.",
            source.describe(),
            relation,
        )
        return True

    def _failure(
        self,
        record_type: RecordType,
        source: Record,
        mapped: MappedRecord,
        error: str,
    ) -> MergeResult:
        self.counters.errors += 1
        logger.error("Relating %s failed: %s", source.describe(), error)
        return MergeResult(
            phase=Phase.RELATE,
            type_name=record_type.name,
            source_id=source.id,
            target_id=mapped.target_id,
            success=False,
            error=error,
        )
