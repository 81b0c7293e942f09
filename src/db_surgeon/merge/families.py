"""Record families: the unit the engine migrates in one go.

Each family runs three phases over its record types:

* ``run_update_phase`` -- merge every source record into the target.
* ``run_delete_phase`` -- remove target records gone from the source.
* ``run_relate_phase`` -- re-link every record this run mapped.

``FlatMigration`` visits source records in id order.  ``TreeMigration``
visits them parent first through ``HierarchyWalker`` so a parent's target
id is mapped before any child is created.  ``AssetMigration`` also
downloads the file behind every new file record.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from db_surgeon.errors import AssetTransferError, StoreError, StructuralError
from db_surgeon.merge.assets import AssetTransfer
from db_surgeon.merge.deletion import DeletionSweep
from db_surgeon.merge.idmap import IdentifierMap
from db_surgeon.merge.merger import RecordMerger
from db_surgeon.merge.models import MergeResult, Phase, Record, RunCounters
from db_surgeon.merge.relations import RelationReconciler
from db_surgeon.merge.traversal import HierarchyWalker
from db_surgeon.schema import Family, RecordType

if TYPE_CHECKING:
    from db_surgeon.stores.base import DualStore

logger = logging.getLogger(__name__)


class AssetMerger(RecordMerger):
    """Record merger that fetches the file behind each new file record.

    Folder records (``kind`` in the type's ``folder_kinds``) are created
    as rows only.
    """

    def __init__(self, *args, transfer: AssetTransfer, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.transfer = transfer

    def before_create(
        self, record_type: RecordType, record: Record
    ) -> str | None:
        if record.kind in record_type.folder_kinds:
            return None
        if not record.path:
            logger.error("%s has no file path; nothing to download", record.describe())
            return "no file path to download"
        logger.info("Downloading %s", self.transfer.url_for(record.path))
        try:
            written = self.transfer.transfer(record.path)
        except AssetTransferError as exc:
            logger.error("%s", exc)
            return str(exc)
        logger.info("Wrote %s", written)
        return None


class Migration:
    """Base class for a family migration.

    Args:
        record_types: The family's record types, in processing order.
        stores: The source and target stores.
        idmap: The run's identifier map.
        counters: Run-wide counters.
        merger: Executes merge decisions.
        relations: Re-links mapped records.
        sweep: Removes orphaned target records.
    """

    family: Family

    def __init__(
        self,
        record_types: list[RecordType],
        stores: DualStore,
        idmap: IdentifierMap,
        counters: RunCounters,
        merger: RecordMerger,
        relations: RelationReconciler,
        sweep: DeletionSweep,
    ) -> None:
        self.record_types = record_types
        self.stores = stores
        self.idmap = idmap
        self.counters = counters
        self.merger = merger
        self.relations = relations
        self.sweep = sweep
        self.structural_errors: list[StructuralError] = []

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def run_update_phase(self) -> list[MergeResult]:
        results: list[MergeResult] = []
        for record_type in self.record_types:
            logger.info("Merging %s records", record_type.name)
            results.extend(self._update_type(record_type))
        return results

    def run_delete_phase(self) -> list[MergeResult]:
        results: list[MergeResult] = []
        for record_type in self.record_types:
            results.extend(self.sweep.run(record_type))
        return results

    def run_relate_phase(self) -> list[MergeResult]:
        results: list[MergeResult] = []
        for record_type in self.record_types:
            try:
                sources = self.stores.select_from_source(record_type)
            except StoreError as exc:
                results.append(
                    self._type_failure(record_type, Phase.RELATE, exc)
                )
                continue
            for source in sources:
                mapped = self.idmap.lookup(record_type.name, source.id)
                if mapped is None:
                    continue
                results.extend(
                    self.relations.relate(record_type, source, mapped)
                )
        return results

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _update_type(self, record_type: RecordType) -> list[MergeResult]:
        raise NotImplementedError

    def _merge_one(
        self, record_type: RecordType, source: Record
    ) -> MergeResult:
        try:
            target = self.stores.lookup_by_id(record_type, source.id)
        except StoreError as exc:
            self.counters.errors += 1
            logger.error(
                "Looking up %s on the target failed: %s",
                source.describe(),
                exc,
            )
            return MergeResult(
                phase=Phase.UPDATE,
                type_name=record_type.name,
                source_id=source.id,
                success=False,
                error=str(exc),
            )
        return self.merger.process(record_type, source, target)

    def _type_failure(
        self, record_type: RecordType, phase: Phase, exc: StoreError
    ) -> MergeResult:
        self.counters.errors += 1
        logger.error(
            "Reading %s from the source failed: %s", record_type.name, exc
        )
        return MergeResult(
            phase=phase,
            type_name=record_type.name,
            success=False,
            error=str(exc),
        )


class FlatMigration(Migration):
    """Record types without a hierarchy, merged in id order."""

    family = Family.FLAT

    def _update_type(self, record_type: RecordType) -> list[MergeResult]:
        try:
            sources = self.stores.select_from_source(record_type)
        except StoreError as exc:
            return [self._type_failure(record_type, Phase.UPDATE, exc)]
        return [self._merge_one(record_type, source) for source in sources]


class TreeMigration(Migration):
    """Parent-linked record types, merged parent first.

    Args:
        max_depth: Deepest tree level that is still merged.
    """

    def __init__(self, *args, max_depth: int = 64, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.max_depth = max_depth

    def _update_type(self, record_type: RecordType) -> list[MergeResult]:
        walker = HierarchyWalker(self.stores.source, record_type, self.max_depth)
        results: list[MergeResult] = []
        try:
            for source, _depth in walker.walk():
                results.append(self._merge_one(record_type, source))
        except StoreError as exc:
            results.append(self._type_failure(record_type, Phase.UPDATE, exc))
        finally:
            self.counters.errors += len(walker.errors)
            self.structural_errors.extend(walker.errors)
        for error in walker.errors:
            results.append(
                MergeResult(
                    phase=Phase.UPDATE,
                    type_name=record_type.name,
                    source_id=error.record_id,
                    success=False,
                    error=str(error),
                )
            )
        return results


class PageTreeMigration(TreeMigration):
    """The page hierarchy.  Removal clears every declared stage."""

    family = Family.PAGES


class AssetMigration(TreeMigration):
    """The folder/file hierarchy.  Requires an ``AssetMerger``."""

    family = Family.ASSETS

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        if not isinstance(self.merger, AssetMerger):
            raise TypeError("AssetMigration requires an AssetMerger")
