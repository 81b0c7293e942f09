"""Run orchestrator for a full merge.

The ``MergeEngine`` builds one identifier map and one set of counters for
the run, then:

1. For every family in order (flat records, assets, page tree) runs the
   Update phase followed by the Delete phase.
2. Once every family has been updated and pruned, runs the Relate phase
   for every family in the same order, when the identifier map knows
   every target id this run produced.
3. Builds and returns a ``RunReport``.

Records matched across the stores are matched by id: a record that
predates the bookmark must carry the same id in both stores.  The engine
logs this precondition at the start of every run.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from db_surgeon.errors import ConfigurationError
from db_surgeon.merge.assets import AssetTransfer
from db_surgeon.merge.bookmark import Bookmark
from db_surgeon.merge.deletion import DeletionSweep
from db_surgeon.merge.families import (
    AssetMerger,
    AssetMigration,
    FlatMigration,
    Migration,
    PageTreeMigration,
)
from db_surgeon.merge.idmap import IdentifierMap
from db_surgeon.merge.merger import RecordMerger
from db_surgeon.merge.models import (
    FamilyReport,
    MergeResult,
    RunCounters,
    RunReport,
)
from db_surgeon.merge.relations import RelationReconciler
from db_surgeon.merge.resolver import ConflictResolver
from db_surgeon.schema import FAMILY_ORDER, Family, SchemaRegistry

if TYPE_CHECKING:
    from db_surgeon.stores.base import DualStore

logger = logging.getLogger(__name__)


class MergeEngine:
    """Merge the source store into the target store.

    Args:
        stores: The source and target stores.
        registry: Declared record types.
        bookmark: Instant the two stores were last identical.
        resolver: Strategy for record-level conflicts.
        assets: Asset transfer; required when asset types are declared.
        max_depth: Deepest tree level that is still merged.

    Raises:
        ConfigurationError: If asset types are declared without *assets*.
    """

    def __init__(
        self,
        stores: DualStore,
        registry: SchemaRegistry,
        bookmark: Bookmark,
        resolver: ConflictResolver,
        assets: AssetTransfer | None = None,
        max_depth: int = 64,
    ) -> None:
        if registry.family(Family.ASSETS) and assets is None:
            raise ConfigurationError(
                "An asset source URL is required to download assets "
                "to the target"
            )
        self.stores = stores
        self.registry = registry
        self.bookmark = bookmark
        self.resolver = resolver
        self.assets = assets
        self.max_depth = max_depth
        self._reset()

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def run(self) -> RunReport:
        """Execute Update and Delete per family, then Relate for all.

        Returns:
            A ``RunReport`` with per-family results and run-wide counts.
        """
        started_at = datetime.now(timezone.utc).isoformat()
        self._reset()
        logger.info("Merging changes since %s", self.bookmark)
        logger.info(
            "Records that predate the bookmark are matched by id; they "
            "must share ids in both stores"
        )

        migrations = self._migrations()
        results: dict[Family, list[MergeResult]] = {
            m.family: [] for m in migrations
        }
        counts: dict[Family, RunCounters] = {
            m.family: RunCounters() for m in migrations
        }

        for migration in migrations:
            before = self.counters.snapshot()
            logger.info("== %s: update ==", migration.family.value)
            results[migration.family].extend(migration.run_update_phase())
            logger.info("== %s: delete ==", migration.family.value)
            results[migration.family].extend(migration.run_delete_phase())
            counts[migration.family] = self.counters.since(before)

        for migration in migrations:
            before = self.counters.snapshot()
            logger.info("== %s: relate ==", migration.family.value)
            results[migration.family].extend(migration.run_relate_phase())
            counts[migration.family] = _add(
                counts[migration.family], self.counters.since(before)
            )

        report = RunReport(
            bookmark=self.bookmark.isoformat(),
            families=[
                FamilyReport(
                    family=m.family.value,
                    record_types=[rt.name for rt in m.record_types],
                    results=results[m.family],
                    counters=counts[m.family],
                )
                for m in migrations
            ],
            counters=self.counters.snapshot(),
            structural_errors=[
                str(e) for m in migrations for e in m.structural_errors
            ],
            started_at=started_at,
            completed_at=datetime.now(timezone.utc).isoformat(),
        )
        logger.info("Merge complete:\n%s", report.summary())
        return report

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _reset(self) -> None:
        """Fresh identifier map and counters; both are scoped to one run."""
        self.idmap = IdentifierMap()
        self.counters = RunCounters()
        self.relations = RelationReconciler(self.stores, self.idmap, self.counters)
        self.sweep = DeletionSweep(self.stores, self.bookmark, self.counters)

    def _migrations(self) -> list[Migration]:
        """One migration per family that declares record types."""
        migrations: list[Migration] = []
        for family in FAMILY_ORDER:
            record_types = self.registry.family(family)
            if not record_types:
                logger.debug("No %s record types declared", family.value)
                continue
            merger_args = (
                self.stores,
                self.idmap,
                self.bookmark,
                self.resolver,
                self.counters,
                self.relations,
            )
            common = (
                record_types,
                self.stores,
                self.idmap,
                self.counters,
            )
            if family == Family.FLAT:
                migrations.append(
                    FlatMigration(
                        *common,
                        merger=RecordMerger(*merger_args),
                        relations=self.relations,
                        sweep=self.sweep,
                    )
                )
            elif family == Family.ASSETS:
                migrations.append(
                    AssetMigration(
                        *common,
                        merger=AssetMerger(*merger_args, transfer=self.assets),
                        relations=self.relations,
                        sweep=self.sweep,
                        max_depth=self.max_depth,
                    )
                )
            else:
                migrations.append(
                    PageTreeMigration(
                        *common,
                        merger=RecordMerger(*merger_args),
                        relations=self.relations,
                        sweep=self.sweep,
                        max_depth=self.max_depth,
                    )
                )
        return migrations


def _add(a: RunCounters, b: RunCounters) -> RunCounters:
    return RunCounters(
        **{
            name: getattr(a, name) + getattr(b, name)
            for name in RunCounters.model_fields
        }
    )
