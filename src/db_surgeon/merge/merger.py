"""Carry out the decision for one source record.

``RecordMerger.process`` classifies a source record against its target
counterpart and performs the matching writes:

* **Create** -- insert a copy without identity, with its parent link
  translated to the parent's target id, and map the new id.
* **Update** -- overwrite the target record in place (same id) and map
  the id to itself.  A parent kept on both sides stays the target's own
  record; only new children move under its copy.
* **Conflict** -- ask the resolver; keep the target, overwrite it, or
  create the source as a separate record.
* **Skip** -- the target's own edit wins.
* **No-op** -- fields agree, but join sets are still compared because
  join table edits do not move the owner's edit timestamp.

Nothing about earlier runs is remembered.  A record an earlier run
already created is found again in the target by its content and mapped
instead of being inserted twice; a record it already updated compares
equal and classifies as a no-op.

Error handling is per record: a failed write is logged, counted, and
returned as an unsuccessful ``MergeResult``.  The caller moves on.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from db_surgeon.errors import StoreError
from db_surgeon.merge.bookmark import Bookmark
from db_surgeon.merge.decision import classify, same_content
from db_surgeon.merge.idmap import IdentifierMap
from db_surgeon.merge.models import (
    Decision,
    MergeResult,
    Phase,
    Record,
    RelationStatus,
    Resolution,
    RunCounters,
)
from db_surgeon.merge.relations import RelationReconciler
from db_surgeon.merge.resolver import ConflictResolver
from db_surgeon.schema import RecordType

if TYPE_CHECKING:
    from db_surgeon.stores.base import DualStore

logger = logging.getLogger(__name__)


class RecordMerger:
    """Apply the merge decision procedure to source records.

    Args:
        stores: The source and target stores.
        idmap: The run's identifier map.
        bookmark: The run's bookmark.
        resolver: Strategy for record-level conflicts.
        counters: Run-wide counters.
        relations: Reconciler used for the join set check.
    """

    def __init__(
        self,
        stores: DualStore,
        idmap: IdentifierMap,
        bookmark: Bookmark,
        resolver: ConflictResolver,
        counters: RunCounters,
        relations: RelationReconciler,
    ) -> None:
        self.stores = stores
        self.idmap = idmap
        self.bookmark = bookmark
        self.resolver = resolver
        self.counters = counters
        self.relations = relations
        self._candidates: dict[tuple[str, int | None], list[Record]] = {}

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def process(
        self,
        record_type: RecordType,
        source: Record,
        target: Record | None,
    ) -> MergeResult:
        """Classify *source* against *target* and apply the outcome."""
        decision = classify(source, target, self.bookmark)
        logger.debug("%s -> %s", source.describe(), decision.value)

        try:
            if decision in (Decision.CREATE, Decision.CONFLICT):
                existing = self._find_copy(record_type, source, target)
                if existing is not None:
                    return self._already_created(
                        record_type, source, existing, decision
                    )
            if decision == Decision.CREATE:
                return self._create(record_type, source, decision)
            if decision == Decision.UPDATE:
                return self._update(record_type, source, target, decision)
            if decision == Decision.CONFLICT:
                return self._conflict(record_type, source, target)
            if decision == Decision.SKIP:
                return self._skip(record_type, source, target)
            return self._noop(record_type, source, target)
        except StoreError as exc:
            self.counters.errors += 1
            logger.error("Merging %s failed: %s", source.describe(), exc)
            return self._result(
                record_type,
                source,
                decision,
                success=False,
                error=str(exc),
            )

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def before_create(
        self, record_type: RecordType, record: Record
    ) -> str | None:
        """Called just before *record* is inserted into the target.

        Returns an error message to flag on the result, or ``None``.
        The record is inserted either way.
        """
        return None

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _target_parent(
        self,
        record_type: RecordType,
        source: Record,
        follow_duplicates: bool = True,
    ) -> int | None:
        """Target-side parent id for *source*.

        A parent created in this run resolves through the map; any other
        parent predates the bookmark and keeps its id.  With
        *follow_duplicates* false, a parent kept on both sides after a
        conflict also keeps its id, so an existing child stays under the
        target's own record.
        """
        if not record_type.hierarchical:
            return None
        if not source.parent_id:
            return 0
        parent = self.idmap.lookup(record_type.name, source.parent_id)
        if parent is not None and (follow_duplicates or not parent.duplicate):
            return parent.target_id
        return source.parent_id

    def _find_copy(
        self,
        record_type: RecordType,
        source: Record,
        target: Record | None,
    ) -> Record | None:
        """Target record an earlier run already created from *source*.

        Candidates share the translated parent and are not yet mapped to
        another source record.  The record holding the source's own id
        is the counterpart, never a copy.
        """
        parent_id = self._target_parent(record_type, source)
        key = (record_type.name, parent_id)
        candidates = self._candidates.get(key)
        if candidates is None:
            candidates = self.stores.select_from_target(
                record_type, parent_id=parent_id
            )
            self._candidates[key] = candidates
        for candidate in candidates:
            if target is not None and candidate.id == target.id:
                continue
            if self.idmap.claims(record_type.name, candidate.id):
                continue
            if same_content(source, candidate):
                return candidate
        return None

    def _already_created(
        self,
        record_type: RecordType,
        source: Record,
        existing: Record,
        decision: Decision,
    ) -> MergeResult:
        parent_id = (existing.parent_id or 0) if record_type.hierarchical else None
        self.idmap.store(
            record_type.name,
            source.id,
            existing.id,
            parent_id,
            duplicate=decision == Decision.CONFLICT,
        )
        logger.info(
            "Source %s is already on the target as #%s",
            source.describe(),
            existing.id,
        )
        return self._result(
            record_type,
            source,
            Decision.NOOP,
            target_id=existing.id,
            message=f"already on target as #{existing.id}",
        )

    def _create(
        self,
        record_type: RecordType,
        source: Record,
        decision: Decision,
        resolution: Resolution | None = None,
    ) -> MergeResult:
        logger.info(
            "Source %s does not exist on target. Creating.",
            source.describe(),
        )
        parent_id = self._target_parent(record_type, source)
        update: dict = {"id": 0}
        if record_type.hierarchical:
            update["parent_id"] = parent_id
        candidate = source.model_copy(update=update)

        warning = self.before_create(record_type, candidate)
        target_id = self.stores.insert(record_type, candidate)
        self.idmap.store(
            record_type.name,
            source.id,
            target_id,
            parent_id,
            duplicate=resolution == Resolution.KEEP_BOTH,
        )
        self.counters.created += 1

        message = f"stored on target as #{target_id}"
        if record_type.hierarchical:
            message += f" with parent #{parent_id}"
        logger.info("Source %s %s", source.describe(), message)

        if warning:
            self.counters.errors += 1
            return self._result(
                record_type,
                source,
                decision,
                target_id=target_id,
                resolution=resolution,
                success=False,
                message=message,
                error=warning,
            )
        return self._result(
            record_type,
            source,
            decision,
            target_id=target_id,
            resolution=resolution,
            message=message,
        )

    def _update(
        self,
        record_type: RecordType,
        source: Record,
        target: Record,
        decision: Decision,
        resolution: Resolution | None = None,
    ) -> MergeResult:
        logger.info(
            "Source %s is out of date with its target counterpart. Updating.",
            source.describe(),
        )
        parent_id = self._target_parent(
            record_type, source, follow_duplicates=False
        )
        update: dict = {"id": target.id}
        if record_type.hierarchical:
            update["parent_id"] = parent_id
        self.stores.update(record_type, source.model_copy(update=update))
        self.idmap.store(record_type.name, source.id, target.id, parent_id)
        self.counters.updated += 1
        return self._result(
            record_type,
            source,
            decision,
            target_id=target.id,
            resolution=resolution,
            message="updated from source",
        )

    def _conflict(
        self, record_type: RecordType, source: Record, target: Record
    ) -> MergeResult:
        self.counters.conflicts += 1
        resolution = self.resolver.resolve(source, target)
        logger.warning(
            "[CONFLICT] %s edited in both stores since the bookmark; "
            "resolved as %s",
            source.describe(),
            resolution.value,
        )

        if resolution == Resolution.KEEP_SOURCE:
            result = self._update(
                record_type, source, target, Decision.CONFLICT, resolution
            )
        elif resolution == Resolution.KEEP_BOTH:
            result = self._create(
                record_type, source, Decision.CONFLICT, resolution
            )
        else:
            result = self._result(
                record_type,
                source,
                Decision.CONFLICT,
                target_id=target.id,
                resolution=resolution,
                message="kept target",
            )
        return result.model_copy(update={"conflict": True})

    def _skip(
        self, record_type: RecordType, source: Record, target: Record
    ) -> MergeResult:
        logger.info(
            "Target %s was edited, but the source was not. Skipping.",
            target.describe(),
        )
        self.counters.skipped += 1
        return self._result(
            record_type,
            source,
            Decision.SKIP,
            target_id=target.id,
            message="target edited since the bookmark",
        )

    def _noop(
        self,
        record_type: RecordType,
        source: Record,
        target: Record | None,
    ) -> MergeResult:
        if target is None:
            logger.debug(
                "%s predates the bookmark and was removed from the target; "
                "leaving it removed",
                source.describe(),
            )
            return self._result(
                record_type,
                source,
                Decision.NOOP,
                message="removed from target since the bookmark",
            )

        statuses = self.relations.check_members(record_type, source)
        changed = [
            name
            for name, status in statuses.items()
            if status == RelationStatus.CHANGED
        ]
        conflicted = [
            name
            for name, status in statuses.items()
            if status == RelationStatus.CONFLICT
        ]
        if changed:
            self.idmap.store(
                record_type.name, source.id, target.id, target.parent_id
            )

        message = None
        if changed or conflicted:
            parts = []
            if changed:
                parts.append(f"relations changed: {', '.join(changed)}")
            if conflicted:
                parts.append(f"relations conflicted: {', '.join(conflicted)}")
            message = "; ".join(parts)
        return self._result(
            record_type,
            source,
            Decision.NOOP,
            target_id=target.id,
            conflict=bool(conflicted),
            message=message,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _result(
        record_type: RecordType,
        source: Record,
        decision: Decision,
        **kwargs,
    ) -> MergeResult:
        return MergeResult(
            phase=Phase.UPDATE,
            type_name=record_type.name,
            source_id=source.id,
            decision=decision,
            **kwargs,
        )
