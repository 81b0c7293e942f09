"""Removal of target records that no longer exist in the source.

A target record is removed when the source has no record with its id
and the target has not edited it since the bookmark.  A target-side edit
means somebody still cares about the record, so it stays.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from db_surgeon.errors import StoreError
from db_surgeon.merge.bookmark import Bookmark, edited_after
from db_surgeon.merge.models import MergeResult, Phase, RunCounters
from db_surgeon.schema import RecordType

if TYPE_CHECKING:
    from db_surgeon.stores.base import DualStore

logger = logging.getLogger(__name__)


class DeletionSweep:
    """Find and remove orphaned target records of one type at a time.

    Args:
        stores: The source and target stores.
        bookmark: The run's bookmark.
        counters: Run-wide counters.
    """

    def __init__(
        self, stores: DualStore, bookmark: Bookmark, counters: RunCounters
    ) -> None:
        self.stores = stores
        self.bookmark = bookmark
        self.counters = counters

    def find(self, record_type: RecordType) -> list[int]:
        """Ids of target records due for removal, in ascending order."""
        source_ids = {r.id for r in self.stores.select_from_source(record_type)}
        doomed: list[int] = []
        for record in self.stores.select_from_target(record_type):
            if record.id in source_ids:
                continue
            if edited_after(record, self.bookmark):
                logger.info(
                    "Target %s is gone from the source but was edited "
                    "since the bookmark. Keeping.",
                    record.describe(),
                )
                continue
            doomed.append(record.id)
        return doomed

    def run(self, record_type: RecordType) -> list[MergeResult]:
        """Remove every record ``find`` returns in one store call.

        A failed delete is counted once and reported as a single
        unsuccessful result.
        """
        try:
            doomed = self.find(record_type)
            if not doomed:
                return []
            if record_type.stages:
                logger.info(
                    "Removing %d %s record(s) from stages %s",
                    len(doomed),
                    record_type.name,
                    ", ".join(record_type.stages),
                )
            removed = self.stores.delete(record_type, doomed)
        except StoreError as exc:
            self.counters.errors += 1
            logger.error("Deleting %s records failed: %s", record_type.name, exc)
            return [
                MergeResult(
                    phase=Phase.DELETE,
                    type_name=record_type.name,
                    success=False,
                    error=str(exc),
                )
            ]

        self.counters.deleted += removed
        logger.info(
            "Deleted %d %s record(s) no longer present in the source",
            removed,
            record_type.name,
        )
        return [
            MergeResult(
                phase=Phase.DELETE,
                type_name=record_type.name,
                target_id=record_id,
                message="no longer present in the source",
            )
            for record_id in doomed
        ]
