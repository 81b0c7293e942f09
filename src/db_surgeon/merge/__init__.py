"""Bookmark-based merge engine.

Public API for merging a diverged copy of a record store (the source)
back into the store it was copied from (the target).

Architecture
------------
Both stores were identical at the **bookmark**.  Every source record is
classified by comparing its created and edited timestamps, and those of
its target counterpart with the same id, against the bookmark.  Records
created on the source get new target ids; the run-scoped **identifier
map** remembers them so parent links, foreign keys and join sets can be
rewritten to point at the new ids.

Modules:

- ``engine``     -- ``MergeEngine``: sequences Update, Delete and Relate.
- ``families``   -- flat, asset and page-tree migrations.
- ``merger``     -- ``RecordMerger``: executes the per-record decision.
- ``decision``   -- ``classify``: the pure decision table.
- ``bookmark``   -- ``Bookmark``, ``BookmarkFile`` and the comparisons.
- ``idmap``      -- ``IdentifierMap``: source id to target id.
- ``traversal``  -- ``HierarchyWalker``: parent-first tree walk.
- ``relations``  -- ``RelationReconciler``: foreign keys and join sets.
- ``deletion``   -- ``DeletionSweep``: removes orphaned target records.
- ``assets``     -- ``AssetTransfer``: downloads asset files.
- ``resolver``   -- Conflict resolution strategies (keep-target,
  keep-source, keep-both, interactive).
- ``models``     -- ``Record``, ``Decision``, ``MergeResult``,
  ``RunCounters``, ``RunReport``: core data contracts.
- ``reporter``   -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from db_surgeon.merge import MergeEngine, BookmarkFile, format_run_report
    from db_surgeon.merge.resolver import create_resolver
    from db_surgeon.schema import SchemaRegistry
    from db_surgeon.stores import DualStore, SqlStore

    stores = DualStore(
        SqlStore.from_url("sqlite:///copy.db", "source"),
        SqlStore.from_url("mysql+pymysql://live/site", "target"),
    )
    engine = MergeEngine(
        stores=stores,
        registry=SchemaRegistry.from_config(unified.record_types),
        bookmark=BookmarkFile(".db_surgeon/bookmark").read(),
        resolver=create_resolver("keep-target"),
    )
    report = engine.run()
    print(format_run_report(report))
"""

from .assets import AssetTransfer
from .bookmark import Bookmark, BookmarkFile, parse_bookmark
from .decision import classify
from .engine import MergeEngine
from .idmap import IdentifierMap, MappedRecord
from .merger import RecordMerger
from .models import (
    Decision,
    MergeResult,
    Record,
    RelationStatus,
    Resolution,
    RunCounters,
    RunReport,
)
from .reporter import format_run_report, report_to_json
from .resolver import create_resolver
from .traversal import HierarchyWalker

__all__ = [
    "AssetTransfer",
    "Bookmark",
    "BookmarkFile",
    "Decision",
    "HierarchyWalker",
    "IdentifierMap",
    "MappedRecord",
    "MergeEngine",
    "MergeResult",
    "Record",
    "RecordMerger",
    "RelationStatus",
    "Resolution",
    "RunCounters",
    "RunReport",
    "classify",
    "create_resolver",
    "format_run_report",
    "parse_bookmark",
    "report_to_json",
]
