"""Create/update/conflict classification of a source record.

``classify`` only looks at timestamps and content; ``RecordMerger`` in
``merger.py`` carries out what it decides.
"""

from __future__ import annotations

from db_surgeon.merge.bookmark import Bookmark, created_after, edited_after
from db_surgeon.merge.models import Decision, Record


def same_content(source: Record, target: Record) -> bool:
    """True if *target* holds what a merge of *source* would write.

    Ids, parent links and one-to-one links are store-scoped and are not
    compared.  Only the columns the source carries are compared, so a
    target table with extra columns still matches.
    """
    if (
        source.created_at != target.created_at
        or source.edited_at != target.edited_at
        or source.title != target.title
        or source.kind != target.kind
        or source.path != target.path
    ):
        return False
    return all(
        key in target.data and target.data[key] == value
        for key, value in source.data.items()
    )


def classify(
    source: Record, target: Record | None, bookmark: Bookmark
) -> Decision:
    """Decide what to do with *source* given its *target* counterpart.

    Rules, evaluated in order:

    1. No target, source created after the bookmark: ``CREATE``.
       No target otherwise: ``NOOP`` (the target deleted a record that
       predates the bookmark; that deletion stands).
    2. Target already holds the source's content and timestamps:
       ``NOOP`` (an earlier run applied this change).
    3. Both created after the bookmark: ``CREATE`` (two independent new
       records that happen to share an id).
    4. Both edited after the bookmark: ``CONFLICT``.
    5. Only the target edited: ``SKIP``.
    6. Only the source edited: ``UPDATE``.
    7. Neither edited: ``NOOP``.

    Args:
        source: Record read from the source store.
        target: Record with the same id in the target store, or ``None``.
        bookmark: The run's bookmark.
    """
    source_created = created_after(source, bookmark)

    if target is None:
        return Decision.CREATE if source_created else Decision.NOOP

    if same_content(source, target):
        return Decision.NOOP

    if source_created and created_after(target, bookmark):
        return Decision.CREATE

    source_edited = edited_after(source, bookmark)
    target_edited = edited_after(target, bookmark)

    if source_edited and target_edited:
        return Decision.CONFLICT
    if target_edited:
        return Decision.SKIP
    if source_edited:
        return Decision.UPDATE
    return Decision.NOOP
