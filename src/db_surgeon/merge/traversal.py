"""Pre-order walk of a parent-linked tree in the source store."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING

from db_surgeon.errors import StructuralError
from db_surgeon.merge.models import Record
from db_surgeon.schema import RecordType

if TYPE_CHECKING:
    from db_surgeon.stores.base import RecordStore

logger = logging.getLogger(__name__)


class HierarchyWalker:
    """Yield the records of a tree parent first, depth first.

    Children of a node are fetched from *store* when the node is
    visited, so every parent is yielded (and merged) before any of its
    children.  The walk uses an explicit stack of pending sibling lists.

    A record seen twice (a parent-link cycle) or nested deeper than
    *max_depth* is not descended into: a ``StructuralError`` is logged,
    appended to ``errors`` and the walk moves on to the next sibling.

    Args:
        store: Store the tree is read from (normally the source).
        record_type: A hierarchical record type.
        max_depth: Deepest level that is still visited (roots are 0).
    """

    def __init__(
        self, store: RecordStore, record_type: RecordType, max_depth: int = 64
    ) -> None:
        if not record_type.hierarchical:
            raise ValueError(f"{record_type.name} is not hierarchical")
        self.store = store
        self.record_type = record_type
        self.max_depth = max_depth
        self.errors: list[StructuralError] = []

    def walk(self, root_parent_id: int = 0) -> Iterator[tuple[Record, int]]:
        """Yield ``(record, depth)`` for the subtree under *root_parent_id*."""
        visited: set[int] = set()
        stack: list[tuple[Iterator[Record], int]] = [
            (iter(self._children(root_parent_id)), 0)
        ]
        while stack:
            siblings, depth = stack[-1]
            record = next(siblings, None)
            if record is None:
                stack.pop()
                continue

            if record.id in visited:
                self._abandon(record, f"cycle through {record.describe()}")
                continue
            if depth > self.max_depth:
                self._abandon(
                    record,
                    f"{record.describe()} is nested deeper than "
                    f"{self.max_depth} levels",
                )
                continue

            visited.add(record.id)
            yield record, depth
            stack.append((iter(self._children(record.id)), depth + 1))

    def _children(self, parent_id: int) -> list[Record]:
        return self.store.select(self.record_type, parent_id=parent_id)

    def _abandon(self, record: Record, message: str) -> None:
        error = StructuralError(message, self.record_type.name, record.id)
        self.errors.append(error)
        logger.error("[STRUCTURE] %s; branch skipped", message)
