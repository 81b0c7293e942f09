"""Pydantic models for the merge engine.

Defines the core data contracts used across all merge modules:

- ``Record``: One row of a record type, as read from one store.
- ``Decision``: Outcome of comparing a source record with its target.
- ``Resolution``: How a record-level conflict is settled.
- ``RelationStatus``: Outcome of comparing a many-to-many join set.
- ``MergeResult``: What happened to one record in one phase.
- ``RunCounters``: Created/updated/deleted/conflict tallies for a run.
- ``FamilyReport`` / ``RunReport``: Aggregate results.

Records and results are frozen; counters are mutated during the run.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Decision(str, Enum):
    """Possible outcomes for a source record and its target counterpart."""

    CREATE = "create"
    UPDATE = "update"
    CONFLICT = "conflict"
    SKIP = "skip"
    NOOP = "noop"


class Resolution(str, Enum):
    """Ways to settle a record edited on both sides since the bookmark."""

    KEEP_TARGET = "keep-target"
    KEEP_SOURCE = "keep-source"
    KEEP_BOTH = "keep-both"


class RelationStatus(str, Enum):
    """Comparison of a many-to-many join set across the two stores."""

    UNCHANGED = "unchanged"
    CHANGED = "changed"
    CONFLICT = "conflict"


class Phase(str, Enum):
    UPDATE = "update"
    DELETE = "delete"
    RELATE = "relate"


class Record(BaseModel):
    """One record of a declared type, as read from a single store.

    ``id`` and ``parent_id`` are scoped to the store the record came
    from.  Target-side copies are derived with ``model_copy`` and never
    share an object with the source record.

    Attributes:
        type_name: Declared record type name.
        id: Identifier in the originating store (0 for a new record).
        created_at: Creation timestamp (timezone-aware).
        edited_at: Last edit timestamp (timezone-aware).
        parent_id: Structural parent for hierarchical types (0 = root).
        title: Display label.
        kind: Subtype discriminator (e.g. ``Folder`` / ``File``).
        path: Asset path relative to the assets root.
        data: Plain column values.
        links: One-to-one relation name to foreign id.
    """

    type_name: str
    id: int
    created_at: datetime
    edited_at: datetime
    parent_id: int | None = None
    title: str | None = None
    kind: str | None = None
    path: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    links: dict[str, int | None] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @property
    def label(self) -> str:
        """Human-readable name used in log and report lines."""
        return self.title or f"#{self.id}"

    def describe(self) -> str:
        return f"{self.type_name} {self.label!r} (id {self.id})"


class MergeResult(BaseModel):
    """Outcome for one record in one phase.

    Attributes:
        phase: Phase that produced the result.
        type_name: Record type.
        source_id: Source-side id (``None`` for delete results).
        target_id: Target-side id affected, when known.
        decision: Update-phase decision.
        resolution: Conflict resolution applied, if any.
        conflict: True for record- and relation-level conflicts.
        success: Whether the store writes succeeded.
        message: Short description of what happened.
        error: Error message if the operation failed.
    """

    phase: Phase
    type_name: str
    source_id: int | None = None
    target_id: int | None = None
    decision: Decision | None = None
    resolution: Resolution | None = None
    conflict: bool = False
    success: bool = True
    message: str | None = None
    error: str | None = None

    model_config = {"frozen": True}


class RunCounters(BaseModel):
    """Run-wide tallies, incremented as records are processed."""

    created: int = 0
    updated: int = 0
    deleted: int = 0
    conflicts: int = 0
    skipped: int = 0
    errors: int = 0

    def snapshot(self) -> RunCounters:
        return self.model_copy()

    def since(self, earlier: RunCounters) -> RunCounters:
        """Counts accumulated after *earlier* was snapshotted."""
        return RunCounters(
            **{
                name: getattr(self, name) - getattr(earlier, name)
                for name in RunCounters.model_fields
            }
        )


class FamilyReport(BaseModel):
    """Results for one record family across all three phases.

    Attributes:
        family: Family name (``flat``, ``assets``, ``pages``).
        record_types: Record types migrated by this family.
        results: Per-record results in processing order.
        counters: Counts attributable to this family.
    """

    family: str
    record_types: list[str] = []
    results: list[MergeResult] = []
    counters: RunCounters = Field(default_factory=RunCounters)

    model_config = {"frozen": True}


class RunReport(BaseModel):
    """Aggregate report for a full merge run.

    Attributes:
        bookmark: ISO 8601 bookmark the run compared against.
        families: Per-family reports in run order.
        counters: Run-wide counters.
        structural_errors: Tree branches abandoned during traversal.
        started_at: ISO 8601 timestamp when the run started.
        completed_at: ISO 8601 timestamp when the run completed.
    """

    bookmark: str
    families: list[FamilyReport] = []
    counters: RunCounters = Field(default_factory=RunCounters)
    structural_errors: list[str] = []
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    @property
    def results(self) -> list[MergeResult]:
        return [r for fam in self.families for r in fam.results]

    @property
    def conflicts(self) -> list[MergeResult]:
        """Record- and relation-level conflicts."""
        return [r for r in self.results if r.conflict]

    @property
    def errors(self) -> list[MergeResult]:
        """Results where success is False."""
        return [r for r in self.results if not r.success]

    def summary(self) -> str:
        """Format a short human-readable summary of the run.

        Returns:
            Multi-line summary string with run-wide counts.
        """
        c = self.counters
        lines = [
            f"Merge against bookmark {self.bookmark}",
            f"  Created:   {c.created}",
            f"  Updated:   {c.updated}",
            f"  Deleted:   {c.deleted}",
            f"  Conflicts: {c.conflicts}",
            f"  Skipped:   {c.skipped}",
            f"  Errors:    {c.errors}",
        ]
        return "\n".join(lines)
