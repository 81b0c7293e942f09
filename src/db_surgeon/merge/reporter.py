"""Merge report formatting functions.

Provides human-readable and machine-readable output for a merge run:

- ``format_run_report`` -- full post-merge summary, one section per family.
- ``format_result`` -- one line for a single record outcome.
- ``report_to_json`` -- structured dict for ``--json`` output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import FamilyReport, MergeResult, RunCounters, RunReport

from .models import Decision, Phase

_FAMILY_TITLES = {
    "flat": "Records",
    "assets": "Assets",
    "pages": "Page tree",
}

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_result(result: MergeResult) -> str:
    """Format one result as ``[ACTION] Type #id: message``."""
    if not result.success:
        label = "FAILED"
    elif result.conflict:
        label = "CONFLICT"
    elif result.phase == Phase.DELETE:
        label = "DELETE"
    elif result.phase == Phase.RELATE:
        label = "RELATE"
    else:
        label = (result.decision or Decision.NOOP).value.upper()

    ident = result.source_id if result.source_id is not None else result.target_id
    line = f"[{label}] {result.type_name}"
    if ident is not None:
        line += f" #{ident}"
    if result.target_id is not None and result.target_id != ident:
        line += f" -> #{result.target_id}"
    detail = result.error or result.message
    if result.resolution is not None:
        detail = f"{result.resolution.value}; {detail}" if detail else result.resolution.value
    if detail:
        line += f": {detail}"
    return line


def _format_counts(counters: RunCounters) -> str:
    return (
        f"{counters.created} created, {counters.updated} updated, "
        f"{counters.deleted} deleted, {counters.conflicts} conflicts, "
        f"{counters.skipped} skipped, {counters.errors} errors"
    )


def _format_family(family: FamilyReport) -> list[str]:
    title = _FAMILY_TITLES.get(family.family, family.family)
    lines = [f"{title} ({', '.join(family.record_types)}):"]
    lines.append(f"  {_format_counts(family.counters)}")

    # Unchanged records are summarised by count only
    shown = [
        r
        for r in family.results
        if not (
            r.phase == Phase.UPDATE
            and r.decision == Decision.NOOP
            and r.success
            and not r.conflict
            and not r.message
        )
    ]
    for r in shown:
        lines.append(f"  {format_result(r)}")
    unchanged = len(family.results) - len(shown)
    if unchanged:
        lines.append(f"  Unchanged: {unchanged} records")
    return lines


def format_run_report(report: RunReport) -> str:
    """Format a complete run report as human-readable text.

    Families are listed in run order.  Structural errors and failed
    records are repeated at the end so they are not lost in long output.

    Args:
        report: The completed run report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    # Header
    lines.append(f"Merge report against bookmark {report.bookmark}")
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")
    lines.append(f"Totals: {_format_counts(report.counters)}")
    lines.append("")

    for family in report.families:
        lines.extend(_format_family(family))
        lines.append("")

    if report.structural_errors:
        lines.append("Structural errors:")
        for message in report.structural_errors:
            lines.append(f"  {message}")
        lines.append("")

    if report.errors:
        lines.append("Errors:")
        for r in report.errors:
            lines.append(f"  {format_result(r)}")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: RunReport) -> dict:
    """Convert a run report to a structured dict for JSON serialisation.

    Args:
        report: The run report.

    Returns:
        Dict with bookmark, counts, and per-family result details.
    """
    families = []
    for family in report.families:
        results_list = []
        for r in family.results:
            entry: dict = {
                "phase": r.phase.value,
                "type": r.type_name,
                "source_id": r.source_id,
                "target_id": r.target_id,
                "success": r.success,
            }
            if r.decision is not None:
                entry["decision"] = r.decision.value
            if r.resolution is not None:
                entry["resolution"] = r.resolution.value
            if r.conflict:
                entry["conflict"] = True
            if r.message:
                entry["message"] = r.message
            if r.error:
                entry["error"] = r.error
            results_list.append(entry)
        families.append(
            {
                "family": family.family,
                "record_types": family.record_types,
                "counts": family.counters.model_dump(),
                "results": results_list,
            }
        )

    return {
        "bookmark": report.bookmark,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "counts": report.counters.model_dump(),
        "structural_errors": report.structural_errors,
        "families": families,
    }
