"""Conflict resolution strategies for the merge engine.

A record edited in both stores since the bookmark is a conflict.  The
engine hands it to a resolver, which picks one of three outcomes:

- ``KeepTargetResolver``: leave the target record as it is (default for
  unattended runs).
- ``KeepSourceResolver``: overwrite the target record with the source.
- ``KeepBothResolver``: insert the source record as a new target record.
- ``InteractiveResolver``: ask on the terminal.

The ``create_resolver()`` factory maps config strategy strings to resolver
instances.
"""

from __future__ import annotations

import logging
import sys
from typing import Protocol, TextIO

from db_surgeon.merge.models import Record, Resolution

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ConflictResolver(Protocol):
    """Protocol that all conflict resolvers must satisfy."""

    def resolve(self, source: Record, target: Record) -> Resolution:
        """Decide how to settle a record-level conflict.

        Args:
            source: The source record.
            target: Its target counterpart (same id).

        Returns:
            The chosen ``Resolution``.
        """
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# Fixed-policy resolvers
# ---------------------------------------------------------------------------


class KeepTargetResolver:
    """Always keep the target record untouched."""

    def resolve(self, source: Record, target: Record) -> Resolution:
        return Resolution.KEEP_TARGET


class KeepSourceResolver:
    """Always overwrite the target record with the source."""

    def resolve(self, source: Record, target: Record) -> Resolution:
        return Resolution.KEEP_SOURCE


class KeepBothResolver:
    """Always keep the target and add the source as a new record."""

    def resolve(self, source: Record, target: Record) -> Resolution:
        return Resolution.KEEP_BOTH


# ---------------------------------------------------------------------------
# Interactive resolver
# ---------------------------------------------------------------------------

_ANSWERS = {
    "t": Resolution.KEEP_TARGET,
    "s": Resolution.KEEP_SOURCE,
    "b": Resolution.KEEP_BOTH,
}


class InteractiveResolver:
    """Ask the operator to settle each conflict.

    Invalid answers are asked again.  If input runs out (EOF) the
    conflict falls back to *default* so a piped run cannot hang.

    Args:
        stdin: Stream answers are read from.
        stdout: Stream prompts are written to.
        default: Resolution used when input is exhausted.
    """

    def __init__(
        self,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
        default: Resolution = Resolution.KEEP_TARGET,
    ) -> None:
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stderr
        self.default = default

    def resolve(self, source: Record, target: Record) -> Resolution:
        prompt = (
            f"\n[CONFLICT] {source.type_name} record {source.label!r} "
            f"(id {source.id}) has been edited in both stores since the "
            f"bookmark.\n"
            f"  source edited: {source.edited_at.isoformat()}\n"
            f"  target edited: {target.edited_at.isoformat()}\n"
            f"Keep (t)arget, Keep (s)ource, Keep (b)oth: "
        )
        while True:
            self.stdout.write(prompt)
            self.stdout.flush()
            line = self.stdin.readline()
            if not line:
                logger.warning(
                    "No answer for conflict on %s; using %s",
                    source.describe(),
                    self.default.value,
                )
                return self.default
            answer = line.strip().lower()
            if answer in _ANSWERS:
                return _ANSWERS[answer]
            self.stdout.write("Invalid response\n")


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_STRATEGY_MAP: dict[str, type] = {
    "keep-target": KeepTargetResolver,
    "keep-source": KeepSourceResolver,
    "keep-both": KeepBothResolver,
    "interactive": InteractiveResolver,
}


def create_resolver(strategy: str) -> ConflictResolver:
    """Create a conflict resolver for the given strategy string.

    Args:
        strategy: One of ``"keep-target"``, ``"keep-source"``,
            ``"keep-both"``, ``"interactive"``.

    Returns:
        A ``ConflictResolver`` implementation instance.

    Raises:
        ValueError: If the strategy string is not recognised.
    """
    cls = _STRATEGY_MAP.get(strategy)
    if cls is None:
        raise ValueError(
            f"Unknown conflict strategy: '{strategy}'. Valid strategies: {sorted(_STRATEGY_MAP.keys())}"
        )
    return cls()  # type: ignore[return-value]
