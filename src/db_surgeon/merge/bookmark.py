"""Bookmark handling: the instant both stores were last identical.

Two concerns live here:

* **Classification** -- ``created_after`` / ``edited_after`` compare a
  record's timestamps with the bookmark.  Both are pure.
* **Persistence** -- ``BookmarkFile`` reads and writes the single
  timestamp that makes up the tool's persisted state.

Key design choices:

* All timestamps are normalised to aware UTC.  Naive values (as most SQL
  drivers return them) are taken to be UTC already.
* ``parse_bookmark`` reads ISO 8601 as well as RFC 2822, the format older
  bookmark files were written in.  New files are always ISO 8601.
* ``BookmarkFile.write`` goes through a temp file and ``os.replace`` so a
  reader never sees a half-written bookmark.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from pathlib import Path

from db_surgeon.errors import BookmarkError
from db_surgeon.merge.models import Record

logger = logging.getLogger(__name__)


def ensure_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class Bookmark:
    """Last known synchronisation point.  Fixed for a whole run."""

    at: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "at", ensure_utc(self.at))

    @classmethod
    def now(cls) -> Bookmark:
        return cls(datetime.now(timezone.utc))

    def isoformat(self) -> str:
        return self.at.isoformat()

    def __str__(self) -> str:
        return self.isoformat()


def parse_bookmark(text: str) -> Bookmark:
    """Parse a bookmark timestamp.

    Accepts ISO 8601 (``2024-03-01T10:00:00+00:00``, ``...Z``, or
    ``2024-03-01 10:00:00``) and RFC 2822 (``Fri, 01 Mar 2024 10:00:00
    +0000``).

    Raises:
        BookmarkError: If *text* is empty or not a recognised timestamp.
    """
    value = text.strip()
    if not value:
        raise BookmarkError("Bookmark is empty")

    try:
        return Bookmark(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        pass

    try:
        return Bookmark(parsedate_to_datetime(value))
    except (TypeError, ValueError):
        raise BookmarkError(
            f"Invalid bookmark '{value}': expected ISO 8601 "
            f"(YYYY-MM-DD HH:MM:SS) or RFC 2822"
        ) from None


# ------------------------------------------------------------------
# Classification
# ------------------------------------------------------------------


def created_after(record: Record, bookmark: Bookmark) -> bool:
    """True if *record* was created after the bookmark."""
    return ensure_utc(record.created_at) > bookmark.at


def edited_after(record: Record, bookmark: Bookmark) -> bool:
    """True if *record* was edited after the bookmark."""
    return ensure_utc(record.edited_at) > bookmark.at


# ------------------------------------------------------------------
# Persistence
# ------------------------------------------------------------------


class BookmarkFile:
    """Read and write the bookmark file.

    Args:
        path: Location of the bookmark file.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        return self.path.is_file()

    def read(self) -> Bookmark | None:
        """Return the stored bookmark, or ``None`` if there is none.

        Raises:
            BookmarkError: If the file exists but cannot be parsed.
        """
        if not self.exists():
            return None
        text = self.path.read_text(encoding="utf-8")
        if not text.strip():
            return None
        return parse_bookmark(text)

    def write(self, bookmark: Bookmark | None = None) -> Bookmark:
        """Persist *bookmark* (default: now) atomically.

        Creates the parent directory if needed.

        Returns:
            The bookmark that was written.

        Raises:
            BookmarkError: If the file could not be written.
        """
        bookmark = bookmark or Bookmark.now()
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(directory), suffix=".tmp")
        except OSError as exc:
            raise BookmarkError(
                f"Could not create bookmark at {self.path}: {exc}"
            ) from exc

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(bookmark.isoformat() + "\n")
            os.replace(tmp_path, self.path)
        except BaseException as exc:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            if isinstance(exc, OSError):
                raise BookmarkError(
                    f"Could not create bookmark at {self.path}: {exc}"
                ) from exc
            raise

        logger.info("Bookmark written to %s: %s", self.path, bookmark)
        return bookmark
