"""Exception hierarchy for db-surgeon.

Errors fall into two groups:

* **Fatal** -- ``ConfigurationError`` (and its ``BookmarkError``
  subclass) abort the run before any record is touched.
* **Scoped** -- ``StoreError`` and ``AssetTransferError`` are caught per
  record, ``StructuralError`` per tree branch.  The run carries on and
  the failure is counted in the report.

``IdentifierMapError`` signals a broken invariant and always propagates.
"""

from __future__ import annotations


class SurgeonError(Exception):
    """Base class for all db-surgeon errors."""


class ConfigurationError(SurgeonError):
    """Missing or invalid configuration; the run cannot start."""


class BookmarkError(ConfigurationError):
    """The bookmark is missing, unparseable, or could not be written."""


class StoreError(SurgeonError):
    """A read or write against one of the record stores failed."""


class AssetTransferError(SurgeonError):
    """Downloading an asset or writing it to local storage failed."""


class StructuralError(SurgeonError):
    """A record hierarchy is malformed (cycle or runaway depth).

    Attributes:
        type_name: Record type being walked.
        record_id: Source id of the node where the walk stopped.
    """

    def __init__(self, message: str, type_name: str, record_id: int):
        super().__init__(message)
        self.type_name = type_name
        self.record_id = record_id


class IdentifierMapError(SurgeonError):
    """An identifier mapping was about to be overwritten."""
