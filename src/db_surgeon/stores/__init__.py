"""Record store backends and the dual-store accessor."""

from .base import DualStore, RecordStore, StoreRole
from .sql import SqlStore

__all__ = ["DualStore", "RecordStore", "SqlStore", "StoreRole"]
