"""Shared pytest fixtures for db-surgeon tests."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from db_surgeon.config_schema import RecordTypeConfig
from db_surgeon.errors import StoreError
from db_surgeon.merge.bookmark import Bookmark
from db_surgeon.merge.models import Record
from db_surgeon.schema import RecordType, SchemaRegistry, resolve_record_type
from db_surgeon.stores.base import DualStore

#: The bookmark instant every fixture is built around.
T = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def at(minutes: int) -> datetime:
    """``T`` shifted by *minutes* (negative means before the bookmark)."""
    return T + timedelta(minutes=minutes)


def make_record(
    type_name: str,
    record_id: int,
    created: int = -60,
    edited: int | None = None,
    **fields: Any,
) -> Record:
    """Build a record whose timestamps are minutes relative to ``T``.

    ``edited`` defaults to ``created``.  Keyword arguments that are not
    ``Record`` attributes go into ``data``.
    """
    attrs = {
        k: fields.pop(k)
        for k in ("parent_id", "title", "kind", "path", "links")
        if k in fields
    }
    return Record(
        type_name=type_name,
        id=record_id,
        created_at=at(created),
        edited_at=at(created if edited is None else edited),
        data=fields,
        **attrs,
    )


class FakeStore:
    """In-memory ``RecordStore`` for tests.

    Inserted records get ids counting up from *start_id* + 1.  Every
    write is appended to ``writes`` so tests can assert on side effects.
    """

    def __init__(self, name: str = "store", start_id: int = 200) -> None:
        self.name = name
        self.records: dict[str, dict[int, Record]] = {}
        self.joins: dict[tuple[str, str], dict[int, set[int]]] = {}
        self.next_id = start_id
        self.writes: list[tuple] = []
        self.fail_writes = False

    # -- test helpers -------------------------------------------------

    def add(self, *records: Record) -> FakeStore:
        for record in records:
            self.records.setdefault(record.type_name, {})[record.id] = record
        return self

    def link(
        self, type_name: str, relation: str, owner: int, ids: Iterable[int]
    ) -> FakeStore:
        self.joins.setdefault((type_name, relation), {})[owner] = set(ids)
        return self

    def all(self, type_name: str) -> list[Record]:
        return sorted(
            self.records.get(type_name, {}).values(), key=lambda r: r.id
        )

    def _check_writable(self) -> None:
        if self.fail_writes:
            raise StoreError(f"{self.name} store is read-only")

    # -- RecordStore --------------------------------------------------

    def select(
        self, record_type: RecordType, *, parent_id: int | None = None
    ) -> list[Record]:
        records = self.all(record_type.name)
        if parent_id is None:
            return records
        return [r for r in records if (r.parent_id or 0) == parent_id]

    def get(self, record_type: RecordType, record_id: int) -> Record | None:
        return self.records.get(record_type.name, {}).get(record_id)

    def insert(self, record_type: RecordType, record: Record) -> int:
        self._check_writable()
        self.next_id += 1
        stored = record.model_copy(update={"id": self.next_id})
        self.records.setdefault(record_type.name, {})[self.next_id] = stored
        self.writes.append(("insert", record_type.name, self.next_id))
        return self.next_id

    def update(self, record_type: RecordType, record: Record) -> None:
        self._check_writable()
        table = self.records.get(record_type.name, {})
        if record.id not in table:
            raise StoreError(f"{record.describe()} does not exist")
        table[record.id] = record
        self.writes.append(("update", record_type.name, record.id))

    def delete(self, record_type: RecordType, ids: Iterable[int]) -> int:
        self._check_writable()
        table = self.records.get(record_type.name, {})
        removed = 0
        for record_id in sorted(set(ids)):
            if table.pop(record_id, None) is not None:
                removed += 1
            for (name, _), members in self.joins.items():
                if name == record_type.name:
                    members.pop(record_id, None)
        self.writes.append(("delete", record_type.name, tuple(sorted(ids))))
        return removed

    def related_ids(
        self, record_type: RecordType, record_id: int, relation: str
    ) -> set[int]:
        members = self.joins.get((record_type.name, relation), {})
        return set(members.get(record_id, set()))

    def set_related_ids(
        self,
        record_type: RecordType,
        record_id: int,
        relation: str,
        ids: Iterable[int],
    ) -> None:
        self._check_writable()
        self.joins.setdefault((record_type.name, relation), {})[record_id] = set(ids)
        self.writes.append(("relate", record_type.name, record_id, relation))


# ---------------------------------------------------------------------------
# Record type fixtures
# ---------------------------------------------------------------------------


GROUP = resolve_record_type(RecordTypeConfig(name="Group"))

MEMBER = resolve_record_type(
    RecordTypeConfig(
        name="Member",
        relations=[
            {"name": "Team", "related_type": "Group"},
            {
                "name": "Groups",
                "related_type": "Group",
                "kind": "many_to_many",
                "join_table": "Group_Members",
            },
        ],
    )
)

PAGE = resolve_record_type(
    RecordTypeConfig(
        name="Page",
        table="SiteTree",
        family="pages",
        stages=["SiteTree_Live"],
        relations=[
            {"name": "Parent", "related_type": "Page", "excluded": True},
            {"name": "Author", "related_type": "Member"},
            {
                "name": "LinkTracking",
                "related_type": "Page",
                "kind": "many_to_many",
                "excluded": True,
            },
        ],
    )
)

ASSET = resolve_record_type(
    RecordTypeConfig(
        name="File",
        family="assets",
        kind_column="ClassName",
        path_column="Filename",
        relations=[
            {"name": "Parent", "related_type": "File", "excluded": True},
        ],
    )
)


@pytest.fixture
def bookmark() -> Bookmark:
    return Bookmark(T)


@pytest.fixture
def source_store() -> FakeStore:
    return FakeStore("source", start_id=100)


@pytest.fixture
def target_store() -> FakeStore:
    return FakeStore("target", start_id=200)


@pytest.fixture
def stores(source_store, target_store) -> DualStore:
    return DualStore(source_store, target_store)


@pytest.fixture
def registry() -> SchemaRegistry:
    return SchemaRegistry([GROUP, MEMBER, PAGE, ASSET])
