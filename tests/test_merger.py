"""Tests for RecordMerger: executing the per-record merge decision."""

from __future__ import annotations

from conftest import GROUP, MEMBER, PAGE, FakeStore, make_record
from db_surgeon.merge.idmap import IdentifierMap, MappedRecord
from db_surgeon.merge.merger import RecordMerger
from db_surgeon.merge.models import Decision, Resolution, RunCounters
from db_surgeon.merge.relations import RelationReconciler
from db_surgeon.merge.resolver import (
    KeepBothResolver,
    KeepSourceResolver,
    KeepTargetResolver,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _merger(stores, bookmark, resolver=None) -> RecordMerger:
    idmap = IdentifierMap()
    counters = RunCounters()
    return RecordMerger(
        stores,
        idmap,
        bookmark,
        resolver or KeepTargetResolver(),
        counters,
        RelationReconciler(stores, idmap, counters),
    )


def _process(merger: RecordMerger, record_type, source_id: int):
    source = merger.stores.source.get(record_type, source_id)
    target = merger.stores.target.get(record_type, source_id)
    return merger.process(record_type, source, target)


def _conflicting(source_store: FakeStore, target_store: FakeStore):
    source = make_record("Member", 5, created=-60, edited=10, Email="new@x")
    target = make_record("Member", 5, created=-60, edited=20, Email="other@x")
    source_store.add(source)
    target_store.add(target)
    return source, target


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


class TestCreate:
    def test_new_page_is_created_and_mapped(
        self, stores, source_store, target_store, bookmark
    ) -> None:
        """Page(id=5) created after the bookmark lands as target #201."""
        source_store.add(make_record("Page", 5, created=10, title="News", parent_id=0))
        merger = _merger(stores, bookmark)

        result = _process(merger, PAGE, 5)

        assert result.decision == Decision.CREATE
        assert result.success
        assert result.target_id == 201
        assert merger.idmap.lookup("Page", 5) == MappedRecord(201, 0)
        created = target_store.get(PAGE, 201)
        assert created.title == "News"
        assert created.parent_id == 0
        assert merger.counters.created == 1

    def test_source_record_is_not_mutated(
        self, stores, source_store, bookmark
    ) -> None:
        source = make_record("Page", 5, created=10, parent_id=0)
        source_store.add(source)
        _process(_merger(stores, bookmark), PAGE, 5)
        assert source_store.get(PAGE, 5) is source
        assert source.id == 5

    def test_child_of_new_parent_uses_mapped_parent(
        self, stores, source_store, target_store, bookmark
    ) -> None:
        source_store.add(
            make_record("Page", 5, created=10, parent_id=0),
            make_record("Page", 6, created=11, parent_id=5),
        )
        merger = _merger(stores, bookmark)

        _process(merger, PAGE, 5)
        _process(merger, PAGE, 6)

        assert target_store.get(PAGE, 202).parent_id == 201
        assert merger.idmap.lookup("Page", 6) == MappedRecord(202, 201)

    def test_child_of_existing_parent_keeps_parent_id(
        self, stores, source_store, target_store, bookmark
    ) -> None:
        source_store.add(
            make_record("Page", 3, created=-60, parent_id=0),
            make_record("Page", 6, created=11, parent_id=3),
        )
        target_store.add(make_record("Page", 3, created=-60, parent_id=0))
        merger = _merger(stores, bookmark)

        _process(merger, PAGE, 6)

        assert target_store.get(PAGE, 201).parent_id == 3

    def test_flat_record_maps_without_parent(
        self, stores, source_store, bookmark
    ) -> None:
        source_store.add(make_record("Group", 9, created=5, title="Editors"))
        merger = _merger(stores, bookmark)
        _process(merger, GROUP, 9)
        assert merger.idmap.lookup("Group", 9) == MappedRecord(201, None)

    def test_both_new_creates_separate_record(
        self, stores, source_store, target_store, bookmark
    ) -> None:
        target_own = make_record("Group", 9, created=3, title="Theirs")
        source_store.add(make_record("Group", 9, created=5, title="Ours"))
        target_store.add(target_own)
        merger = _merger(stores, bookmark)

        result = _process(merger, GROUP, 9)

        assert result.decision == Decision.CREATE
        assert target_store.get(GROUP, 9) is target_own
        assert target_store.get(GROUP, 201).title == "Ours"


# ---------------------------------------------------------------------------
# Update / Skip / No-op
# ---------------------------------------------------------------------------


class TestUpdate:
    def test_source_edit_overwrites_target(
        self, stores, source_store, target_store, bookmark
    ) -> None:
        source = make_record("Member", 5, created=-60, edited=10, Email="new@x")
        source_store.add(source)
        target_store.add(make_record("Member", 5, created=-60, Email="old@x"))
        merger = _merger(stores, bookmark)

        result = _process(merger, MEMBER, 5)

        assert result.decision == Decision.UPDATE
        assert target_store.get(MEMBER, 5) == source
        assert target_store.writes == [("update", "Member", 5)]
        assert merger.idmap.lookup("Member", 5) == MappedRecord(5, None)
        assert merger.counters.updated == 1

    def test_moved_page_follows_new_parent(
        self, stores, source_store, target_store, bookmark
    ) -> None:
        source_store.add(
            make_record("Page", 5, created=10, parent_id=0),
            make_record("Page", 7, created=-60, edited=12, parent_id=5),
        )
        target_store.add(make_record("Page", 7, created=-60, parent_id=0))
        merger = _merger(stores, bookmark)

        _process(merger, PAGE, 5)
        _process(merger, PAGE, 7)

        assert target_store.get(PAGE, 7).parent_id == 201
        assert merger.idmap.lookup("Page", 7) == MappedRecord(7, 201)


class TestSkip:
    def test_target_edit_wins(
        self, stores, source_store, target_store, bookmark
    ) -> None:
        target = make_record("Member", 5, created=-60, edited=10, Email="t@x")
        source_store.add(make_record("Member", 5, created=-60, Email="s@x"))
        target_store.add(target)
        merger = _merger(stores, bookmark)

        result = _process(merger, MEMBER, 5)

        assert result.decision == Decision.SKIP
        assert target_store.get(MEMBER, 5) is target
        assert target_store.writes == []
        assert merger.counters.skipped == 1
        assert len(merger.idmap) == 0


class TestNoop:
    def test_unchanged_record_is_left_alone(
        self, stores, source_store, target_store, bookmark
    ) -> None:
        source_store.add(make_record("Member", 5))
        target_store.add(make_record("Member", 5))
        merger = _merger(stores, bookmark)

        result = _process(merger, MEMBER, 5)

        assert result.decision == Decision.NOOP
        assert not result.conflict
        assert target_store.writes == []
        assert len(merger.idmap) == 0

    def test_record_deleted_on_target_stays_deleted(
        self, stores, source_store, target_store, bookmark
    ) -> None:
        source_store.add(make_record("Member", 5, edited=30))
        merger = _merger(stores, bookmark)

        result = _process(merger, MEMBER, 5)

        assert result.decision == Decision.NOOP
        assert target_store.writes == []

    def test_new_join_members_map_the_record(
        self, stores, source_store, target_store, bookmark
    ) -> None:
        source_store.add(make_record("Member", 5)).link("Member", "Groups", 5, {1, 2})
        target_store.add(make_record("Member", 5)).link("Member", "Groups", 5, {1})
        merger = _merger(stores, bookmark)

        result = _process(merger, MEMBER, 5)

        assert result.decision == Decision.NOOP
        assert "Groups" in result.message
        assert merger.idmap.lookup("Member", 5) == MappedRecord(5, None)
        # The set itself is replaced in the relate phase
        assert target_store.writes == []
        assert merger.counters.updated == 0

    def test_target_join_edit_is_a_conflict(
        self, stores, source_store, target_store, bookmark
    ) -> None:
        source_store.add(make_record("Member", 5)).link("Member", "Groups", 5, {1})
        target_store.add(make_record("Member", 5)).link("Member", "Groups", 5, {1, 3})
        merger = _merger(stores, bookmark)

        result = _process(merger, MEMBER, 5)

        assert result.conflict
        assert merger.counters.conflicts == 1
        assert len(merger.idmap) == 0


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------


class TestConflict:
    def test_keep_target_writes_nothing(
        self, stores, source_store, target_store, bookmark
    ) -> None:
        _, target = _conflicting(source_store, target_store)
        merger = _merger(stores, bookmark, KeepTargetResolver())

        result = _process(merger, MEMBER, 5)

        assert result.decision == Decision.CONFLICT
        assert result.resolution == Resolution.KEEP_TARGET
        assert result.conflict
        assert target_store.writes == []
        assert target_store.get(MEMBER, 5) is target
        assert merger.counters.conflicts == 1

    def test_keep_source_overwrites_same_id(
        self, stores, source_store, target_store, bookmark
    ) -> None:
        source, _ = _conflicting(source_store, target_store)
        merger = _merger(stores, bookmark, KeepSourceResolver())

        result = _process(merger, MEMBER, 5)

        assert result.resolution == Resolution.KEEP_SOURCE
        assert result.target_id == 5
        stored = target_store.get(MEMBER, 5)
        assert stored.data == source.data
        assert stored == source
        assert len(target_store.all("Member")) == 1
        assert merger.counters.conflicts == 1
        assert merger.counters.updated == 1

    def test_keep_both_adds_distinct_record(
        self, stores, source_store, target_store, bookmark
    ) -> None:
        source, target = _conflicting(source_store, target_store)
        merger = _merger(stores, bookmark, KeepBothResolver())

        result = _process(merger, MEMBER, 5)

        assert result.resolution == Resolution.KEEP_BOTH
        assert result.target_id == 201
        assert target_store.get(MEMBER, 5) is target
        assert target_store.get(MEMBER, 201).data == source.data
        assert merger.idmap.lookup("Member", 5) == MappedRecord(
            201, None, duplicate=True
        )
        assert merger.counters.created == 1


# ---------------------------------------------------------------------------
# Failures and repeats
# ---------------------------------------------------------------------------


class TestFailuresAndRepeats:
    def test_store_failure_is_counted_and_reported(
        self, stores, source_store, target_store, bookmark
    ) -> None:
        source_store.add(make_record("Group", 9, created=5))
        target_store.fail_writes = True
        merger = _merger(stores, bookmark)

        result = _process(merger, GROUP, 9)

        assert not result.success
        assert "read-only" in result.error
        assert merger.counters.errors == 1
        assert merger.counters.created == 0
        assert len(merger.idmap) == 0

    def test_failure_does_not_stop_next_record(
        self, stores, source_store, target_store, bookmark
    ) -> None:
        source_store.add(
            make_record("Member", 1, created=-60, edited=5),
            make_record("Member", 2, created=-60, edited=5),
        )
        target_store.add(make_record("Member", 2))
        merger = _merger(stores, bookmark)

        # Member 1 was never in the target, so the update cannot apply
        results = [
            merger.process(MEMBER, source_store.get(MEMBER, 1), make_record("Member", 1)),
            _process(merger, MEMBER, 2),
        ]

        assert not results[0].success
        assert results[1].success
        assert merger.counters.errors == 1
        assert merger.counters.updated == 1


    def test_second_pass_with_fresh_merger_is_a_noop(
        self, stores, source_store, target_store, bookmark
    ) -> None:
        """A new run over the merged stores creates and updates nothing."""
        source_store.add(
            make_record("Member", 1, created=10, title="New"),
            make_record("Member", 2, created=-60, edited=10, Email="b@x"),
            make_record("Member", 3, created=-60),
            make_record("Member", 4, created=-60),
        )
        target_store.add(
            make_record("Member", 2, created=-60),
            make_record("Member", 3, created=-60, edited=10),
            make_record("Member", 4, created=-60),
        )
        first = _merger(stores, bookmark)
        for sid in (1, 2, 3, 4):
            _process(first, MEMBER, sid)
        writes = list(target_store.writes)

        second = _merger(stores, bookmark)
        results = [_process(second, MEMBER, sid) for sid in (1, 2, 3, 4)]

        assert (first.counters.created, first.counters.updated) == (1, 1)
        assert [r.decision for r in results] == [
            Decision.NOOP,
            Decision.NOOP,
            Decision.SKIP,
            Decision.NOOP,
        ]
        assert results[0].target_id == 201
        assert results[0].message == "already on target as #201"
        assert second.idmap.lookup("Member", 1) == MappedRecord(201, None)
        assert (second.counters.created, second.counters.updated) == (0, 0)
        assert second.counters.conflicts == 0
        assert target_store.writes == writes

    def test_second_pass_finds_created_children_under_created_parent(
        self, stores, source_store, target_store, bookmark
    ) -> None:
        source_store.add(
            make_record("Page", 5, created=10, parent_id=0, title="News"),
            make_record("Page", 6, created=11, parent_id=5, title="Story"),
        )
        first = _merger(stores, bookmark)
        _process(first, PAGE, 5)
        _process(first, PAGE, 6)

        second = _merger(stores, bookmark)
        results = [_process(second, PAGE, 5), _process(second, PAGE, 6)]

        assert [r.target_id for r in results] == [201, 202]
        assert second.idmap.lookup("Page", 6) == MappedRecord(202, 201)
        assert second.counters.created == 0
        assert len(target_store.all("Page")) == 2

    def test_identical_new_records_each_keep_their_own_copy(
        self, stores, source_store, target_store, bookmark
    ) -> None:
        source_store.add(
            make_record("Group", 8, created=10, title="Twin"),
            make_record("Group", 9, created=10, title="Twin"),
        )
        first = _merger(stores, bookmark)
        _process(first, GROUP, 8)
        _process(first, GROUP, 9)

        second = _merger(stores, bookmark)
        _process(second, GROUP, 8)
        _process(second, GROUP, 9)

        assert first.counters.created == 2
        assert second.counters.created == 0
        assert second.idmap.target_id("Group", 8) == 201
        assert second.idmap.target_id("Group", 9) == 202


# ---------------------------------------------------------------------------
# Keep-both on a tree parent
# ---------------------------------------------------------------------------


class TestKeepBothParent:
    def _seed(self, source_store: FakeStore, target_store: FakeStore) -> None:
        source_store.add(
            make_record("Page", 5, created=-60, edited=10, parent_id=0, title="P src"),
            make_record("Page", 6, created=-60, edited=12, parent_id=5, title="C edited"),
            make_record("Page", 7, created=-60, parent_id=5, title="D"),
            make_record("Page", 8, created=15, parent_id=5, title="E new"),
        )
        target_store.add(
            make_record("Page", 5, created=-60, edited=20, parent_id=0, title="P tgt"),
            make_record("Page", 6, created=-60, parent_id=5, title="C"),
            make_record("Page", 7, created=-60, parent_id=5, title="D"),
        )

    def _run(self, merger: RecordMerger) -> None:
        for sid in (5, 6, 7, 8):
            _process(merger, PAGE, sid)

    def test_updated_child_stays_under_target_record(
        self, stores, source_store, target_store, bookmark
    ) -> None:
        self._seed(source_store, target_store)
        merger = _merger(stores, bookmark, KeepBothResolver())

        self._run(merger)

        assert merger.idmap.lookup("Page", 5) == MappedRecord(
            201, 0, duplicate=True
        )
        assert target_store.get(PAGE, 6).title == "C edited"
        assert target_store.get(PAGE, 6).parent_id == 5
        assert target_store.get(PAGE, 7).parent_id == 5
        assert merger.idmap.lookup("Page", 6) == MappedRecord(6, 5)

    def test_new_child_follows_the_source_copy(
        self, stores, source_store, target_store, bookmark
    ) -> None:
        self._seed(source_store, target_store)
        merger = _merger(stores, bookmark, KeepBothResolver())

        self._run(merger)

        assert target_store.get(PAGE, 202).title == "E new"
        assert target_store.get(PAGE, 202).parent_id == 201

    def test_second_pass_reuses_the_kept_copy(
        self, stores, source_store, target_store, bookmark
    ) -> None:
        self._seed(source_store, target_store)
        self._run(_merger(stores, bookmark, KeepBothResolver()))
        writes = list(target_store.writes)

        second = _merger(stores, bookmark, KeepBothResolver())
        self._run(second)

        assert second.idmap.lookup("Page", 5) == MappedRecord(
            201, 0, duplicate=True
        )
        assert second.counters.created == 0
        assert second.counters.updated == 0
        assert second.counters.conflicts == 0
        assert target_store.writes == writes
