"""Relational record store built on SQLAlchemy Core.

Tables are reflected on first use from the declared table names; the
column roles (id, timestamps, parent link, foreign keys, join tables)
come from the record type declaration, never from reflection.

Every write runs inside its own ``engine.begin()`` transaction, so a
failed insert or update leaves nothing half-written and the merge can
move on to the next record.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import MetaData, Table, create_engine, or_, select
from sqlalchemy.engine import Engine, RowMapping
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError

from db_surgeon.errors import StoreError
from db_surgeon.merge.bookmark import ensure_utc
from db_surgeon.merge.models import Record
from db_surgeon.schema import RecordType

logger = logging.getLogger(__name__)


def _as_datetime(value: Any, column: str) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        try:
            return ensure_utc(datetime.fromisoformat(value))
        except ValueError:
            pass
    raise StoreError(f"Column {column} holds {value!r}, not a timestamp")


def _naive_utc(value: datetime) -> datetime:
    # DATETIME columns carry no zone; store UTC wall-clock time
    return ensure_utc(value).replace(tzinfo=None)


def _link_columns(rt: RecordType) -> dict[str, str]:
    """Foreign key columns, minus the parent column of a tree type."""
    return {
        name: column
        for name, column in rt.link_columns.items()
        if not (rt.hierarchical and column == rt.parent_column)
    }


class SqlStore:
    """A record store backed by one SQL database.

    Args:
        engine: SQLAlchemy engine for the database.
        name: Label used in log messages (``source`` / ``target``).
    """

    def __init__(self, engine: Engine, name: str = "store") -> None:
        self.engine = engine
        self.name = name
        self._metadata = MetaData()
        self._tables: dict[str, Table] = {}

    @classmethod
    def from_url(cls, url: str, name: str = "store") -> SqlStore:
        """Create a store from a SQLAlchemy database URL."""
        try:
            engine = create_engine(url)
        except (SQLAlchemyError, ImportError) as exc:
            raise StoreError(f"Cannot open {name} store: {exc}") from exc
        return cls(engine, name)

    def dispose(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Row <-> Record
    # ------------------------------------------------------------------

    def _table(self, table_name: str) -> Table:
        table = self._tables.get(table_name)
        if table is None:
            try:
                table = Table(
                    table_name, self._metadata, autoload_with=self.engine
                )
            except NoSuchTableError:
                raise StoreError(
                    f"Table '{table_name}' does not exist in the {self.name} store"
                ) from None
            except SQLAlchemyError as exc:
                raise StoreError(
                    f"Cannot reflect '{table_name}' in the {self.name} store: {exc}"
                ) from exc
            self._tables[table_name] = table
        return table

    def _to_record(self, rt: RecordType, row: RowMapping) -> Record:
        values = dict(row)
        record_id = values.pop(rt.id_column)
        created = _as_datetime(values.pop(rt.created_column), rt.created_column)
        edited = _as_datetime(values.pop(rt.edited_column), rt.edited_column)
        parent_id = values.pop(rt.parent_column, None) if rt.hierarchical else None
        title = values.pop(rt.title_column, None) if rt.title_column else None
        kind = values.pop(rt.kind_column, None) if rt.kind_column else None
        path = values.pop(rt.path_column, None) if rt.path_column else None
        links = {
            name: values.pop(column, None)
            for name, column in _link_columns(rt).items()
        }
        return Record(
            type_name=rt.name,
            id=record_id,
            created_at=created,
            edited_at=edited,
            parent_id=parent_id,
            title=title,
            kind=kind,
            path=path,
            data=values,
            links=links,
        )

    def _to_row(self, rt: RecordType, table: Table, record: Record) -> dict:
        row: dict[str, Any] = dict(record.data)
        row[rt.created_column] = _naive_utc(record.created_at)
        row[rt.edited_column] = _naive_utc(record.edited_at)
        if rt.hierarchical:
            row[rt.parent_column] = record.parent_id or 0
        if rt.title_column:
            row[rt.title_column] = record.title
        if rt.kind_column:
            row[rt.kind_column] = record.kind
        if rt.path_column:
            row[rt.path_column] = record.path
        for name, column in _link_columns(rt).items():
            if name in record.links:
                row[column] = record.links[name]
        row.pop(rt.id_column, None)
        return {k: v for k, v in row.items() if k in table.c}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def select(
        self, record_type: RecordType, *, parent_id: int | None = None
    ) -> list[Record]:
        table = self._table(record_type.table)
        id_col = table.c[record_type.id_column]
        stmt = select(table).order_by(id_col)
        if parent_id is not None:
            parent_col = table.c[record_type.parent_column]
            if parent_id == 0:
                stmt = stmt.where(or_(parent_col == 0, parent_col.is_(None)))
            else:
                stmt = stmt.where(parent_col == parent_id)
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).mappings().all()
        except SQLAlchemyError as exc:
            raise StoreError(
                f"Reading {record_type.name} from the {self.name} store failed: {exc}"
            ) from exc
        return [self._to_record(record_type, row) for row in rows]

    def get(self, record_type: RecordType, record_id: int) -> Record | None:
        table = self._table(record_type.table)
        stmt = select(table).where(table.c[record_type.id_column] == record_id)
        try:
            with self.engine.connect() as conn:
                row = conn.execute(stmt).mappings().first()
        except SQLAlchemyError as exc:
            raise StoreError(
                f"Reading {record_type.name} #{record_id} from the "
                f"{self.name} store failed: {exc}"
            ) from exc
        return self._to_record(record_type, row) if row is not None else None

    def related_ids(
        self, record_type: RecordType, record_id: int, relation: str
    ) -> set[int]:
        rel = record_type.relation(relation)
        join = self._table(rel.join_table)
        stmt = select(join.c[rel.related_column]).where(
            join.c[rel.owner_column] == record_id
        )
        try:
            with self.engine.connect() as conn:
                return set(conn.execute(stmt).scalars().all())
        except SQLAlchemyError as exc:
            raise StoreError(
                f"Reading {record_type.name}.{relation} from the "
                f"{self.name} store failed: {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, record_type: RecordType, record: Record) -> int:
        table = self._table(record_type.table)
        row = self._to_row(record_type, table, record)
        try:
            with self.engine.begin() as conn:
                result = conn.execute(table.insert().values(**row))
                new_id = result.inserted_primary_key[0]
        except SQLAlchemyError as exc:
            raise StoreError(
                f"Inserting {record.describe()} into the {self.name} store "
                f"failed: {exc}"
            ) from exc
        return int(new_id)

    def update(self, record_type: RecordType, record: Record) -> None:
        table = self._table(record_type.table)
        row = self._to_row(record_type, table, record)
        stmt = (
            table.update()
            .where(table.c[record_type.id_column] == record.id)
            .values(**row)
        )
        try:
            with self.engine.begin() as conn:
                result = conn.execute(stmt)
        except SQLAlchemyError as exc:
            raise StoreError(
                f"Updating {record.describe()} in the {self.name} store "
                f"failed: {exc}"
            ) from exc
        if result.rowcount == 0:
            raise StoreError(
                f"{record.describe()} does not exist in the {self.name} store"
            )

    def delete(self, record_type: RecordType, ids: Iterable[int]) -> int:
        id_list = sorted(set(ids))
        if not id_list:
            return 0
        table = self._table(record_type.table)
        try:
            with self.engine.begin() as conn:
                for stage in record_type.stages:
                    stage_table = self._table(stage)
                    conn.execute(
                        stage_table.delete().where(
                            stage_table.c[record_type.id_column].in_(id_list)
                        )
                    )
                for rel in record_type.many_to_many:
                    join = self._table(rel.join_table)
                    conn.execute(
                        join.delete().where(
                            join.c[rel.owner_column].in_(id_list)
                        )
                    )
                result = conn.execute(
                    table.delete().where(
                        table.c[record_type.id_column].in_(id_list)
                    )
                )
        except SQLAlchemyError as exc:
            raise StoreError(
                f"Deleting {record_type.name} {id_list} from the "
                f"{self.name} store failed: {exc}"
            ) from exc
        return result.rowcount

    def set_related_ids(
        self,
        record_type: RecordType,
        record_id: int,
        relation: str,
        ids: Iterable[int],
    ) -> None:
        rel = record_type.relation(relation)
        join = self._table(rel.join_table)
        rows = [
            {rel.owner_column: record_id, rel.related_column: rid}
            for rid in sorted(set(ids))
        ]
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    join.delete().where(join.c[rel.owner_column] == record_id)
                )
                if rows:
                    conn.execute(join.insert(), rows)
        except SQLAlchemyError as exc:
            raise StoreError(
                f"Writing {record_type.name}.{relation} for #{record_id} in "
                f"the {self.name} store failed: {exc}"
            ) from exc
