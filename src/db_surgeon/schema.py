"""Record type declarations resolved at startup.

The merge engine never inspects a store to discover relations.  Every
record type is declared in configuration with its columns, family, and an
ordered list of relations; ``SchemaRegistry.from_config`` turns those
declarations into immutable ``RecordType`` objects and checks that every
relation points at a declared type.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from .config_schema import RecordTypeConfig, RelationConfig
from .errors import ConfigurationError


class Family(str, Enum):
    """Groups of record types migrated together."""

    FLAT = "flat"
    ASSETS = "assets"
    PAGES = "pages"


#: Update/Delete (and later Relate) run over families in this order.
FAMILY_ORDER = (Family.FLAT, Family.ASSETS, Family.PAGES)

#: Families whose single record type is walked as a parent-linked tree.
TREE_FAMILIES = frozenset({Family.ASSETS, Family.PAGES})


class Cardinality(str, Enum):
    ONE_TO_ONE = "one_to_one"
    MANY_TO_MANY = "many_to_many"


@dataclass(frozen=True)
class RelationSpec:
    """A resolved relation declaration."""

    name: str
    related_type: str
    cardinality: Cardinality
    excluded: bool = False
    column: str | None = None
    join_table: str | None = None
    owner_column: str | None = None
    related_column: str | None = None


@dataclass(frozen=True)
class RecordType:
    """A resolved record type declaration."""

    name: str
    table: str
    family: Family
    id_column: str = "ID"
    created_column: str = "Created"
    edited_column: str = "LastEdited"
    parent_column: str = "ParentID"
    title_column: str | None = "Title"
    kind_column: str | None = None
    path_column: str | None = None
    folder_kinds: frozenset[str] = frozenset({"Folder"})
    stages: tuple[str, ...] = ()
    relations: tuple[RelationSpec, ...] = field(default_factory=tuple)

    @property
    def hierarchical(self) -> bool:
        return self.family in TREE_FAMILIES

    @property
    def one_to_one(self) -> list[RelationSpec]:
        """Non-excluded one-to-one relations, in declaration order."""
        return [
            r
            for r in self.relations
            if r.cardinality == Cardinality.ONE_TO_ONE and not r.excluded
        ]

    @property
    def many_to_many(self) -> list[RelationSpec]:
        """Non-excluded many-to-many relations, in declaration order."""
        return [
            r
            for r in self.relations
            if r.cardinality == Cardinality.MANY_TO_MANY and not r.excluded
        ]

    @property
    def link_columns(self) -> dict[str, str]:
        """Map of one-to-one relation name to foreign key column.

        Includes excluded relations: their columns still hold foreign ids
        and must not be mistaken for plain fields.
        """
        return {
            r.name: r.column or f"{r.name}ID"
            for r in self.relations
            if r.cardinality == Cardinality.ONE_TO_ONE
        }

    def relation(self, name: str) -> RelationSpec:
        for rel in self.relations:
            if rel.name == name:
                return rel
        raise KeyError(f"{self.name} has no relation '{name}'")


def _resolve_relation(owner: str, cfg: RelationConfig) -> RelationSpec:
    cardinality = Cardinality(cfg.kind)
    owner_column = cfg.owner_column
    related_column = cfg.related_column
    if cardinality == Cardinality.MANY_TO_MANY:
        owner_column = owner_column or f"{owner}ID"
        related_column = related_column or f"{cfg.related_type}ID"
        if related_column == owner_column:
            # Self-referencing join tables name the far side "Child"
            related_column = "ChildID"
    return RelationSpec(
        name=cfg.name,
        related_type=cfg.related_type,
        cardinality=cardinality,
        excluded=cfg.excluded,
        column=cfg.column or (
            f"{cfg.name}ID" if cardinality == Cardinality.ONE_TO_ONE else None
        ),
        join_table=cfg.join_table,
        owner_column=owner_column,
        related_column=related_column,
    )


def resolve_record_type(cfg: RecordTypeConfig) -> RecordType:
    """Turn one config declaration into a ``RecordType``."""
    return RecordType(
        name=cfg.name,
        table=cfg.table or cfg.name,
        family=Family(cfg.family),
        id_column=cfg.id_column,
        created_column=cfg.created_column,
        edited_column=cfg.edited_column,
        parent_column=cfg.parent_column,
        title_column=cfg.title_column,
        kind_column=cfg.kind_column,
        path_column=cfg.path_column,
        folder_kinds=frozenset(cfg.folder_kinds),
        stages=tuple(cfg.stages),
        relations=tuple(_resolve_relation(cfg.name, r) for r in cfg.relations),
    )


class SchemaRegistry:
    """All declared record types, validated as a whole.

    Args:
        types: Resolved record types.

    Raises:
        ConfigurationError: On duplicate names, relations to undeclared
            types, or more than one record type in a tree family.
    """

    def __init__(self, types: Iterable[RecordType]) -> None:
        self._types: dict[str, RecordType] = {}
        for rt in types:
            if rt.name in self._types:
                raise ConfigurationError(
                    f"Record type '{rt.name}' is declared twice"
                )
            self._types[rt.name] = rt

        for rt in self._types.values():
            for rel in rt.relations:
                if not rel.excluded and rel.related_type not in self._types:
                    raise ConfigurationError(
                        f"{rt.name}.{rel.name} relates to undeclared record "
                        f"type '{rel.related_type}'"
                    )

        for family in TREE_FAMILIES:
            members = self.family(family)
            if len(members) > 1:
                names = ", ".join(rt.name for rt in members)
                raise ConfigurationError(
                    f"The {family.value} family is a single tree; "
                    f"found several record types: {names}"
                )

    @classmethod
    def from_config(
        cls, configs: Iterable[RecordTypeConfig]
    ) -> SchemaRegistry:
        return cls(resolve_record_type(c) for c in configs)

    def __contains__(self, name: object) -> bool:
        return name in self._types

    def __len__(self) -> int:
        return len(self._types)

    def get(self, name: str) -> RecordType:
        try:
            return self._types[name]
        except KeyError:
            raise ConfigurationError(
                f"Unknown record type '{name}'"
            ) from None

    def family(self, family: Family) -> list[RecordType]:
        """Record types of *family*, ordered by name."""
        return sorted(
            (rt for rt in self._types.values() if rt.family == family),
            key=lambda rt: rt.name,
        )
