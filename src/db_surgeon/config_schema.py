"""Unified configuration schema for db_surgeon.

Defines Pydantic models for the YAML config structure: store connection
URLs, asset transfer settings, merge behaviour, logging, and the explicit
record type declarations the merge engine works from.

Usage:
    from db_surgeon.config_schema import build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class StoresConfig(BaseModel):
    """Connection URLs for the two record stores.

    Both are optional here so env vars and CLI args can supply them.
    Any SQLAlchemy URL is accepted (``mysql+pymysql://...``,
    ``postgresql+psycopg://...``, ``sqlite:///...``).
    """

    source_url: str | None = Field(
        default=None,
        description="Source store (the diverged copy changes are read from)",
    )
    target_url: str | None = Field(
        default=None,
        description="Target store (the origin the changes are merged into)",
    )

    model_config = {"frozen": True}


class AssetsConfig(BaseModel):
    """Asset transfer settings.

    Attributes:
        source_url: Base URL the source site serves its assets from.
        directory: Local directory asset paths are relative to.
        timeout: Per-download timeout in seconds.
    """

    source_url: str | None = Field(
        default=None, description="Base URL for downloading assets"
    )
    directory: str = Field(
        default="assets", description="Local assets root directory"
    )
    timeout: float = Field(default=30.0, gt=0, le=600)

    model_config = {"frozen": True}


class MergeSettings(BaseModel):
    """Merge behaviour.

    ``identity_matching`` records the precondition every run relies on:
    records that existed at the bookmark carry the same id in both
    stores.  It cannot be switched off.
    """

    bookmark_file: str = Field(
        default=".db_surgeon/bookmark",
        description="Where the bookmark timestamp is stored",
    )
    conflict_strategy: Literal[
        "keep-target", "keep-source", "keep-both", "interactive"
    ] = "keep-target"
    max_depth: int = Field(
        default=64,
        ge=1,
        le=10000,
        description="Deepest hierarchy level walked before a branch is abandoned",
    )
    identity_matching: bool = True

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _require_identity_matching(self) -> MergeSettings:
        if not self.identity_matching:
            raise ValueError(
                "identity_matching must be true: records that existed at "
                "the bookmark are matched by id across stores"
            )
        return self


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``text`` or ``json``.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: Literal["text", "json"] = "text"

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Record type declarations
# ---------------------------------------------------------------------------


class RelationConfig(BaseModel):
    """One declared relation of a record type.

    One-to-one relations live in a foreign key column on the owning
    table (``<name>ID`` unless *column* says otherwise).  Many-to-many
    relations live in a join table holding an owner column and a
    related column.
    """

    name: str
    related_type: str
    kind: Literal["one_to_one", "many_to_many"] = "one_to_one"
    excluded: bool = False
    column: str | None = None
    join_table: str | None = None
    owner_column: str | None = None
    related_column: str | None = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_join_table(self) -> RelationConfig:
        if self.kind == "many_to_many" and not self.excluded:
            if not self.join_table:
                raise ValueError(
                    f"many_to_many relation '{self.name}' needs a join_table"
                )
        return self


class RecordTypeConfig(BaseModel):
    """Declaration of one record type shared by both stores.

    ``family`` decides which migration handles the type: ``flat``
    records are matched one by one, ``assets`` and ``pages`` are walked
    as trees through ``parent_column``.
    """

    name: str
    table: str | None = None
    family: Literal["flat", "assets", "pages"] = "flat"
    id_column: str = "ID"
    created_column: str = "Created"
    edited_column: str = "LastEdited"
    parent_column: str = "ParentID"
    title_column: str | None = "Title"
    kind_column: str | None = None
    path_column: str | None = None
    folder_kinds: list[str] = Field(default_factory=lambda: ["Folder"])
    stages: list[str] = Field(default_factory=list)
    relations: list[RelationConfig] = Field(default_factory=list)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_assets(self) -> RecordTypeConfig:
        if self.family == "assets" and not self.path_column:
            raise ValueError(
                f"asset record type '{self.name}' needs a path_column"
            )
        return self


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has defaults, so ``UnifiedConfig()`` is valid; a run
    still needs store URLs and at least one record type.
    """

    stores: StoresConfig = Field(default_factory=StoresConfig)
    assets: AssetsConfig = Field(default_factory=AssetsConfig)
    merge: MergeSettings = Field(default_factory=MergeSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    record_types: list[RecordTypeConfig] = Field(default_factory=list)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully -- anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)
