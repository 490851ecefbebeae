"""Core types for docrel.

All output types are pydantic models so they serialize cleanly to JSON.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field


class RelationType(StrEnum):
    """Relation variants between two tables."""

    HAS_ONE = "has_one"  # e.g., User -> Profile (FK on the other table)
    BELONGS_TO = "belongs_to"  # e.g., Profile -> User (FK on this table)
    HAS_MANY = "has_many"  # e.g., User -> Posts (FK on the other table)
    BELONGS_TO_MANY = "belongs_to_many"  # e.g., Post <-> Tag (rows in a join table)

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid relation type values."""
        return [t.value for t in cls]


ConflictStrategy = Literal["error", "replace", "update"]


class WriteResult(BaseModel):
    """Summary of a write, mirroring what a document store reports."""

    inserted: int = 0
    replaced: int = 0
    unchanged: int = 0
    skipped: int = 0
    deleted: int = 0
    errors: int = 0
    first_error: str | None = None
    generated_keys: list[str] = Field(default_factory=list)

    def __add__(self, other: WriteResult) -> WriteResult:
        return WriteResult(
            inserted=self.inserted + other.inserted,
            replaced=self.replaced + other.replaced,
            unchanged=self.unchanged + other.unchanged,
            skipped=self.skipped + other.skipped,
            deleted=self.deleted + other.deleted,
            errors=self.errors + other.errors,
            first_error=self.first_error or other.first_error,
            generated_keys=[*self.generated_keys, *other.generated_keys],
        )


class FieldInfo(BaseModel):
    """Information about a declared field (output format)."""

    name: str
    type: str
    required: bool
    nullable: bool
    unique: bool
    indexed: bool
    default: Any = None
    description: str | None = None


class IndexInfo(BaseModel):
    """A secondary index and the fields it covers."""

    name: str
    fields: list[str]
    compound: bool = False


class RelationInfo(BaseModel):
    """Information about a declared relation (output format)."""

    name: str
    relation_type: RelationType
    target_table: str
    links: list[str]
    index: str | None = None


class TableInfo(BaseModel):
    """Information about a declared table (output format)."""

    name: str
    primary_key: str
    fields: list[FieldInfo]
    indexes: list[IndexInfo] = Field(default_factory=list)
    relations: list[RelationInfo] = Field(default_factory=list)


class SchemaInfo(BaseModel):
    """Every table of an environment (output format)."""

    tables: dict[str, TableInfo]
    total_tables: int
    total_relations: int
