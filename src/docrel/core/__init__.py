"""Core components for docrel."""

from docrel.core.connection import DatabaseConnection
from docrel.core.types import (
    ConflictStrategy,
    FieldInfo,
    IndexInfo,
    RelationInfo,
    RelationType,
    SchemaInfo,
    TableInfo,
    WriteResult,
)

__all__ = [
    "DatabaseConnection",
    "ConflictStrategy",
    "RelationType",
    "WriteResult",
    "FieldInfo",
    "IndexInfo",
    "RelationInfo",
    "TableInfo",
    "SchemaInfo",
]
