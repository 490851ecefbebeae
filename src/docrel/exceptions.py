"""Custom exceptions for docrel.

All exceptions follow the same conventions:
- Actionable error messages that tell what went wrong AND how to fix it
- Include context about available options when relevant
- Serializable with ``to_dict()`` for logging or API responses
"""

from __future__ import annotations

from typing import Any


class DocrelError(Exception):
    """Base exception for all docrel errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Return error as JSON-serializable dict."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
        }


class ConnectionError(DocrelError):
    """Failed to connect to the database."""

    pass


class SchemaError(DocrelError):
    """A table declaration is inconsistent (bad primary key, index or field)."""

    pass


class FieldNotFoundError(SchemaError):
    """Field is not declared on the table."""

    def __init__(
        self, field_name: str, table_name: str, available_fields: list[str] | None = None
    ) -> None:
        available = available_fields or []
        if available:
            message = (
                f"Field '{field_name}' is unspecified in table '{table_name}'. "
                f"Available fields: {', '.join(available)}"
            )
        else:
            message = f"Field '{field_name}' is unspecified in table '{table_name}'. No fields defined."

        super().__init__(
            message,
            {
                "field_name": field_name,
                "table_name": table_name,
                "available_fields": available,
            },
        )
        self.field_name = field_name
        self.table_name = table_name
        self.available_fields = available


class TableNotFoundError(DocrelError):
    """Table is not registered in the environment."""

    def __init__(self, table_name: str, available_tables: list[str] | None = None) -> None:
        available = available_tables or []
        if available:
            message = f"Table '{table_name}' not found. Available tables: {', '.join(available)}"
        else:
            message = f"Table '{table_name}' not found. No tables declared yet."

        super().__init__(message, {"table_name": table_name, "available_tables": available})
        self.table_name = table_name
        self.available_tables = available


class TableAlreadyExistsError(DocrelError):
    """Table name is already registered (when if_not_exists=False)."""

    def __init__(self, table_name: str) -> None:
        message = (
            f"Table '{table_name}' is already declared. "
            f"Use if_not_exists=True to get the existing table instead."
        )
        super().__init__(message, {"table_name": table_name})
        self.table_name = table_name


class InvalidLinkError(DocrelError):
    """A link endpoint does not reference an existing field."""

    def __init__(self, reason: str, endpoint: dict[str, Any] | None = None) -> None:
        message = f"Invalid link: {reason}"
        super().__init__(message, {"endpoint": endpoint or {}})
        self.reason = reason
        self.endpoint = endpoint or {}


class UnknownRelationError(DocrelError):
    """Relation name is not registered on the table."""

    def __init__(
        self,
        relation_name: str,
        table_name: str,
        available_relations: list[str] | None = None,
    ) -> None:
        available = available_relations or []
        if available:
            message = (
                f"Relation '{table_name}.{relation_name}' does not exist. "
                f"Available relations: {', '.join(available)}"
            )
        else:
            message = (
                f"Relation '{table_name}.{relation_name}' does not exist. "
                "No relations declared on this table."
            )

        super().__init__(
            message,
            {
                "relation_name": relation_name,
                "table_name": table_name,
                "available_relations": available,
            },
        )
        self.relation_name = relation_name
        self.table_name = table_name
        self.available_relations = available


class ValidationError(DocrelError):
    """Data validation failed."""

    def __init__(self, message: str, field_errors: dict[str, str] | None = None) -> None:
        super().__init__(message, {"field_errors": field_errors or {}})
        self.field_errors = field_errors or {}


class UniquenessConflictError(DocrelError):
    """A unique field value is already taken by another row."""

    def __init__(self, table_name: str, field_name: str, value: Any) -> None:
        message = (
            f"'{field_name}' field is unique in '{table_name}' table. "
            f"{{ '{field_name}': {value!r} }} already exists."
        )
        super().__init__(
            message, {"table_name": table_name, "field_name": field_name, "value": value}
        )
        self.table_name = table_name
        self.field_name = field_name
        self.value = value


class QueryError(DocrelError):
    """Query building or evaluation failed."""

    pass


class NonExistenceError(QueryError):
    """A field or sequence element that an expression needed does not exist."""

    pass


class IndexNotFoundError(QueryError):
    """Lookup against an index the table does not declare."""

    def __init__(self, index_name: str, table_name: str, available_indexes: list[str]) -> None:
        message = (
            f"Index '{index_name}' was not found on table '{table_name}'. "
            f"Available indexes: {', '.join(available_indexes)}. "
            f"Declare the field with index=True or add a compound index."
        )
        super().__init__(
            message,
            {
                "index_name": index_name,
                "table_name": table_name,
                "available_indexes": available_indexes,
            },
        )
        self.index_name = index_name
        self.table_name = table_name
        self.available_indexes = available_indexes
