"""Table descriptors: name, primary key, fields and index declarations."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from functools import cached_property
from typing import Union

from docrel.core.types import IndexInfo
from docrel.exceptions import FieldNotFoundError, SchemaError
from docrel.schema.fields import FieldDescriptor, SchemaValidator

logger = logging.getLogger(__name__)

FieldsSource = Union[
    Mapping[str, FieldDescriptor], Callable[[], Mapping[str, FieldDescriptor]], None
]


class TableDescriptor:
    """Static declaration of one table.

    ``fields`` may be given as a mapping or as a zero-argument callable.
    The callable form lets two tables reference each other (for instance a
    foreign key built from the other table's primary key) before both exist;
    it is evaluated once, on first use, and cached.
    """

    def __init__(
        self,
        name: str,
        pk: str = "id",
        fields: FieldsSource = None,
        indexes: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        """Initialize descriptor.

        Args:
            name: Table name (maps to a physical table)
            pk: Primary key field name
            fields: Field mapping, or a thunk returning one
            indexes: Compound indexes, index name -> ordered field names
        """
        if not name:
            raise SchemaError("Table name must be a non-empty string.")
        self.name = name
        self.pk = pk
        self._fields_source = fields
        self._compound_source = {key: tuple(value) for key, value in (indexes or {}).items()}

    @cached_property
    def fields(self) -> dict[str, FieldDescriptor]:
        source = self._fields_source() if callable(self._fields_source) else self._fields_source
        fields = dict(source or {})

        for field_name, field in fields.items():
            if not isinstance(field, FieldDescriptor):
                raise SchemaError(
                    f"Field '{self.name}.{field_name}' must be a FieldDescriptor, "
                    f"got {type(field).__name__}.",
                    {"table_name": self.name, "field_name": field_name},
                )
        if fields and self.pk not in fields:
            raise SchemaError(
                f"Primary key '{self.pk}' is not specified in the schema of table '{self.name}'.",
                {"table_name": self.name, "pk": self.pk},
            )

        logger.debug(f"Resolved {len(fields)} fields for table '{self.name}'")
        return fields

    @cached_property
    def compound_indexes(self) -> dict[str, tuple[str, ...]]:
        for index_name, index_fields in self._compound_source.items():
            if len(index_fields) < 2:
                raise SchemaError(
                    f"Compound index '{index_name}' on '{self.name}' needs at least two fields.",
                    {"table_name": self.name, "index_name": index_name},
                )
            for field_name in index_fields:
                self.assert_field(field_name)
        return dict(self._compound_source)

    @cached_property
    def validator(self) -> SchemaValidator:
        return SchemaValidator(self.name, self.fields)

    @property
    def indexed_fields(self) -> list[str]:
        """Fields with a secondary index (``index`` or ``unique``), pk excluded."""
        return [
            name for name, field in self.fields.items() if field.indexed and name != self.pk
        ]

    @property
    def unique_fields(self) -> list[str]:
        return self.meta_fields("unique")

    @property
    def secondary_indexes(self) -> dict[str, tuple[str, ...]]:
        """Every index to create, index name -> fields, in declaration order."""
        indexes: dict[str, tuple[str, ...]] = {name: (name,) for name in self.indexed_fields}
        indexes.update(self.compound_indexes)
        return indexes

    def meta_fields(self, key: str) -> list[str]:
        """Names of fields whose descriptor flag ``key`` is set."""
        return [name for name, field in self.fields.items() if getattr(field, key, False)]

    def has_field(self, field_name: str) -> bool:
        return field_name in self.fields

    def assert_field(self, field_name: str) -> None:
        if not self.has_field(field_name):
            raise FieldNotFoundError(field_name, self.name, list(self.fields))

    def get_field(self, field_name: str) -> FieldDescriptor:
        self.assert_field(field_name)
        return self.fields[field_name]

    def has_index(self, index_name: str) -> bool:
        return index_name == self.pk or index_name in self.secondary_indexes

    def index_fields(self, index_name: str) -> tuple[str, ...]:
        """Fields covered by an index (a single field for simple indexes)."""
        if index_name == self.pk:
            return (self.pk,)
        return self.secondary_indexes[index_name]

    def index_names(self) -> list[str]:
        return [self.pk, *self.secondary_indexes]

    def describe_indexes(self) -> list[IndexInfo]:
        return [
            IndexInfo(name=name, fields=list(fields), compound=name in self.compound_indexes)
            for name, fields in self.secondary_indexes.items()
        ]

    def __repr__(self) -> str:
        return f"TableDescriptor(name={self.name!r}, pk={self.pk!r})"
