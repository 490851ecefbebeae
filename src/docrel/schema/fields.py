"""Field descriptors and schema validation.

A table schema is a mapping of field name to ``FieldDescriptor``. Validation
and default generation are delegated to pydantic: every schema is compiled
into a dynamic pydantic model, and validated rows are dumped in JSON mode so
they can be stored as documents unchanged.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Annotated, Any
from uuid import uuid4

import pydantic
from pydantic import ConfigDict, Field, TypeAdapter, create_model

from docrel.core.types import FieldInfo
from docrel.exceptions import ValidationError


class _Missing:
    """Sentinel for 'no default declared' (None is a valid default)."""

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def generate_uuid() -> str:
    """Generate a new UUID as string."""
    return str(uuid4())


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class FieldDescriptor:
    """Declarative description of one field of a table.

    Attributes:
        type: Python type (or typing annotation) of the value
        default: Static default, ``MISSING`` when there is none
        default_factory: Zero-argument callable producing a default
        required: Whether the field must be supplied
        nullable: Whether an explicit ``None`` is accepted
        index: Whether a secondary index is maintained for the field
        unique: Whether values must be unique across rows (implies an index)
        max_length: Maximum length for string values
        description: Human-readable description
    """

    type: Any = Any
    default: Any = MISSING
    default_factory: Callable[[], Any] | None = None
    required: bool = False
    nullable: bool = False
    index: bool = False
    unique: bool = False
    max_length: int | None = None
    description: str | None = None

    @property
    def has_default(self) -> bool:
        return self.default is not MISSING or self.default_factory is not None

    @property
    def indexed(self) -> bool:
        return self.index or self.unique

    @property
    def type_name(self) -> str:
        return getattr(self.type, "__name__", str(self.type))

    def replace(self, **changes: Any) -> FieldDescriptor:
        """Return a copy with some attributes changed."""
        return replace(self, **changes)

    def as_foreign_key(self, many_to_many: bool = False) -> FieldDescriptor:
        """Derive the descriptor of a field that references this one.

        Args:
            many_to_many: Join-table keys are required; plain foreign keys
                are nullable and default to None.

        Returns:
            An indexed descriptor of the same type, without this field's
            default generation or uniqueness.
        """
        if many_to_many:
            return self.replace(
                default=MISSING,
                default_factory=None,
                required=True,
                nullable=False,
                unique=False,
                index=True,
            )
        return self.replace(
            default=None,
            default_factory=None,
            required=False,
            nullable=True,
            unique=False,
            index=True,
        )

    def annotation(self) -> Any:
        """Pydantic annotation for the value (constraints included)."""
        annotation = self.type
        if self.nullable:
            annotation = annotation | None
        if self.max_length is not None:
            annotation = Annotated[annotation, Field(max_length=self.max_length)]
        return annotation

    def to_pydantic(self) -> tuple[Any, Any]:
        """Return the ``(annotation, FieldInfo)`` pair for ``create_model``."""
        if self.required:
            return self.annotation(), Field(..., description=self.description)
        if self.default_factory is not None:
            return self.annotation(), Field(
                default_factory=self.default_factory, description=self.description
            )
        default = None if self.default is MISSING else self.default
        return self.annotation(), Field(default=default, description=self.description)

    def info(self, name: str) -> FieldInfo:
        return FieldInfo(
            name=name,
            type=self.type_name,
            required=self.required,
            nullable=self.nullable,
            unique=self.unique,
            indexed=self.indexed,
            default=None if self.default is MISSING else self.default,
            description=self.description,
        )


def string(**options: Any) -> FieldDescriptor:
    return FieldDescriptor(type=str, **options)


def integer(**options: Any) -> FieldDescriptor:
    return FieldDescriptor(type=int, **options)


def number(**options: Any) -> FieldDescriptor:
    return FieldDescriptor(type=float, **options)


def boolean(**options: Any) -> FieldDescriptor:
    return FieldDescriptor(type=bool, **options)


def timestamp(**options: Any) -> FieldDescriptor:
    return FieldDescriptor(type=datetime, **options)


def document(**options: Any) -> FieldDescriptor:
    return FieldDescriptor(type=dict[str, Any], **options)


def array(**options: Any) -> FieldDescriptor:
    return FieldDescriptor(type=list[Any], **options)


def base_schema() -> dict[str, FieldDescriptor]:
    """Fields every conventional table starts from.

    ``id`` is a generated UUID string; ``createdAt`` and ``updatedAt`` default
    to the current UTC time. ``Table.update`` touches ``updatedAt``.
    """
    return {
        "id": string(
            max_length=36, default_factory=generate_uuid, index=True, description="primary key"
        ),
        "createdAt": timestamp(default_factory=utc_now, index=True, description="time of creation"),
        "updatedAt": timestamp(default_factory=utc_now, index=True, description="time of update"),
    }


def _field_errors(exc: pydantic.ValidationError) -> dict[str, str]:
    errors: dict[str, str] = {}
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "__root__"
        errors.setdefault(location, error["msg"])
    return errors


def _validation_error(table_name: str, exc: pydantic.ValidationError) -> ValidationError:
    field_errors = _field_errors(exc)
    details = "; ".join(f"{name}: {msg}" for name, msg in field_errors.items())
    return ValidationError(f"Invalid data for table '{table_name}': {details}", field_errors)


class SchemaValidator:
    """Validates rows against a table's fields.

    Unknown fields are rejected. Optional fields without a default that were
    not supplied stay absent from the result instead of becoming None.
    """

    def __init__(self, table_name: str, fields: Mapping[str, FieldDescriptor]) -> None:
        self._table_name = table_name
        self._fields = dict(fields)
        self._model = create_model(  # type: ignore[call-overload]
            f"{table_name.title().replace('_', '')}Row",
            __config__=ConfigDict(extra="forbid", arbitrary_types_allowed=True),
            **{name: field.to_pydantic() for name, field in self._fields.items()},
        )
        self._adapters: dict[str, TypeAdapter[Any]] = {}

    def validate(self, data: Mapping[str, Any] | None) -> bool:
        try:
            self.attempt(data)
        except ValidationError:
            return False
        return True

    def attempt(self, data: Mapping[str, Any] | None) -> dict[str, Any]:
        """Validate a full row, applying defaults.

        Args:
            data: Row data; None is treated as an empty row

        Returns:
            The validated row as JSON-compatible values

        Raises:
            ValidationError: If a required field is missing, a type does not
                match, or an unknown field is supplied
        """
        try:
            model = self._model.model_validate(dict(data or {}))
        except pydantic.ValidationError as e:
            raise _validation_error(self._table_name, e) from e

        dumped = model.model_dump(mode="json")
        return {
            name: value
            for name, value in dumped.items()
            if name in model.model_fields_set or self._fields[name].has_default
        }

    def attempt_partial(self, patch: Mapping[str, Any]) -> dict[str, Any]:
        """Validate only the supplied fields (for updates).

        Args:
            patch: Field values to validate

        Returns:
            The patch with values converted to JSON-compatible form
        """
        unknown = [name for name in patch if name not in self._fields]
        if unknown:
            field_errors = {name: "Extra inputs are not permitted" for name in unknown}
            raise ValidationError(
                f"Invalid data for table '{self._table_name}': unknown fields {', '.join(unknown)}",
                field_errors,
            )

        result: dict[str, Any] = {}
        for name, value in patch.items():
            adapter = self._adapter(name)
            try:
                validated = adapter.validate_python(value)
            except pydantic.ValidationError as e:
                field_errors = {name: error["msg"] for error in e.errors()}
                raise ValidationError(
                    f"Invalid data for table '{self._table_name}': {name}: {field_errors[name]}",
                    field_errors,
                ) from e
            result[name] = adapter.dump_python(validated, mode="json")
        return result

    def _adapter(self, name: str) -> TypeAdapter[Any]:
        if name not in self._adapters:
            self._adapters[name] = TypeAdapter(self._fields[name].annotation())
        return self._adapters[name]
