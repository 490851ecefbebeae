"""Links: validated (table, field) -> (table, field) pairings.

A link is the schema-level shape of a foreign key. ``left`` holds the
referencing field (the foreign key, or one side of a join table) and
``right`` the referenced field, usually the target's primary key.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from docrel.exceptions import InvalidLinkError

if TYPE_CHECKING:
    from docrel.table import Table


@dataclass(frozen=True)
class Endpoint:
    """One side of a link."""

    table: Table
    field: str

    def __str__(self) -> str:
        return f"{self.table.name}.{self.field}"


def _coerce_endpoint(side: str, value: Any) -> Endpoint:
    if isinstance(value, Endpoint):
        endpoint = value
    elif isinstance(value, Mapping):
        endpoint = Endpoint(value.get("table"), value.get("field"))  # type: ignore[arg-type]
    elif isinstance(value, tuple) and len(value) == 2:
        endpoint = Endpoint(*value)
    else:
        raise InvalidLinkError(f"{side} endpoint must be a (table, field) pair, got {value!r}.")

    table, field = endpoint.table, endpoint.field
    if not hasattr(table, "has_field"):
        raise InvalidLinkError(
            f"{side} endpoint does not reference a table.", {"field": field}
        )
    if not isinstance(field, str) or not field:
        raise InvalidLinkError(
            f"{side} endpoint of table '{table.name}' has no field name.",
            {"table": table.name, "field": field},
        )
    if not table.has_field(field):
        raise InvalidLinkError(
            f"Field '{field}' is unspecified in table '{table.name}'. "
            f"Declare it in the table schema before linking to it.",
            {"table": table.name, "field": field},
        )
    return endpoint


@dataclass(frozen=True)
class Link:
    """Immutable pairing of two existing fields."""

    left: Endpoint
    right: Endpoint

    def __post_init__(self) -> None:
        object.__setattr__(self, "left", _coerce_endpoint("left", self.left))
        object.__setattr__(self, "right", _coerce_endpoint("right", self.right))
        table, field = self.right.table, self.right.field
        if field != table.pk and not table.get_field(field).indexed:
            raise InvalidLinkError(
                f"Field '{field}' of table '{table.name}' is referenced by a link "
                f"but is not indexed. Declare it with index=True or unique=True.",
                {"table": table.name, "field": field},
            )

    @classmethod
    def create(cls, left: Any, right: Any) -> Link:
        """Build a link from endpoints, mappings or (table, field) tuples.

        Raises:
            InvalidLinkError: If either endpoint does not name an existing field,
                or the referenced field is neither the primary key nor indexed
        """
        return cls(left, right)

    def __str__(self) -> str:
        return f"{self.left} -> {self.right}"
