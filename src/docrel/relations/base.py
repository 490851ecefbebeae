"""The uniform relation record and helpers shared by every variant."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from docrel.core.types import RelationInfo, RelationType
from docrel.query.expr import Apply, Expr, as_list, first_or_none
from docrel.query.options import RelationOptions

if TYPE_CHECKING:
    from docrel.schema.link import Endpoint, Link
    from docrel.table import Table


@dataclass(frozen=True)
class Relation:
    """A relation between tables, as a record of closures.

    Built by ``has_one``, ``belongs_to``, ``has_many`` and
    ``belongs_to_many``. Every variant exposes the same operations:

    - ``key(row_or_pk)``: the value this relation is looked up by
    - ``query(key, options)``: candidate related rows (empty for a None key)
    - ``coerce(query)``: reduce candidates to the promised cardinality
    - ``create/remove/has(one_pk, other_pk)``: expressions maintaining or
      checking one edge
    """

    type: RelationType
    links: tuple[Link, ...]
    target_table: Table
    key: Callable[[Any], Any]
    query: Callable[..., Expr]
    coerce: Callable[[Any], Expr]
    create: Callable[[Any, Any], Expr]
    remove: Callable[[Any, Any], Expr]
    has: Callable[[Any, Any], Expr]
    index: str | None = None

    @property
    def link(self) -> Link:
        return self.links[0]

    def resolve(
        self, row_or_pk: Any, options: RelationOptions | Mapping[str, Any] | None = None
    ) -> Expr:
        """Coerced related value(s) for one row or primary key."""
        return self.coerce(self.query(self.key(row_or_pk), options))

    def describe(self, name: str) -> RelationInfo:
        return RelationInfo(
            name=name,
            relation_type=self.type.value,
            target_table=self.target_table.name,
            links=[str(link) for link in self.links],
            index=self.index,
        )


def coerce_one(query: Any) -> Expr:
    """First row or None; single rows and None pass through unchanged."""
    return Apply(first_or_none, query)


def coerce_many(query: Any) -> Expr:
    return Apply(as_list, query)


def endpoint_key(endpoint: Endpoint) -> Callable[[Any], Any]:
    """Build ``key(row_or_pk)`` reading ``endpoint.field`` of a row.

    A concrete row (mapping) yields its value directly, a row expression
    yields a deferred lookup, and a primary key is used as is when the field
    is the primary key or else resolved through the endpoint's table.
    """
    table, field_name = endpoint.table, endpoint.field

    def key(row_or_pk: Any) -> Any:
        if row_or_pk is None:
            return None
        if isinstance(row_or_pk, Mapping):
            return row_or_pk.get(field_name)
        if isinstance(row_or_pk, Expr):
            return row_or_pk[field_name].default(None)
        if field_name == table.pk:
            return row_or_pk
        return table.get(row_or_pk)[field_name].default(None)

    return key


def field_of(row: Any, field_name: str) -> Any:
    """Value of ``field_name`` on a concrete row (None when row or field is missing)."""
    if row is None:
        return None
    return row.get(field_name)
