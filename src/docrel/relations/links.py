"""Foreign-key relations: has_one, belongs_to and has_many.

All three are backed by a single field holding the referenced value. They
differ in which side owns that field and in the cardinality of the result:

    has_one(link)     FK on link.left.table, 0 or 1 related row
    belongs_to(link)  FK on this table (link.left.table), 0 or 1 related row
    has_many(link)    FK on link.left.table, 0..N related rows
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from docrel.core.types import RelationType
from docrel.query.expr import Expr, do, expr
from docrel.query.options import RelationOptions
from docrel.relations.base import (
    Relation,
    coerce_many,
    coerce_one,
    endpoint_key,
    field_of,
)
from docrel.schema.link import Endpoint, Link

if TYPE_CHECKING:
    from docrel.table import Table


def lookup(
    table: Table,
    index: str,
    key: Any,
    options: RelationOptions | Mapping[str, Any] | None = None,
) -> Expr:
    """Rows of ``table`` whose ``index`` equals ``key``.

    A None key yields an empty sequence without querying the index.
    """
    parsed = RelationOptions.parse(options)

    def build(value: Any) -> Expr:
        if value is None:
            return expr([])
        return parsed.transform(table.query().get_all(value, index=index))

    return do(key, build)


def _set_reference(
    owner: Endpoint, owner_pk: Any, referenced: Endpoint, referenced_pk: Any
) -> Expr:
    """Point ``owner``'s field at the referenced row's ``referenced.field`` value."""
    return owner.table.update(
        owner_pk, {owner.field: referenced.table.get(referenced_pk)[referenced.field]}
    )


def _references(
    owner: Endpoint, owner_pk: Any, referenced: Endpoint, referenced_pk: Any
) -> Expr:
    """Whether the owner row's field is set and equals the referenced row's value."""

    def compare(referenced_row: Any) -> Any:
        def check(owner_row: Any) -> bool:
            value = field_of(owner_row, owner.field)
            if value is None or referenced_row is None:
                return False
            return value == referenced_row.get(referenced.field)

        return do(owner.table.get(owner_pk), check)

    return do(referenced.table.get(referenced_pk), compare)


def _check_link(link: Any) -> Link:
    if not isinstance(link, Link):
        raise TypeError(f"Expected a Link, got {type(link).__name__}.")
    return link


def has_one(link: Link) -> Relation:
    """One related row on ``link.left.table`` pointing back at this row.

    Args:
        link: ``left`` is the foreign key on the related table, ``right``
            the referenced field of this table

    Returns:
        A has_one relation; ``create(self_pk, other_pk)`` sets the foreign
        key of row ``other_pk`` on the related table
    """
    link = _check_link(link)
    left, right = link.left, link.right

    return Relation(
        type=RelationType.HAS_ONE,
        links=(link,),
        target_table=left.table,
        key=endpoint_key(right),
        query=lambda key, options=None: lookup(left.table, left.field, key, options),
        coerce=coerce_one,
        create=lambda one_pk, other_pk: _set_reference(left, other_pk, right, one_pk),
        remove=lambda one_pk, other_pk: left.table.update(other_pk, {left.field: None}),
        has=lambda one_pk, other_pk: _references(left, other_pk, right, one_pk),
    )


def belongs_to(link: Link) -> Relation:
    """The row this table's foreign key points at.

    Args:
        link: ``left`` is the foreign key on this table, ``right`` the
            referenced field of the target table

    Returns:
        A belongs_to relation; ``create(self_pk, other_pk)`` sets this
        row's own foreign key
    """
    link = _check_link(link)
    left, right = link.left, link.right

    return Relation(
        type=RelationType.BELONGS_TO,
        links=(link,),
        target_table=right.table,
        key=endpoint_key(left),
        query=lambda key, options=None: lookup(right.table, right.field, key, options),
        coerce=coerce_one,
        create=lambda one_pk, other_pk: _set_reference(left, one_pk, right, other_pk),
        remove=lambda one_pk, other_pk=None: left.table.update(one_pk, {left.field: None}),
        has=lambda one_pk, other_pk: _references(left, one_pk, right, other_pk),
    )


def has_many(link: Link) -> Relation:
    """All rows on ``link.left.table`` pointing back at this row."""
    link = _check_link(link)
    left, right = link.left, link.right

    return Relation(
        type=RelationType.HAS_MANY,
        links=(link,),
        target_table=left.table,
        key=endpoint_key(right),
        query=lambda key, options=None: lookup(left.table, left.field, key, options),
        coerce=coerce_many,
        create=lambda one_pk, other_pk: _set_reference(left, other_pk, right, one_pk),
        remove=lambda one_pk, other_pk: left.table.update(other_pk, {left.field: None}),
        has=lambda one_pk, other_pk: _references(left, other_pk, right, one_pk),
    )
