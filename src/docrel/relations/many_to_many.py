"""Many-to-many relations backed by rows of a join table."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from functools import reduce
from typing import Any

from docrel.core.types import RelationType, WriteResult
from docrel.exceptions import InvalidLinkError
from docrel.query.expr import Apply, Expr, branch, dedupe, do, expr
from docrel.query.options import RelationOptions
from docrel.relations.base import Relation, coerce_many, endpoint_key
from docrel.schema.link import Link

logger = logging.getLogger(__name__)


def _order_like(
    rows: list[dict[str, Any]], field: str, ids: Sequence[Any]
) -> list[dict[str, Any]]:
    """Order fetched rows by the position of their ``field`` value in ``ids``."""
    position = {value: i for i, value in enumerate(ids)}
    return sorted(rows, key=lambda row: position.get(row.get(field), len(position)))


def _sum_results(results: list[WriteResult]) -> WriteResult:
    return reduce(lambda total, result: total + result, results, WriteResult())


def belongs_to_many(links: Sequence[Link], index: str | None = None) -> Relation:
    """Relate rows of two tables through a join table.

    Args:
        links: ``(link1, link2)``. ``link1`` goes from the join table to this
            table, ``link2`` from the join table to the other table; both
            ``left`` endpoints must be on the same join table.
        index: Optional compound index on the join table over
            ``(link1.left.field, link2.left.field)``, used to look up edges

    Returns:
        A belongs_to_many relation. ``create`` is idempotent and ``create``,
        ``remove`` and ``has`` accept a single other key or a list of them.

    Raises:
        InvalidLinkError: If the links are malformed or ``index`` does not
            cover the two join-table fields
    """
    links = tuple(links)
    if len(links) != 2 or not all(isinstance(link, Link) for link in links):
        raise InvalidLinkError(
            "belongs_to_many expects exactly two links (join -> this, join -> other)."
        )
    link1, link2 = links
    join_table = link1.left.table
    if link2.left.table is not join_table:
        raise InvalidLinkError(
            f"Both links must start from the same join table, got "
            f"'{link1.left.table.name}' and '{link2.left.table.name}'.",
            {"link1": str(link1), "link2": str(link2)},
        )

    this_field, other_field = link1.left.field, link2.left.field
    target_table = link2.right.table

    if index is not None:
        descriptor = join_table.descriptor
        if not descriptor.has_index(index) or descriptor.index_fields(index) != (
            this_field,
            other_field,
        ):
            raise InvalidLinkError(
                f"Index '{index}' on '{join_table.name}' must be a compound index "
                f"over ('{this_field}', '{other_field}').",
                {"table": join_table.name, "index": index},
            )

    def query(key: Any, options: RelationOptions | Mapping[str, Any] | None = None) -> Expr:
        parsed = RelationOptions.parse(options)

        def fetch_targets(ids: list[Any]) -> Expr:
            if not ids:
                return expr([])
            rows = target_table.query().get_all(*ids, index=link2.right.field)
            return Apply(_order_like, rows, link2.right.field, ids)

        def build(value: Any) -> Expr:
            if value is None:
                return expr([])
            join_rows = (
                join_table.query().get_all(value, index=this_field).has_fields(other_field)
            )
            join_rows = parsed.transform(join_rows)
            ids = Apply(dedupe, join_rows.map(lambda row: row[other_field]))
            return do(ids, fetch_targets)

        return do(key, build)

    def query_relation(one_pk: Any, other_pk: Any) -> Expr:
        selection = join_table.query()
        if index is not None:
            if isinstance(other_pk, list):
                return selection.get_all(*((one_pk, pk) for pk in other_pk), index=index)
            return selection.get_all((one_pk, other_pk), index=index)

        selection = selection.get_all(one_pk, index=this_field)
        if isinstance(other_pk, list):
            return selection.filter(lambda row: row.get(other_field) in other_pk)
        return selection.filter({other_field: other_pk})

    def create(one_pk: Any, other_pk: Any) -> Expr:
        if isinstance(other_pk, list):
            return Apply(
                lambda *results: _sum_results(list(results)),
                *(create(one_pk, pk) for pk in other_pk),
            )
        return branch(
            query_relation(one_pk, other_pk).count().gt(0).not_(),
            join_table.insert(join_table.create({this_field: one_pk, other_field: other_pk})),
            Apply(WriteResult),
        )

    def remove(one_pk: Any, other_pk: Any) -> Expr:
        return query_relation(one_pk, other_pk).delete()

    def has(one_pk: Any, other_pk: Any) -> Expr:
        return query_relation(one_pk, other_pk).count().gt(0)

    logger.debug(f"Declared belongs_to_many via '{join_table.name}' ({link1}, {link2})")

    return Relation(
        type=RelationType.BELONGS_TO_MANY,
        links=links,
        target_table=target_table,
        key=endpoint_key(link1.right),
        query=query,
        coerce=coerce_many,
        create=create,
        remove=remove,
        has=has,
        index=index,
    )
