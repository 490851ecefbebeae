"""Embedding related rows into query results.

An inclusion spec names the relations to embed, and how deep:

    users.with_join(users.get(pk), {
        "posts": {
            "_apply": lambda rows: rows.order_by(desc("createdAt")).limit(5),
            "comments": True,
        },
        "profile": True,
    })

Keys starting with ``_`` are directives for the relation itself; every other
key names a relation of the *related* table, embedded into each related
row. ``Include(apply=..., include={...})`` is the typed equivalent of the dict
form. Specs are parsed into ``Skip | IncludeLeaf | IncludeWithChildren``
before any query is built.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Union

from docrel.exceptions import QueryError
from docrel.query.expr import Expr, expr
from docrel.query.options import RelationOptions, Transform

if TYPE_CHECKING:
    from docrel.table import Table

DIRECTIVES = {"_apply": "apply"}


@dataclass(frozen=True)
class Include:
    """Typed inclusion entry.

    Attributes:
        apply: Transform for the relation's candidate rows
        include: Nested inclusion spec for the related rows
    """

    apply: Transform | None = None
    include: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class Skip:
    pass


@dataclass(frozen=True)
class IncludeLeaf:
    options: RelationOptions = field(default_factory=RelationOptions)


@dataclass(frozen=True)
class IncludeWithChildren:
    options: RelationOptions
    children: dict[str, Inclusion]


Inclusion = Union[Skip, IncludeLeaf, IncludeWithChildren]


def _entry(options: RelationOptions, children: dict[str, Inclusion]) -> Inclusion:
    if children:
        return IncludeWithChildren(options, children)
    return IncludeLeaf(options)


def parse_entry(value: Any) -> Inclusion:
    """Parse the spec of one relation.

    Raises:
        QueryError: On an unknown ``_`` directive or an unsupported value
    """
    if isinstance(value, (Skip, IncludeLeaf, IncludeWithChildren)):
        return value
    if value is True:
        return IncludeLeaf()
    if value is None or value is False:
        return Skip()
    if isinstance(value, RelationOptions):
        return IncludeLeaf(value)
    if isinstance(value, Include):
        return _entry(RelationOptions(apply=value.apply), parse_inclusion(value.include))
    if isinstance(value, Mapping):
        unknown = [key for key in value if key.startswith("_") and key not in DIRECTIVES]
        if unknown:
            raise QueryError(
                f"Unknown inclusion directive(s): {', '.join(unknown)}. "
                f"Supported: {', '.join(DIRECTIVES)}"
            )
        options = RelationOptions(
            **{DIRECTIVES[key]: item for key, item in value.items() if key in DIRECTIVES}
        )
        nested = {key: item for key, item in value.items() if not key.startswith("_")}
        return _entry(options, parse_inclusion(nested))
    raise QueryError(
        f"Invalid inclusion entry {value!r}. Use True, a dict or Include(apply=..., include=...)."
    )


def parse_inclusion(
    spec: Mapping[str, Any] | Iterable[str] | str | None,
) -> dict[str, Inclusion]:
    """Parse an inclusion spec into relation name -> entry (skipped entries dropped).

    A relation name or a list of names is shorthand for ``{name: True}``.
    """
    if spec is None:
        return {}
    if isinstance(spec, str):
        spec = {spec: True}
    elif not isinstance(spec, Mapping):
        spec = {name: True for name in spec}

    entries = {name: parse_entry(value) for name, value in spec.items()}
    return {name: entry for name, entry in entries.items() if not isinstance(entry, Skip)}


def validate_inclusion(table: Table, entries: Mapping[str, Inclusion]) -> None:
    """Check every relation name in the spec, recursively.

    Raises:
        UnknownRelationError: For the first name a table does not declare
    """
    for name, entry in entries.items():
        relation = table.get_relation(name)
        if isinstance(entry, IncludeWithChildren):
            validate_inclusion(relation.target_table, entry.children)


def embed_related(table: Table, row_or_pk: Any, name: str, entry: Inclusion) -> Expr:
    """Coerced value of relation ``name`` for one row, with nested relations embedded."""
    relation = table.get_relation(name)
    options = entry.options if isinstance(entry, (IncludeLeaf, IncludeWithChildren)) else None
    value = relation.resolve(row_or_pk, options)
    if isinstance(entry, IncludeWithChildren):
        return _embed(relation.target_table, value, entry.children)
    return value


def _embed(table: Table, query: Expr, entries: Mapping[str, Inclusion]) -> Expr:
    if not entries:
        return query
    return query.merge(
        lambda row: {
            name: embed_related(table, row, name, entry) for name, entry in entries.items()
        }
    )


def with_join(table: Table, query: Any, inclusion: Any) -> Expr:
    """Embed the relations named by ``inclusion`` into ``query``'s rows.

    Args:
        table: Table the rows of ``query`` belong to
        query: A single-row or multi-row expression, or a plain row/list/None
        inclusion: Inclusion spec (see module docstring)

    Returns:
        An expression evaluating to the row(s) with related values merged
        in. A None row stays None.

    Raises:
        UnknownRelationError: If any relation in the spec is not declared;
            raised before the query is built
    """
    entries = parse_inclusion(inclusion)
    validate_inclusion(table, entries)
    return _embed(table, expr(query), entries)
