"""Query layer: lazy expressions, physical storage and relation embedding."""

from docrel.query.expr import (
    Context,
    Expr,
    Ordering,
    Selection,
    SingleSelection,
    Stream,
    asc,
    branch,
    desc,
    do,
    error,
    expr,
)
from docrel.query.join import Include, parse_inclusion, with_join
from docrel.query.options import RelationOptions
from docrel.query.storage import TableStorage

__all__ = [
    "Context",
    "Expr",
    "Include",
    "Ordering",
    "RelationOptions",
    "Selection",
    "SingleSelection",
    "Stream",
    "TableStorage",
    "asc",
    "branch",
    "desc",
    "do",
    "error",
    "expr",
    "parse_inclusion",
    "with_join",
]
