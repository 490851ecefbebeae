"""Options accepted by relation queries."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from docrel.query.expr import Expr, expr

Transform = Callable[[Expr], Expr]


@dataclass(frozen=True)
class RelationOptions:
    """Per-relation query options.

    Attributes:
        apply: Transform applied to the candidate rows before cardinality
            coercion (filter, order_by, limit...). For many-to-many
            relations it runs on the join-table rows.
    """

    apply: Transform | None = None

    @classmethod
    def parse(cls, options: RelationOptions | Mapping[str, Any] | None) -> RelationOptions:
        """Accept a RelationOptions, a ``{"apply": fn}`` / ``{"_apply": fn}`` dict, or None."""
        if options is None:
            return cls()
        if isinstance(options, RelationOptions):
            return options
        apply = options.get("apply", options.get("_apply"))
        return cls(apply=apply)

    def transform(self, query: Expr) -> Expr:
        return expr(self.apply(query)) if self.apply is not None else query
