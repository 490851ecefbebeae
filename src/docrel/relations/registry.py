"""Per-table registry of named relations."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from functools import cached_property
from typing import TYPE_CHECKING, Union

from docrel.exceptions import SchemaError, UnknownRelationError
from docrel.relations.base import Relation

if TYPE_CHECKING:
    from docrel.table import Table

logger = logging.getLogger(__name__)

RelationsSource = Union[Mapping[str, Relation], Callable[[], Mapping[str, Relation]], None]


class RelationRegistry:
    """Name -> Relation lookup for one table.

    Relations usually reference tables declared later in the same module, so
    they are declared behind a zero-argument callable. It is evaluated on
    first lookup and the result is kept for the lifetime of the registry.
    """

    def __init__(self, table_name: str, relations: RelationsSource = None) -> None:
        self.table_name = table_name
        self._source = relations

    @cached_property
    def relations(self) -> dict[str, Relation]:
        source = self._source() if callable(self._source) else self._source
        relations = dict(source or {})
        for name, relation in relations.items():
            if not isinstance(relation, Relation):
                raise SchemaError(
                    f"Relation '{self.table_name}.{name}' must be built with has_one, "
                    f"belongs_to, has_many or belongs_to_many, got {type(relation).__name__}.",
                    {"table_name": self.table_name, "relation_name": name},
                )
        logger.debug(f"Resolved {len(relations)} relations for table '{self.table_name}'")
        return relations

    def names(self) -> list[str]:
        return list(self.relations)

    def has(self, name: str) -> bool:
        return name in self.relations

    def get(self, name: str) -> Relation:
        """Look up a relation by name.

        Raises:
            UnknownRelationError: If no relation of that name is declared
        """
        relation = self.relations.get(name)
        if relation is None:
            raise UnknownRelationError(name, self.table_name, self.names())
        return relation

    def resolve_path(self, path: str) -> tuple[Table, Relation]:
        """Follow a dotted relation path (``"author.profile"``).

        Returns:
            The table the last relation points to, and that relation
        """
        *parents, last = path.split(".")
        registry = self
        for name in parents:
            registry = registry.get(name).target_table.registry
        relation = registry.get(last)
        return relation.target_table, relation

    def __contains__(self, name: object) -> bool:
        return name in self.relations

    def __len__(self) -> int:
        return len(self.relations)
