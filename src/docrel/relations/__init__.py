"""Relations between tables."""

from docrel.query.options import RelationOptions
from docrel.relations.base import Relation, coerce_many, coerce_one
from docrel.relations.links import belongs_to, has_many, has_one
from docrel.relations.many_to_many import belongs_to_many
from docrel.relations.registry import RelationRegistry

__all__ = [
    "Relation",
    "RelationOptions",
    "RelationRegistry",
    "belongs_to",
    "belongs_to_many",
    "coerce_many",
    "coerce_one",
    "has_many",
    "has_one",
]
