"""Schema declarations: fields, table descriptors and links."""

from docrel.schema.descriptor import TableDescriptor
from docrel.schema.fields import (
    FieldDescriptor,
    SchemaValidator,
    array,
    base_schema,
    boolean,
    document,
    integer,
    number,
    string,
    timestamp,
)
from docrel.schema.link import Endpoint, Link

__all__ = [
    "Endpoint",
    "FieldDescriptor",
    "Link",
    "SchemaValidator",
    "TableDescriptor",
    "array",
    "base_schema",
    "boolean",
    "document",
    "integer",
    "number",
    "string",
    "timestamp",
]
