"""docrel - Tables and Relations over JSON Documents.

Declare tables with validated schemas, relate them (has_one, belongs_to,
has_many, belongs_to_many) and compose queries that embed related rows.
Rows are stored as JSON documents in PostgreSQL (JSONB) or SQLite.

Example:
    from docrel import DatabaseConnection, Environment, base_schema, belongs_to_many, string

    env = Environment()
    users = env.create_table(
        "user",
        fields=lambda: {**base_schema(), "name": string(required=True)},
        relations=lambda: {
            "following": belongs_to_many(
                (following.link_to(users, "followerId"), following.link_to(users, "followeeId"))
            ),
        },
    )
    following = env.create_table(
        "following",
        fields=lambda: {
            **base_schema(),
            "followerId": users.get_foreign_key(many_to_many=True),
            "followeeId": users.get_foreign_key(many_to_many=True),
        },
    )

    db = DatabaseConnection("sqlite:///./app.db")
    db.sync(env)
    db.run(users.create_relation("following", alice_id, bob_id))
    alice = db.run(users.with_join(users.get(alice_id), {"following": True}))
"""

from docrel.core.connection import DatabaseConnection
from docrel.core.environment import Environment
from docrel.core.types import (
    ConflictStrategy,
    FieldInfo,
    IndexInfo,
    RelationInfo,
    RelationType,
    SchemaInfo,
    TableInfo,
    WriteResult,
)
from docrel.exceptions import (
    ConnectionError,
    DocrelError,
    FieldNotFoundError,
    IndexNotFoundError,
    InvalidLinkError,
    NonExistenceError,
    QueryError,
    SchemaError,
    TableAlreadyExistsError,
    TableNotFoundError,
    UniquenessConflictError,
    UnknownRelationError,
    ValidationError,
)
from docrel.query import (
    Expr,
    Include,
    RelationOptions,
    asc,
    branch,
    desc,
    do,
    error,
    expr,
)
from docrel.relations import (
    Relation,
    RelationRegistry,
    belongs_to,
    belongs_to_many,
    has_many,
    has_one,
)
from docrel.schema import (
    Endpoint,
    FieldDescriptor,
    Link,
    TableDescriptor,
    array,
    base_schema,
    boolean,
    document,
    integer,
    number,
    string,
    timestamp,
)
from docrel.table import Table

__version__ = "0.1.0"

__all__ = [
    # Main classes
    "DatabaseConnection",
    "Environment",
    "Table",
    # Schema
    "FieldDescriptor",
    "TableDescriptor",
    "Endpoint",
    "Link",
    "base_schema",
    "string",
    "integer",
    "number",
    "boolean",
    "timestamp",
    "document",
    "array",
    # Relations
    "Relation",
    "RelationRegistry",
    "RelationOptions",
    "Include",
    "has_one",
    "belongs_to",
    "has_many",
    "belongs_to_many",
    # Expressions
    "Expr",
    "expr",
    "branch",
    "do",
    "error",
    "asc",
    "desc",
    # Types
    "ConflictStrategy",
    "RelationType",
    "WriteResult",
    "FieldInfo",
    "IndexInfo",
    "RelationInfo",
    "TableInfo",
    "SchemaInfo",
    # Exceptions
    "DocrelError",
    "ConnectionError",
    "SchemaError",
    "FieldNotFoundError",
    "TableNotFoundError",
    "TableAlreadyExistsError",
    "InvalidLinkError",
    "UnknownRelationError",
    "ValidationError",
    "UniquenessConflictError",
    "QueryError",
    "NonExistenceError",
    "IndexNotFoundError",
]
