"""Physical storage of document tables.

Every declared table is backed by one SQL table holding the primary key in
its own column and the whole row as a JSON document in ``data``:

    CREATE TABLE "user" ("id" VARCHAR(255) PRIMARY KEY, "data" JSON NOT NULL)

Secondary indexes are expression indexes over the JSON extraction of a
field. Query predicates render the same extraction text as the index DDL so
the database can use the index.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Connection,
    Float,
    MetaData,
    String,
    Table,
    Text,
    and_,
    cast,
    delete,
    false,
    func,
    insert,
    inspect,
    literal_column,
    or_,
    select,
    text,
    true,
    update,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql.elements import ColumnElement

logger = logging.getLogger(__name__)

# Dialect-aware JSON type: JSONB on PostgreSQL, JSON on SQLite
JSONType = JSONB().with_variant(JSON(), "sqlite")


def _quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _quote_identifier(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


class TableStorage:
    """SQL table backing one declared table."""

    def __init__(self, name: str, pk: str) -> None:
        """Initialize storage.

        Args:
            name: Physical table name
            pk: Primary key field name (also the key column name)
        """
        self.name = name
        self.pk = pk
        self.metadata = MetaData()
        self.table = Table(
            name,
            self.metadata,
            Column(pk, String(255), primary_key=True),
            Column("data", JSONType, nullable=False),
        )

    @property
    def key_column(self) -> Any:
        return self.table.c[self.pk]

    def index_name(self, index: str) -> str:
        return f"ix_{self.name}_{index}"

    # === Expressions ===

    def extract(self, field: str, dialect: str) -> Any:
        """SQL expression reading ``field`` out of the document."""
        if field == self.pk:
            return self.key_column
        if dialect == "postgresql":
            return self.table.c.data.op("->>", return_type=Text)(
                literal_column(_quote_literal(field))
            )
        return func.json_extract(self.table.c.data, literal_column(_quote_literal(f'$."{field}"')))

    def _typed(self, field: str, sample: Any, dialect: str) -> tuple[Any, Any]:
        """Comparable expression for ``field`` and the value converted for it.

        SQLite's json_extract returns native values; PostgreSQL's ``->>``
        returns text, so non-string keys are compared through a cast.
        """
        column = self.extract(field, dialect)
        if field == self.pk:
            return column, str(sample)
        if dialect != "postgresql" or isinstance(sample, str):
            return column, sample
        if isinstance(sample, bool):
            return cast(column, Boolean), sample
        if isinstance(sample, int):
            return cast(column, BigInteger), sample
        if isinstance(sample, float):
            return cast(column, Float), sample
        return column, str(sample)

    def equals(self, field: str, value: Any, dialect: str) -> ColumnElement[bool]:
        column, converted = self._typed(field, value, dialect)
        return column == converted

    def one_of(self, field: str, values: Sequence[Any], dialect: str) -> ColumnElement[bool]:
        if not values:
            return false()
        kinds = {type(value) for value in values}
        if len(kinds) == 1:
            column, _ = self._typed(field, values[0], dialect)
            return column.in_([self._typed(field, value, dialect)[1] for value in values])
        return or_(*(self.equals(field, value, dialect) for value in values))

    def compound_one_of(
        self, fields: Sequence[str], keys: Sequence[Sequence[Any]], dialect: str
    ) -> ColumnElement[bool]:
        if not keys:
            return false()
        return or_(
            *(
                and_(*(self.equals(field, value, dialect) for field, value in zip(fields, key)))
                for key in keys
            )
        )

    def all_of(self, clauses: Sequence[ColumnElement[bool]]) -> ColumnElement[bool]:
        return and_(*clauses) if clauses else true()

    def sort_key(self, field: str, dialect: str, python_type: Any = None) -> Any:
        """Expression to order by; numeric fields sort numerically on PostgreSQL."""
        column = self.extract(field, dialect)
        if dialect == "postgresql" and field != self.pk:
            if python_type is int:
                return cast(column, BigInteger)
            if python_type is float:
                return cast(column, Float)
        return column

    def present(self, field: str, dialect: str) -> ColumnElement[bool]:
        """Field exists and is not null (absent and null are both missing)."""
        return self.extract(field, dialect).is_not(None)

    # === Reads ===

    def fetch_one(self, conn: Connection, pk_value: Any) -> dict[str, Any] | None:
        row = conn.execute(
            select(self.table.c.data).where(self.key_column == str(pk_value))
        ).first()
        return row.data if row is not None else None

    def fetch_many(
        self,
        conn: Connection,
        where: Iterable[Any] = (),
        order_by: Iterable[Any] = (),
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        statement = select(self.table.c.data).where(*where).order_by(*order_by)
        if limit is not None:
            statement = statement.limit(limit)
        if offset is not None:
            statement = statement.offset(offset)
        return [row.data for row in conn.execute(statement)]

    # === Writes ===

    def insert_row(self, conn: Connection, document: dict[str, Any]) -> None:
        conn.execute(insert(self.table).values({self.pk: str(document[self.pk]), "data": document}))

    def replace_row(self, conn: Connection, pk_value: Any, document: dict[str, Any]) -> None:
        conn.execute(
            update(self.table).where(self.key_column == str(pk_value)).values(data=document)
        )

    def delete_rows(self, conn: Connection, pk_values: Sequence[Any]) -> int:
        if not pk_values:
            return 0
        result = conn.execute(
            delete(self.table).where(self.key_column.in_([str(pk) for pk in pk_values]))
        )
        return result.rowcount

    # === DDL ===

    def table_exists(self, conn: Connection) -> bool:
        return inspect(conn).has_table(self.name)

    def create_table(self, conn: Connection) -> None:
        self.table.create(conn)
        logger.info(f"Created table '{self.name}'")

    def drop_table(self, conn: Connection) -> None:
        self.table.drop(conn, checkfirst=True)

    def index_exists(self, conn: Connection, index: str) -> bool:
        name = self.index_name(index)
        if conn.dialect.name == "postgresql":
            result = conn.execute(
                text("SELECT indexname FROM pg_indexes WHERE indexname = :name"),
                {"name": name},
            )
        else:
            result = conn.execute(
                text("SELECT name FROM sqlite_master WHERE type = 'index' AND name = :name"),
                {"name": name},
            )
        return result.fetchone() is not None

    def _index_expression(self, field: str, dialect: str) -> str:
        if field == self.pk:
            return _quote_identifier(self.pk)
        if dialect == "postgresql":
            return f"(data ->> {_quote_literal(field)})"
        path = _quote_literal('$."' + field + '"')
        return f"json_extract(data, {path})"

    def create_index(self, conn: Connection, index: str, fields: Sequence[str]) -> None:
        dialect = conn.dialect.name
        expressions = ", ".join(self._index_expression(field, dialect) for field in fields)
        conn.execute(
            text(
                f"CREATE INDEX {_quote_identifier(self.index_name(index))} "
                f"ON {_quote_identifier(self.name)} ({expressions})"
            )
        )
        logger.info(f"Created index '{index}' on '{self.name}' ({', '.join(fields)})")
