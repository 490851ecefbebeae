"""Table: the public surface tying schema, storage and relations together."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from sqlalchemy import Connection

from docrel.core.types import ConflictStrategy, TableInfo
from docrel.exceptions import IndexNotFoundError, UniquenessConflictError
from docrel.query.expr import (
    Apply,
    DeleteRows,
    Expr,
    Insert,
    Now,
    Selection,
    SingleSelection,
    branch,
    do,
    error,
    expr,
)
from docrel.query.join import (
    IncludeLeaf,
    IncludeWithChildren,
    Skip,
    embed_related,
    parse_entry,
    validate_inclusion,
    with_join,
)
from docrel.query.options import RelationOptions
from docrel.query.storage import TableStorage
from docrel.relations.base import Relation
from docrel.relations.registry import RelationRegistry, RelationsSource
from docrel.schema.descriptor import FieldsSource, TableDescriptor
from docrel.schema.fields import FieldDescriptor, generate_uuid
from docrel.schema.link import Endpoint, Link

logger = logging.getLogger(__name__)


class Table:
    """A declared table.

    Example:
        users = Table(
            "user",
            fields=lambda: {**base_schema(), "name": string(required=True)},
            relations=lambda: {
                "posts": has_many(users.linked_by(posts, "authorId")),
            },
        )

        with db.begin() as conn:
            users.sync(conn)
            users.insert(users.create({"name": "Ada"})).run(conn)

    Every data method returns an expression; nothing runs until the
    expression is passed a connection with ``run(conn)``.
    """

    pk = "id"

    def __init__(
        self,
        name: str,
        *,
        pk: str | None = None,
        fields: FieldsSource = None,
        relations: RelationsSource = None,
        indexes: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        """Initialize table.

        Args:
            name: Table name, also the physical table name
            pk: Primary key field name (defaults to the class attribute ``pk``)
            fields: Field mapping or a thunk returning one
            relations: Relation mapping or a thunk returning one
            indexes: Compound indexes, index name -> ordered field names
        """
        self.name = name
        self.pk = pk or type(self).pk
        self.descriptor = TableDescriptor(name, self.pk, fields, indexes)
        self.registry = RelationRegistry(name, relations)
        self.storage = TableStorage(name, self.pk)

    # === Schema ===

    @property
    def fields(self) -> dict[str, FieldDescriptor]:
        return self.descriptor.fields

    @property
    def relations(self) -> dict[str, Relation]:
        return self.registry.relations

    def meta_fields(self, key: str) -> list[str]:
        return self.descriptor.meta_fields(key)

    def validate(self, data: Mapping[str, Any] | None = None) -> bool:
        return self.descriptor.validator.validate(data)

    def attempt(self, data: Mapping[str, Any] | None = None) -> dict[str, Any]:
        return self.descriptor.validator.attempt(data)

    def create(self, data: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Validate a new row and fill in its defaults.

        Raises:
            ValidationError: If the data does not match the schema
        """
        return self.attempt(data)

    def has_field(self, field_name: str) -> bool:
        return self.descriptor.has_field(field_name)

    def assert_field(self, field_name: str) -> None:
        self.descriptor.assert_field(field_name)

    def get_field(self, field_name: str) -> FieldDescriptor:
        return self.descriptor.get_field(field_name)

    def get_foreign_key(
        self, field_name: str | None = None, many_to_many: bool = False
    ) -> FieldDescriptor:
        """Descriptor for a field referencing ``field_name`` (the primary key by default)."""
        return self.get_field(field_name or self.pk).as_foreign_key(many_to_many)

    def link_to(self, target: Table, field_name: str, index: str | None = None) -> Link:
        """Link this table's ``field_name`` to ``target``'s ``index`` field (its pk by default)."""
        return Link(Endpoint(self, field_name), Endpoint(target, index or target.pk))

    def linked_by(self, source: Table, field_name: str, index: str | None = None) -> Link:
        """Link ``source``'s ``field_name`` to this table."""
        return source.link_to(self, field_name, index=index)

    def generate_key(self) -> str:
        return generate_uuid()

    # === Setup ===

    def sync(self, conn: Connection) -> None:
        """Create the table and its indexes when missing. Safe to repeat."""
        self.ensure_table(conn)
        self.ensure_all_indexes(conn)
        logger.info(f"[sync] {self.name}")

    def ensure_table(self, conn: Connection) -> None:
        if not self.storage.table_exists(conn):
            self.storage.create_table(conn)

    def ensure_all_indexes(self, conn: Connection) -> None:
        for index in self.descriptor.secondary_indexes:
            self.ensure_index(conn, index)

    def ensure_index(self, conn: Connection, index: str) -> None:
        if index == self.pk:
            return
        if not self.descriptor.has_index(index):
            raise IndexNotFoundError(index, self.name, self.descriptor.index_names())
        if not self.storage.index_exists(conn, index):
            self.storage.create_index(conn, index, self.descriptor.index_fields(index))

    # === Data ===

    def query(self) -> Selection:
        return Selection(self)

    def get(self, pk: Any) -> SingleSelection:
        return SingleSelection(self, pk)

    def insert(
        self,
        rows: Mapping[str, Any] | Sequence[Mapping[str, Any]],
        conflict: ConflictStrategy = "error",
    ) -> Expr:
        """Insert one or more rows (usually built with ``create``).

        Unique fields are checked first; a clash with a stored row raises
        ``UniquenessConflictError`` when the expression runs.

        Raises:
            UniquenessConflictError: If two rows of the batch share a value
                of a unique field
            QueryError: On an unknown conflict strategy
        """
        if isinstance(rows, Mapping):
            exclude = [rows.get(self.pk)]
        elif isinstance(rows, Sequence):
            batch = [row for row in rows if isinstance(row, Mapping)]
            self._assert_distinct(batch)
            exclude = [row.get(self.pk) for row in batch]
        else:
            exclude = []
        insert_expr = Insert(self, rows, conflict)
        return self.assert_integrate(rows, exclude=exclude).do(lambda _: insert_expr)

    def update(self, pk: Any, patch: Mapping[str, Any]) -> Expr:
        """Patch one row, or every row of a list of primary keys.

        Supplied values are validated against their fields (expressions are
        passed through). ``updatedAt`` is set to the current time when the
        table declares it.

        Raises:
            UniquenessConflictError: If a unique field is set on more than
                one row
        """
        static = {key: value for key, value in patch.items() if not isinstance(value, Expr)}
        if self.fields:
            static = self.descriptor.validator.attempt_partial(static)
        update_data = {**patch, **static}
        if self.has_field("updatedAt"):
            update_data["updatedAt"] = Now()

        pks = pk if isinstance(pk, list) else [pk]
        if len(pks) > 1:
            for field_name in self.descriptor.unique_fields:
                if patch.get(field_name) is not None:
                    raise UniquenessConflictError(self.name, field_name, patch[field_name])
        target = self.query().get_all(*pks) if isinstance(pk, list) else self.get(pk)
        return self.assert_integrate(patch, exclude=pks).do(lambda _: target.update(update_data))

    def delete(self, pk: Any) -> Expr:
        if isinstance(pk, list):
            return DeleteRows(self, self.query().get_all(*pk))
        return self.get(pk).delete()

    def assert_integrate(self, data: Any, exclude: Sequence[Any] = ()) -> Expr:
        """Check that ``data`` does not reuse a value of a unique field.

        Args:
            data: A row or a list of rows
            exclude: Primary keys of rows allowed to hold the values already

        Returns:
            An expression evaluating to True, or raising
            ``UniquenessConflictError`` when run
        """
        unique_fields = self.descriptor.unique_fields
        if isinstance(data, Mapping):
            rows: list[Any] = [data]
        elif isinstance(data, Sequence):
            rows = list(data)
        else:
            rows = []

        checks = [
            self._unique_check(field_name, row[field_name], exclude)
            for row in rows
            if isinstance(row, Mapping)
            for field_name in unique_fields
            if row.get(field_name) is not None
        ]
        if not checks:
            return expr(True)
        return Apply(lambda *_: True, *checks)

    def _assert_distinct(self, rows: Sequence[Mapping[str, Any]]) -> None:
        """Raise when rows of one batch share a value of a unique field."""
        for field_name in self.descriptor.unique_fields:
            owners: dict[Any, Any] = {}
            for row in rows:
                value = row.get(field_name)
                if value is None or isinstance(value, Expr):
                    continue
                pk = row.get(self.pk)
                if value in owners and (pk is None or owners[value] != pk):
                    raise UniquenessConflictError(self.name, field_name, value)
                owners[value] = pk

    def _unique_check(self, field_name: str, value: Any, exclude: Sequence[Any]) -> Expr:
        excluded = [pk for pk in exclude if pk is not None]

        def check(resolved: Any) -> Any:
            if resolved is None:
                return None
            clashes = self.query().get_all(resolved, index=field_name)
            if excluded:
                clashes = clashes.filter(lambda row: row.get(self.pk) not in excluded)
            return branch(
                clashes.count().gt(0),
                error(UniquenessConflictError(self.name, field_name, resolved)),
                None,
            )

        return do(value, check)

    # === Relations ===

    def get_relation(self, name: str) -> Relation:
        return self.registry.get(name)

    def with_join(self, query: Any, inclusion: Any) -> Expr:
        """Embed related rows into ``query`` (see ``docrel.query.join``)."""
        return with_join(self, query, inclusion)

    embed = with_join

    def query_related(
        self, pk: Any, name: str, options: RelationOptions | Mapping[str, Any] | None = None
    ) -> Expr:
        """Candidate rows of relation ``name`` for row ``pk``, before coercion."""
        relation = self.get_relation(name)
        return relation.query(relation.key(self.get(pk)), options)

    def get_related(self, pk: Any, name: str, options: Any = None) -> Expr:
        """Related value(s) of row ``pk`` through relation ``name``.

        Args:
            pk: Primary key of a row of this table
            name: Relation name
            options: Inclusion entry for the relation (``{"_apply": fn}``,
                nested relation names, or ``Include``)

        Returns:
            A row or None for has_one/belongs_to, a list otherwise. A
            missing row has no related rows.
        """
        relation = self.get_relation(name)
        entry = parse_entry(True if options is None else options)
        if isinstance(entry, Skip):
            entry = IncludeLeaf()
        if isinstance(entry, IncludeWithChildren):
            validate_inclusion(relation.target_table, entry.children)
        return embed_related(self, self.get(pk), name, entry)

    def create_relation(self, name: str, one_pk: Any, other_pk: Any) -> Expr:
        return self.get_relation(name).create(one_pk, other_pk)

    def remove_relation(self, name: str, one_pk: Any, other_pk: Any = None) -> Expr:
        return self.get_relation(name).remove(one_pk, other_pk)

    def has_relation(self, name: str, one_pk: Any, other_pk: Any) -> Expr:
        return self.get_relation(name).has(one_pk, other_pk)

    # === Introspection ===

    def describe(self) -> TableInfo:
        return TableInfo(
            name=self.name,
            primary_key=self.pk,
            fields=[field.info(name) for name, field in self.fields.items()],
            indexes=self.descriptor.describe_indexes(),
            relations=[relation.describe(name) for name, relation in self.relations.items()],
        )

    def __repr__(self) -> str:
        return f"Table(name={self.name!r}, pk={self.pk!r})"
