"""Lazily evaluated query expressions.

Expressions are plain Python objects describing a computation over the
document store. Building them never touches the database; ``run(conn)``
evaluates the whole tree against a SQLAlchemy connection.

Example:
    >>> users.query().get_all("bob", index="name").count().gt(0).run(conn)
    True

Multi-row reads stay as a single SQL statement (``Selection``) for as long
as every step can be pushed down (index lookups, dict filters, field
presence, ordering, limit and skip). The first step that cannot be pushed
down turns the selection into a ``Stream`` that finishes the work in Python.
"""

from __future__ import annotations

import logging
import operator
from collections import namedtuple
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel
from pydantic_core import to_jsonable_python
from sqlalchemy import Connection

from docrel.core.types import ConflictStrategy, WriteResult
from docrel.exceptions import DocrelError, IndexNotFoundError, NonExistenceError, QueryError

if TYPE_CHECKING:
    from docrel.table import Table

logger = logging.getLogger(__name__)

Ordering = namedtuple("Ordering", ["field", "descending"])


def asc(field: str) -> Ordering:
    return Ordering(field, False)


def desc(field: str) -> Ordering:
    return Ordering(field, True)


def truthy(value: Any) -> bool:
    """Document-store truthiness: only None and False are false."""
    return value is not None and value is not False


def as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    raise QueryError(f"Cannot coerce {type(value).__name__} to a sequence.")


def first_or_none(value: Any) -> Any:
    """First row of a sequence, or None. Single rows and None pass through."""
    if value is None or isinstance(value, Mapping):
        return value
    rows = as_list(value)
    return rows[0] if rows else None


def dedupe(values: Sequence[Any]) -> list[Any]:
    """Drop repeated values, keeping first occurrences in order."""
    seen: list[Any] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


class Context:
    """Evaluation state for one ``run``: the connection and its dialect."""

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @property
    def dialect(self) -> str:
        return self.conn.dialect.name

    def evaluate(self, value: Any) -> Any:
        """Evaluate expressions, recursing into plain dicts and lists."""
        if isinstance(value, Expr):
            return value.evaluate(self)
        if isinstance(value, BaseModel):
            return value
        if isinstance(value, Mapping):
            return {key: self.evaluate(item) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.evaluate(item) for item in value]
        return value


class Expr:
    """Base class of every expression."""

    def evaluate(self, ctx: Context) -> Any:
        raise NotImplementedError

    def run(self, conn: Connection) -> Any:
        """Evaluate the expression against an open connection."""
        return Context(conn).evaluate(self)

    def __bool__(self) -> bool:
        raise TypeError(
            "Expressions have no truth value before they run. "
            "Use branch(), and_() or or_() to combine them."
        )

    def __iter__(self) -> Any:
        raise TypeError("Expressions are not iterable before they run. Use map() instead.")

    # === Chaining ===

    def do(self, fn: Callable[[Any], Any]) -> Expr:
        return Do(self, fn)

    def default(self, value: Any) -> Expr:
        return Default(self, value)

    def __getitem__(self, key: str | int) -> Expr:
        if isinstance(key, int):
            return Nth(self, key)
        return GetField(self, key)

    def nth(self, index: int) -> Expr:
        return Nth(self, index)

    def coerce_to_array(self) -> Expr:
        return Apply(as_list, self)

    def count(self) -> Expr:
        return Apply(len, self.coerce_to_array())

    def merge(self, fn: Callable[[Any], Any] | Mapping[str, Any]) -> Expr:
        return Merge(self, fn)

    def map(self, fn: Callable[[Any], Any]) -> Expr:
        return Map(self, fn)

    # === Comparison and logic ===

    def eq(self, other: Any) -> Expr:
        return Apply(operator.eq, self, other)

    def ne(self, other: Any) -> Expr:
        return Apply(operator.ne, self, other)

    def gt(self, other: Any) -> Expr:
        return Apply(operator.gt, self, other)

    def ge(self, other: Any) -> Expr:
        return Apply(operator.ge, self, other)

    def lt(self, other: Any) -> Expr:
        return Apply(operator.lt, self, other)

    def le(self, other: Any) -> Expr:
        return Apply(operator.le, self, other)

    def and_(self, other: Any) -> Expr:
        return Branch(self, other, False)

    def or_(self, other: Any) -> Expr:
        return Do(self, lambda value: value if truthy(value) else other)

    def not_(self) -> Expr:
        return Apply(lambda value: not truthy(value), self)

    def contains(self, value: Any) -> Expr:
        return Apply(lambda seq, item: item in as_list(seq), self, value)

    # === Sequence operations (evaluated in Python) ===

    def to_stream(self) -> Stream:
        return Stream(self)

    def filter(self, predicate: Callable[[Any], Any] | Mapping[str, Any]) -> Expr:
        return self.to_stream().filter(predicate)

    def has_fields(self, *fields: str) -> Expr:
        return self.to_stream().has_fields(*fields)

    def order_by(self, *keys: str | Ordering) -> Expr:
        return self.to_stream().order_by(*keys)

    def limit(self, n: int) -> Expr:
        return self.to_stream().limit(n)

    def skip(self, n: int) -> Expr:
        return self.to_stream().skip(n)

    def pluck(self, *fields: str) -> Expr:
        return self.to_stream().pluck(*fields)


class Datum(Expr):
    """A literal value (dicts and lists may contain expressions)."""

    def __init__(self, value: Any) -> None:
        self.value = value

    def evaluate(self, ctx: Context) -> Any:
        return ctx.evaluate(self.value)

    def __repr__(self) -> str:
        return f"expr({self.value!r})"


def expr(value: Any) -> Expr:
    """Wrap a Python value as an expression (expressions pass through)."""
    if isinstance(value, Expr):
        return value
    return Datum(value)


class Apply(Expr):
    """Call a Python function on the evaluated arguments."""

    def __init__(self, fn: Callable[..., Any], *args: Any) -> None:
        self.fn = fn
        self.args = args

    def evaluate(self, ctx: Context) -> Any:
        return self.fn(*(ctx.evaluate(arg) for arg in self.args))


class Branch(Expr):
    def __init__(self, condition: Any, then: Any, otherwise: Any) -> None:
        self.condition = condition
        self.then = then
        self.otherwise = otherwise

    def evaluate(self, ctx: Context) -> Any:
        if truthy(ctx.evaluate(self.condition)):
            return ctx.evaluate(self.then)
        return ctx.evaluate(self.otherwise)


def branch(condition: Any, then: Any, otherwise: Any) -> Expr:
    return Branch(condition, then, otherwise)


class Do(Expr):
    """Evaluate a value, hand it to ``fn`` and evaluate what ``fn`` returns."""

    def __init__(self, value: Any, fn: Callable[[Any], Any]) -> None:
        self.value = value
        self.fn = fn

    def evaluate(self, ctx: Context) -> Any:
        return ctx.evaluate(self.fn(ctx.evaluate(self.value)))


def do(value: Any, fn: Callable[[Any], Any]) -> Expr:
    """Apply ``fn`` to the value of ``value``.

    Plain Python values are passed to ``fn`` immediately; expressions are
    deferred until evaluation.
    """
    if isinstance(value, Expr):
        return Do(value, fn)
    return expr(fn(value))


class Default(Expr):
    """Replace a missing value (None, absent field, out of range) with ``value``."""

    def __init__(self, base: Any, value: Any) -> None:
        self.base = base
        self.value = value

    def evaluate(self, ctx: Context) -> Any:
        try:
            result = ctx.evaluate(self.base)
        except NonExistenceError:
            return ctx.evaluate(self.value)
        if result is None:
            return ctx.evaluate(self.value)
        return result


class GetField(Expr):
    def __init__(self, base: Any, field: str) -> None:
        self.base = base
        self.field = field

    def evaluate(self, ctx: Context) -> Any:
        value = ctx.evaluate(self.base)
        if value is None:
            raise NonExistenceError(f"Cannot get field `{self.field}` of null.")
        if isinstance(value, Mapping):
            if self.field not in value:
                raise NonExistenceError(f"No attribute `{self.field}` in object.")
            return value[self.field]
        if isinstance(value, list):
            return [
                row[self.field] for row in value if isinstance(row, Mapping) and self.field in row
            ]
        raise QueryError(f"Cannot get field `{self.field}` of {type(value).__name__}.")


class Nth(Expr):
    def __init__(self, base: Any, index: int) -> None:
        self.base = base
        self.index = index

    def evaluate(self, ctx: Context) -> Any:
        value = ctx.evaluate(self.base)
        if value is None:
            raise NonExistenceError(f"Cannot take element {self.index} of null.")
        rows = as_list(value)
        try:
            return rows[self.index]
        except IndexError as e:
            raise NonExistenceError(f"Index out of bounds: {self.index}.") from e


class Merge(Expr):
    """Shallow-merge a mapping into a row, or into every row of a sequence.

    ``fn`` is called with the concrete row and may return a mapping whose
    values are expressions; they are evaluated before merging. A None base
    evaluates to None.
    """

    def __init__(self, base: Any, fn: Callable[[Any], Any] | Mapping[str, Any]) -> None:
        self.base = base
        self.fn = fn

    def evaluate(self, ctx: Context) -> Any:
        value = ctx.evaluate(self.base)
        if value is None:
            return None
        if isinstance(value, list):
            return [self._merge_row(ctx, row) for row in value]
        return self._merge_row(ctx, value)

    def _merge_row(self, ctx: Context, row: Any) -> Any:
        if not isinstance(row, Mapping):
            raise QueryError(f"Cannot merge into {type(row).__name__}.")
        patch = ctx.evaluate(self.fn(row) if callable(self.fn) else self.fn)
        if not isinstance(patch, Mapping):
            raise QueryError(f"Merge expects an object, got {type(patch).__name__}.")
        return {**row, **patch}


class Map(Expr):
    def __init__(self, base: Any, fn: Callable[[Any], Any]) -> None:
        self.base = base
        self.fn = fn

    def evaluate(self, ctx: Context) -> Any:
        return [ctx.evaluate(self.fn(row)) for row in as_list(ctx.evaluate(self.base))]


class Error(Expr):
    """Raise when evaluated."""

    def __init__(self, error: str | DocrelError) -> None:
        self.error = error

    def evaluate(self, ctx: Context) -> Any:
        if isinstance(self.error, DocrelError):
            raise self.error
        raise QueryError(self.error)


def error(message: str | DocrelError) -> Expr:
    return Error(message)


class Now(Expr):
    """Current UTC time, in the JSON form rows are stored in."""

    def evaluate(self, ctx: Context) -> Any:
        return to_jsonable_python(datetime.now(UTC))


# === Sequences ===


def _sort_rows(rows: list[Any], keys: Sequence[Ordering]) -> list[Any]:
    result = list(rows)
    for key in reversed(keys):
        result.sort(
            key=lambda row, field=key.field: (row.get(field) is None, row.get(field)),
            reverse=key.descending,
        )
    return result


def _normalize_orderings(keys: Sequence[str | Ordering]) -> list[Ordering]:
    return [key if isinstance(key, Ordering) else asc(key) for key in keys]


class Stream(Expr):
    """A sequence finished in Python after the SQL-backed part ran."""

    def __init__(
        self,
        source: Any,
        steps: Sequence[Callable[[Context, Any], Any]] = (),
        table: Table | None = None,
    ) -> None:
        self.source = source
        self.steps = tuple(steps)
        self.table = table

    def _then(self, step: Callable[[Context, Any], Any]) -> Stream:
        return Stream(self.source, (*self.steps, step), self.table)

    def evaluate(self, ctx: Context) -> Any:
        value = ctx.evaluate(self.source)
        for step in self.steps:
            value = step(ctx, value)
        return value

    def to_stream(self) -> Stream:
        return self

    def filter(self, predicate: Callable[[Any], Any] | Mapping[str, Any]) -> Stream:
        def step(ctx: Context, value: Any) -> list[Any]:
            if callable(predicate):
                return [row for row in as_list(value) if truthy(ctx.evaluate(predicate(row)))]
            expected = ctx.evaluate(predicate)
            return [
                row
                for row in as_list(value)
                if all(row.get(key) == item for key, item in expected.items())
            ]

        return self._then(step)

    def has_fields(self, *fields: str) -> Stream:
        return self._then(
            lambda ctx, value: [
                row for row in as_list(value) if all(row.get(field) is not None for field in fields)
            ]
        )

    def order_by(self, *keys: str | Ordering) -> Stream:
        orderings = _normalize_orderings(keys)
        return self._then(lambda ctx, value: _sort_rows(as_list(value), orderings))

    def limit(self, n: int) -> Stream:
        return self._then(lambda ctx, value: as_list(value)[:n])

    def skip(self, n: int) -> Stream:
        return self._then(lambda ctx, value: as_list(value)[n:])

    def pluck(self, *fields: str) -> Stream:
        def project(row: Any) -> Any:
            return {field: row[field] for field in fields if field in row}

        def step(ctx: Context, value: Any) -> Any:
            if value is None:
                return None
            if isinstance(value, Mapping):
                return project(value)
            return [project(row) for row in as_list(value)]

        return self._then(step)

    def _require_table(self, operation: str) -> Table:
        if self.table is None:
            raise QueryError(f"Cannot {operation} rows of a computed sequence.")
        return self.table

    def delete(self) -> Expr:
        return DeleteRows(self._require_table("delete"), self)

    def update(self, patch: Callable[[Any], Any] | Mapping[str, Any]) -> Expr:
        return UpdateRows(self._require_table("update"), self, patch)


class Selection(Expr):
    """Rows of one table selected by a single SQL statement."""

    def __init__(
        self,
        table: Table,
        predicates: Sequence[Callable[[Context], Any]] = (),
        ordering: Sequence[Ordering] = (),
        limit: int | None = None,
        offset: int | None = None,
    ) -> None:
        self.table = table
        self.predicates = tuple(predicates)
        self.ordering = tuple(ordering)
        self._limit = limit
        self._offset = offset

    def _copy(self, **changes: Any) -> Selection:
        options: dict[str, Any] = {
            "predicates": self.predicates,
            "ordering": self.ordering,
            "limit": self._limit,
            "offset": self._offset,
        }
        options.update(changes)
        return Selection(self.table, **options)

    @property
    def _windowed(self) -> bool:
        return self._limit is not None or self._offset is not None

    def to_stream(self) -> Stream:
        return Stream(self, table=self.table)

    def get_all(self, *keys: Any, index: str | None = None) -> Expr:
        """Rows whose ``index`` value equals one of ``keys``.

        Args:
            *keys: Lookup values; tuples for compound indexes. None never matches.
            index: Index name, defaults to the primary key

        Raises:
            IndexNotFoundError: If the table has no such index
        """
        descriptor = self.table.descriptor
        index = index or descriptor.pk
        if not descriptor.has_index(index):
            raise IndexNotFoundError(index, descriptor.name, descriptor.index_names())
        fields = descriptor.index_fields(index)
        storage = self.table.storage

        def predicate(ctx: Context) -> Any:
            values = [value for value in (ctx.evaluate(key) for key in keys) if value is not None]
            if len(fields) == 1:
                return storage.one_of(fields[0], values, ctx.dialect)
            return storage.compound_one_of(fields, [tuple(value) for value in values], ctx.dialect)

        if self._windowed:
            return self._python_get_all(keys, fields)
        return self._copy(predicates=(*self.predicates, predicate))

    def _python_get_all(self, keys: Sequence[Any], fields: Sequence[str]) -> Expr:
        def matches(ctx: Context, row: Mapping[str, Any]) -> bool:
            for key in keys:
                value = ctx.evaluate(key)
                if value is None:
                    continue
                expected = (value,) if len(fields) == 1 else tuple(value)
                if all(row.get(field) == item for field, item in zip(fields, expected)):
                    return True
            return False

        return self.to_stream()._then(
            lambda ctx, value: [row for row in as_list(value) if matches(ctx, row)]
        )

    def filter(self, predicate: Callable[[Any], Any] | Mapping[str, Any]) -> Expr:
        if callable(predicate) or self._windowed:
            return self.to_stream().filter(predicate)
        storage = self.table.storage

        def clause(ctx: Context) -> Any:
            expected = ctx.evaluate(predicate)
            clauses = []
            for field, value in expected.items():
                if value is None:
                    clauses.append(storage.extract(field, ctx.dialect).is_(None))
                else:
                    clauses.append(storage.equals(field, value, ctx.dialect))
            return storage.all_of(clauses)

        return self._copy(predicates=(*self.predicates, clause))

    def has_fields(self, *fields: str) -> Expr:
        if self._windowed:
            return self.to_stream().has_fields(*fields)
        storage = self.table.storage
        clauses = [
            (lambda ctx, field=field: storage.present(field, ctx.dialect)) for field in fields
        ]
        return self._copy(predicates=(*self.predicates, *clauses))

    def order_by(self, *keys: str | Ordering) -> Expr:
        if self._windowed:
            return self.to_stream().order_by(*keys)
        return self._copy(ordering=(*self.ordering, *_normalize_orderings(keys)))

    def limit(self, n: int) -> Expr:
        if self._limit is not None:
            return self.to_stream().limit(n)
        return self._copy(limit=n)

    def skip(self, n: int) -> Expr:
        if self._windowed:
            return self.to_stream().skip(n)
        return self._copy(offset=n)

    def evaluate(self, ctx: Context) -> list[dict[str, Any]]:
        storage = self.table.storage
        fields = self.table.descriptor.fields
        order_by = []
        for ordering in self.ordering:
            field = fields.get(ordering.field)
            key = storage.sort_key(
                ordering.field, ctx.dialect, field.type if field is not None else None
            )
            order_by.append(key.desc() if ordering.descending else key.asc())
        return storage.fetch_many(
            ctx.conn,
            where=[predicate(ctx) for predicate in self.predicates],
            order_by=order_by,
            limit=self._limit,
            offset=self._offset,
        )

    def delete(self) -> Expr:
        return DeleteRows(self.table, self)

    def update(self, patch: Callable[[Any], Any] | Mapping[str, Any]) -> Expr:
        return UpdateRows(self.table, self, patch)

    def __repr__(self) -> str:
        return f"Selection({self.table.name!r})"


class SingleSelection(Expr):
    """One row by primary key; evaluates to the row or None."""

    def __init__(self, table: Table, pk: Any) -> None:
        self.table = table
        self.pk = pk

    def evaluate(self, ctx: Context) -> dict[str, Any] | None:
        pk = ctx.evaluate(self.pk)
        if pk is None:
            return None
        return self.table.storage.fetch_one(ctx.conn, pk)

    def delete(self) -> Expr:
        return DeleteRows(self.table, self)

    def update(self, patch: Callable[[Any], Any] | Mapping[str, Any]) -> Expr:
        return UpdateRows(self.table, self, patch)

    def __repr__(self) -> str:
        return f"SingleSelection({self.table.name!r}, {self.pk!r})"


# === Writes ===


def _target_rows(value: Any) -> list[Any]:
    if value is None or isinstance(value, Mapping):
        return [value]
    return as_list(value)


class Insert(Expr):
    def __init__(self, table: Table, rows: Any, conflict: ConflictStrategy = "error") -> None:
        if conflict not in ("error", "replace", "update"):
            raise QueryError(
                f"Unknown conflict strategy '{conflict}'. Use 'error', 'replace' or 'update'."
            )
        self.table = table
        self.rows = rows
        self.conflict = conflict

    def evaluate(self, ctx: Context) -> WriteResult:
        storage = self.table.storage
        pk = self.table.pk
        rows = ctx.evaluate(self.rows)
        result = WriteResult()

        for row in [rows] if isinstance(rows, Mapping) else as_list(rows):
            if not isinstance(row, Mapping):
                raise QueryError(
                    f"Cannot insert {type(row).__name__} into table '{self.table.name}'."
                )
            document = to_jsonable_python(row)
            if document.get(pk) is None:
                document[pk] = self.table.generate_key()
                result.generated_keys.append(document[pk])

            existing = storage.fetch_one(ctx.conn, document[pk])
            if existing is None:
                storage.insert_row(ctx.conn, document)
                result.inserted += 1
                continue

            if self.conflict == "error":
                result.errors += 1
                if result.first_error is None:
                    result.first_error = (
                        f"Duplicate primary key `{pk}`: {document[pk]!r} "
                        f"already exists in table '{self.table.name}'."
                    )
                continue

            if self.conflict == "update":
                document = {**existing, **document}
            if document == existing:
                result.unchanged += 1
            else:
                storage.replace_row(ctx.conn, document[pk], document)
                result.replaced += 1

        logger.debug(f"Insert into '{self.table.name}': {result.inserted} inserted")
        return result


class UpdateRows(Expr):
    """Apply a patch (mapping or row -> mapping) to selected rows."""

    def __init__(
        self, table: Table, target: Expr, patch: Callable[[Any], Any] | Mapping[str, Any]
    ) -> None:
        self.table = table
        self.target = target
        self.patch = patch

    def evaluate(self, ctx: Context) -> WriteResult:
        storage = self.table.storage
        pk = self.table.pk
        result = WriteResult()

        for row in _target_rows(ctx.evaluate(self.target)):
            if row is None:
                result.skipped += 1
                continue
            patch = ctx.evaluate(self.patch(row) if callable(self.patch) else self.patch)
            document = {**row, **to_jsonable_python(patch)}
            if document.get(pk) != row[pk]:
                result.errors += 1
                if result.first_error is None:
                    result.first_error = f"Primary key `{pk}` cannot be changed by an update."
                continue
            if document == row:
                result.unchanged += 1
            else:
                storage.replace_row(ctx.conn, row[pk], document)
                result.replaced += 1
        return result


class DeleteRows(Expr):
    def __init__(self, table: Table, target: Expr) -> None:
        self.table = table
        self.target = target

    def evaluate(self, ctx: Context) -> WriteResult:
        pk = self.table.pk
        result = WriteResult()
        keys = []
        for row in _target_rows(ctx.evaluate(self.target)):
            if row is None:
                result.skipped += 1
            else:
                keys.append(row[pk])
        result.deleted = self.table.storage.delete_rows(ctx.conn, keys)
        return result
