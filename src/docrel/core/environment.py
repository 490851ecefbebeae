"""Environment: an explicit registry of declared tables."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import Connection

from docrel.core.types import SchemaInfo
from docrel.exceptions import TableAlreadyExistsError, TableNotFoundError
from docrel.table import Table

logger = logging.getLogger(__name__)


class Environment:
    """Tables of one application.

    There is no global registry: build one environment per application (or
    per test) and pass it to whatever needs cross-table lookups.

    Example:
        env = Environment()
        users = env.create_table("user", fields=lambda: {**base_schema(), ...})
        posts = env.create_table("post", fields=..., relations=lambda: {...})

        with db.begin() as conn:
            env.sync(conn)
    """

    def __init__(self, table_class: type[Table] = Table) -> None:
        """Initialize environment.

        Args:
            table_class: Table subclass used by ``create_table``
        """
        self.table_class = table_class
        self._tables: dict[str, Table] = {}

    def create_table(self, name: str, *, if_not_exists: bool = False, **options: Any) -> Table:
        """Declare a table.

        Args:
            name: Table name
            if_not_exists: If True, return the existing table instead of raising
            **options: Passed to the table class (pk, fields, relations, indexes)

        Returns:
            The declared table

        Raises:
            TableAlreadyExistsError: If the name is taken and if_not_exists=False
        """
        if name in self._tables:
            if if_not_exists:
                return self._tables[name]
            raise TableAlreadyExistsError(name)

        table = self.table_class(name, **options)
        self._tables[name] = table
        logger.debug(f"Registered table '{name}'")
        return table

    def add_table(self, table: Table) -> Table:
        """Register a table built elsewhere."""
        if table.name in self._tables:
            raise TableAlreadyExistsError(table.name)
        self._tables[table.name] = table
        logger.debug(f"Registered table '{table.name}'")
        return table

    def get_table(self, name: str) -> Table:
        """Get a table by name.

        Raises:
            TableNotFoundError: If no table of that name was declared
        """
        table = self._tables.get(name)
        if table is None:
            raise TableNotFoundError(name, list(self._tables))
        return table

    def has_table(self, name: str) -> bool:
        return name in self._tables

    def get_all_tables(self) -> list[Table]:
        return list(self._tables.values())

    def sync(self, conn: Connection) -> None:
        """Create every table and index, one table at a time in declaration order."""
        for table in self._tables.values():
            table.sync(conn)

    def describe(self) -> SchemaInfo:
        tables = {name: table.describe() for name, table in self._tables.items()}
        return SchemaInfo(
            tables=tables,
            total_tables=len(tables),
            total_relations=sum(len(info.relations) for info in tables.values()),
        )

    def __getitem__(self, name: str) -> Table:
        return self.get_table(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tables

    def __len__(self) -> int:
        return len(self._tables)
