"""CLI context management for database connections and shared state."""

import importlib
import os
import sys
from dataclasses import dataclass, field

from docrel.core.connection import DatabaseConnection
from docrel.core.environment import Environment

DEFAULT_DATABASE_URL = "sqlite:///./docrel.db"


def get_database_url(url: str | None) -> str:
    """Resolve database URL from CLI arg, environment variable, or default.

    Priority:
    1. Explicit URL argument
    2. DOCREL_DATABASE_URL environment variable
    3. Default: sqlite:///./docrel.db
    """
    if url:
        return url
    if env_url := os.getenv("DOCREL_DATABASE_URL"):
        return env_url
    return DEFAULT_DATABASE_URL


def load_environment(target: str) -> Environment:
    """Import an Environment from a ``module:attribute`` path.

    The attribute may also be a zero-argument callable returning the
    environment. The current directory is importable, so
    ``docrel sync myapp.tables:env`` works from a project root.

    Raises:
        ValueError: If the path is malformed or does not name an Environment
    """
    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Expected 'module:attribute', got '{target}'.")

    if os.getcwd() not in sys.path:
        sys.path.insert(0, os.getcwd())
    module = importlib.import_module(module_name)

    try:
        env = getattr(module, attribute)
    except AttributeError as e:
        raise ValueError(f"Module '{module_name}' has no attribute '{attribute}'.") from e

    if callable(env) and not isinstance(env, Environment):
        env = env()
    if not isinstance(env, Environment):
        raise ValueError(f"'{target}' is a {type(env).__name__}, not an Environment.")
    return env


@dataclass
class CLIContext:
    """Shared context for CLI commands.

    Manages database connection lifecycle and output preferences.
    """

    database_url: str
    echo: bool
    json_output: bool
    _db: DatabaseConnection | None = field(default=None, init=False, repr=False)

    def get_db(self) -> DatabaseConnection:
        """Get or create database connection (lazy initialization)."""
        if self._db is None:
            self._db = DatabaseConnection(self.database_url, echo=self.echo)
        return self._db

    def close(self) -> None:
        """Close database connection if open."""
        if self._db is not None:
            self._db.close()
            self._db = None
