"""Shared test fixtures for docrel."""

import os
from collections.abc import Generator

import pytest
from sqlalchemy import Connection

from docrel import (
    DatabaseConnection,
    Environment,
    base_schema,
    belongs_to,
    belongs_to_many,
    has_many,
    has_one,
    integer,
    string,
)


def _psycopg_available() -> bool:
    """Check if psycopg is installed."""
    try:
        import psycopg  # noqa: F401

        return True
    except ImportError:
        return False


def _postgresql_connectable(url: str) -> bool:
    """Check if we can connect to PostgreSQL."""
    if not _psycopg_available():
        return False
    try:
        conn = DatabaseConnection(url)
        result = conn.test_connection()
        conn.close()
        return result
    except Exception:
        return False


@pytest.fixture
def postgresql_url() -> str:
    """Get PostgreSQL URL from environment or use default.

    Skips the test when psycopg is missing or the server is unreachable.
    """
    url = os.environ.get("TEST_DATABASE_URL")
    if not url:
        url = "postgresql://localhost/docrel_test"

    if not _psycopg_available():
        pytest.skip("psycopg not installed")

    if not _postgresql_connectable(url):
        pytest.skip(f"Cannot connect to PostgreSQL at {url}")

    return url


@pytest.fixture
def db() -> Generator[DatabaseConnection, None, None]:
    """SQLite in-memory database."""
    database = DatabaseConnection("sqlite:///:memory:")
    yield database
    database.close()


@pytest.fixture
def conn(db: DatabaseConnection) -> Generator[Connection, None, None]:
    """One transaction on the in-memory database, for the whole test."""
    with db.begin() as connection:
        yield connection


@pytest.fixture
def social() -> Environment:
    """Users following users through a ``following`` join table."""
    env = Environment()
    users = env.create_table(
        "user",
        fields=lambda: {**base_schema(), "name": string(required=True)},
        relations=lambda: {
            "following": belongs_to_many(
                (following.link_to(users, "followerId"), following.link_to(users, "followeeId"))
            ),
            "followers": belongs_to_many(
                (following.link_to(users, "followeeId"), following.link_to(users, "followerId"))
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
    return env


@pytest.fixture
def blog() -> Environment:
    """Users with a profile and posts; posts tagged through ``post_tag``.

    ``post.tags`` looks edges up through the compound index ``post_tag``;
    ``tag.posts`` has no index and falls back to filtering.
    """
    env = Environment()
    users = env.create_table(
        "user",
        fields=lambda: {
            **base_schema(),
            "name": string(required=True),
            "email": string(unique=True),
        },
        relations=lambda: {
            "profile": has_one(users.linked_by(profiles, "userId")),
            "posts": has_many(users.linked_by(posts, "authorId")),
        },
    )
    profiles = env.create_table(
        "profile",
        fields=lambda: {
            **base_schema(),
            "userId": users.get_foreign_key(),
            "bio": string(),
        },
        relations=lambda: {"user": belongs_to(profiles.link_to(users, "userId"))},
    )
    posts = env.create_table(
        "post",
        fields=lambda: {
            **base_schema(),
            "authorId": users.get_foreign_key(),
            "title": string(required=True),
            "views": integer(default=0, index=True),
        },
        relations=lambda: {
            "author": belongs_to(posts.link_to(users, "authorId")),
            "tags": belongs_to_many(
                (post_tags.link_to(posts, "postId"), post_tags.link_to(tags, "tagId")),
                index="post_tag",
            ),
        },
    )
    tags = env.create_table(
        "tag",
        fields=lambda: {**base_schema(), "label": string(required=True)},
        relations=lambda: {
            "posts": belongs_to_many(
                (post_tags.link_to(tags, "tagId"), post_tags.link_to(posts, "postId"))
            ),
        },
    )
    post_tags = env.create_table(
        "post_tag",
        fields=lambda: {
            **base_schema(),
            "postId": posts.get_foreign_key(many_to_many=True),
            "tagId": tags.get_foreign_key(many_to_many=True),
        },
        indexes={"post_tag": ("postId", "tagId")},
    )
    return env


@pytest.fixture
def blog_conn(blog: Environment, conn: Connection) -> Connection:
    """Connection with the blog tables synced."""
    blog.sync(conn)
    return conn


@pytest.fixture
def social_conn(social: Environment, conn: Connection) -> Connection:
    """Connection with the social tables synced."""
    social.sync(conn)
    return conn


@pytest.fixture
def insert_row(conn: Connection):
    """Create, insert and return a row: ``insert_row(table, **data)``."""

    def insert(table, **data) -> dict:
        row = table.create(data)
        result = table.insert(row).run(conn)
        assert result.inserted == 1, result.first_error
        return row

    return insert

