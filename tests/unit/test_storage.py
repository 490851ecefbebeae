"""Tests for table storage and SQL-backed selections (SQLite)."""

import pytest

from docrel import desc
from docrel.exceptions import IndexNotFoundError, QueryError
from docrel.query.expr import Selection, Stream


@pytest.fixture
def posts(blog):
    return blog["post"]


@pytest.fixture
def seeded(blog_conn, posts, insert_row):
    """Three posts: ``a`` (3 views), ``b`` (1 view, no author), ``c`` (2 views)."""
    insert_row(posts, id="a", title="First", views=3, authorId="u1")
    insert_row(posts, id="b", title="Second", views=1)
    insert_row(posts, id="c", title="Third", views=2, authorId="u2")
    return posts


def ids(rows):
    return [row["id"] for row in rows]


class TestSync:
    """Tests for creating tables and indexes."""

    def test_sync_creates_table_and_indexes(self, blog, blog_conn):
        posts = blog["post"]
        assert posts.storage.table_exists(blog_conn)
        assert posts.storage.index_exists(blog_conn, "views")
        assert posts.storage.index_exists(blog_conn, "authorId")
        assert blog["post_tag"].storage.index_exists(blog_conn, "post_tag")

    def test_sync_is_idempotent(self, blog, blog_conn):
        blog.sync(blog_conn)
        blog.sync(blog_conn)
        assert blog["user"].storage.index_exists(blog_conn, "email")

    def test_pk_has_no_secondary_index(self, blog, blog_conn):
        assert not blog["post"].storage.index_exists(blog_conn, "id")

    def test_ensure_unknown_index(self, blog, blog_conn):
        with pytest.raises(IndexNotFoundError):
            blog["post"].ensure_index(blog_conn, "title")

    def test_index_name(self, posts):
        assert posts.storage.index_name("views") == "ix_post_views"


class TestReads:
    """Tests for get, get_all and pushed-down selection steps."""

    def test_get(self, seeded, blog_conn):
        assert seeded.get("a").run(blog_conn)["title"] == "First"

    def test_get_missing_or_none(self, seeded, blog_conn):
        assert seeded.get("zzz").run(blog_conn) is None
        assert seeded.get(None).run(blog_conn) is None

    def test_query_returns_all_rows(self, seeded, blog_conn):
        assert sorted(ids(seeded.query().run(blog_conn))) == ["a", "b", "c"]

    def test_get_all_by_pk(self, seeded, blog_conn):
        assert sorted(ids(seeded.query().get_all("a", "c").run(blog_conn))) == ["a", "c"]

    def test_get_all_by_index(self, seeded, blog_conn):
        rows = seeded.query().get_all(1, 2, index="views").run(blog_conn)
        assert sorted(ids(rows)) == ["b", "c"]

    def test_get_all_ignores_none_keys(self, seeded, blog_conn):
        assert ids(seeded.query().get_all(None, "b").run(blog_conn)) == ["b"]
        assert seeded.query().get_all(None).run(blog_conn) == []
        assert seeded.query().get_all().run(blog_conn) == []

    def test_get_all_unknown_index(self, seeded):
        with pytest.raises(IndexNotFoundError) as exc_info:
            seeded.query().get_all("First", index="title")
        assert "views" in exc_info.value.available_indexes

    def test_get_all_compound_index(self, blog, blog_conn, insert_row):
        post_tags = blog["post_tag"]
        insert_row(post_tags, postId="p1", tagId="t1")
        insert_row(post_tags, postId="p1", tagId="t2")
        insert_row(post_tags, postId="p2", tagId="t1")
        rows = post_tags.query().get_all(("p1", "t2"), ("p2", "t1"), index="post_tag")
        assert sorted((row["postId"], row["tagId"]) for row in rows.run(blog_conn)) == [
            ("p1", "t2"),
            ("p2", "t1"),
        ]

    def test_filter_mapping_is_pushed_down(self, seeded, blog_conn):
        selection = seeded.query().filter({"authorId": "u2"})
        assert isinstance(selection, Selection)
        assert ids(selection.run(blog_conn)) == ["c"]

    def test_filter_none_matches_missing(self, seeded, blog_conn):
        assert ids(seeded.query().filter({"authorId": None}).run(blog_conn)) == ["b"]

    def test_filter_callable_runs_in_python(self, seeded, blog_conn):
        filtered = seeded.query().filter(lambda row: row["title"].startswith("T"))
        assert isinstance(filtered, Stream)
        assert ids(filtered.run(blog_conn)) == ["c"]

    def test_has_fields(self, seeded, blog_conn):
        assert sorted(ids(seeded.query().has_fields("authorId").run(blog_conn))) == ["a", "c"]

    def test_order_by(self, seeded, blog_conn):
        assert ids(seeded.query().order_by("views").run(blog_conn)) == ["b", "c", "a"]
        assert ids(seeded.query().order_by(desc("views")).run(blog_conn)) == ["a", "c", "b"]

    def test_limit_and_skip(self, seeded, blog_conn):
        query = seeded.query().order_by("views").skip(1).limit(1)
        assert isinstance(query, Selection)
        assert ids(query.run(blog_conn)) == ["c"]

    def test_steps_after_window_run_in_python(self, seeded, blog_conn):
        query = seeded.query().order_by("views").limit(2).filter({"authorId": None})
        assert isinstance(query, Stream)
        assert ids(query.run(blog_conn)) == ["b"]

    def test_get_all_after_window(self, seeded, blog_conn):
        query = seeded.query().order_by(desc("views")).limit(2).get_all("c", "b")
        assert ids(query.run(blog_conn)) == ["c"]

    def test_count(self, seeded, blog_conn):
        assert seeded.query().count().run(blog_conn) == 3
        assert seeded.query().get_all("zzz").count().run(blog_conn) == 0


class TestInsert:
    """Tests for inserts and conflict handling."""

    def test_insert_many(self, posts, blog_conn):
        rows = [posts.create({"title": "x"}), posts.create({"title": "y"})]
        result = posts.insert(rows).run(blog_conn)
        assert result.inserted == 2
        assert result.generated_keys == []

    def test_missing_key_is_generated(self, posts, blog_conn):
        result = posts.insert({"title": "raw"}).run(blog_conn)
        assert result.inserted == 1
        assert len(result.generated_keys) == 1
        stored = posts.get(result.generated_keys[0]).run(blog_conn)
        assert stored["title"] == "raw"

    def test_duplicate_key_counts_as_error(self, seeded, blog_conn):
        result = seeded.insert({"id": "a", "title": "Again"}).run(blog_conn)
        assert result.inserted == 0
        assert result.errors == 1
        assert "Duplicate primary key" in result.first_error
        assert seeded.get("a").run(blog_conn)["title"] == "First"

    def test_conflict_replace(self, seeded, blog_conn):
        result = seeded.insert({"id": "a", "title": "Again"}, conflict="replace").run(blog_conn)
        assert result.replaced == 1
        assert seeded.get("a").run(blog_conn) == {"id": "a", "title": "Again"}

    def test_conflict_update_merges(self, seeded, blog_conn):
        result = seeded.insert({"id": "a", "title": "Again"}, conflict="update").run(blog_conn)
        assert result.replaced == 1
        stored = seeded.get("a").run(blog_conn)
        assert stored["title"] == "Again"
        assert stored["views"] == 3

    def test_conflict_unchanged(self, seeded, blog_conn):
        existing = seeded.get("a").run(blog_conn)
        result = seeded.insert(existing, conflict="replace").run(blog_conn)
        assert result.unchanged == 1
        assert result.replaced == 0

    def test_unknown_conflict_strategy(self, posts):
        with pytest.raises(QueryError, match="conflict strategy"):
            posts.insert({"title": "x"}, conflict="merge")  # type: ignore[arg-type]

    def test_insert_non_row(self, posts, blog_conn):
        with pytest.raises(QueryError):
            posts.insert([1]).run(blog_conn)


class TestWrites:
    """Tests for selection updates and deletes."""

    def test_selection_update_with_function(self, seeded, blog_conn):
        result = (
            seeded.query()
            .filter({"authorId": "u1"})
            .update(lambda row: {"views": row["views"] + 1})
            .run(blog_conn)
        )
        assert result.replaced == 1
        assert seeded.get("a").run(blog_conn)["views"] == 4

    def test_update_same_values_is_unchanged(self, seeded, blog_conn):
        result = seeded.get("a").update({"views": 3}).run(blog_conn)
        assert result.unchanged == 1

    def test_update_missing_row_is_skipped(self, seeded, blog_conn):
        assert seeded.get("zzz").update({"views": 1}).run(blog_conn).skipped == 1

    def test_update_cannot_change_pk(self, seeded, blog_conn):
        result = seeded.get("a").update({"id": "z"}).run(blog_conn)
        assert result.errors == 1
        assert seeded.get("a").run(blog_conn) is not None

    def test_delete_single(self, seeded, blog_conn):
        assert seeded.delete("a").run(blog_conn).deleted == 1
        assert seeded.get("a").run(blog_conn) is None

    def test_delete_list(self, seeded, blog_conn):
        assert seeded.delete(["a", "b", "zzz"]).run(blog_conn).deleted == 2
        assert ids(seeded.query().run(blog_conn)) == ["c"]

    def test_delete_missing_row(self, seeded, blog_conn):
        result = seeded.delete("zzz").run(blog_conn)
        assert result.deleted == 0
        assert result.skipped == 1

    def test_delete_selection(self, seeded, blog_conn):
        assert seeded.query().has_fields("authorId").delete().run(blog_conn).deleted == 2
