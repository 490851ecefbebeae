"""Tests for Table: validation, uniqueness, updates and introspection."""

from datetime import UTC, datetime

import pytest

from docrel import Table, base_schema, has_many, string
from docrel.core.types import RelationType
from docrel.exceptions import (
    FieldNotFoundError,
    SchemaError,
    UniquenessConflictError,
    UnknownRelationError,
    ValidationError,
)
from docrel.query.expr import Now


@pytest.fixture
def users(blog):
    return blog["user"]


class TestDeclaration:
    """Tests for table declaration and schema helpers."""

    def test_default_pk(self, users):
        assert users.pk == "id"
        assert repr(users) == "Table(name='user', pk='id')"

    def test_subclass_pk(self):
        class CodeTable(Table):
            pk = "code"

        table = CodeTable("country", fields={"code": string(max_length=2)})
        assert table.pk == "code"
        assert table.storage.key_column.name == "code"

    def test_pk_missing_from_fields(self):
        table = Table("thing", fields={"name": string()})
        with pytest.raises(SchemaError):
            table.fields

    def test_foreign_key_copies_pk_type(self, users):
        fk = users.get_foreign_key()
        assert fk.type is str
        assert fk.max_length == 36
        assert fk.nullable is True

    def test_foreign_key_to_unknown_field(self, users):
        with pytest.raises(FieldNotFoundError):
            users.get_foreign_key("missing")

    def test_create_fills_defaults(self, users):
        row = users.create({"name": "Ada"})
        assert set(row) == {"id", "createdAt", "updatedAt", "name"}

    def test_create_rejects_invalid_rows(self, users):
        with pytest.raises(ValidationError):
            users.create({"name": 5, "color": "red"})
        assert users.validate({"name": "Ada"}) is True
        assert users.validate({}) is False

    def test_generate_key(self, users):
        assert users.generate_key() != users.generate_key()


class TestUniqueness:
    """Tests for unique field enforcement."""

    def test_insert_duplicate_unique_value(self, users, blog_conn, insert_row):
        insert_row(users, name="Ada", email="ada@example.com")
        duplicate = users.create({"name": "Other", "email": "ada@example.com"})
        with pytest.raises(UniquenessConflictError) as exc_info:
            users.insert(duplicate).run(blog_conn)
        assert exc_info.value.field_name == "email"
        assert users.query().count().run(blog_conn) == 1

    def test_rows_without_the_value_are_not_checked(self, users, blog_conn, insert_row):
        insert_row(users, name="Ada")
        insert_row(users, name="Bob")
        assert users.query().count().run(blog_conn) == 2

    def test_update_to_taken_value(self, users, blog_conn, insert_row):
        insert_row(users, name="Ada", email="ada@example.com")
        bob = insert_row(users, name="Bob", email="bob@example.com")
        with pytest.raises(UniquenessConflictError):
            users.update(bob["id"], {"email": "ada@example.com"}).run(blog_conn)

    def test_update_keeping_own_value(self, users, blog_conn, insert_row):
        ada = insert_row(users, name="Ada", email="ada@example.com")
        result = users.update(ada["id"], {"email": "ada@example.com", "name": "Ada L."}).run(
            blog_conn
        )
        assert result.replaced == 1

    def test_update_many_to_one_unique_value(self, users, blog_conn, insert_row):
        ada = insert_row(users, name="Ada")
        bob = insert_row(users, name="Bob")
        with pytest.raises(UniquenessConflictError) as exc_info:
            users.update([ada["id"], bob["id"]], {"email": "same@example.com"})
        assert exc_info.value.field_name == "email"
        assert users.query().filter({"email": "same@example.com"}).count().run(blog_conn) == 0

    def test_update_list_of_one_sets_unique_value(self, users, blog_conn, insert_row):
        ada = insert_row(users, name="Ada")
        users.update([ada["id"]], {"email": "ada@example.com"}).run(blog_conn)
        assert users.get(ada["id"]).run(blog_conn)["email"] == "ada@example.com"

    def test_batch_insert_with_repeated_unique_value(self, users, blog_conn):
        rows = [
            users.create({"name": "Ada", "email": "x@example.com"}),
            users.create({"name": "Bob", "email": "x@example.com"}),
        ]
        with pytest.raises(UniquenessConflictError):
            users.insert(rows)
        assert users.query().count().run(blog_conn) == 0

    def test_batch_insert_with_distinct_unique_values(self, users, blog_conn):
        rows = [
            users.create({"name": "Ada", "email": "ada@example.com"}),
            users.create({"name": "Bob", "email": "bob@example.com"}),
            users.create({"name": "Cy"}),
            users.create({"name": "Di"}),
        ]
        assert users.insert(rows).run(blog_conn).inserted == 4

    def test_assert_integrate_passes(self, users, blog_conn):
        assert users.assert_integrate({"email": "new@example.com"}).run(blog_conn) is True


class TestUpdate:
    """Tests for Table.update."""

    def test_update_touches_updated_at(self, users, blog_conn, insert_row):
        old = datetime(2000, 1, 1, tzinfo=UTC)
        ada = insert_row(users, name="Ada", createdAt=old, updatedAt=old)
        users.update(ada["id"], {"name": "Ada L."}).run(blog_conn)

        stored = users.get(ada["id"]).run(blog_conn)
        assert stored["name"] == "Ada L."
        assert stored["createdAt"] == ada["createdAt"]
        assert stored["updatedAt"] > ada["updatedAt"]

    def test_update_validates_values(self, users):
        with pytest.raises(ValidationError):
            users.update("any", {"name": 5})
        with pytest.raises(ValidationError):
            users.update("any", {"color": "red"})

    def test_update_accepts_expressions(self, users, blog_conn, insert_row):
        ada = insert_row(users, name="Ada")
        users.update(ada["id"], {"email": Now()}).run(blog_conn)
        assert users.get(ada["id"]).run(blog_conn)["email"].startswith("20")

    def test_update_many(self, users, blog_conn, insert_row):
        ada = insert_row(users, name="Ada")
        bob = insert_row(users, name="Bob")
        result = users.update([ada["id"], bob["id"]], {"name": "Same"}).run(blog_conn)
        assert result.replaced == 2
        names = {row["name"] for row in users.query().run(blog_conn)}
        assert names == {"Same"}

    def test_update_missing_row(self, users, blog_conn):
        assert users.update("zzz", {"name": "x"}).run(blog_conn).skipped == 1

    def test_schemaless_table_accepts_any_patch(self, conn):
        loose = Table("loose")
        loose.sync(conn)
        loose.insert({"id": "1", "anything": True}).run(conn)
        loose.update("1", {"other": 1}).run(conn)
        assert loose.get("1").run(conn) == {"id": "1", "anything": True, "other": 1}


class TestIntrospection:
    """Tests for describe and relation lookups."""

    def test_describe(self, users):
        info = users.describe()
        assert info.name == "user"
        assert info.primary_key == "id"
        assert [field.name for field in info.fields] == [
            "id",
            "createdAt",
            "updatedAt",
            "name",
            "email",
        ]
        relations = {relation.name: relation for relation in info.relations}
        assert relations["posts"].relation_type == RelationType.HAS_MANY
        assert relations["posts"].target_table == "post"
        assert relations["posts"].links == ["post.authorId -> user.id"]

    def test_unknown_relation(self, users):
        with pytest.raises(UnknownRelationError) as exc_info:
            users.get_relation("comments")
        assert exc_info.value.available_relations == ["profile", "posts"]

    def test_relation_entries_must_be_relations(self):
        table = Table(
            "thing",
            fields=base_schema,
            relations={"posts": has_many, "other": "nope"},
        )
        with pytest.raises(SchemaError):
            table.relations
