"""Tests for relationship inference and the relationship graph."""

import pytest

from schemaloom.analysis.relationships import (
    RelationshipGraph,
    RelationshipResolver,
    analyze_patterns,
    detect_circular_references,
    find_junction_tables,
    name_from_column,
    pluralize,
)
from schemaloom.database.executor import SQLiteExecutor
from schemaloom.database.models import Cardinality
from schemaloom.discovery import SchemaDiscovery
from schemaloom.errors import RelationshipNotFoundError, SchemaNotFoundError

from ..conftest import make_connection


def _snapshot(ddl):
    return SchemaDiscovery.for_executor(SQLiteExecutor(connection=make_connection(ddl))).run().snapshot


def _forward(snapshot):
    return {(r.source_table, r.name): r for r in RelationshipResolver().resolve(snapshot)}


class TestNaming:
    """Test relationship name helpers."""

    @pytest.mark.parametrize("column,expected", [
        ("user_id", "user"),
        ("authorId", "author"),
        ("OWNER_ID", "OWNER"),
        ("id", None),
        ("_id", None),
        ("email", None),
    ])
    def test_name_from_column(self, column, expected):
        assert name_from_column(column) == expected

    @pytest.mark.parametrize("name,expected", [
        ("post", "posts"),
        ("posts", "posts"),
        ("category", "categories"),
        ("day", "days"),
        ("address", "addresses"),
        ("box", "boxes"),
        ("match", "matches"),
    ])
    def test_pluralize(self, name, expected):
        assert pluralize(name) == expected


class TestRelationshipResolver:
    """Test forward relationship inference."""

    def test_users_posts_many_to_one(self, users_posts_snapshot):
        rels = RelationshipResolver().resolve(users_posts_snapshot)
        assert len(rels) == 1
        rel = rels[0]
        assert rel.name == "user"
        assert rel.source_table == "posts"
        assert rel.source_columns == ("user_id",)
        assert rel.target_table == "users"
        assert rel.target_columns == ("id",)
        assert rel.cardinality is Cardinality.MANY_TO_ONE
        assert rel.optional is True
        assert rel.inverse is False

    def test_unique_foreign_key_is_one_to_one(self, blog_snapshot):
        rel = _forward(blog_snapshot)[("profiles", "user")]
        assert rel.cardinality is Cardinality.ONE_TO_ONE
        assert rel.optional is False

    def test_multiple_foreign_keys_to_same_table(self, blog_snapshot):
        forward = _forward(blog_snapshot)
        assert forward[("posts", "author")].source_columns == ("author_id",)
        assert forward[("posts", "author")].optional is False
        assert forward[("posts", "editor")].source_columns == ("editor_id",)
        assert forward[("posts", "editor")].optional is True
        assert forward[("posts", "author")].foreign_key != forward[("posts", "editor")].foreign_key

    def test_self_reference(self, blog_snapshot):
        rel = _forward(blog_snapshot)[("categories", "parent")]
        assert rel.is_self_referencing
        assert rel.cardinality is Cardinality.MANY_TO_ONE

    def test_junction_side_is_many_to_one(self, blog_snapshot):
        forward = _forward(blog_snapshot)
        assert forward[("post_tags", "post")].cardinality is Cardinality.MANY_TO_ONE
        assert forward[("post_tags", "tag")].cardinality is Cardinality.MANY_TO_ONE

    def test_one_relationship_per_foreign_key(self, blog_snapshot):
        rels = RelationshipResolver().resolve(blog_snapshot)
        fk_count = sum(len(t.foreign_keys) for t in blog_snapshot)
        assert len(rels) == fk_count

    def test_composite_foreign_key_named_after_target(self):
        snapshot = _snapshot("""
            CREATE TABLE orders (region TEXT, number INTEGER, PRIMARY KEY (region, number));
            CREATE TABLE order_lines (
                id INTEGER PRIMARY KEY,
                region TEXT,
                order_number INTEGER,
                FOREIGN KEY (region, order_number) REFERENCES orders(region, number)
            );
        """)
        rel = _forward(snapshot)[("order_lines", "orders")]
        assert rel.source_columns == ("region", "order_number")
        assert rel.target_columns == ("region", "number")
        assert rel.cardinality is Cardinality.MANY_TO_ONE

    def test_name_clash_with_column(self):
        snapshot = _snapshot("""
            CREATE TABLE users (id INTEGER PRIMARY KEY);
            CREATE TABLE posts (id INTEGER PRIMARY KEY, user TEXT, user_id INTEGER REFERENCES users(id));
        """)
        assert ("posts", "user_by_user_id") in _forward(snapshot)

    def test_non_unique_target_warns(self):
        snapshot = _snapshot("""
            CREATE TABLE users (id INTEGER PRIMARY KEY, email TEXT);
            CREATE TABLE notes (id INTEGER PRIMARY KEY, owner_email TEXT REFERENCES users(email));
        """)
        resolver = RelationshipResolver()
        rels = resolver.resolve(snapshot)

        assert rels[0].name == "users"
        assert rels[0].cardinality is Cardinality.MANY_TO_ONE
        assert len(resolver.warnings) == 1
        assert resolver.warnings[0].relationship == "users"
        assert "does not reference a unique key" in resolver.warnings[0].message

    def test_missing_target_warns(self):
        snapshot = _snapshot("""
            CREATE TABLE posts (id INTEGER PRIMARY KEY, ghost_id INTEGER REFERENCES ghosts(id));
        """)
        resolver = RelationshipResolver()
        rels = resolver.resolve(snapshot)
        assert rels[0].name == "ghost"
        assert "missing table ghosts" in resolver.warnings[0].message

    def test_deterministic(self, blog_snapshot):
        assert RelationshipResolver().resolve(blog_snapshot) == RelationshipResolver().resolve(blog_snapshot)


class TestRelationshipGraph:
    """Test inverse and many-to-many navigation."""

    def test_every_forward_relationship_has_an_inverse(self, blog_snapshot):
        graph = RelationshipGraph(blog_snapshot)
        inverses = [r for r in graph if r.inverse]
        for rel in graph.forward:
            matches = [
                inv for inv in inverses
                if inv.foreign_key == rel.foreign_key
                and inv.source_table == rel.target_table
                and inv.target_table == rel.source_table
                and inv.source_columns == rel.target_columns
                and inv.target_columns == rel.source_columns
            ]
            assert len(matches) == 1, rel.name

    def test_inverse_cardinalities(self, blog_snapshot):
        graph = RelationshipGraph(blog_snapshot)
        assert graph.get("posts", "comments").cardinality is Cardinality.ONE_TO_MANY
        assert graph.get("users", "profiles").cardinality is Cardinality.ONE_TO_ONE

    def test_names_per_table(self, blog_snapshot):
        graph = RelationshipGraph(blog_snapshot)
        assert graph.names("posts") == ["author", "editor", "comments", "post_tags", "tags"]
        assert graph.names("users") == ["posts_by_author_id", "posts_by_editor_id", "profiles"]

    def test_self_reference_inverse(self, blog_snapshot):
        graph = RelationshipGraph(blog_snapshot)
        children = graph.get("categories", "categories_by_parent_id")
        assert children.cardinality is Cardinality.ONE_TO_MANY
        assert children.target_columns == ("parent_id",)

    def test_many_to_many_through_junction(self, blog_snapshot):
        graph = RelationshipGraph(blog_snapshot)
        tags = graph.get("posts", "tags")
        assert tags.cardinality is Cardinality.MANY_TO_MANY
        assert tags.via.table == "post_tags"
        assert tags.via.source_columns == ("post_id",)
        assert tags.via.target_columns == ("tag_id",)
        assert graph.get("tags", "posts").via.source_columns == ("tag_id",)

    def test_many_to_many_can_be_disabled(self, blog_snapshot):
        graph = RelationshipGraph(blog_snapshot, detect_many_to_many=False)
        assert "tags" not in graph.names("posts")
        assert all(r.via is None for r in graph)

    def test_unknown_relationship(self, blog_snapshot):
        graph = RelationshipGraph(blog_snapshot)
        with pytest.raises(RelationshipNotFoundError) as exc_info:
            graph.get("posts", "likes")
        assert "author" in exc_info.value.available

    def test_unknown_table(self, blog_snapshot):
        with pytest.raises(SchemaNotFoundError):
            RelationshipGraph(blog_snapshot).get("likes", "post")

    def test_len_counts_every_direction(self, blog_snapshot):
        graph = RelationshipGraph(blog_snapshot)
        assert len(graph) == len(graph.forward) * 2 + 2


class TestPatterns:
    """Test structural pattern detection."""

    def test_junction_tables(self, blog_snapshot):
        assert [t.name for t in find_junction_tables(blog_snapshot)] == ["post_tags"]

    def test_table_with_payload_is_not_a_junction(self):
        snapshot = _snapshot("""
            CREATE TABLE a (id INTEGER PRIMARY KEY);
            CREATE TABLE b (id INTEGER PRIMARY KEY);
            CREATE TABLE a_b (a_id INTEGER REFERENCES a(id), b_id INTEGER REFERENCES b(id), note TEXT);
        """)
        assert find_junction_tables(snapshot) == []

    def test_junction_with_surrogate_key(self):
        snapshot = _snapshot("""
            CREATE TABLE a (id INTEGER PRIMARY KEY);
            CREATE TABLE b (id INTEGER PRIMARY KEY);
            CREATE TABLE a_b (id INTEGER PRIMARY KEY, a_id INTEGER REFERENCES a(id), b_id INTEGER REFERENCES b(id));
        """)
        assert [t.name for t in find_junction_tables(snapshot)] == ["a_b"]

    def test_cycle_detection(self):
        snapshot = _snapshot("""
            CREATE TABLE a (id INTEGER PRIMARY KEY, b_id INTEGER REFERENCES b(id));
            CREATE TABLE b (id INTEGER PRIMARY KEY, a_id INTEGER REFERENCES a(id));
        """)
        assert detect_circular_references(snapshot) == [["a", "b", "a"]]

    def test_self_reference_is_not_a_cycle(self, blog_snapshot):
        assert detect_circular_references(blog_snapshot) == []

    def test_analyze_patterns(self, blog_snapshot):
        patterns = analyze_patterns(blog_snapshot)
        assert patterns.self_referencing == ["categories.parent"]
        assert patterns.junction_tables == ["post_tags"]
        assert patterns.one_to_one == 1
        assert patterns.many_to_one == 6
        assert patterns.many_to_many == 1
        assert patterns.to_dict()["circular_references"] == []
