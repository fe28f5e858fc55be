"""Tests for batched relationship loading."""

import pytest

from schemaloom.database.executor import SQLiteExecutor
from schemaloom.errors import RelationshipNotFoundError, SchemaNotFoundError
from schemaloom.loader import BatchedRelationshipLoader, RelationAttachments

from .conftest import make_connection
from .fixtures import CountingExecutor


def _seed_users(conn, count):
    conn.executemany(
        "INSERT INTO users (id, email, name) VALUES (?, ?, ?)",
        [(i, f"user{i}@example.com", f"User {i}") for i in range(1, count + 1)],
    )


def _seed_blog(conn):
    conn.executescript("""
        INSERT INTO users (id, email) VALUES (1, 'ada@example.com'), (2, 'bob@example.com'), (3, 'cy@example.com');
        INSERT INTO profiles (id, user_id, bio) VALUES (1, 1, 'Mathematician');
        INSERT INTO posts (id, author_id, editor_id, status, title) VALUES
            (10, 1, 2, 'published', 'Engines'),
            (11, 1, NULL, 'draft', 'Notes'),
            (12, 2, 1, 'published', 'Hello');
        INSERT INTO tags (id, label) VALUES (100, 'math'), (101, 'history'), (102, 'misc');
        INSERT INTO post_tags (post_id, tag_id) VALUES (10, 100), (10, 101), (11, 100), (12, 102);
        INSERT INTO comments (id, post_id, body) VALUES (1000, 10, 'First'), (1001, 10, 'Second'), (1002, 12, 'Hi');
    """)


def _rows(executor, sql):
    return executor.execute(sql)


@pytest.fixture
def users_posts_loader(make_cache, users_posts_executor):
    """Loader over users/posts with a counting executor for data queries."""
    cache = make_cache(users_posts_executor)
    cache.get_snapshot()
    counting = CountingExecutor(users_posts_executor)
    return BatchedRelationshipLoader(cache, counting), counting


@pytest.fixture
def blog_loader(make_cache, blog_conn, blog_executor):
    """Loader over the seeded blog database."""
    _seed_blog(blog_conn)
    cache = make_cache(blog_executor)
    cache.get_snapshot()
    counting = CountingExecutor(blog_executor)
    return BatchedRelationshipLoader(cache, counting), counting


class TestQueryCount:
    """One query per hop regardless of how many rows are loaded."""

    @pytest.mark.parametrize("post_count", [1, 10, 10000])
    def test_many_to_one_is_one_query(self, users_posts_conn, users_posts_executor, users_posts_loader, post_count):
        loader, counting = users_posts_loader
        _seed_users(users_posts_conn, 50)
        users_posts_conn.executemany(
            "INSERT INTO posts (id, user_id, title) VALUES (?, ?, ?)",
            [(i, (i % 50) + 1, f"Post {i}") for i in range(1, post_count + 1)],
        )
        posts = _rows(users_posts_executor, "SELECT * FROM posts ORDER BY id")

        attachments = loader.load(posts, "user", table="posts")

        assert counting.count == 1
        assert len(counting.statements_against("users")) == 1
        for post in posts:
            assert attachments.get(post, "user")["id"] == post["user_id"]

    def test_five_hundred_posts_by_five_hundred_users(self, users_posts_conn, users_posts_executor, users_posts_loader):
        loader, counting = users_posts_loader
        _seed_users(users_posts_conn, 500)
        users_posts_conn.executemany(
            "INSERT INTO posts (id, user_id, title) VALUES (?, ?, ?)",
            [(i, i, f"Post {i}") for i in range(1, 501)],
        )
        posts = _rows(users_posts_executor, "SELECT * FROM posts")

        attachments = loader.load(posts, "user", table="posts")

        assert len(counting.statements_against("users")) == 1
        sql, params = counting.statements[0]
        assert len(params) == 500
        assert all(attachments.get(p, "user")["email"] == f"user{p['user_id']}@example.com" for p in posts)

    def test_inverse_is_one_query(self, users_posts_conn, users_posts_executor, users_posts_loader):
        loader, counting = users_posts_loader
        _seed_users(users_posts_conn, 3)
        users_posts_conn.executemany(
            "INSERT INTO posts (id, user_id, title) VALUES (?, ?, ?)",
            [(1, 1, "a"), (2, 1, "b"), (3, 2, "c")],
        )
        users = _rows(users_posts_executor, "SELECT * FROM users ORDER BY id")

        attachments = loader.load(users, "posts", table="users")

        assert counting.count == 1
        assert [p["id"] for p in attachments.get(users[0], "posts")] == [1, 2]
        assert [p["id"] for p in attachments.get(users[1], "posts")] == [3]
        assert attachments.get(users[2], "posts") == []


class TestEdgeCases:
    """Test empty input, null keys and unknown relationships."""

    def test_empty_input_runs_no_query(self, users_posts_loader):
        loader, counting = users_posts_loader
        attachments = loader.load([], "user", table="posts")
        assert len(attachments) == 0
        assert counting.count == 0

    def test_null_keys_are_not_queried(self, users_posts_conn, users_posts_executor, users_posts_loader):
        loader, counting = users_posts_loader
        _seed_users(users_posts_conn, 1)
        users_posts_conn.execute("INSERT INTO posts (id, user_id, title) VALUES (1, NULL, 'orphan'), (2, 1, 'owned')")
        posts = _rows(users_posts_executor, "SELECT * FROM posts ORDER BY id")

        attachments = loader.load(posts, "user", table="posts")

        assert attachments.get(posts[0], "user") is None
        assert (posts[0], "user") in attachments
        assert attachments.get(posts[1], "user")["id"] == 1
        sql, params = counting.statements[0]
        assert params == (1,)

    def test_all_null_keys_run_no_query(self, users_posts_loader):
        loader, counting = users_posts_loader
        posts = [{"id": 1, "user_id": None, "title": "orphan"}]
        attachments = loader.load(posts, "user", table="posts")
        assert attachments.get(posts[0], "user") is None
        assert counting.count == 0

    def test_no_match_gives_none(self, users_posts_loader):
        loader, counting = users_posts_loader
        posts = [{"id": 1, "user_id": 999, "title": "dangling"}]
        attachments = loader.load(posts, "user", table="posts")
        assert attachments.get(posts[0], "user") is None
        assert counting.count == 1

    def test_unknown_relationship(self, users_posts_loader):
        loader, counting = users_posts_loader
        with pytest.raises(RelationshipNotFoundError):
            loader.load([{"id": 1}], "comments", table="posts")
        assert counting.count == 0

    def test_unknown_table(self, users_posts_loader):
        loader, _ = users_posts_loader
        with pytest.raises(SchemaNotFoundError):
            loader.load([{"id": 1}], "user", table="articles")

    def test_missing_join_column(self, users_posts_loader):
        loader, _ = users_posts_loader
        with pytest.raises(ValueError):
            loader.load([{"id": 1, "title": "no fk column"}], "user", table="posts")

    def test_invalid_path(self, users_posts_loader):
        loader, _ = users_posts_loader
        with pytest.raises(ValueError):
            loader.load([{"id": 1}], "user..posts", table="posts")

    def test_rows_are_not_modified(self, users_posts_loader):
        loader, _ = users_posts_loader
        post = {"id": 1, "user_id": 999, "title": "x"}
        loader.load([post], "user", table="posts")
        assert post == {"id": 1, "user_id": 999, "title": "x"}


class TestBlogRelationships:
    """Test one-to-one, multi-hop and many-to-many loading."""

    def test_one_to_one(self, blog_executor, blog_loader):
        loader, _ = blog_loader
        users = _rows(blog_executor, "SELECT * FROM users ORDER BY id")
        attachments = loader.load(users, "profiles", table="users")
        assert attachments.get(users[0], "profiles")["bio"] == "Mathematician"
        assert attachments.get(users[1], "profiles") is None

    def test_multi_hop_is_one_query_per_hop(self, blog_executor, blog_loader):
        loader, counting = blog_loader
        users = _rows(blog_executor, "SELECT * FROM users ORDER BY id")

        attachments = loader.load(users, "posts_by_author_id.comments", table="users")

        assert counting.count == 2
        ada_posts = attachments.get(users[0], "posts_by_author_id")
        assert [p["id"] for p in ada_posts] == [10, 11]
        assert [c["body"] for c in attachments.get(ada_posts[0], "comments")] == ["First", "Second"]
        assert attachments.get(ada_posts[1], "comments") == []
        assert attachments.get(users[2], "posts_by_author_id") == []

    def test_path_as_sequence(self, blog_executor, blog_loader):
        loader, counting = blog_loader
        users = _rows(blog_executor, "SELECT * FROM users ORDER BY id")
        loader.load(users, ["posts_by_author_id", "comments"], table="users")
        assert counting.count == 2

    def test_many_to_many_single_query(self, blog_executor, blog_loader):
        loader, counting = blog_loader
        posts = _rows(blog_executor, "SELECT * FROM posts ORDER BY id")

        attachments = loader.load(posts, "tags", table="posts")

        assert counting.count == 1
        assert "JOIN" in counting.statements[0][0]
        by_id = {p["id"]: [t["label"] for t in attachments.get(p, "tags")] for p in posts}
        assert by_id == {10: ["math", "history"], 11: ["math"], 12: ["misc"]}
        assert all("__via_0" not in t for t in attachments.get(posts[0], "tags"))

    def test_shared_target_rows_are_one_object(self, blog_executor, blog_loader):
        loader, _ = blog_loader
        posts = _rows(blog_executor, "SELECT * FROM posts ORDER BY id")
        attachments = loader.load(posts, "tags", table="posts")
        math_from_10 = attachments.get(posts[0], "tags")[0]
        math_from_11 = attachments.get(posts[1], "tags")[0]
        assert math_from_10 is math_from_11

    def test_many_to_many_reverse(self, blog_executor, blog_loader):
        loader, _ = blog_loader
        tags = _rows(blog_executor, "SELECT * FROM tags ORDER BY id")
        attachments = loader.load(tags, "posts", table="tags")
        assert [p["id"] for p in attachments.get(tags[0], "posts")] == [10, 11]

    def test_load_many_shares_prefixes(self, blog_executor, blog_loader):
        loader, counting = blog_loader
        users = _rows(blog_executor, "SELECT * FROM users ORDER BY id")

        attachments = loader.load_many(
            users,
            ["profiles", "posts_by_author_id.tags", "posts_by_author_id.comments"],
            table="users",
        )

        assert counting.count == 4
        assert attachments.get(users[0], "profiles")["id"] == 1
        ada_posts = attachments.get(users[0], "posts_by_author_id")
        assert [t["label"] for t in attachments.get(ada_posts[0], "tags")] == ["math", "history"]
        assert len(attachments.get(ada_posts[0], "comments")) == 2

    def test_load_many_validates_before_querying(self, blog_loader):
        loader, counting = blog_loader
        with pytest.raises(RelationshipNotFoundError):
            loader.load_many([{"id": 1}], ["profiles", "posts_by_author_id.likes"], table="users")
        assert counting.count == 0

    def test_into_existing_attachments(self, blog_executor, blog_loader):
        loader, _ = blog_loader
        users = _rows(blog_executor, "SELECT * FROM users ORDER BY id")
        attachments = RelationAttachments()
        loader.load(users, "profiles", table="users", into=attachments)
        loader.load(users, "posts_by_editor_id", table="users", into=attachments)
        assert set(attachments.for_row(users[0])) == {"profiles", "posts_by_editor_id"}


class TestRelationAttachments:
    """Test the attachment side-map."""

    def test_identity_not_equality(self):
        attachments = RelationAttachments()
        first = {"id": 1}
        twin = {"id": 1}
        attachments.set(first, "user", {"id": 7})
        assert attachments.get(first, "user") == {"id": 7}
        assert attachments.get(twin, "user") is None
        assert not attachments.has(twin, "user")

    def test_iteration(self):
        attachments = RelationAttachments()
        row = {"id": 1}
        attachments.set(row, "tags", [])
        assert list(attachments) == [(row, "tags", [])]
        assert len(attachments) == 1


ORDERS_DDL = """
CREATE TABLE orders (
    region TEXT NOT NULL,
    num INTEGER NOT NULL,
    placed_by TEXT,
    PRIMARY KEY (region, num)
);
CREATE TABLE lines (
    id INTEGER PRIMARY KEY,
    region TEXT NOT NULL,
    num INTEGER NOT NULL,
    sku TEXT,
    FOREIGN KEY (region, num) REFERENCES orders(region, num)
);
CREATE TABLE codes (
    code TEXT,
    label TEXT
);
CREATE TABLE items (
    id INTEGER PRIMARY KEY,
    code TEXT REFERENCES codes
);
"""


@pytest.fixture
def orders_db(make_cache):
    """Orders keyed by (region, num) with two lines each, plus a keyless codes table."""
    conn = make_connection(ORDERS_DDL)
    regions = ["eu", "us"]
    conn.executemany(
        "INSERT INTO orders (region, num, placed_by) VALUES (?, ?, ?)",
        [(regions[i % 2], i, f"customer{i}") for i in range(1000)] +
        [(regions[(i + 1) % 2], i, f"customer{i}b") for i in range(1000)],
    )
    conn.executemany(
        "INSERT INTO lines (id, region, num, sku) VALUES (?, ?, ?, ?)",
        [
            (n * 2 + j + 1, region, num, f"sku{n}-{j}")
            for n, (region, num) in enumerate(conn.execute("SELECT region, num FROM orders ORDER BY region, num"))
            for j in range(2)
        ],
    )
    conn.commit()
    executor = SQLiteExecutor(connection=conn)
    cache = make_cache(executor)
    cache.get_snapshot()
    yield executor, cache
    conn.close()


class TestCompositeKeys:
    """Composite foreign keys load in one flat query."""

    def test_many_to_one_for_thousands_of_keys(self, orders_db):
        executor, cache = orders_db
        counting = CountingExecutor(executor)
        loader = BatchedRelationshipLoader(cache, counting)
        lines = _rows(executor, "SELECT * FROM lines ORDER BY id")
        assert len(lines) == 4000

        attachments = loader.load(lines, "orders", table="lines")

        assert counting.count == 1
        sql, params = counting.statements[0]
        assert " OR " not in sql
        assert len(params) == 2 * 2000
        for line in lines:
            order = attachments.get(line, "orders")
            assert (order["region"], order["num"]) == (line["region"], line["num"])

    def test_inverse_for_thousands_of_keys(self, orders_db):
        executor, cache = orders_db
        counting = CountingExecutor(executor)
        loader = BatchedRelationshipLoader(cache, counting)
        orders = _rows(executor, "SELECT * FROM orders ORDER BY region, num")

        attachments = loader.load(orders, "lines", table="orders")

        assert counting.count == 1
        for order in orders:
            lines = attachments.get(order, "lines")
            assert len(lines) == 2
            assert all((line["region"], line["num"]) == (order["region"], order["num"]) for line in lines)
            assert lines[0]["id"] < lines[1]["id"]

    def test_partially_null_key_is_not_queried(self, orders_db):
        executor, cache = orders_db
        counting = CountingExecutor(executor)
        loader = BatchedRelationshipLoader(cache, counting)
        lines = [{"id": 1, "region": "eu", "num": None, "sku": "x"}]

        attachments = loader.load(lines, "orders", table="lines")

        assert attachments.get(lines[0], "orders") is None
        assert counting.count == 0

    def test_relationship_without_target_key(self, orders_db):
        executor, cache = orders_db
        counting = CountingExecutor(executor)
        loader = BatchedRelationshipLoader(cache, counting)

        with pytest.raises(ValueError, match="no key to join on"):
            loader.load([{"id": 1, "code": "a"}], "codes", table="items")
        with pytest.raises(ValueError, match="no key to join on"):
            loader.load_many([{"code": "a"}], ["items"], table="codes")
        assert counting.count == 0


class TestSchemaVersions:
    """A load reads one cache entry for all of its hops."""

    def test_hops_share_one_entry(self, blog_executor, blog_loader, monkeypatch):
        loader, counting = blog_loader
        cache = loader.cache
        entries = []
        current_entry = cache.current_entry

        def tracking_entry():
            entry = current_entry()
            entries.append(entry)
            return entry

        def fail(*args, **kwargs):
            raise AssertionError("schema read outside the load's cache entry")

        monkeypatch.setattr(cache, "current_entry", tracking_entry)
        monkeypatch.setattr(cache, "get_snapshot", fail)
        monkeypatch.setattr(cache, "get_graph", fail)
        users = _rows(blog_executor, "SELECT * FROM users ORDER BY id")

        loader.load(users, "posts_by_author_id.tags", table="users")
        loader.load_many(users, ["profiles", "posts_by_author_id.comments"], table="users")

        assert len(entries) == 2
        assert counting.count == 5

    def test_refresh_between_hops_does_not_mix_versions(self, blog_conn, blog_executor, make_cache):
        _seed_blog(blog_conn)
        cache = make_cache(blog_executor)
        cache.get_snapshot()
        published = []

        class RefreshingExecutor(CountingExecutor):
            def execute(self, sql, params=()):
                result = super().execute(sql, params)
                if self.count == 1:
                    blog_conn.execute("ALTER TABLE comments ADD COLUMN rating INTEGER")
                    published.append(cache.refresh().published)
                return result

        loader = BatchedRelationshipLoader(cache, RefreshingExecutor(blog_executor))
        users = _rows(blog_executor, "SELECT * FROM users ORDER BY id")

        attachments = loader.load(users, "posts_by_author_id.comments", table="users")

        assert published == [True]
        assert cache.version == 2
        ada_posts = attachments.get(users[0], "posts_by_author_id")
        assert [c["body"] for c in attachments.get(ada_posts[0], "comments")] == ["First", "Second"]
