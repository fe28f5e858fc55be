"""Shared pytest fixtures for schemaloom tests."""

import sqlite3

import pytest

from schemaloom.cache import SchemaCache
from schemaloom.config import DiscoveryConfig
from schemaloom.database.executor import SQLiteExecutor
from schemaloom.discovery import SchemaDiscovery

USERS_POSTS_DDL = """
CREATE TABLE users (
    id INTEGER PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    name VARCHAR(100)
);
CREATE TABLE posts (
    id INTEGER PRIMARY KEY,
    user_id INTEGER REFERENCES users(id),
    title TEXT NOT NULL
);
"""

BLOG_DDL = """
CREATE TABLE users (
    id INTEGER PRIMARY KEY,
    email TEXT NOT NULL UNIQUE
);
CREATE TABLE profiles (
    id INTEGER PRIMARY KEY,
    user_id INTEGER NOT NULL UNIQUE REFERENCES users(id),
    bio TEXT
);
CREATE TABLE posts (
    id INTEGER PRIMARY KEY,
    author_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    editor_id INTEGER REFERENCES users(id) ON DELETE SET NULL,
    status TEXT NOT NULL DEFAULT 'draft' CHECK (status IN ('draft', 'published')),
    title VARCHAR(200) NOT NULL
);
CREATE TABLE categories (
    id INTEGER PRIMARY KEY,
    parent_id INTEGER REFERENCES categories(id),
    name TEXT NOT NULL
);
CREATE TABLE tags (
    id INTEGER PRIMARY KEY,
    label TEXT NOT NULL
);
CREATE TABLE post_tags (
    post_id INTEGER NOT NULL REFERENCES posts(id),
    tag_id INTEGER NOT NULL REFERENCES tags(id),
    PRIMARY KEY (post_id, tag_id)
);
CREATE TABLE comments (
    id INTEGER PRIMARY KEY,
    post_id INTEGER REFERENCES posts(id),
    body TEXT
);
CREATE INDEX idx_comments_post ON comments(post_id);
"""


def make_connection(ddl: str) -> sqlite3.Connection:
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    conn.execute("PRAGMA foreign_keys = ON")
    conn.executescript(ddl)
    return conn


@pytest.fixture
def users_posts_conn():
    """In-memory SQLite database with users(id, email unique) and posts(user_id -> users)."""
    conn = make_connection(USERS_POSTS_DDL)
    yield conn
    conn.close()


@pytest.fixture
def blog_conn():
    """In-memory SQLite database covering one-to-one, self references and a junction table."""
    conn = make_connection(BLOG_DDL)
    yield conn
    conn.close()


@pytest.fixture
def users_posts_executor(users_posts_conn):
    return SQLiteExecutor(connection=users_posts_conn)


@pytest.fixture
def blog_executor(blog_conn):
    return SQLiteExecutor(connection=blog_conn)


@pytest.fixture
def users_posts_snapshot(users_posts_executor):
    return SchemaDiscovery.for_executor(users_posts_executor).run().snapshot


@pytest.fixture
def blog_result(blog_executor):
    return SchemaDiscovery.for_executor(blog_executor).run()


@pytest.fixture
def blog_snapshot(blog_result):
    return blog_result.snapshot


@pytest.fixture
def make_cache():
    """Factory for caches over an executor; closes them after the test."""
    caches = []

    def factory(executor, config=None, **kwargs):
        config = config or DiscoveryConfig(dialect=executor.dialect.value)
        cache = SchemaCache(SchemaDiscovery.for_executor(executor, config), **kwargs)
        caches.append(cache)
        return cache

    yield factory
    for cache in caches:
        cache.close()
