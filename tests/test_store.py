"""Tests for the SQLAlchemy post and cursor stores."""

import threading

import pytest

from ocamlfeed.events import MatchedPost
from ocamlfeed.store import CursorStore, Database, Post, PostStore


def matched(rkey, cid="cid", indexed_at="2024-05-01T12:00:00.000Z"):
    return MatchedPost(f"at://did:plc:alice/app.bsky.feed.post/{rkey}", cid, indexed_at)


class TestPostStore:
    def test_insert_and_read_back(self, post_store):
        post_store.insert_ignoring_conflicts([matched("a"), matched("b")])

        assert post_store.uris() == [
            "at://did:plc:alice/app.bsky.feed.post/a",
            "at://did:plc:alice/app.bsky.feed.post/b",
        ]

    def test_first_insert_wins(self, post_store):
        post_store.insert_ignoring_conflicts([matched("a", cid="first")])
        post_store.insert_ignoring_conflicts([matched("a", cid="second")])

        assert post_store.get("at://did:plc:alice/app.bsky.feed.post/a").cid == "first"

    def test_duplicates_within_one_batch(self, post_store):
        post_store.insert_ignoring_conflicts([matched("a", cid="first"), matched("a", cid="second")])

        assert post_store.get("at://did:plc:alice/app.bsky.feed.post/a").cid == "first"

    def test_remove_by_uri(self, post_store):
        post_store.insert_ignoring_conflicts([matched("a"), matched("b")])

        post_store.remove_by_uri({"at://did:plc:alice/app.bsky.feed.post/a", "at://did:plc:bob/never-stored"})

        assert post_store.uris() == ["at://did:plc:alice/app.bsky.feed.post/b"]

    def test_empty_batches_are_no_ops(self, post_store):
        post_store.insert_ignoring_conflicts([])
        post_store.remove_by_uri(set())
        assert post_store.uris() == []

    def test_page_is_newest_first(self, post_store):
        post_store.insert_ignoring_conflicts(
            [
                matched("old", cid="c1", indexed_at="2024-05-01T10:00:00.000Z"),
                matched("new", cid="c2", indexed_at="2024-05-01T12:00:00.000Z"),
                matched("mid", cid="c3", indexed_at="2024-05-01T11:00:00.000Z"),
            ]
        )

        first = post_store.page(2)
        rest = post_store.page(2, before=(first[-1].indexed_at, first[-1].cid))

        assert [p.uri.rsplit("/", 1)[-1] for p in first] == ["new", "mid"]
        assert [p.uri.rsplit("/", 1)[-1] for p in rest] == ["old"]


class TestCursorStore:
    def test_missing_cursor_is_none(self, cursor_store):
        assert cursor_store.get() is None

    def test_set_then_update(self, cursor_store):
        cursor_store.set(20)
        cursor_store.set(40)
        assert cursor_store.get() == 40

    def test_cursors_are_per_service(self, db, cursor_store):
        other = CursorStore(db, "wss://relay.example")
        cursor_store.set(20)
        assert other.get() is None


def test_in_memory_database():
    db = Database("sqlite:///:memory:")
    db.create_all()
    store = PostStore(db)
    store.insert_ignoring_conflicts([matched("a")])
    assert len(store.uris()) == 1


def test_unsupported_dialect_is_rejected():
    with pytest.raises(ValueError):
        Database("mysql://user:pw@localhost/feed")


def test_failed_session_does_not_undo_a_concurrent_write():
    db = Database("sqlite:///:memory:")
    db.create_all()
    store = PostStore(db)
    written = threading.Event()
    release = threading.Event()

    def committing():
        with db.session() as session:
            session.execute(db.insert(Post).values(matched("a").as_row()))
            written.set()
            release.wait(timeout=5)

    def failing():
        try:
            with db.session() as session:
                session.execute(db.insert(Post).values(matched("b").as_row()))
                raise RuntimeError("batch failed")
        except RuntimeError:
            pass

    writer = threading.Thread(target=committing)
    writer.start()
    assert written.wait(timeout=5)
    loser = threading.Thread(target=failing)
    loser.start()
    # Give the failing session the chance to roll back while "a" is uncommitted.
    loser.join(timeout=0.5)
    release.set()
    writer.join(timeout=5)
    loser.join(timeout=5)

    assert store.uris() == ["at://did:plc:alice/app.bsky.feed.post/a"]
