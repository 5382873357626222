"""
Pytest fixtures for the feed generator tests.

Each test gets its own SQLite file so dispatcher threads can share it.
"""

from datetime import datetime, timedelta, timezone

import pytest

from ocamlfeed.events import POST_COLLECTION, CommitEvent, CreateOp, DeleteOp, at_uri
from ocamlfeed.store import CursorStore, Database, PostStore

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def post_record(text="I love OCaml", age=timedelta(hours=1), created_at=None):
    if created_at is None:
        created_at = (NOW - age).isoformat().replace("+00:00", "Z")
    return {"$type": POST_COLLECTION, "text": text, "createdAt": created_at}


def create_op(repo="did:plc:alice", rkey="1", cid="bafy1", **record_kwargs):
    return CreateOp(POST_COLLECTION, at_uri(repo, f"{POST_COLLECTION}/{rkey}"), cid, post_record(**record_kwargs))


def delete_op(repo="did:plc:alice", rkey="1"):
    return DeleteOp(POST_COLLECTION, at_uri(repo, f"{POST_COLLECTION}/{rkey}"))


def commit(seq, *ops, repo="did:plc:alice"):
    return CommitEvent(seq=seq, repo=repo, ops=tuple(ops))


class FakeEventSource:
    """Replays scripted connections; an Exception in a script ends that connection."""

    def __init__(self, *scripts, on_exhausted=None):
        self.scripts = [list(script) for script in scripts]
        self.cursors = []
        self.closed = False
        self.on_exhausted = on_exhausted

    def stream(self, cursor):
        self.cursors.append(cursor)
        if not self.scripts:
            if self.on_exhausted is not None:
                self.on_exhausted()
            return
        for item in self.scripts.pop(0):
            if isinstance(item, Exception):
                raise item
            yield item

    def close(self):
        self.closed = True


@pytest.fixture
def db(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'feed.sqlite'}")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def post_store(db):
    return PostStore(db)


@pytest.fixture
def cursor_store(db):
    return CursorStore(db, "wss://bsky.network")
