"""
SQLAlchemy persistence for matched posts and the firehose cursor.

Usage:
    db = Database("sqlite:///db.sqlite")
    db.create_all()
    posts = PostStore(db)
    posts.insert_ignoring_conflicts([MatchedPost(uri, cid, indexed_at)])
"""

import threading
from collections.abc import Generator, Iterable
from contextlib import contextmanager
from typing import List, Optional, Tuple

from sqlalchemy import BigInteger, String, create_engine, delete, make_url, select, tuple_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from ocamlfeed.events import MatchedPost

_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


class Base(DeclarativeBase):
    pass


class Post(Base):
    __tablename__ = "post"

    uri: Mapped[str] = mapped_column(String, primary_key=True)
    cid: Mapped[str] = mapped_column(String, nullable=False)
    indexed_at: Mapped[str] = mapped_column(String, nullable=False, index=True)


class SubState(Base):
    __tablename__ = "sub_state"

    service: Mapped[str] = mapped_column(String, primary_key=True)
    cursor: Mapped[int] = mapped_column(BigInteger, nullable=False)


class Database:
    """Engine and session factory shared by the stores.

    Sessions may be opened from several dispatcher threads at once. In-memory
    SQLite is pinned to one connection, which holds a single transaction, so
    sessions on it are serialized and must not be nested. Everything else
    gets a regular connection pool.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        backend = make_url(url).get_backend_name()
        if backend not in _INSERTS:
            raise ValueError(f"Unsupported database backend: {backend}")
        if backend == "sqlite":
            connect_args = {"check_same_thread": False}
            pool_config = {"poolclass": StaticPool} if ":memory:" in url or url == "sqlite://" else {}
        else:
            connect_args = {}
            pool_config = {"pool_pre_ping": True}

        self.engine = create_engine(url, connect_args=connect_args, echo=echo, **pool_config)
        # One shared connection means one shared transaction.
        self._session_lock = threading.Lock() if isinstance(self.engine.pool, StaticPool) else None
        self.SessionLocal = sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False,
        )

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def insert(self, table):
        return _INSERTS[self.dialect](table)

    def create_all(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Open a session that commits on success and rolls back on error."""
        if self._session_lock is None:
            yield from self._transaction()
            return
        with self._session_lock:
            yield from self._transaction()

    def _transaction(self) -> Generator[Session, None, None]:
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


class PostStore:
    def __init__(self, db: Database):
        self.db = db

    def remove_by_uri(self, uris: Iterable[str]) -> None:
        uris = set(uris)
        if not uris:
            return
        with self.db.session() as session:
            session.execute(delete(Post).where(Post.uri.in_(uris)))

    def insert_ignoring_conflicts(self, posts: Iterable[MatchedPost]) -> None:
        rows = [post.as_row() for post in posts]
        if not rows:
            return
        stmt = self.db.insert(Post).values(rows).on_conflict_do_nothing(index_elements=["uri"])
        with self.db.session() as session:
            session.execute(stmt)

    def page(self, limit: int, before: Optional[Tuple[str, str]] = None) -> List[Post]:
        """Newest posts first; ``before`` is an ``(indexed_at, cid)`` bound."""
        stmt = select(Post).order_by(Post.indexed_at.desc(), Post.cid.desc()).limit(limit)
        if before is not None:
            stmt = stmt.where(tuple_(Post.indexed_at, Post.cid) < tuple_(*before))
        with self.db.session() as session:
            return list(session.scalars(stmt))

    def get(self, uri: str) -> Optional[Post]:
        with self.db.session() as session:
            return session.get(Post, uri)

    def uris(self) -> List[str]:
        with self.db.session() as session:
            return list(session.scalars(select(Post.uri).order_by(Post.uri)))


class CursorStore:
    """Single-row store for the last checkpointed firehose sequence."""

    def __init__(self, db: Database, service: str):
        self.db = db
        self.service = service

    def get(self) -> Optional[int]:
        with self.db.session() as session:
            return session.scalar(select(SubState.cursor).where(SubState.service == self.service))

    def set(self, seq: int) -> None:
        stmt = self.db.insert(SubState).values(service=self.service, cursor=seq)
        stmt = stmt.on_conflict_do_update(index_elements=["service"], set_={"cursor": stmt.excluded.cursor})
        with self.db.session() as session:
            session.execute(stmt)
