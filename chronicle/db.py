"""
SQLAlchemy tables and engine wiring for stories, topics and their junction.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    event,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Database:
    """
    Engine and session factory. Accepts any SQLAlchemy URL (Postgres in
    production, SQLite for tests and local runs).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("A database URL is required")
        options: dict = {"future": True, "pool_pre_ping": True}
        if database_url.startswith("sqlite") and ":memory:" in database_url:
            # One shared connection, otherwise every pooled connection
            # (and every worker thread) would see its own empty database.
            options.update(
                connect_args={"check_same_thread": False}, poolclass=StaticPool
            )
        else:
            options["pool_recycle"] = 1800
        self.engine = create_engine(database_url, **options)
        if database_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class TopicRow(Base):
    __tablename__ = "topics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class StoryRow(Base):
    __tablename__ = "stories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String, nullable=False)
    slug = Column(String, nullable=False, index=True)
    excerpt = Column(Text, nullable=False, default="")
    content = Column(Text, nullable=False, default="")
    reporter = Column(String, nullable=False, default="")
    editor = Column(String, nullable=False, default="")
    author = Column(String, nullable=False, default="")
    status = Column(String, nullable=False, index=True)
    media = Column(JSON, nullable=True)
    likes = Column(Integer, nullable=False, default=0)
    shares = Column(Integer, nullable=False, default=0)
    views = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class TopicStoryRow(Base):
    """Junction row. (story_id, topic_id) is not unique; readers must
    tolerate duplicates."""

    __tablename__ = "topic_stories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    story_id = Column(Integer, ForeignKey("stories.id"), nullable=False, index=True)
    topic_id = Column(
        Integer,
        ForeignKey("topics.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
