"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from fastapi import Depends

from chronicle.cache import CacheStore, InMemoryCacheStore, RedisCacheStore
from chronicle.config import get_settings
from chronicle.db import Database
from chronicle.repository import SqlRepository, story_repository, topic_repository
from chronicle.types import Story, Topic

_database: Database | None = None
_cache_store: CacheStore | None = None


def get_database() -> Database:
    """
    Return a singleton database so the connection pool is shared across
    requests.
    """
    global _database
    if _database:
        return _database

    settings = get_settings()
    _database = Database(settings.effective_database_url)
    return _database


def get_cache_store() -> CacheStore:
    global _cache_store
    if _cache_store:
        return _cache_store

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.redis_url:
        _cache_store = InMemoryCacheStore()
    else:
        _cache_store = RedisCacheStore(url=settings.redis_url)
    return _cache_store


def get_story_repository(
    database: Database = Depends(get_database),
) -> SqlRepository[Story]:
    return story_repository(database)


def get_topic_repository(
    database: Database = Depends(get_database),
) -> SqlRepository[Topic]:
    return topic_repository(database)
