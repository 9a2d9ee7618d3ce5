"""
Domain records and listing options shared by the repository and the API.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

# Public sort names mapped to column attributes. Nothing outside this table
# can reach an ORDER BY clause.
SORTABLE_FIELDS = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}
SORT_ORDERS = ("asc", "desc")

# Largest value the Integer id columns hold (Postgres INTEGER).
MAX_ID = 2**31 - 1


class StoryStatus(str, Enum):
    DRAFT = "Draft"
    PUBLISHED = "Published"
    DELETED = "Deleted"


class InvalidPaging(ValueError):
    """Raised when paging options fall outside the allowed values."""


@dataclass(frozen=True)
class Topic:
    id: int
    name: str
    slug: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class Story:
    id: int
    title: str
    slug: str
    excerpt: str = ""
    content: str = ""
    reporter: str = ""
    editor: str = ""
    author: str = ""
    status: StoryStatus = StoryStatus.DRAFT
    media: Any = None
    likes: int = 0
    shares: int = 0
    views: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    topics: list[Topic] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "slug": self.slug,
            "excerpt": self.excerpt,
            "content": self.content,
            "reporter": self.reporter,
            "editor": self.editor,
            "author": self.author,
            "status": self.status.value,
            "media": self.media,
            "likes": self.likes,
            "shares": self.shares,
            "views": self.views,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "topics": [topic.as_dict() for topic in self.topics],
        }


@dataclass(frozen=True)
class FilterSpec:
    status: Optional[StoryStatus] = None
    topic_id: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return self.status is None and self.topic_id is None


@dataclass(frozen=True)
class PagingSpec:
    """
    Page window and ordering for listing queries.

    Validated on construction so an instance can always be handed to the
    query layer as-is.
    """

    limit: int = 20
    offset: int = 0
    sort_by: str = "updatedAt"
    order: str = "desc"

    def __post_init__(self):
        if self.limit <= 0:
            raise InvalidPaging(f"limit must be positive, got {self.limit}")
        if self.offset < 0:
            raise InvalidPaging(f"offset must not be negative, got {self.offset}")
        if self.sort_by not in SORTABLE_FIELDS:
            raise InvalidPaging(f"cannot sort by {self.sort_by!r}")
        if self.order not in SORT_ORDERS:
            raise InvalidPaging(f"unknown sort order {self.order!r}")

    @classmethod
    def for_page(
        cls, page: int, limit: int, sort_by: str = "updatedAt", order: str = "desc"
    ) -> "PagingSpec":
        if page < 1:
            raise InvalidPaging(f"page must be at least 1, got {page}")
        return cls(limit=limit, offset=(page - 1) * limit, sort_by=sort_by, order=order)

    @property
    def sort_column(self) -> str:
        return SORTABLE_FIELDS[self.sort_by]
