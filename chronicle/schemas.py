"""
Pydantic schemas for the content API.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Annotated, Any, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from chronicle.types import MAX_ID, FilterSpec, PagingSpec, StoryStatus

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

EntityId = Annotated[int, Field(ge=1, le=MAX_ID)]


class ListingParams(BaseModel):
    """Query parameters accepted by the listing endpoints."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    page: int = Field(1, ge=1, le=MAX_ID)
    limit: int = Field(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE)
    sort_by: Literal["createdAt", "updatedAt"] = Field("updatedAt", alias="sort-by")
    order: Literal["asc", "desc"] = "desc"
    status: Optional[StoryStatus] = None
    topic: Optional[int] = Field(None, ge=1, le=MAX_ID)

    @classmethod
    def from_query(cls, query: Mapping[str, str]) -> "ListingParams":
        # Blank values fall back to defaults.
        return cls.model_validate({k: v for k, v in query.items() if v != ""})

    @classmethod
    def accepts(cls, query: Mapping[str, str]) -> bool:
        try:
            cls.from_query(query)
        except ValidationError:
            return False
        return True

    def to_paging(self) -> PagingSpec:
        return PagingSpec.for_page(self.page, self.limit, self.sort_by, self.order)

    def to_filter(self) -> FilterSpec:
        return FilterSpec(status=self.status, topic_id=self.topic)


class Pagination(BaseModel):
    total_items: int
    page: int
    items_per_page: int
    total_page: int

    @classmethod
    def of(cls, total: int, params: ListingParams) -> "Pagination":
        return cls(
            total_items=total,
            page=params.page,
            items_per_page=params.limit,
            total_page=math.ceil(total / params.limit),
        )


class TopicModel(BaseModel):
    id: int
    name: str
    slug: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StoryModel(BaseModel):
    id: int
    title: str
    slug: str
    excerpt: str
    content: str
    reporter: str
    editor: str
    author: str
    status: StoryStatus
    media: Any = None
    likes: int = 0
    shares: int = 0
    views: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    topics: list[TopicModel] = Field(default_factory=list)


class CreateStoryRequest(BaseModel):
    title: str = Field(..., min_length=1)
    excerpt: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    reporter: str = Field(..., min_length=1)
    editor: str = Field(..., min_length=1)
    author: str = Field(..., min_length=1)
    media: Any = None
    topics: list[EntityId] = Field(default_factory=list)


class UpdateStoryRequest(BaseModel):
    title: Optional[str] = None
    excerpt: Optional[str] = None
    content: Optional[str] = None
    reporter: Optional[str] = None
    editor: Optional[str] = None
    author: Optional[str] = None
    status: Optional[StoryStatus] = None
    media: Any = None
    topics: Optional[list[EntityId]] = None


class CreateTopicRequest(BaseModel):
    name: str = Field(..., min_length=1)


class UpdateTopicRequest(BaseModel):
    name: Optional[str] = None


class StoryResponse(BaseModel):
    status: int = 200
    story: StoryModel


class StoryListResponse(BaseModel):
    status: int = 200
    stories: list[StoryModel]
    pagination: Pagination


class TopicResponse(BaseModel):
    status: int = 200
    topic: TopicModel


class TopicListResponse(BaseModel):
    status: int = 200
    topics: list[TopicModel]
    pagination: Pagination


class MessageResponse(BaseModel):
    status: int = 200
    message: str
