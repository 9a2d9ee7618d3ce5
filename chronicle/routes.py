"""
HTTP routes for stories and topics.

Read endpoints are plain GETs so the response cache middleware can sit in
front of them; write endpoints use POST/PATCH/DELETE and are never cached.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError

from chronicle.cache_keys import parse_query
from chronicle.dependencies import get_story_repository, get_topic_repository
from chronicle.repository import ConstraintViolation, EntityNotFound, SqlRepository
from chronicle.schemas import (
    CreateStoryRequest,
    CreateTopicRequest,
    ListingParams,
    MessageResponse,
    Pagination,
    StoryListResponse,
    StoryResponse,
    TopicListResponse,
    TopicResponse,
    UpdateStoryRequest,
    UpdateTopicRequest,
)
from chronicle.types import FilterSpec, Story, Topic

logger = logging.getLogger(__name__)

router = APIRouter()


def listing_params(request: Request) -> ListingParams:
    try:
        return ListingParams.from_query(parse_query(request.url.query))
    except ValidationError as exc:
        errors = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        ]
        raise HTTPException(status_code=400, detail="; ".join(errors))


def _not_found(exc: EntityNotFound) -> HTTPException:
    return HTTPException(status_code=404, detail=str(exc))


def _rejected(exc: ConstraintViolation) -> HTTPException:
    logger.info("Rejected write: %s", exc)
    return HTTPException(status_code=400, detail="Request conflicts with stored data")


# Stories


@router.get("/stories/", response_model=StoryListResponse)
def list_stories(
    params: ListingParams = Depends(listing_params),
    stories: SqlRepository[Story] = Depends(get_story_repository),
):
    found, total = stories.find_by_filter(params.to_filter(), params.to_paging())
    return StoryListResponse(
        stories=[story.as_dict() for story in found],
        pagination=Pagination.of(total, params),
    )


@router.post("/stories/insert", response_model=StoryResponse, status_code=201)
def create_story(
    payload: CreateStoryRequest,
    stories: SqlRepository[Story] = Depends(get_story_repository),
):
    fields = payload.model_dump(exclude={"topics"})
    try:
        story = stories.insert(fields, associated_ids=payload.topics)
    except ConstraintViolation as exc:
        raise _rejected(exc)
    return StoryResponse(status=201, story=story.as_dict())


@router.get("/stories/{story_id:int}", response_model=StoryResponse)
def get_story(
    story_id: int,
    stories: SqlRepository[Story] = Depends(get_story_repository),
):
    try:
        story = stories.find_by_id(story_id)
    except EntityNotFound as exc:
        raise _not_found(exc)
    return StoryResponse(story=story.as_dict())


@router.patch("/stories/{story_id:int}/update", response_model=StoryResponse)
def update_story(
    story_id: int,
    payload: UpdateStoryRequest,
    stories: SqlRepository[Story] = Depends(get_story_repository),
):
    fields = payload.model_dump(exclude={"topics"}, exclude_unset=True)
    try:
        story = stories.update(story_id, fields, associated_ids=payload.topics)
    except EntityNotFound as exc:
        raise _not_found(exc)
    except ConstraintViolation as exc:
        raise _rejected(exc)
    return StoryResponse(story=story.as_dict())


@router.delete("/stories/{story_id:int}/delete", response_model=MessageResponse)
def delete_story(
    story_id: int,
    stories: SqlRepository[Story] = Depends(get_story_repository),
):
    try:
        stories.delete(story_id)
    except EntityNotFound as exc:
        raise _not_found(exc)
    return MessageResponse(message="Story Deleted")


@router.get("/stories/{slug}", response_model=StoryResponse)
def get_story_by_slug(
    slug: str,
    stories: SqlRepository[Story] = Depends(get_story_repository),
):
    try:
        story = stories.find_by_slug(slug)
    except EntityNotFound as exc:
        raise _not_found(exc)
    return StoryResponse(story=story.as_dict())


# Topics


@router.get("/topics/", response_model=TopicListResponse)
def list_topics(
    params: ListingParams = Depends(listing_params),
    topics: SqlRepository[Topic] = Depends(get_topic_repository),
):
    found, total = topics.find_by_filter(FilterSpec(), params.to_paging())
    return TopicListResponse(
        topics=[topic.as_dict() for topic in found],
        pagination=Pagination.of(total, params),
    )


@router.post("/topics/insert", response_model=TopicResponse, status_code=201)
def create_topic(
    payload: CreateTopicRequest,
    topics: SqlRepository[Topic] = Depends(get_topic_repository),
):
    try:
        topic = topics.insert(payload.model_dump())
    except ConstraintViolation as exc:
        raise _rejected(exc)
    return TopicResponse(status=201, topic=topic.as_dict())


@router.get("/topics/{topic_id:int}", response_model=TopicResponse)
def get_topic(
    topic_id: int,
    topics: SqlRepository[Topic] = Depends(get_topic_repository),
):
    try:
        topic = topics.find_by_id(topic_id)
    except EntityNotFound as exc:
        raise _not_found(exc)
    return TopicResponse(topic=topic.as_dict())


@router.patch("/topics/{topic_id:int}/update", response_model=TopicResponse)
def update_topic(
    topic_id: int,
    payload: UpdateTopicRequest,
    topics: SqlRepository[Topic] = Depends(get_topic_repository),
):
    try:
        topic = topics.update(topic_id, payload.model_dump(exclude_unset=True))
    except EntityNotFound as exc:
        raise _not_found(exc)
    return TopicResponse(topic=topic.as_dict())


@router.delete("/topics/{topic_id:int}/delete", response_model=MessageResponse)
def delete_topic(
    topic_id: int,
    topics: SqlRepository[Topic] = Depends(get_topic_repository),
):
    try:
        topics.delete(topic_id)
    except EntityNotFound as exc:
        raise _not_found(exc)
    return MessageResponse(message="Topic Deleted")


@router.get("/topics/{slug}", response_model=TopicResponse)
def get_topic_by_slug(
    slug: str,
    topics: SqlRepository[Topic] = Depends(get_topic_repository),
):
    try:
        topic = topics.find_by_slug(slug)
    except EntityNotFound as exc:
        raise _not_found(exc)
    return TopicResponse(topic=topic.as_dict())
