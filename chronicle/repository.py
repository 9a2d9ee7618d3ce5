"""
Repositories for stories and topics.

A single ``SqlRepository`` is configured per entity with an ``EntityTable``
describing its model, record conversion, status column and optional
association. Listing goes through ``QueryBuilder`` and associated records are
attached with ``AssociationBatchLoader`` so a page costs a fixed number of
queries.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, Iterator, Mapping, Optional, TypeVar

from sqlalchemy import delete, select
from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from chronicle.associations import Association, AssociationBatchLoader
from chronicle.db import Database, StoryRow, TopicRow, TopicStoryRow, utcnow
from chronicle.query import QueryBuilder
from chronicle.slug import slugify
from chronicle.types import (
    MAX_ID,
    FilterSpec,
    PagingSpec,
    Story,
    StoryStatus,
    Topic,
)

logger = logging.getLogger(__name__)

E = TypeVar("E")


class RepositoryError(Exception):
    """A datastore failure, wrapped with the operation that raised it."""


class ConstraintViolation(RepositoryError):
    """The datastore rejected a value, e.g. an unknown referenced id."""


class EntityNotFound(LookupError):
    def __init__(self, entity: str, lookup: Any):
        super().__init__(f"Cannot find {entity} {lookup!r}")
        self.entity = entity
        self.lookup = lookup


@dataclass(frozen=True)
class EntityTable(Generic[E]):
    name: str
    model: type
    to_entity: Callable[[Any], E]
    writable: tuple[str, ...]
    slug_source: str
    status_column: Optional[str] = None
    default_status: Optional[str] = None
    association: Optional[Association] = None
    attach_as: Optional[str] = None
    to_child: Optional[Callable[[Any], Any]] = None


class SqlRepository(Generic[E]):
    def __init__(self, database: Database, table: EntityTable[E]):
        self.database = database
        self.table = table
        self.model = table.model
        self.queries = QueryBuilder(
            table.model,
            status_column=table.status_column,
            association=table.association,
        )
        self.loader: Optional[AssociationBatchLoader] = None
        if table.association is not None:
            self.loader = AssociationBatchLoader(
                table.association, table.to_child, table.attach_as
            )

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        try:
            with self.database.Session() as session:
                yield session
        except (IntegrityError, DataError) as exc:
            logger.warning("%s.%s rejected: %s", self.table.name, operation, exc.orig)
            raise ConstraintViolation(
                f"{self.table.name}.{operation}: {exc.orig}"
            ) from exc
        except OverflowError as exc:
            # The driver refuses ints wider than the column before the query runs.
            logger.warning("%s.%s rejected: %s", self.table.name, operation, exc)
            raise ConstraintViolation(f"{self.table.name}.{operation}: {exc}") from exc
        except SQLAlchemyError as exc:
            logger.error("%s.%s failed: %s", self.table.name, operation, exc)
            raise RepositoryError(f"{self.table.name}.{operation}: {exc}") from exc

    def _records(self, session: Session, rows: list) -> list[E]:
        records = [self.table.to_entity(row) for row in rows]
        if self.loader is not None:
            records = self.loader.attach(session, records)
        return records

    def _one(self, session: Session, row, lookup: Any) -> E:
        if row is None:
            raise EntityNotFound(self.table.name, lookup)
        return self._records(session, [row])[0]

    def _check_id(self, entity_id: int) -> None:
        # Ids the columns cannot hold would fail in the driver; none can exist.
        if not 1 <= entity_id <= MAX_ID:
            raise EntityNotFound(self.table.name, entity_id)

    def find_by_id(self, entity_id: int) -> E:
        self._check_id(entity_id)
        with self._session("find_by_id") as session:
            return self._one(session, session.get(self.model, entity_id), entity_id)

    def find_by_slug(self, slug: str) -> E:
        with self._session("find_by_slug") as session:
            stmt = (
                select(self.model)
                .where(self.model.slug == slug)
                .order_by(self.model.id)
                .limit(1)
            )
            row = session.execute(stmt).scalar_one_or_none()
            return self._one(session, row, slug)

    def find_by_filter(
        self, filters: FilterSpec, paging: PagingSpec
    ) -> tuple[list[E], int]:
        """Return one page of matching records and the total match count.

        Page and count run as separate statements, so under concurrent
        writes the two may briefly disagree.
        """
        if filters.topic_id is not None and not 1 <= filters.topic_id <= MAX_ID:
            return [], 0
        with self._session("find_by_filter") as session:
            rows = session.execute(
                self.queries.page_query(filters, paging)
            ).scalars().all()
            total = session.execute(self.queries.count_query(filters)).scalar_one()
            return self._records(session, list(rows)), int(total)

    def _writable(self, fields: Mapping[str, Any]) -> dict:
        values = {}
        for name, value in fields.items():
            if name not in self.table.writable:
                raise ValueError(f"{self.table.name} has no writable field {name!r}")
            # Empty values mean "leave unchanged".
            if value is None or value == "":
                continue
            if self.table.status_column and name == self.table.status_column:
                value = StoryStatus(value).value
            values[name] = value
        if self.table.slug_source in values:
            values["slug"] = slugify(values[self.table.slug_source])
        return values

    def _replace_children(
        self, session: Session, parent_id: int, child_ids: Iterable[int]
    ) -> None:
        assoc = self.table.association
        if assoc is None:
            raise ValueError(f"{self.table.name} has no association to write")
        session.execute(delete(assoc.junction).where(assoc.parent_column == parent_id))
        now = utcnow()
        for child_id in dict.fromkeys(child_ids):
            session.add(
                assoc.junction(
                    **{
                        assoc.parent_key: parent_id,
                        assoc.child_key: child_id,
                        "created_at": now,
                        "updated_at": now,
                    }
                )
            )

    def insert(
        self, fields: Mapping[str, Any], associated_ids: Optional[Iterable[int]] = None
    ) -> E:
        """Insert a record; the row and its association rows commit together."""
        values = self._writable(fields)
        if self.table.status_column and self.table.status_column not in values:
            values[self.table.status_column] = self.table.default_status
        now = utcnow()
        with self._session("insert") as session:
            row = self.model(**values, created_at=now, updated_at=now)
            session.add(row)
            session.flush()
            if associated_ids is not None:
                self._replace_children(session, row.id, associated_ids)
            session.commit()
            entity_id = row.id
        logger.info("Created %s %s", self.table.name, entity_id)
        return self.find_by_id(entity_id)

    def update(
        self,
        entity_id: int,
        fields: Mapping[str, Any],
        associated_ids: Optional[Iterable[int]] = None,
    ) -> E:
        """Merge the non-empty ``fields`` into the stored record.

        When ``associated_ids`` is given the association set is replaced.
        """
        self._check_id(entity_id)
        values = self._writable(fields)
        with self._session("update") as session:
            row = session.get(self.model, entity_id)
            if row is None:
                raise EntityNotFound(self.table.name, entity_id)
            for name, value in values.items():
                setattr(row, name, value)
            row.updated_at = utcnow()
            if associated_ids is not None:
                self._replace_children(session, entity_id, associated_ids)
            session.commit()
        logger.info("Updated %s %s", self.table.name, entity_id)
        return self.find_by_id(entity_id)

    def delete(self, entity_id: int) -> None:
        self._check_id(entity_id)
        with self._session("delete") as session:
            row = session.get(self.model, entity_id)
            if row is None:
                raise EntityNotFound(self.table.name, entity_id)
            assoc = self.table.association
            if assoc is not None:
                session.execute(
                    delete(assoc.junction).where(assoc.parent_column == entity_id)
                )
            session.delete(row)
            session.commit()
        logger.info("Deleted %s %s", self.table.name, entity_id)


def _to_topic(row: TopicRow) -> Topic:
    return Topic(
        id=row.id,
        name=row.name,
        slug=row.slug,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_story(row: StoryRow) -> Story:
    return Story(
        id=row.id,
        title=row.title,
        slug=row.slug,
        excerpt=row.excerpt,
        content=row.content,
        reporter=row.reporter,
        editor=row.editor,
        author=row.author,
        status=StoryStatus(row.status),
        media=row.media,
        likes=row.likes,
        shares=row.shares,
        views=row.views,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


TOPICS = EntityTable(
    name="topic",
    model=TopicRow,
    to_entity=_to_topic,
    writable=("name",),
    slug_source="name",
)

STORIES = EntityTable(
    name="story",
    model=StoryRow,
    to_entity=_to_story,
    writable=(
        "title",
        "excerpt",
        "content",
        "reporter",
        "editor",
        "author",
        "status",
        "media",
    ),
    slug_source="title",
    status_column="status",
    default_status=StoryStatus.DRAFT.value,
    association=Association(
        junction=TopicStoryRow,
        parent_key="story_id",
        child_key="topic_id",
        child_model=TopicRow,
    ),
    attach_as="topics",
    to_child=_to_topic,
)


def story_repository(database: Database) -> SqlRepository[Story]:
    return SqlRepository(database, STORIES)


def topic_repository(database: Database) -> SqlRepository[Topic]:
    return SqlRepository(database, TOPICS)
