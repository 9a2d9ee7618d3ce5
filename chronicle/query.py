"""
Composition of listing queries: filter, sort and paginate.
"""

from __future__ import annotations

from typing import Mapping, Optional

from sqlalchemy import Select, func, select

from chronicle.associations import Association
from chronicle.types import FilterSpec, PagingSpec, SORTABLE_FIELDS


class QueryBuilder:
    """
    Builds the page query and the matching count query for one model.

    The count query is unbounded by paging; both apply the same filters.
    Topic filtering goes through a DISTINCT subquery of parent ids so that
    duplicate junction rows never duplicate or double-count a parent.
    """

    def __init__(
        self,
        model: type,
        *,
        sortable: Mapping[str, str] = SORTABLE_FIELDS,
        status_column: Optional[str] = None,
        association: Optional[Association] = None,
    ):
        self.model = model
        self.sortable = dict(sortable)
        self.status_column = status_column
        self.association = association

    def _filtered(self, stmt: Select, filters: FilterSpec) -> Select:
        if filters.topic_id is not None:
            if self.association is None:
                raise ValueError(
                    f"{self.model.__tablename__} cannot be filtered by topic"
                )
            assoc = self.association
            parent_ids = (
                select(assoc.parent_column.label("parent_id"))
                .where(assoc.child_column == filters.topic_id)
                .distinct()
                .subquery()
            )
            stmt = stmt.join(parent_ids, self.model.id == parent_ids.c.parent_id)
        if filters.status is not None:
            if self.status_column is None:
                raise ValueError(
                    f"{self.model.__tablename__} cannot be filtered by status"
                )
            column = getattr(self.model, self.status_column)
            stmt = stmt.where(column == filters.status.value)
        return stmt

    def page_query(self, filters: FilterSpec, paging: PagingSpec) -> Select:
        if paging.sort_by not in self.sortable:
            raise ValueError(f"cannot sort by {paging.sort_by!r}")
        sort_column = getattr(self.model, self.sortable[paging.sort_by])
        if paging.order == "asc":
            ordering = (sort_column.asc(), self.model.id.asc())
        else:
            ordering = (sort_column.desc(), self.model.id.desc())
        stmt = self._filtered(select(self.model), filters)
        return stmt.order_by(*ordering).limit(paging.limit).offset(paging.offset)

    def count_query(self, filters: FilterSpec) -> Select:
        stmt = select(func.count()).select_from(self.model)
        return self._filtered(stmt, filters)
