"""
Batched loading of many-to-many children for a page of parent records.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Callable, Sequence, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

P = TypeVar("P")


@dataclass(frozen=True)
class Association:
    """Describes a junction table linking a parent model to a child model."""

    junction: type
    parent_key: str
    child_key: str
    child_model: type

    @property
    def parent_column(self):
        return getattr(self.junction, self.parent_key)

    @property
    def child_column(self):
        return getattr(self.junction, self.child_key)


class AssociationBatchLoader:
    """
    Attaches children to parents with a single query per page.

    ``to_child`` converts a child row into the record stored on the parent
    and ``attach_as`` names the parent field that receives the list.
    """

    def __init__(
        self,
        association: Association,
        to_child: Callable[[Any], Any],
        attach_as: str,
    ):
        self.association = association
        self.to_child = to_child
        self.attach_as = attach_as

    def load(self, session: Session, parent_ids: Sequence[int]) -> dict[int, list]:
        """Return ``{parent_id: [child, ...]}`` for the given parents."""
        if not parent_ids:
            return {}
        assoc = self.association
        child = assoc.child_model
        stmt = (
            select(assoc.parent_column, child)
            .join(child, assoc.child_column == child.id)
            .where(assoc.parent_column.in_(set(parent_ids)))
            .order_by(assoc.parent_column, child.id)
        )
        grouped: dict[int, list] = {}
        seen: set[tuple[int, int]] = set()
        for parent_id, child_row in session.execute(stmt):
            if (parent_id, child_row.id) in seen:
                continue
            seen.add((parent_id, child_row.id))
            grouped.setdefault(parent_id, []).append(self.to_child(child_row))
        return grouped

    def attach(
        self,
        session: Session,
        parents: Sequence[P],
        parent_id: Callable[[P], int] = lambda parent: parent.id,
    ) -> list[P]:
        """Return ``parents`` in the same order with their children attached."""
        if not parents:
            return []
        grouped = self.load(session, [parent_id(parent) for parent in parents])
        logger.debug(
            "Attached %s to %d parents (%d with children)",
            self.attach_as,
            len(parents),
            len(grouped),
        )
        return [
            dataclasses.replace(
                parent, **{self.attach_as: list(grouped.get(parent_id(parent), []))}
            )
            for parent in parents
        ]
