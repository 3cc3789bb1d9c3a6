"""
Terroir Repository.

Responsibilities:
- Load entities and their children by explicit parent-id queries.
- Rewrite parent foreign keys and delete rows on the caller's session.

Non-Responsibilities:
- No merge decisions.
- No commit or rollback; the session owner does that exactly once.

Invariant:
A row is never deleted while pending reparenting writes are unflushed.
"""

from typing import Any, Dict, List, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .levels import Level


class TerroirRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, level: Level, entity_id: str):
        return self.session.get(level.model, entity_id)

    def get_many(self, level: Level, ids: Sequence[str]) -> Tuple[List[Any], List[str]]:
        """
        Load rows for ``ids`` in the given order.

        Returns:
            Tuple of (found rows in caller order, ids that did not resolve)
        """
        if not ids:
            return [], []
        model = level.model
        rows = self.session.scalars(select(model).where(model.id.in_(list(ids)))).all()
        by_id: Dict[str, Any] = {row.id: row for row in rows}
        found = [by_id[i] for i in ids if i in by_id]
        missing = [i for i in ids if i not in by_id]
        return found, missing

    def children(self, level: Level, parent_column: str, parent_id: str) -> List[Any]:
        model = level.model
        column = getattr(model, parent_column)
        stmt = select(model).where(column == parent_id).order_by(model.id)
        return list(self.session.scalars(stmt).all())

    def reparent(self, child, parent_column: str, parent_id: str) -> None:
        setattr(child, parent_column, parent_id)

    def delete(self, entity) -> None:
        # children moved away from ``entity`` must hit the database first
        self.session.flush()
        self.session.delete(entity)
        self.session.flush()

    def count(self, model, **filters) -> int:
        stmt = select(func.count()).select_from(model)
        for column, value in filters.items():
            stmt = stmt.where(getattr(model, column) == value)
        return self.session.scalar(stmt)
