"""
Whole-store checks for the hierarchy invariants.

- No two siblings under one parent share a dedup key.
- Every child row points at a live parent row.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Hashable, List, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from .levels import ALL_LEVELS


@dataclass
class DuplicateSiblings:
    level: str
    parent_column: str
    parent_id: str
    key: Hashable
    ids: List[str]


@dataclass
class Orphan:
    level: str
    parent_column: str
    entity_id: str
    parent_id: str


@dataclass
class IntegrityReport:
    duplicates: List[DuplicateSiblings] = field(default_factory=list)
    orphans: List[Orphan] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.duplicates and not self.orphans


def _child_specs():
    for parent in ALL_LEVELS:
        for spec in parent.children:
            yield parent, spec


def find_duplicate_siblings(session: Session) -> List[DuplicateSiblings]:
    found: List[DuplicateSiblings] = []
    for _parent, spec in _child_specs():
        model = spec.level.model
        groups = defaultdict(list)
        for row in session.scalars(select(model).order_by(model.id)):
            key = spec.key(row)
            if key is None:
                continue
            groups[(getattr(row, spec.parent_column), key)].append(row.id)

        for (parent_id, key), ids in groups.items():
            if len(ids) > 1:
                found.append(DuplicateSiblings(spec.level.name, spec.parent_column, parent_id, key, ids))
    return found


def find_orphans(session: Session) -> List[Orphan]:
    found: List[Orphan] = []
    for parent, spec in _child_specs():
        model = spec.level.model
        column = getattr(model, spec.parent_column)
        stmt = select(model.id, column).where(~column.in_(select(parent.model.id)))
        for entity_id, parent_id in session.execute(stmt):
            found.append(Orphan(spec.level.name, spec.parent_column, entity_id, parent_id))
    return found


def check_integrity(session: Session) -> IntegrityReport:
    return IntegrityReport(
        duplicates=find_duplicate_siblings(session),
        orphans=find_orphans(session),
    )


def summarize(report: IntegrityReport) -> List[Tuple[str, str]]:
    """Flatten a report into (kind, description) lines for display."""
    lines: List[Tuple[str, str]] = []
    for dup in report.duplicates:
        lines.append((
            "duplicate",
            f"{dup.level} under {dup.parent_column}={dup.parent_id} key={dup.key!r}: {', '.join(dup.ids)}",
        ))
    for orphan in report.orphans:
        lines.append((
            "orphan",
            f"{orphan.level} {orphan.entity_id} -> missing {orphan.parent_column}={orphan.parent_id}",
        ))
    return lines
