"""
Recursive subtree reconciler.

Folds follower nodes into a leader node one level at a time. For every child
collection the leader's children are indexed by key; a follower child whose
key is already present is reconciled into the matching leader child (same
walk, one level down), otherwise it is reparented onto the leader and
registered in the index. Once its children are handled the follower row is
deleted.
"""

import threading
from typing import Any, Dict, Hashable, Iterable, Optional

from .errors import MergeCancelledError
from .levels import ChildSpec, Level
from .logger import get_logger
from .repository import TerroirRepository

logger = get_logger()


class SubtreeReconciler:
    def __init__(self, repository: TerroirRepository, cancel: Optional[threading.Event] = None):
        self.repository = repository
        self.cancel = cancel
        self.deleted = 0
        self.reparented = 0

    def merge_followers(self, level: Level, leader, followers: Iterable[Any]) -> int:
        """
        Merge ``followers`` into ``leader`` and delete them.

        Followers are processed in the given order against indexes that grow
        as children are reparented, so two followers contributing the same new
        child end up with a single node under the leader.

        Returns:
            Number of followers consumed
        """
        indexes = [self._build_index(spec, leader) for spec in level.children]
        merged = 0

        for follower in followers:
            self._check_cancelled()
            if level.backfill is not None:
                level.backfill(leader, follower)

            for spec, index in zip(level.children, indexes):
                for child in self.repository.children(spec.level, spec.parent_column, follower.id):
                    self._check_cancelled()
                    self._merge_child(spec, index, leader, child)

            self.repository.delete(follower)
            self.deleted += 1
            merged += 1

        return merged

    def _build_index(self, spec: ChildSpec, leader) -> Dict[Hashable, Any]:
        index: Dict[Hashable, Any] = {}
        for child in self.repository.children(spec.level, spec.parent_column, leader.id):
            key = spec.key(child)
            # first child wins if the leader already carries duplicates
            if key is not None and key not in index:
                index[key] = child
        return index

    def _merge_child(self, spec: ChildSpec, index: Dict[Hashable, Any], leader, child) -> None:
        key = spec.key(child)
        existing = index.get(key) if key is not None else None

        if existing is not None:
            logger.debug(
                f"Reconciling {spec.level.singular} into existing sibling",
                follower_id=child.id,
                leader_id=existing.id,
                key=key,
            )
            self.merge_followers(spec.level, existing, [child])
            return

        self.repository.reparent(child, spec.parent_column, leader.id)
        self.reparented += 1
        if key is not None:
            index[key] = child

    def _check_cancelled(self) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise MergeCancelledError("Merge cancelled before completion.")
