"""
Level merge operations.

Each public ``merge_*`` call folds one or more follower records into a leader
at a single hierarchy level, reconciling every descendant subtree, inside one
transaction. Validation runs before any database work; the transactional body
is retried from scratch on transient store errors.
"""

import threading
from typing import Iterable, NamedTuple, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .config import Settings, load_settings
from .errors import (
    MergeCancelledError,
    MergeFailedError,
    MergeValidationError,
    NotFoundError,
    TransientStoreError,
)
from .levels import APPELLATION, COUNTRY, REGION, SUB_APPELLATION, WINE, Level
from .logger import StructuredLogger, get_logger
from .normalize import IdLike, normalize_follower_ids, normalize_id
from .reconcile import SubtreeReconciler
from .repository import TerroirRepository
from .retry import RetryError, exponential_backoff, is_transient_error

# Raised as-is from inside an attempt; no retry, no wrapping
PASSTHROUGH_ERRORS = (MergeValidationError, NotFoundError, MergeCancelledError)


class MergeResult(NamedTuple):
    leader_id: str
    leader_name: str
    followers_merged: int


class TerroirMerger:
    """
    Merge engine for Country, Region, Appellation, SubAppellation and Wine.

    Args:
        session_factory: Factory returning a new SQLAlchemy session per attempt
        settings: Retry tuning; defaults to ``load_settings()``
        logger: Structured logger; defaults to the global one
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        settings: Optional[Settings] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or load_settings()
        self.logger = logger or get_logger()

    def merge_countries(self, leader_id: IdLike, follower_ids: Iterable[IdLike],
                        cancel: Optional[threading.Event] = None) -> MergeResult:
        return self.merge(COUNTRY, leader_id, follower_ids, cancel)

    def merge_regions(self, leader_id: IdLike, follower_ids: Iterable[IdLike],
                      cancel: Optional[threading.Event] = None) -> MergeResult:
        return self.merge(REGION, leader_id, follower_ids, cancel)

    def merge_appellations(self, leader_id: IdLike, follower_ids: Iterable[IdLike],
                           cancel: Optional[threading.Event] = None) -> MergeResult:
        return self.merge(APPELLATION, leader_id, follower_ids, cancel)

    def merge_sub_appellations(self, leader_id: IdLike, follower_ids: Iterable[IdLike],
                               cancel: Optional[threading.Event] = None) -> MergeResult:
        return self.merge(SUB_APPELLATION, leader_id, follower_ids, cancel)

    def merge_wines(self, leader_id: IdLike, follower_ids: Iterable[IdLike],
                    cancel: Optional[threading.Event] = None) -> MergeResult:
        return self.merge(WINE, leader_id, follower_ids, cancel)

    def merge(self, level: Level, leader_id: IdLike, follower_ids: Iterable[IdLike],
              cancel: Optional[threading.Event] = None) -> MergeResult:
        """
        Merge followers into the leader at ``level``.

        Raises:
            MergeValidationError: No distinct follower left after normalization
            NotFoundError: Leader or a follower does not exist
            MergeCancelledError: ``cancel`` was set before commit
            MergeFailedError: Anything else, including exhausted retries
        """
        self.logger.record_merge_attempt(level.name)
        leader = normalize_id(leader_id)
        followers = normalize_follower_ids(leader_id, follower_ids)

        try:
            if not followers:
                raise MergeValidationError(f"Select at least two {level.plural} to merge.")
            if leader is None:
                raise NotFoundError(f"Selected leading {level.singular} could not be found.")

            attempt = exponential_backoff(
                max_retries=self.settings.merge_max_retries,
                base_delay=self.settings.merge_base_delay,
                max_delay=self.settings.merge_max_delay,
                exceptions=(TransientStoreError,),
                on_retry=self._on_retry,
            )(self._merge_once)

            try:
                result = attempt(level, leader, followers, cancel)
            except RetryError as e:
                raise MergeFailedError(
                    f"We couldn't merge the selected {level.plural}. Please try again."
                ) from e
        except Exception as e:
            self.logger.record_merge_failure(level.name, type(e).__name__)
            self.logger.warning(
                f"Merge of {level.plural} failed",
                leader_id=leader,
                follower_ids=followers,
                error=str(e),
            )
            raise

        self.logger.record_merge_success(level.name, result.followers_merged)
        self.logger.info(
            f"Merged {result.followers_merged} {level.plural} into {result.leader_name}",
            leader_id=result.leader_id,
            follower_ids=followers,
        )
        return result

    def _merge_once(self, level: Level, leader_id: str, follower_ids: list,
                    cancel: Optional[threading.Event]) -> MergeResult:
        session = self.session_factory()
        try:
            repository = TerroirRepository(session)

            leader = repository.get(level, leader_id)
            if leader is None:
                raise NotFoundError(f"Selected leading {level.singular} could not be found.")

            followers, missing = repository.get_many(level, follower_ids)
            if missing:
                raise NotFoundError(
                    f"One or more {level.plural} selected for merge no longer exist."
                )

            reconciler = SubtreeReconciler(repository, cancel=cancel)
            merged = reconciler.merge_followers(level, leader, followers)

            if cancel is not None and cancel.is_set():
                raise MergeCancelledError("Merge cancelled before completion.")
            session.commit()

            self.logger.debug(
                f"Committed {level.singular} merge",
                leader_id=leader.id,
                rows_deleted=reconciler.deleted,
                rows_reparented=reconciler.reparented,
            )
            return MergeResult(leader.id, level.display_name(leader), merged)
        except PASSTHROUGH_ERRORS:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            if is_transient_error(e):
                raise TransientStoreError(str(e)) from e
            raise MergeFailedError(
                f"We couldn't merge the selected {level.plural}. Please try again."
            ) from e
        except Exception as e:
            session.rollback()
            raise MergeFailedError(
                f"We couldn't merge the selected {level.plural}. Please try again."
            ) from e
        finally:
            session.close()

    def _on_retry(self, attempt: int, error: Exception, delay: float) -> None:
        self.logger.record_retry()
        self.logger.warning(
            "Transient store error during merge, retrying",
            attempt=attempt,
            delay=delay,
            error=str(error),
        )
