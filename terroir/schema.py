from typing import Iterable, List, Optional

from .levels import Level
from .normalize import IdLike, normalize_follower_ids, normalize_id


def validate_merge_request(
    level: Level,
    leader_id: IdLike,
    entity_ids: Optional[Iterable[IdLike]],
) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.

    ``entity_ids`` is the full selection as a caller submits it and may
    include the leader itself.
    """
    errors: List[str] = []

    if normalize_id(leader_id) is None:
        errors.append(f"Select a leading {level.singular}.")
        return errors

    if not normalize_follower_ids(leader_id, entity_ids):
        errors.append(f"Select at least two {level.plural} to merge.")

    return errors
