import uuid
from typing import Iterable, List, Optional, Union

NULL_NAME_KEY = "\u0001"

IdLike = Union[str, uuid.UUID, None]


def normalize_text(s: Optional[str]) -> str:
    return (s or "").strip()


def name_key(name: Optional[str]) -> str:
    """Dedup key for a name: trimmed, case-folded, blanks collapse to one sentinel."""
    text = normalize_text(name)
    if not text:
        return NULL_NAME_KEY
    return text.lower()


def is_blank(value: Optional[str]) -> bool:
    return not normalize_text(value)


def normalize_id(value: IdLike) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            parsed = uuid.UUID(text)
        except ValueError:
            return None
    if parsed.int == 0:
        return None
    return str(parsed)


def normalize_follower_ids(leader_id: IdLike, follower_ids: Optional[Iterable[IdLike]]) -> List[str]:
    """
    Clean a follower selection.

    Drops invalid ids and the leader's own id, removes duplicates and keeps
    the caller's order.
    """
    leader = normalize_id(leader_id)
    result: List[str] = []
    seen = set()
    for raw in follower_ids or []:
        fid = normalize_id(raw)
        if fid is None or fid == leader or fid in seen:
            continue
        seen.add(fid)
        result.append(fid)
    return result
