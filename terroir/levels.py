"""
Per-level adapters for the merge walk.

Every entity in the hierarchy is described by a ``Level``: which model it is,
how its scalar fields absorb a follower's, and which child collections hang
off it. The reconciler only ever talks to these descriptors, so one walk
covers Country down to Bottle.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

from .database import (
    Appellation,
    Bottle,
    Country,
    EvolutionScore,
    Region,
    SubAppellation,
    SuggestedAppellation,
    SuggestedWine,
    Wine,
    WineVintage,
    WineVintageDrinkingWindow,
    WineVintageWish,
)
from .normalize import is_blank, name_key

# A key of None means the child is never matched and is always reparented.
KeyFn = Callable[[Any], Optional[Hashable]]


@dataclass(frozen=True)
class ChildSpec:
    """One child collection: which level, which FK column points at the parent."""

    level: "Level"
    parent_column: str
    key: KeyFn


@dataclass(frozen=True)
class Level:
    name: str
    model: type
    singular: str
    plural: str
    children: Tuple[ChildSpec, ...] = ()
    backfill: Optional[Callable[[Any, Any], None]] = None
    unnamed: Optional[str] = None

    def display_name(self, entity) -> str:
        name = getattr(entity, "name", None)
        if is_blank(name) and self.unnamed:
            return self.unnamed
        return name or ""


def by_name(entity) -> str:
    return name_key(entity.name)


def by_attr(attr: str) -> KeyFn:
    def key(entity):
        return getattr(entity, attr)
    key.__name__ = f"by_{attr}"
    return key


def never_matched(entity) -> None:
    return None


def backfill_blank(attr: str) -> Callable[[Any, Any], None]:
    """Copy ``attr`` from follower to leader only when the leader's is blank."""
    def backfill(leader, follower):
        if is_blank(getattr(leader, attr)) and not is_blank(getattr(follower, attr)):
            setattr(leader, attr, getattr(follower, attr))
    return backfill


# Leaves

BOTTLE = Level("bottle", Bottle, "bottle", "bottles")
EVOLUTION_SCORE = Level("evolution_score", EvolutionScore, "evolution score", "evolution scores")
WISH = Level("wish", WineVintageWish, "wish", "wishes")
DRINKING_WINDOW = Level("drinking_window", WineVintageDrinkingWindow, "drinking window", "drinking windows")
SUGGESTED_WINE = Level(
    "suggested_wine",
    SuggestedWine,
    "suggested wine",
    "suggested wines",
    backfill=backfill_blank("vintage"),
)

# Business-keyed levels

WINE_VINTAGE = Level(
    "wine_vintage",
    WineVintage,
    "wine vintage",
    "wine vintages",
    children=(
        ChildSpec(BOTTLE, "wine_vintage_id", never_matched),
        ChildSpec(EVOLUTION_SCORE, "wine_vintage_id", never_matched),
        ChildSpec(WISH, "wine_vintage_id", by_attr("wishlist_id")),
        ChildSpec(DRINKING_WINDOW, "wine_vintage_id", by_attr("user_id")),
    ),
)

SUGGESTED_APPELLATION = Level(
    "suggested_appellation",
    SuggestedAppellation,
    "suggested appellation",
    "suggested appellations",
    children=(ChildSpec(SUGGESTED_WINE, "suggested_appellation_id", by_attr("wine_id")),),
    backfill=backfill_blank("reason"),
)

# Name-keyed levels

WINE = Level(
    "wine",
    Wine,
    "wine",
    "wines",
    children=(
        ChildSpec(WINE_VINTAGE, "wine_id", by_attr("vintage")),
        ChildSpec(SUGGESTED_WINE, "wine_id", by_attr("suggested_appellation_id")),
    ),
    backfill=backfill_blank("grape_variety"),
)

SUB_APPELLATION = Level(
    "sub_appellation",
    SubAppellation,
    "sub-appellation",
    "sub-appellations",
    # wines first: suggested wines are re-keyed by wine id afterwards
    children=(
        ChildSpec(WINE, "sub_appellation_id", by_name),
        ChildSpec(SUGGESTED_APPELLATION, "sub_appellation_id", by_attr("taste_profile_id")),
    ),
    unnamed="Unnamed sub-appellation",
)

APPELLATION = Level(
    "appellation",
    Appellation,
    "appellation",
    "appellations",
    children=(ChildSpec(SUB_APPELLATION, "appellation_id", by_name),),
)

REGION = Level(
    "region",
    Region,
    "region",
    "regions",
    children=(ChildSpec(APPELLATION, "region_id", by_name),),
)

COUNTRY = Level(
    "country",
    Country,
    "country",
    "countries",
    children=(ChildSpec(REGION, "country_id", by_name),),
)

# Levels a caller can merge directly
MERGE_LEVELS: Dict[str, Level] = {
    "countries": COUNTRY,
    "regions": REGION,
    "appellations": APPELLATION,
    "sub-appellations": SUB_APPELLATION,
    "wines": WINE,
}

ALL_LEVELS: Tuple[Level, ...] = (
    COUNTRY,
    REGION,
    APPELLATION,
    SUB_APPELLATION,
    WINE,
    WINE_VINTAGE,
    SUGGESTED_APPELLATION,
    SUGGESTED_WINE,
    BOTTLE,
    EVOLUTION_SCORE,
    WISH,
    DRINKING_WINDOW,
)
