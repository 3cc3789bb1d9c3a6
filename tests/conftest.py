"""
Pytest configuration and shared fixtures.

Each test gets its own SQLite file database. Test data is built through
``catalogue`` and committed before any merge runs; assertions read back
through ``store``, which opens a short-lived session per call so no test
session keeps the write lock.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest

from terroir.config import Settings
from terroir.database import (
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
    create_engine_for,
    init_database,
    make_session_factory,
    new_id,
)
from terroir.levels import ALL_LEVELS
from terroir.logger import StructuredLogger
from terroir.merge import TerroirMerger
from terroir.repository import TerroirRepository


class CatalogueBuilder:
    """Adds hierarchy rows on one session; call commit() before merging."""

    def __init__(self, session):
        self.session = session

    def _add(self, obj):
        self.session.add(obj)
        self.session.flush()
        return obj

    def commit(self):
        self.session.commit()

    def country(self, name: str) -> Country:
        return self._add(Country(name=name))

    def region(self, country: Country, name: str) -> Region:
        return self._add(Region(name=name, country_id=country.id))

    def appellation(self, region: Region, name: str) -> Appellation:
        return self._add(Appellation(name=name, region_id=region.id))

    def sub_appellation(self, appellation: Appellation, name: Optional[str] = None) -> SubAppellation:
        return self._add(SubAppellation(name=name, appellation_id=appellation.id))

    def wine(self, sub: SubAppellation, name: str, grape_variety: str = "", color: str = "red") -> Wine:
        return self._add(Wine(name=name, grape_variety=grape_variety, color=color, sub_appellation_id=sub.id))

    def vintage(self, wine: Wine, year: int) -> WineVintage:
        return self._add(WineVintage(wine_id=wine.id, vintage=year))

    def bottles(self, vintage: WineVintage, count: int) -> List[Bottle]:
        return [
            self._add(Bottle(wine_vintage_id=vintage.id, price=Decimal("25.00")))
            for _ in range(count)
        ]

    def score(self, vintage: WineVintage, year: int = 2030, score: int = 92) -> EvolutionScore:
        return self._add(EvolutionScore(
            wine_vintage_id=vintage.id, user_id=new_id(), year=year, score=Decimal(score)
        ))

    def wish(self, vintage: WineVintage, wishlist_id: str) -> WineVintageWish:
        return self._add(WineVintageWish(wine_vintage_id=vintage.id, wishlist_id=wishlist_id))

    def drinking_window(self, vintage: WineVintage, user_id: str) -> WineVintageDrinkingWindow:
        return self._add(WineVintageDrinkingWindow(wine_vintage_id=vintage.id, user_id=user_id))

    def suggested_appellation(self, sub: SubAppellation, taste_profile_id: Optional[str],
                              reason: Optional[str] = None) -> SuggestedAppellation:
        return self._add(SuggestedAppellation(
            sub_appellation_id=sub.id, taste_profile_id=taste_profile_id, reason=reason
        ))

    def suggested_wine(self, suggestion: SuggestedAppellation, wine: Wine,
                       vintage: Optional[str] = None) -> SuggestedWine:
        return self._add(SuggestedWine(
            suggested_appellation_id=suggestion.id, wine_id=wine.id, vintage=vintage
        ))

    def chain(self, country: str = "France", region: str = "Bordeaux",
              appellation: str = "Medoc", sub: Optional[str] = "Pauillac") -> SubAppellation:
        """Country -> Region -> Appellation -> SubAppellation in one call."""
        c = self.country(country)
        r = self.region(c, region)
        a = self.appellation(r, appellation)
        return self.sub_appellation(a, sub)


class StoreReader:
    """Read-only helpers, one session per call."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def get(self, model, entity_id: str):
        with self.session_factory() as session:
            return session.get(model, entity_id)

    def count(self, model, **filters) -> int:
        with self.session_factory() as session:
            return TerroirRepository(session).count(model, **filters)

    def rows(self, model, **filters) -> List[Any]:
        with self.session_factory() as session:
            query = session.query(model).filter_by(**filters).order_by(model.id)
            return query.all()

    def names(self, model, **filters) -> List[Optional[str]]:
        return sorted((row.name for row in self.rows(model, **filters)), key=lambda n: n or "")

    def snapshot(self) -> Dict[str, List[Dict[str, Any]]]:
        """Every row of every table, for before/after comparisons."""
        result = {}
        with self.session_factory() as session:
            for level in ALL_LEVELS:
                columns = [c.name for c in level.model.__table__.columns]
                rows = session.query(level.model).order_by(level.model.id).all()
                result[level.name] = [{c: getattr(row, c) for c in columns} for row in rows]
        return result


@pytest.fixture
def db_url(tmp_path) -> str:
    url = f"sqlite:///{tmp_path / 'terroir.db'}"
    init_database(url).dispose()
    return url


@pytest.fixture
def engine(db_url):
    engine = create_engine_for(db_url)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def settings(db_url) -> Settings:
    return Settings(database_url=db_url, merge_max_retries=2, merge_base_delay=0.0, merge_max_delay=0.0)


@pytest.fixture
def quiet_logger() -> StructuredLogger:
    return StructuredLogger(name="terroir-test", level="DEBUG", enable_file=False, enable_console=False)


@pytest.fixture
def merger(session_factory, settings, quiet_logger) -> TerroirMerger:
    return TerroirMerger(session_factory, settings=settings, logger=quiet_logger)


@pytest.fixture
def catalogue(session_factory):
    session = session_factory()
    yield CatalogueBuilder(session)
    session.close()


@pytest.fixture
def store(session_factory) -> StoreReader:
    return StoreReader(session_factory)
