"""
Database schema and connection management.

Uses SQLAlchemy over SQLite by default. Parent links are plain foreign-key
columns; children are always loaded with an explicit query on the parent id.
"""

import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


def _id_column():
    return Column(String(36), primary_key=True, default=new_id)


class Country(Base):
    __tablename__ = "countries"

    id = _id_column()
    name = Column(String, nullable=False, default="")


class Region(Base):
    __tablename__ = "regions"

    id = _id_column()
    name = Column(String, nullable=False, default="")
    country_id = Column(String(36), ForeignKey("countries.id"), nullable=False, index=True)


class Appellation(Base):
    __tablename__ = "appellations"

    id = _id_column()
    name = Column(String, nullable=False, default="")
    region_id = Column(String(36), ForeignKey("regions.id"), nullable=False, index=True)


class SubAppellation(Base):
    __tablename__ = "sub_appellations"

    id = _id_column()
    name = Column(String, nullable=True)  # nameless sub-appellations exist
    appellation_id = Column(String(36), ForeignKey("appellations.id"), nullable=False, index=True)


class Wine(Base):
    __tablename__ = "wines"

    id = _id_column()
    name = Column(String, nullable=False, default="")
    grape_variety = Column(String, nullable=False, default="")
    color = Column(String, nullable=True)  # red, white, rose
    sub_appellation_id = Column(
        String(36), ForeignKey("sub_appellations.id"), nullable=False, index=True
    )


class WineVintage(Base):
    __tablename__ = "wine_vintages"
    __table_args__ = (UniqueConstraint("wine_id", "vintage", name="uq_wine_vintage_year"),)

    id = _id_column()
    wine_id = Column(String(36), ForeignKey("wines.id"), nullable=False, index=True)
    vintage = Column(Integer, nullable=False)


class Bottle(Base):
    __tablename__ = "bottles"

    id = _id_column()
    wine_vintage_id = Column(String(36), ForeignKey("wine_vintages.id"), nullable=False, index=True)
    price = Column(Numeric(10, 2), nullable=True)
    is_drunk = Column(Boolean, nullable=False, default=False)
    drunk_at = Column(DateTime, nullable=True)
    user_id = Column(String(36), nullable=True)


class EvolutionScore(Base):
    __tablename__ = "wine_vintage_evolution_scores"

    id = _id_column()
    wine_vintage_id = Column(String(36), ForeignKey("wine_vintages.id"), nullable=False, index=True)
    user_id = Column(String(36), nullable=True)
    year = Column(Integer, nullable=False)
    score = Column(Numeric(5, 2), nullable=False)


class WineVintageWish(Base):
    __tablename__ = "wine_vintage_wishes"

    id = _id_column()
    wine_vintage_id = Column(String(36), ForeignKey("wine_vintages.id"), nullable=False, index=True)
    wishlist_id = Column(String(36), nullable=False)


class WineVintageDrinkingWindow(Base):
    __tablename__ = "wine_vintage_drinking_windows"

    id = _id_column()
    wine_vintage_id = Column(String(36), ForeignKey("wine_vintages.id"), nullable=False, index=True)
    user_id = Column(String(36), nullable=False)
    starting_date = Column(DateTime, nullable=False, default=datetime.now)
    end_date = Column(DateTime, nullable=False, default=datetime.now)


class SuggestedAppellation(Base):
    __tablename__ = "suggested_appellations"

    id = _id_column()
    sub_appellation_id = Column(
        String(36), ForeignKey("sub_appellations.id"), nullable=False, index=True
    )
    taste_profile_id = Column(String(36), nullable=True)
    user_id = Column(String(36), nullable=True)
    reason = Column(String, nullable=True)


class SuggestedWine(Base):
    __tablename__ = "suggested_wines"

    id = _id_column()
    suggested_appellation_id = Column(
        String(36), ForeignKey("suggested_appellations.id"), nullable=False, index=True
    )
    wine_id = Column(String(36), ForeignKey("wines.id"), nullable=False, index=True)
    vintage = Column(String, nullable=True)


def _sqlite_path(url: str):
    parsed = make_url(url)
    if not parsed.drivername.startswith("sqlite"):
        return None
    database = parsed.database
    if not database or database == ":memory:":
        return None
    return Path(database)


def create_engine_for(url: str, sqlite_begin: str = "IMMEDIATE") -> Engine:
    """
    Build an engine for the given URL.

    SQLite connections get foreign key enforcement, and every transaction
    opens with ``BEGIN <sqlite_begin>`` so a merge takes the write lock up
    front instead of on its first UPDATE.

    Args:
        url: SQLAlchemy database URL
        sqlite_begin: DEFERRED, IMMEDIATE or EXCLUSIVE (SQLite only)

    Returns:
        SQLAlchemy engine
    """
    engine = create_engine(url)
    if engine.dialect.name != "sqlite":
        return engine

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # pysqlite's implicit BEGIN is replaced by the "begin" hook below
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql(f"BEGIN {sqlite_begin}")

    return engine


def init_database(url: str) -> Engine:
    """
    Initialize database and create tables.

    Args:
        url: SQLAlchemy database URL

    Returns:
        Engine bound to the initialized database
    """
    db_path = _sqlite_path(url)
    if db_path is not None:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine_for(url)
    Base.metadata.create_all(engine)
    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


def get_session(url: str) -> Session:
    """
    Get database session.

    Args:
        url: SQLAlchemy database URL

    Returns:
        SQLAlchemy session
    """
    Session = make_session_factory(create_engine_for(url))
    return Session()


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """Commit on success, roll back on any exception, always close."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
