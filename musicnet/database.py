"""
Async SQLAlchemy engine + session factory: the persistent store adapter.

Production runs on PostgreSQL (asyncpg driver); tests run on SQLite via
aiosqlite. Both expose the same two store-side capabilities the core relies on:

  geodesic_distance_m(lat1, lng1, lat2, lng2)
      Great-circle distance in metres (haversine, mean Earth radius).
      PostgreSQL: created as an IMMUTABLE SQL function by init_db().
      SQLite:     registered as a deterministic Python function on connect.

  insert_ignore(...)
      "INSERT ... ON CONFLICT DO NOTHING" for the dialect in use. Edge tables
      rely on their unique constraints + this command for idempotence.

The engine is created once at startup and reused across all requests.
"""
import logging
import math
from typing import Sequence

from sqlalchemy import event, insert, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from musicnet.config import settings

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6_371_008.8
GEODESIC_FUNCTION = "geodesic_distance_m"
# PostgreSQL: foreign_key_violation
_PG_FOREIGN_KEY_SQLSTATE = "23503"

_PG_GEODESIC_DDL = f"""
CREATE OR REPLACE FUNCTION {GEODESIC_FUNCTION}(
    lat1 double precision, lng1 double precision,
    lat2 double precision, lng2 double precision
) RETURNS double precision
LANGUAGE sql IMMUTABLE STRICT PARALLEL SAFE AS $$
    SELECT 2 * {EARTH_RADIUS_M} * asin(least(1.0, sqrt(
        power(sin(radians(lat2 - lat1) / 2), 2)
        + cos(radians(lat1)) * cos(radians(lat2))
          * power(sin(radians(lng2 - lng1) / 2), 2)
    )))
$$
"""


class Base(DeclarativeBase):
    pass


def haversine_m(lat1, lng1, lat2, lng2):
    """Great-circle distance in metres; None if any coordinate is missing."""
    if lat1 is None or lng1 is None or lat2 is None or lng2 is None:
        return None
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


def build_engine(url: str) -> AsyncEngine:
    """Create an async engine with store functions wired in for its dialect."""
    if url.startswith("sqlite"):
        kwargs = {}
        if ":memory:" in url:
            # one shared connection, otherwise every checkout sees an empty db
            kwargs["poolclass"] = StaticPool
        new_engine = create_async_engine(url, echo=False, **kwargs)
    else:
        new_engine = create_async_engine(
            url,
            pool_pre_ping=True,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            echo=False,
        )
    register_store_functions(new_engine)
    return new_engine


def register_store_functions(target: AsyncEngine) -> None:
    """SQLite only: expose geodesic_distance_m and enforce foreign keys."""
    if target.dialect.name != "sqlite":
        return

    @event.listens_for(target.sync_engine, "connect")
    def _on_connect(dbapi_connection, _connection_record):
        dbapi_connection.create_function(
            GEODESIC_FUNCTION, 4, haversine_m, deterministic=True
        )
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
    )


engine = build_engine(settings.sqlalchemy_url)
AsyncSessionLocal = build_session_factory(engine)


async def init_db(target: AsyncEngine | None = None) -> None:
    """Create all tables and store functions if they don't exist (idempotent)."""
    from musicnet import models  # noqa: F401  (registers tables on Base.metadata)

    target = target or engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        if target.dialect.name == "postgresql":
            await conn.execute(text(_PG_GEODESIC_DDL))
    logger.info("Database tables initialised (%s)", target.dialect.name)


async def insert_ignore(
    session: AsyncSession,
    model,
    values: dict,
    conflict_columns: Sequence[str],
) -> bool:
    """
    Insert one row unless it collides with a unique constraint.

    Returns True when a row was written, False when it already existed.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = pg_insert(model).values(**values).on_conflict_do_nothing(
            index_elements=list(conflict_columns)
        )
    elif dialect == "sqlite":
        stmt = sqlite_insert(model).values(**values).on_conflict_do_nothing(
            index_elements=list(conflict_columns)
        )
    elif dialect in ("mysql", "mariadb"):
        stmt = insert(model).values(**values).prefix_with("IGNORE")
    else:
        raise NotImplementedError(f"insert_ignore not supported on {dialect}")

    result: CursorResult = await session.execute(stmt)
    return result.rowcount > 0


def is_foreign_key_violation(exc: IntegrityError) -> bool:
    """True when the write referenced a row that no longer exists."""
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code is not None:
        return code == _PG_FOREIGN_KEY_SQLSTATE
    return "FOREIGN KEY constraint failed" in str(orig)
