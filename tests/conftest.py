"""Root conftest: in-memory SQLite store, SocialService and row factories.

Every test gets a fresh in-memory database with geodesic_distance_m
registered and foreign keys enforced. The environment is set before any
musicnet import so module-level settings/engine pick it up.
"""
import itertools
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("OTEL_ENABLED", "false")

import pytest  # noqa: E402
from sqlalchemy import func, select  # noqa: E402

from musicnet.config import settings  # noqa: E402
from musicnet.database import build_engine, build_session_factory, init_db  # noqa: E402
from musicnet.models import (  # noqa: E402
    ROLE_ADMIN,
    Band,
    BandMember,
    EntityRef,
    Post,
    User,
)
from musicnet.operations import SocialService  # noqa: E402

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def test_engine():
    engine = build_engine(TEST_DB_URL)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return build_session_factory(test_engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def service(session_factory):
    return SocialService(session_factory, settings)


# -- Row factories ---------------------------------------------------------

@pytest.fixture
def make_user(session_factory):
    counter = itertools.count(1)

    async def _make(lat=None, lng=None, **attrs):
        n = next(counter)
        attrs.setdefault("username", f"musician{n}")
        attrs.setdefault("email", f"musician{n}@example.com")
        async with session_factory() as session:
            user = User(latitude=lat, longitude=lng, **attrs)
            session.add(user)
            await session.commit()
            return user

    return _make


@pytest.fixture
def make_band(session_factory):
    counter = itertools.count(1)

    async def _make(lat=None, lng=None, admin_id=None, **attrs):
        attrs.setdefault("name", f"Band {next(counter)}")
        async with session_factory() as session:
            band = Band(latitude=lat, longitude=lng, **attrs)
            session.add(band)
            await session.flush()
            if admin_id:
                session.add(BandMember(band_id=band.id, user_id=admin_id, role=ROLE_ADMIN))
            await session.commit()
            return band

    return _make


@pytest.fixture
def make_post(session_factory):
    async def _make(author: EntityRef, content="riff of the day", created_at=None):
        async with session_factory() as session:
            post = Post(
                author_kind=author.kind.value,
                author_id=author.id,
                content=content,
            )
            if created_at is not None:
                post.created_at = created_at
            session.add(post)
            await session.commit()
            return post

    return _make


@pytest.fixture
def count_rows(session_factory):
    async def _count(model) -> int:
        async with session_factory() as session:
            result = await session.execute(select(func.count()).select_from(model))
            return result.scalar_one()

    return _count
