"""
BandMembership: owner of the band_members edges.

create_band() writes the band and the creator's Admin membership; run it
inside TransactionCoordinator.run_atomic so neither row survives alone.
delete_band() likewise clears the band's follow edges and posts in one unit.
"""
import logging
from datetime import datetime
from typing import NamedTuple

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from musicnet.database import insert_ignore
from musicnet.errors import BusinessRuleError
from musicnet.models import (
    ROLE_ADMIN,
    ROLE_MEMBER,
    Band,
    BandMember,
    EntityKind,
    Follow,
    Post,
    User,
)

logger = logging.getLogger(__name__)


class MemberEntry(NamedTuple):
    user: User
    role: str
    joined_at: datetime


class MembershipEntry(NamedTuple):
    band: Band
    role: str
    joined_at: datetime


async def create_band(session: AsyncSession, creator_id: str, attrs: dict) -> Band:
    band = Band(**attrs)
    session.add(band)
    await session.flush()  # materialise band.id

    session.add(BandMember(band_id=band.id, user_id=creator_id, role=ROLE_ADMIN))
    await session.flush()
    logger.info("Band %s created by %s", band.id, creator_id)
    return band


async def delete_band(session: AsyncSession, band_id: str) -> bool:
    """
    Delete a band with everything that points at it.

    Follow edges and posts reference the band through a tagged id with no
    foreign key, so they are removed here; memberships, and the likes and
    reposts of the removed posts, go by ON DELETE CASCADE.
    """
    kind = EntityKind.BAND.value
    follows = await session.execute(
        delete(Follow).where(Follow.following_kind == kind, Follow.following_id == band_id)
    )
    posts = await session.execute(
        delete(Post).where(Post.author_kind == kind, Post.author_id == band_id)
    )
    result = await session.execute(delete(Band).where(Band.id == band_id))
    if result.rowcount == 0:
        return False
    logger.info(
        "Band %s deleted (%d posts, %d follow edges)",
        band_id, posts.rowcount, follows.rowcount,
    )
    return True


async def join_band(session: AsyncSession, band_id: str, user_id: str) -> None:
    """Self-join always lands as Member; admins come only from create_band."""
    created = await insert_ignore(
        session,
        BandMember,
        {"band_id": band_id, "user_id": user_id, "role": ROLE_MEMBER},
        ("band_id", "user_id"),
    )
    if not created:
        raise BusinessRuleError("User is already a member of this band")
    logger.info("%s joined band %s", user_id, band_id)


async def leave_band(session: AsyncSession, band_id: str, user_id: str) -> None:
    result = await session.execute(
        delete(BandMember).where(
            BandMember.band_id == band_id, BandMember.user_id == user_id
        )
    )
    if result.rowcount == 0:
        raise BusinessRuleError("User is not a member of this band")
    logger.info("%s left band %s", user_id, band_id)


async def _role(session: AsyncSession, band_id: str, user_id: str):
    result = await session.execute(
        select(BandMember.role).where(
            BandMember.band_id == band_id, BandMember.user_id == user_id
        )
    )
    return result.scalar_one_or_none()


async def is_member(session: AsyncSession, band_id: str, user_id: str) -> bool:
    return await _role(session, band_id, user_id) is not None


async def is_admin(session: AsyncSession, band_id: str, user_id: str) -> bool:
    return await _role(session, band_id, user_id) == ROLE_ADMIN


async def list_members(session: AsyncSession, band_id: str) -> list[MemberEntry]:
    """Members in join order."""
    result = await session.execute(
        select(User, BandMember.role, BandMember.joined_at)
        .join(BandMember, BandMember.user_id == User.id)
        .where(BandMember.band_id == band_id)
        .order_by(BandMember.joined_at.asc(), User.id)
    )
    return [MemberEntry(*row) for row in result.all()]


async def list_user_bands(session: AsyncSession, user_id: str) -> list[MembershipEntry]:
    """Bands a user belongs to, most recently joined first."""
    result = await session.execute(
        select(Band, BandMember.role, BandMember.joined_at)
        .join(BandMember, BandMember.band_id == Band.id)
        .where(BandMember.user_id == user_id)
        .order_by(BandMember.joined_at.desc(), Band.id)
    )
    return [MembershipEntry(*row) for row in result.all()]
