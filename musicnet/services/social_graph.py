"""
SocialGraph: follower → (user | band) edges.

follow() and unfollow() are idempotent: a duplicate follow and an unfollow
of a missing edge both succeed. Self-follow is not checked here.
"""
import enum
import logging

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from musicnet.database import insert_ignore
from musicnet.models import Band, EntityKind, EntityRef, Follow, User
from musicnet.telemetry import ENGAGEMENT_WRITES_TOTAL

logger = logging.getLogger(__name__)

_EDGE_COLUMNS = ("follower_id", "following_kind", "following_id")


class FollowOutcome(str, enum.Enum):
    CREATED = "created"
    ALREADY_FOLLOWING = "already_following"


def _edge(follower_id: str, target: EntityRef):
    return (
        Follow.follower_id == follower_id,
        Follow.following_kind == target.kind.value,
        Follow.following_id == target.id,
    )


async def follow(
    session: AsyncSession, follower_id: str, target: EntityRef
) -> FollowOutcome:
    created = await insert_ignore(
        session,
        Follow,
        {
            "follower_id": follower_id,
            "following_kind": target.kind.value,
            "following_id": target.id,
        },
        _EDGE_COLUMNS,
    )
    ENGAGEMENT_WRITES_TOTAL.labels(
        edge="follow", outcome="created" if created else "noop"
    ).inc()
    if created:
        logger.info("%s followed %s %s", follower_id, target.kind.value, target.id)
        return FollowOutcome.CREATED
    return FollowOutcome.ALREADY_FOLLOWING


async def unfollow(session: AsyncSession, follower_id: str, target: EntityRef) -> bool:
    """Remove the edge if present. Returns whether a row was deleted."""
    result = await session.execute(delete(Follow).where(*_edge(follower_id, target)))
    removed = result.rowcount > 0
    ENGAGEMENT_WRITES_TOTAL.labels(
        edge="follow", outcome="removed" if removed else "noop"
    ).inc()
    return removed


async def is_following(
    session: AsyncSession, follower_id: str, target: EntityRef
) -> bool:
    result = await session.execute(
        select(Follow.follower_id).where(*_edge(follower_id, target)).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def list_followers(
    session: AsyncSession, target: EntityRef, limit: int, offset: int
) -> list[User]:
    """Users following `target`, most recently followed first."""
    stmt = (
        select(User)
        .join(Follow, Follow.follower_id == User.id)
        .where(
            Follow.following_kind == target.kind.value,
            Follow.following_id == target.id,
        )
        .order_by(Follow.created_at.desc(), User.id)
        .limit(limit)
        .offset(offset)
    )
    return list((await session.execute(stmt)).scalars().all())


async def list_following(
    session: AsyncSession,
    follower_id: str,
    limit: int,
    offset: int,
    kind: EntityKind = EntityKind.USER,
) -> list:
    """Users (default) or bands followed by `follower_id`, most recent first."""
    model = User if kind is EntityKind.USER else Band
    stmt = (
        select(model)
        .join(
            Follow,
            (Follow.following_id == model.id)
            & (Follow.following_kind == kind.value),
        )
        .where(Follow.follower_id == follower_id)
        .order_by(Follow.created_at.desc(), model.id)
        .limit(limit)
        .offset(offset)
    )
    return list((await session.execute(stmt)).scalars().all())


async def count_followers(session: AsyncSession, target: EntityRef) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(Follow)
        .where(
            Follow.following_kind == target.kind.value,
            Follow.following_id == target.id,
        )
    )
    return result.scalar_one()


async def count_following(session: AsyncSession, follower_id: str) -> int:
    result = await session.execute(
        select(func.count()).select_from(Follow).where(Follow.follower_id == follower_id)
    )
    return result.scalar_one()
