"""
EngagementLedger: like / repost edges between users and posts.

All writes are idempotent. Counts are aggregated from the ledger rows for
the page being rendered rather than kept as counters on the post.
"""
import logging
from dataclasses import dataclass
from typing import Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from musicnet.database import insert_ignore
from musicnet.models import Like, Repost
from musicnet.telemetry import ENGAGEMENT_WRITES_TOTAL

logger = logging.getLogger(__name__)

_PAIR = ("user_id", "post_id")


@dataclass(frozen=True)
class EngagementCounts:
    likes: int = 0
    reposts: int = 0


async def _add(session: AsyncSession, model, edge: str, user_id: str, post_id: str) -> bool:
    created = await insert_ignore(
        session, model, {"user_id": user_id, "post_id": post_id}, _PAIR
    )
    ENGAGEMENT_WRITES_TOTAL.labels(
        edge=edge, outcome="created" if created else "noop"
    ).inc()
    return created


async def like(session: AsyncSession, user_id: str, post_id: str) -> bool:
    """Returns True if the like is new."""
    return await _add(session, Like, "like", user_id, post_id)


async def unlike(session: AsyncSession, user_id: str, post_id: str) -> bool:
    """Returns True if a like was removed."""
    result = await session.execute(
        delete(Like).where(Like.user_id == user_id, Like.post_id == post_id)
    )
    removed = result.rowcount > 0
    ENGAGEMENT_WRITES_TOTAL.labels(
        edge="like", outcome="removed" if removed else "noop"
    ).inc()
    return removed


async def repost(session: AsyncSession, user_id: str, post_id: str) -> bool:
    """Returns True if the repost is new."""
    return await _add(session, Repost, "repost", user_id, post_id)


async def _exists(session: AsyncSession, model, user_id: str, post_id: str) -> bool:
    result = await session.execute(
        select(model.post_id)
        .where(model.user_id == user_id, model.post_id == post_id)
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def is_liked(session: AsyncSession, user_id: str, post_id: str) -> bool:
    return await _exists(session, Like, user_id, post_id)


async def is_reposted(session: AsyncSession, user_id: str, post_id: str) -> bool:
    return await _exists(session, Repost, user_id, post_id)


async def _count_by_post(session: AsyncSession, model, post_ids) -> dict[str, int]:
    result = await session.execute(
        select(model.post_id, func.count())
        .where(model.post_id.in_(post_ids))
        .group_by(model.post_id)
    )
    return {post_id: count for post_id, count in result.all()}


async def counts(
    session: AsyncSession, post_ids: Sequence[str]
) -> dict[str, EngagementCounts]:
    if not post_ids:
        return {}
    likes = await _count_by_post(session, Like, post_ids)
    reposts = await _count_by_post(session, Repost, post_ids)
    return {
        pid: EngagementCounts(likes=likes.get(pid, 0), reposts=reposts.get(pid, 0))
        for pid in post_ids
    }


async def viewer_flags(
    session: AsyncSession, viewer_id: str, post_ids: Sequence[str]
) -> tuple[set[str], set[str]]:
    """(liked post ids, reposted post ids) among `post_ids` for one viewer."""
    if not post_ids:
        return set(), set()
    liked = await session.execute(
        select(Like.post_id).where(Like.user_id == viewer_id, Like.post_id.in_(post_ids))
    )
    reposted = await session.execute(
        select(Repost.post_id).where(
            Repost.user_id == viewer_id, Repost.post_id.in_(post_ids)
        )
    )
    return set(liked.scalars().all()), set(reposted.scalars().all())
