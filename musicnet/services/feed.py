"""
FeedComposer: personalized and explore feeds.

  personalized │ posts whose (author_kind, author_id) matches a follow edge
               │ of the viewer: followed users ∪ followed bands
  explore      │ all posts

Both are ordered newest first (created_at DESC, id DESC) and paginated by
(limit, offset). Each item is hydrated with engagement counts, the viewer's
like / repost flags (false when anonymous) and an author summary.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from musicnet.models import Band, EntityKind, EntityRef, Follow, Post, User
from musicnet.services import engagement

logger = logging.getLogger(__name__)


@dataclass
class AuthorSummary:
    kind: EntityKind
    id: str
    name: Optional[str] = None          # username or band name
    display_name: Optional[str] = None
    profile_picture_url: Optional[str] = None


@dataclass
class FeedItem:
    post: Post
    author: AuthorSummary
    likes_count: int = 0
    reposts_count: int = 0
    is_liked: bool = False
    is_reposted: bool = False


def _newest_first(stmt, limit: int, offset: int):
    return (
        stmt.order_by(Post.created_at.desc(), Post.id.desc())
        .limit(limit)
        .offset(offset)
    )


async def get_feed(
    session: AsyncSession, viewer_id: Optional[str], limit: int, offset: int
) -> list[FeedItem]:
    """Personalized feed; an anonymous viewer gets the explore feed."""
    if viewer_id is None:
        return await get_explore_feed(session, None, limit, offset)

    followed = (
        select(Follow.follower_id)
        .where(
            Follow.follower_id == viewer_id,
            Follow.following_kind == Post.author_kind,
            Follow.following_id == Post.author_id,
        )
        .exists()
    )
    stmt = _newest_first(select(Post).where(followed), limit, offset)
    posts = (await session.execute(stmt)).scalars().all()
    return await hydrate(session, posts, viewer_id)


async def get_explore_feed(
    session: AsyncSession, viewer_id: Optional[str], limit: int, offset: int
) -> list[FeedItem]:
    stmt = _newest_first(select(Post), limit, offset)
    posts = (await session.execute(stmt)).scalars().all()
    return await hydrate(session, posts, viewer_id)


async def get_author_posts(
    session: AsyncSession,
    author: EntityRef,
    viewer_id: Optional[str],
    limit: int,
    offset: int,
) -> list[FeedItem]:
    stmt = _newest_first(
        select(Post).where(
            Post.author_kind == author.kind.value, Post.author_id == author.id
        ),
        limit,
        offset,
    )
    posts = (await session.execute(stmt)).scalars().all()
    return await hydrate(session, posts, viewer_id)


async def _author_summaries(
    session: AsyncSession, posts: Sequence[Post]
) -> dict[tuple[str, str], AuthorSummary]:
    user_ids = {p.author_id for p in posts if p.author_kind == EntityKind.USER.value}
    band_ids = {p.author_id for p in posts if p.author_kind == EntityKind.BAND.value}
    summaries: dict[tuple[str, str], AuthorSummary] = {}

    if user_ids:
        users = await session.execute(select(User).where(User.id.in_(user_ids)))
        for u in users.scalars():
            summaries[(EntityKind.USER.value, u.id)] = AuthorSummary(
                EntityKind.USER, u.id, u.username, u.display_name, u.profile_picture_url
            )
    if band_ids:
        bands = await session.execute(select(Band).where(Band.id.in_(band_ids)))
        for b in bands.scalars():
            summaries[(EntityKind.BAND.value, b.id)] = AuthorSummary(
                EntityKind.BAND, b.id, b.name, b.name, b.profile_picture_url
            )
    return summaries


async def hydrate(
    session: AsyncSession, posts: Sequence[Post], viewer_id: Optional[str]
) -> list[FeedItem]:
    """Attach counts, viewer flags and author summaries; keeps input order."""
    post_ids = [p.id for p in posts]
    counts = await engagement.counts(session, post_ids)
    liked: set[str] = set()
    reposted: set[str] = set()
    if viewer_id is not None:
        liked, reposted = await engagement.viewer_flags(session, viewer_id, post_ids)
    authors = await _author_summaries(session, posts)

    items = []
    for post in posts:
        kind = EntityKind(post.author_kind)
        c = counts.get(post.id, engagement.EngagementCounts())
        items.append(
            FeedItem(
                post=post,
                author=authors.get(
                    (post.author_kind, post.author_id), AuthorSummary(kind, post.author_id)
                ),
                likes_count=c.likes,
                reposts_count=c.reposts,
                is_liked=post.id in liked,
                is_reposted=post.id in reposted,
            )
        )
    return items
