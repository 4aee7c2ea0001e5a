"""
Directory: users, bands and posts as records: lookups and profile writes.

Permission checks (author-only edits, admin-only band updates) live in the
operations layer; these helpers only read and write rows.
"""
import logging
from typing import Optional, Sequence

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from musicnet.errors import ConflictError
from musicnet.models import Band, EntityKind, EntityRef, Post, User

logger = logging.getLogger(__name__)


# ── Users ─────────────────────────────────────────────────────────────────

async def create_user(session: AsyncSession, attrs: dict) -> User:
    existing = await session.execute(
        select(User.username, User.email).where(
            or_(User.username == attrs["username"], User.email == attrs["email"])
        )
    )
    row = existing.first()
    if row is not None:
        field = "Username" if row.username == attrs["username"] else "Email"
        raise ConflictError(f"{field} already taken")

    user = User(**attrs)
    session.add(user)
    await session.flush()  # get user.id before commit
    logger.info("Created user %s (id=%s)", user.username, user.id)
    return user


async def get_user(session: AsyncSession, user_id: str) -> Optional[User]:
    return await session.get(User, user_id)


def _apply(record, changes: dict):
    for name, value in changes.items():
        setattr(record, name, value)
    return record


async def list_users(session: AsyncSession, limit: int, offset: int) -> list[User]:
    """Newest accounts first."""
    stmt = (
        select(User)
        .order_by(User.created_at.desc(), User.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list((await session.execute(stmt)).scalars().all())


async def update_user(session: AsyncSession, user: User, changes: dict) -> User:
    _apply(user, changes)
    await session.flush()
    return user


# ── Bands ─────────────────────────────────────────────────────────────────

async def get_band(session: AsyncSession, band_id: str) -> Optional[Band]:
    return await session.get(Band, band_id)


async def list_bands(session: AsyncSession, limit: int, offset: int) -> list[Band]:
    stmt = (
        select(Band)
        .order_by(Band.created_at.desc(), Band.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list((await session.execute(stmt)).scalars().all())


async def update_band(session: AsyncSession, band: Band, changes: dict) -> Band:
    _apply(band, changes)
    await session.flush()
    return band


async def entity_exists(session: AsyncSession, ref: EntityRef) -> bool:
    model = User if ref.kind is EntityKind.USER else Band
    result = await session.execute(select(model.id).where(model.id == ref.id))
    return result.scalar_one_or_none() is not None


async def set_profile_picture_url(
    session: AsyncSession, ref: EntityRef, url: str
) -> bool:
    model = User if ref.kind is EntityKind.USER else Band
    result = await session.execute(
        update(model).where(model.id == ref.id).values(profile_picture_url=url)
    )
    return result.rowcount > 0


# ── Posts ─────────────────────────────────────────────────────────────────

async def create_post(
    session: AsyncSession,
    author: EntityRef,
    content: str,
    media_urls: Sequence[str] = (),
    media_types: Sequence[str] = (),
) -> Post:
    post = Post(
        author_kind=author.kind.value,
        author_id=author.id,
        content=content,
        media_urls=list(media_urls),
        media_types=list(media_types),
    )
    session.add(post)
    await session.flush()  # materialise post.id
    logger.info("Post created: %s by %s %s", post.id, author.kind.value, author.id)
    return post


async def get_post(session: AsyncSession, post_id: str) -> Optional[Post]:
    return await session.get(Post, post_id)


async def update_post(session: AsyncSession, post: Post, content: str) -> Post:
    post.content = content
    await session.flush()
    return post


async def delete_post(session: AsyncSession, post_id: str) -> bool:
    """Delete a post; its like / repost edges go with it (ON DELETE CASCADE)."""
    result = await session.execute(delete(Post).where(Post.id == post_id))
    return result.rowcount > 0


async def append_post_media(
    session: AsyncSession, post: Post, url: str, media_type: str
) -> Post:
    # reassign so the JSON columns are flagged dirty
    post.media_urls = [*post.media_urls, url]
    post.media_types = [*post.media_types, media_type]
    await session.flush()
    return post
