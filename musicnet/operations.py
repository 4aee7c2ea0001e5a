"""
SocialService: the caller-facing operations.

Every public coroutine:
  1. validates its parameters (ValidationFailedError),
  2. runs under a deadline (`timeout=` seconds, default from settings;
     expiry → DeadlineExceededError, in-flight transaction rolled back),
  3. does its store work inside one TransactionCoordinator unit
     (read-only for queries),
  4. classifies failures: IntegrityError → ConflictError,
     other SQLAlchemyError → StoreUnavailableError,
  5. records a span plus latency / error metrics.

The acting principal is passed in as a user id (None = anonymous).
"""
import asyncio
import contextlib
import functools
import logging
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from opentelemetry import trace
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from musicnet.clients.object_storage import AUDIO_CONTENT_TYPES, IMAGE_CONTENT_TYPES
from musicnet.config import Settings, settings
from musicnet.database import is_foreign_key_violation
from musicnet.errors import (
    BusinessRuleError,
    ConflictError,
    DeadlineExceededError,
    ForbiddenError,
    InfrastructureError,
    MusicNetError,
    NotFoundError,
    StoreUnavailableError,
    ValidationFailedError,
)
from musicnet.models import Band, EntityKind, EntityRef, Post, User
from musicnet.services import bands, directory, engagement, feed, geo, social_graph
from musicnet.services.feed import FeedItem
from musicnet.services.geo import NearbyMatch
from musicnet.services.social_graph import FollowOutcome
from musicnet.services.transactions import TransactionCoordinator
from musicnet.telemetry import OPERATION_ERRORS_TOTAL, OPERATION_LATENCY

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

MAX_POST_LENGTH = 2000
MAX_BAND_NAME_LENGTH = 100
MIN_NEARBY_RADIUS_KM = 1.0
MEDIA_TYPES = ("image", "audio", "video")


@dataclass
class UserProfile:
    user: User
    followers_count: int
    following_count: int


@dataclass
class BandProfile:
    band: Band
    followers_count: int
    members_count: int


def _record_error(operation: str, error: MusicNetError) -> None:
    OPERATION_ERRORS_TOTAL.labels(
        operation=operation, category=error.category.value
    ).inc()


def operation(name: str):
    """Wrap a SocialService coroutine with deadline, span, metrics and error mapping."""

    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(self, *args, timeout: Optional[float] = None, **kwargs):
            limit = self._settings.request_timeout_seconds if timeout is None else timeout
            start = time.perf_counter()
            with tracer.start_as_current_span(name):
                try:
                    async with asyncio.timeout(limit):
                        return await fn(self, *args, **kwargs)
                except MusicNetError as exc:
                    _record_error(name, exc)
                    raise
                except TimeoutError as exc:
                    error = DeadlineExceededError(name, limit)
                    _record_error(name, error)
                    logger.warning("%s exceeded its %.2fs deadline", name, limit)
                    raise error from exc
                except IntegrityError as exc:
                    error = ConflictError("Resource already exists", str(exc.orig))
                    _record_error(name, error)
                    raise error from exc
                except SQLAlchemyError as exc:
                    error = StoreUnavailableError("Database operation failed", str(exc))
                    _record_error(name, error)
                    logger.error("%s: store failure: %s", name, exc)
                    raise error from exc
                finally:
                    OPERATION_LATENCY.labels(operation=name).observe(
                        time.perf_counter() - start
                    )

        return wrapper

    return decorator


def _annotate(**attributes) -> None:
    span = trace.get_current_span()
    for key, value in attributes.items():
        if value is not None:
            span.set_attribute(key, value)


# ── Parameter validation ──────────────────────────────────────────────────

def _require_principal(principal_id: Optional[str]) -> str:
    if not principal_id:
        raise ValidationFailedError("user_id", "an acting user is required")
    return principal_id


def _validate_coordinates(latitude: float, longitude: float) -> None:
    if not -90.0 <= latitude <= 90.0:
        raise ValidationFailedError("latitude", "must be between -90 and 90")
    if not -180.0 <= longitude <= 180.0:
        raise ValidationFailedError("longitude", "must be between -180 and 180")


def _validate_location_change(changes: dict) -> None:
    has_lat, has_lng = "latitude" in changes, "longitude" in changes
    if not has_lat and not has_lng:
        return
    lat, lng = changes.get("latitude"), changes.get("longitude")
    if (lat is None) != (lng is None):
        raise ValidationFailedError(
            "location", "latitude and longitude must be set together"
        )
    if lat is not None:
        _validate_coordinates(lat, lng)


def _validate_content(content: str) -> None:
    if not content or not content.strip():
        raise ValidationFailedError("content", "must not be empty")
    if len(content) > MAX_POST_LENGTH:
        raise ValidationFailedError(
            "content", f"must be at most {MAX_POST_LENGTH} characters"
        )


def _validate_media(media_urls: Sequence[str], media_types: Sequence[str]) -> None:
    if len(media_urls) != len(media_types):
        raise ValidationFailedError(
            "media_types", "must have one entry per media URL"
        )
    for media_type in media_types:
        if media_type not in MEDIA_TYPES:
            raise ValidationFailedError(
                "media_types", f"'{media_type}' is not one of {', '.join(MEDIA_TYPES)}"
            )


def _validate_band_name(name: Optional[str]) -> None:
    if not name or not name.strip() or len(name) > MAX_BAND_NAME_LENGTH:
        raise ValidationFailedError(
            "name", f"must be between 1 and {MAX_BAND_NAME_LENGTH} characters"
        )


# ── Existence checks (inside a unit of work) ─────────────────────────────

async def _require_user(session, user_id: str) -> User:
    user = await directory.get_user(session, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return user


async def _require_band(session, band_id: str) -> Band:
    band = await directory.get_band(session, band_id)
    if band is None:
        raise NotFoundError("Band", band_id)
    return band


async def _require_post(session, post_id: str) -> Post:
    post = await directory.get_post(session, post_id)
    if post is None:
        raise NotFoundError("Post", post_id)
    return post


async def _require_entity(session, ref: EntityRef) -> None:
    if not await directory.entity_exists(session, ref):
        raise NotFoundError(ref.kind.value.capitalize(), ref.id)


@contextlib.contextmanager
def _still_exists(resource_type: str, resource_id: str):
    """Report a row deleted mid-unit as NotFound rather than a conflict."""
    try:
        yield
    except IntegrityError as exc:
        if is_foreign_key_violation(exc):
            raise NotFoundError(resource_type, resource_id) from exc
        raise


async def _require_can_act_as(session, principal_id: str, ref: EntityRef) -> None:
    """A user acts as themself; acting as a band needs its Admin role."""
    if ref.kind is EntityKind.USER:
        if ref.id != principal_id:
            raise ForbiddenError("You can only modify your own profile or posts")
        return
    if not await bands.is_admin(session, ref.id, principal_id):
        raise ForbiddenError("Only band admins can perform this action")


class SocialService:
    """Stateless apart from its session factory; one instance per process."""

    def __init__(self, session_factory, config: Settings = settings, storage=None):
        self._settings = config
        self._storage = storage
        self.transactions = TransactionCoordinator(session_factory)

    @property
    def default_page_size(self) -> int:
        return self._settings.page_default_size

    def _page(self, limit: Optional[int], offset: int) -> int:
        limit = self._settings.page_default_size if limit is None else limit
        if not 1 <= limit <= self._settings.page_max_size:
            raise ValidationFailedError(
                "limit", f"must be between 1 and {self._settings.page_max_size}"
            )
        if offset < 0:
            raise ValidationFailedError("offset", "must be >= 0")
        return limit

    def _nearby_bounds(
        self,
        latitude: float,
        longitude: float,
        radius_km: Optional[float],
        limit: Optional[int],
    ) -> tuple[float, int]:
        _validate_coordinates(latitude, longitude)
        radius_km = self._settings.nearby_default_radius_km if radius_km is None else radius_km
        limit = self._settings.nearby_default_limit if limit is None else limit
        max_radius = self._settings.nearby_max_radius_km
        if not MIN_NEARBY_RADIUS_KM <= radius_km <= max_radius:
            raise ValidationFailedError(
                "radius_km", f"must be between {MIN_NEARBY_RADIUS_KM:g} and {max_radius:g}"
            )
        if not 1 <= limit <= self._settings.nearby_max_limit:
            raise ValidationFailedError(
                "limit", f"must be between 1 and {self._settings.nearby_max_limit}"
            )
        return radius_km, limit

    # ── Social graph ─────────────────────────────────────────────────────

    @operation("create_follow")
    async def create_follow(self, principal_id: str, target: EntityRef) -> FollowOutcome:
        _require_principal(principal_id)
        _annotate(**{"user.id": principal_id, "target.kind": target.kind.value,
                     "target.id": target.id})
        if target.kind is EntityKind.USER and target.id == principal_id:
            raise BusinessRuleError("Cannot follow yourself")

        async def step(session):
            await _require_user(session, principal_id)
            await _require_entity(session, target)
            return await social_graph.follow(session, principal_id, target)

        return await self.transactions.run_atomic(step)

    @operation("remove_follow")
    async def remove_follow(self, principal_id: str, target: EntityRef) -> None:
        _require_principal(principal_id)
        _annotate(**{"user.id": principal_id, "target.id": target.id})

        async def step(session):
            await social_graph.unfollow(session, principal_id, target)

        await self.transactions.run_atomic(step)

    @operation("is_following")
    async def is_following(self, principal_id: str, target: EntityRef) -> bool:
        _require_principal(principal_id)

        async def step(session):
            return await social_graph.is_following(session, principal_id, target)

        return await self.transactions.run_atomic_read_only(step)

    @operation("list_followers")
    async def list_followers(
        self, target: EntityRef, limit: Optional[int] = None, offset: int = 0
    ) -> list[User]:
        limit = self._page(limit, offset)

        async def step(session):
            await _require_entity(session, target)
            return await social_graph.list_followers(session, target, limit, offset)

        return await self.transactions.run_atomic_read_only(step)

    @operation("list_following")
    async def list_following(
        self,
        user_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
        kind: EntityKind = EntityKind.USER,
    ) -> list:
        limit = self._page(limit, offset)

        async def step(session):
            await _require_user(session, user_id)
            return await social_graph.list_following(session, user_id, limit, offset, kind)

        return await self.transactions.run_atomic_read_only(step)

    # ── Feeds ────────────────────────────────────────────────────────────

    @operation("get_feed")
    async def get_feed(
        self, viewer_id: Optional[str], limit: Optional[int] = None, offset: int = 0
    ) -> list[FeedItem]:
        limit = self._page(limit, offset)
        _annotate(**{"user.id": viewer_id, "feed.limit": limit, "feed.offset": offset})

        async def step(session):
            if viewer_id is not None:
                await _require_user(session, viewer_id)
            return await feed.get_feed(session, viewer_id, limit, offset)

        items = await self.transactions.run_atomic_read_only(step)
        trace.get_current_span().set_attribute("feed.items", len(items))
        return items

    @operation("get_explore_feed")
    async def get_explore_feed(
        self, viewer_id: Optional[str] = None, limit: Optional[int] = None, offset: int = 0
    ) -> list[FeedItem]:
        limit = self._page(limit, offset)

        async def step(session):
            return await feed.get_explore_feed(session, viewer_id, limit, offset)

        return await self.transactions.run_atomic_read_only(step)

    @operation("get_author_posts")
    async def get_author_posts(
        self,
        viewer_id: Optional[str],
        author: EntityRef,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[FeedItem]:
        limit = self._page(limit, offset)

        async def step(session):
            await _require_entity(session, author)
            return await feed.get_author_posts(session, author, viewer_id, limit, offset)

        return await self.transactions.run_atomic_read_only(step)

    # ── Proximity ────────────────────────────────────────────────────────

    async def _nearby(self, kind, latitude, longitude, radius_km, limit):
        radius_km, limit = self._nearby_bounds(latitude, longitude, radius_km, limit)
        _annotate(**{"geo.kind": kind.value, "geo.radius_km": radius_km,
                     "geo.limit": limit})

        async def step(session):
            return await geo.find_nearby(session, kind, latitude, longitude, radius_km, limit)

        return await self.transactions.run_atomic_read_only(step)

    @operation("get_nearby_users")
    async def get_nearby_users(
        self,
        latitude: float,
        longitude: float,
        radius_km: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> list[NearbyMatch]:
        return await self._nearby(EntityKind.USER, latitude, longitude, radius_km, limit)

    @operation("get_nearby_bands")
    async def get_nearby_bands(
        self,
        latitude: float,
        longitude: float,
        radius_km: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> list[NearbyMatch]:
        return await self._nearby(EntityKind.BAND, latitude, longitude, radius_km, limit)

    # ── Engagement ───────────────────────────────────────────────────────

    async def _engage(self, principal_id, post_id, write):
        _require_principal(principal_id)
        _annotate(**{"user.id": principal_id, "post.id": post_id})

        async def step(session):
            await _require_user(session, principal_id)
            await _require_post(session, post_id)
            with _still_exists("Post", post_id):
                return await write(session, principal_id, post_id)

        return await self.transactions.run_atomic(step)

    @operation("like_post")
    async def like_post(self, principal_id: str, post_id: str) -> bool:
        return await self._engage(principal_id, post_id, engagement.like)

    @operation("unlike_post")
    async def unlike_post(self, principal_id: str, post_id: str) -> bool:
        return await self._engage(principal_id, post_id, engagement.unlike)

    @operation("repost")
    async def repost(self, principal_id: str, post_id: str) -> bool:
        return await self._engage(principal_id, post_id, engagement.repost)

    # ── Bands ────────────────────────────────────────────────────────────

    @operation("create_band")
    async def create_band(self, principal_id: str, attrs: dict) -> Band:
        _require_principal(principal_id)
        _validate_band_name(attrs.get("name"))
        _validate_location_change(attrs)

        async def step(session):
            await _require_user(session, principal_id)
            return await bands.create_band(session, principal_id, attrs)

        return await self.transactions.run_atomic(step)

    @operation("join_band")
    async def join_band(self, principal_id: str, band_id: str) -> None:
        _require_principal(principal_id)
        _annotate(**{"user.id": principal_id, "band.id": band_id})

        async def step(session):
            await _require_user(session, principal_id)
            await _require_band(session, band_id)
            with _still_exists("Band", band_id):
                await bands.join_band(session, band_id, principal_id)

        await self.transactions.run_atomic(step)

    @operation("leave_band")
    async def leave_band(self, principal_id: str, band_id: str) -> None:
        _require_principal(principal_id)
        _annotate(**{"user.id": principal_id, "band.id": band_id})

        async def step(session):
            await _require_band(session, band_id)
            await bands.leave_band(session, band_id, principal_id)

        await self.transactions.run_atomic(step)

    @operation("delete_band")
    async def delete_band(self, principal_id: str, band_id: str) -> None:
        """Admins only; the band's posts and follow edges go with it."""
        _require_principal(principal_id)
        _annotate(**{"user.id": principal_id, "band.id": band_id})

        async def step(session):
            await _require_band(session, band_id)
            await _require_can_act_as(session, principal_id, EntityRef.band(band_id))
            if not await bands.delete_band(session, band_id):
                raise NotFoundError("Band", band_id)

        await self.transactions.run_atomic(step)

    @operation("list_bands")
    async def list_bands(self, limit: Optional[int] = None, offset: int = 0) -> list[Band]:
        limit = self._page(limit, offset)

        async def step(session):
            return await directory.list_bands(session, limit, offset)

        return await self.transactions.run_atomic_read_only(step)

    @operation("get_band")
    async def get_band(self, band_id: str) -> BandProfile:
        async def step(session):
            band = await _require_band(session, band_id)
            followers = await social_graph.count_followers(session, EntityRef.band(band_id))
            members = await bands.list_members(session, band_id)
            return BandProfile(band, followers, len(members))

        return await self.transactions.run_atomic_read_only(step)

    @operation("update_band")
    async def update_band(self, principal_id: str, band_id: str, changes: dict) -> Band:
        _require_principal(principal_id)
        if "name" in changes:
            _validate_band_name(changes["name"])
        _validate_location_change(changes)

        async def step(session):
            band = await _require_band(session, band_id)
            await _require_can_act_as(session, principal_id, EntityRef.band(band_id))
            return await directory.update_band(session, band, changes)

        return await self.transactions.run_atomic(step)

    @operation("list_band_members")
    async def list_band_members(self, band_id: str) -> list[bands.MemberEntry]:
        async def step(session):
            await _require_band(session, band_id)
            return await bands.list_members(session, band_id)

        return await self.transactions.run_atomic_read_only(step)

    @operation("list_user_bands")
    async def list_user_bands(self, user_id: str) -> list[bands.MembershipEntry]:
        async def step(session):
            await _require_user(session, user_id)
            return await bands.list_user_bands(session, user_id)

        return await self.transactions.run_atomic_read_only(step)

    # ── Users ────────────────────────────────────────────────────────────

    @operation("create_user")
    async def create_user(self, attrs: dict) -> User:
        _validate_location_change(attrs)

        async def step(session):
            return await directory.create_user(session, attrs)

        return await self.transactions.run_atomic(step)

    @operation("list_users")
    async def list_users(self, limit: Optional[int] = None, offset: int = 0) -> list[User]:
        limit = self._page(limit, offset)

        async def step(session):
            return await directory.list_users(session, limit, offset)

        return await self.transactions.run_atomic_read_only(step)

    @operation("get_user")
    async def get_user(self, user_id: str) -> UserProfile:
        async def step(session):
            user = await _require_user(session, user_id)
            followers = await social_graph.count_followers(session, EntityRef.user(user_id))
            following = await social_graph.count_following(session, user_id)
            return UserProfile(user, followers, following)

        return await self.transactions.run_atomic_read_only(step)

    @operation("update_user")
    async def update_user(self, principal_id: str, user_id: str, changes: dict) -> User:
        _require_principal(principal_id)
        _validate_location_change(changes)

        async def step(session):
            user = await _require_user(session, user_id)
            await _require_can_act_as(session, principal_id, EntityRef.user(user_id))
            return await directory.update_user(session, user, changes)

        return await self.transactions.run_atomic(step)

    @operation("set_profile_picture")
    async def set_profile_picture(
        self,
        principal_id: str,
        target: EntityRef,
        media_base64: str,
        content_type: str,
    ) -> str:
        """Upload an image to object storage and point the profile at it."""
        _require_principal(principal_id)
        if content_type not in IMAGE_CONTENT_TYPES:
            raise ValidationFailedError(
                "content_type", f"must be one of {', '.join(IMAGE_CONTENT_TYPES)}"
            )
        if self._storage is None:
            raise InfrastructureError("Object storage is not configured")

        async def authorize(session):
            await _require_entity(session, target)
            await _require_can_act_as(session, principal_id, target)

        await self.transactions.run_atomic_read_only(authorize)

        # boto3 is blocking
        url = await asyncio.to_thread(
            self._storage.upload_image, target.id, media_base64, content_type
        )

        async def step(session):
            if not await directory.set_profile_picture_url(session, target, url):
                raise NotFoundError(target.kind.value.capitalize(), target.id)

        await self.transactions.run_atomic(step)
        return url

    # ── Posts ────────────────────────────────────────────────────────────

    @operation("create_post")
    async def create_post(
        self,
        principal_id: str,
        content: str,
        band_id: Optional[str] = None,
        media_urls: Sequence[str] = (),
        media_types: Sequence[str] = (),
    ) -> FeedItem:
        _require_principal(principal_id)
        _validate_content(content)
        _validate_media(media_urls, media_types)
        author = EntityRef.band(band_id) if band_id else EntityRef.user(principal_id)

        async def step(session):
            await _require_user(session, principal_id)
            if band_id:
                await _require_band(session, band_id)
                if not await bands.is_member(session, band_id, principal_id):
                    raise ForbiddenError("Only band members can post as the band")
            post = await directory.create_post(
                session, author, content, media_urls, media_types
            )
            items = await feed.hydrate(session, [post], principal_id)
            return items[0]

        return await self.transactions.run_atomic(step)

    @operation("add_post_media")
    async def add_post_media(
        self,
        principal_id: str,
        post_id: str,
        media_base64: str,
        content_type: str,
    ) -> FeedItem:
        """Upload an image or audio file and attach it to an existing post."""
        _require_principal(principal_id)
        if content_type not in IMAGE_CONTENT_TYPES + AUDIO_CONTENT_TYPES:
            raise ValidationFailedError(
                "content_type",
                f"must be one of {', '.join(IMAGE_CONTENT_TYPES + AUDIO_CONTENT_TYPES)}",
            )
        if self._storage is None:
            raise InfrastructureError("Object storage is not configured")

        async def authorize(session):
            post = await _require_post(session, post_id)
            author = EntityRef(EntityKind(post.author_kind), post.author_id)
            await _require_can_act_as(session, principal_id, author)

        await self.transactions.run_atomic_read_only(authorize)

        # boto3 is blocking
        url, media_type = await asyncio.to_thread(
            self._storage.upload_media, principal_id, media_base64, content_type
        )

        async def step(session):
            post = await _require_post(session, post_id)
            post = await directory.append_post_media(session, post, url, media_type)
            items = await feed.hydrate(session, [post], principal_id)
            return items[0]

        return await self.transactions.run_atomic(step)

    @operation("get_post")
    async def get_post(self, viewer_id: Optional[str], post_id: str) -> FeedItem:
        async def step(session):
            post = await _require_post(session, post_id)
            items = await feed.hydrate(session, [post], viewer_id)
            return items[0]

        return await self.transactions.run_atomic_read_only(step)

    @operation("update_post")
    async def update_post(self, principal_id: str, post_id: str, content: str) -> FeedItem:
        _require_principal(principal_id)
        _validate_content(content)

        async def step(session):
            post = await _require_post(session, post_id)
            author = EntityRef(EntityKind(post.author_kind), post.author_id)
            await _require_can_act_as(session, principal_id, author)
            post = await directory.update_post(session, post, content)
            items = await feed.hydrate(session, [post], principal_id)
            return items[0]

        return await self.transactions.run_atomic(step)

    @operation("delete_post")
    async def delete_post(self, principal_id: str, post_id: str) -> None:
        _require_principal(principal_id)

        async def step(session):
            post = await _require_post(session, post_id)
            author = EntityRef(EntityKind(post.author_kind), post.author_id)
            await _require_can_act_as(session, principal_id, author)
            await directory.delete_post(session, post_id)

        await self.transactions.run_atomic(step)

    # ── Health ───────────────────────────────────────────────────────────

    @operation("check_ready")
    async def check_ready(self) -> None:
        """Round-trip to the store; raises StoreUnavailableError when it is down."""

        async def step(session):
            await session.execute(text("SELECT 1"))

        await self.transactions.run_atomic_read_only(step)
