"""
SQLAlchemy ORM models.

Tables:
  users         — musician profiles, optional (latitude, longitude)
  bands         — band profiles, optional (latitude, longitude)
  band_members  — band × user membership with a role ('Admin', 'Member', …)
  posts         — posts authored by a user OR a band (author_kind + author_id)
  follows       — follower → (user | band) edges
  likes         — user × post engagement
  reposts       — user × post engagement

Polymorphic references (post author, follow target) are stored as a
(kind, id) pair that is always fully populated; EntityRef is the in-memory form.
Edge tables carry unique constraints; idempotent writes depend on them.
"""
import enum
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from musicnet.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    # Python-side so ordering keeps sub-second precision on every dialect
    return datetime.now(timezone.utc).replace(tzinfo=None)


class EntityKind(str, enum.Enum):
    USER = "user"
    BAND = "band"


@dataclass(frozen=True)
class EntityRef:
    """Reference to a post author or follow target: exactly one user or band."""

    kind: EntityKind
    id: str

    @classmethod
    def user(cls, user_id: str) -> "EntityRef":
        return cls(EntityKind.USER, user_id)

    @classmethod
    def band(cls, band_id: str) -> "EntityRef":
        return cls(EntityKind.BAND, band_id)


ROLE_ADMIN = "Admin"
ROLE_MEMBER = "Member"

_KIND_VALUES = "('user', 'band')"


def _location_checks(table: str) -> tuple:
    return (
        CheckConstraint(
            "(latitude IS NULL AND longitude IS NULL) OR "
            "(latitude IS NOT NULL AND longitude IS NOT NULL)",
            name=f"ck_{table}_location_pair",
        ),
        CheckConstraint(
            "latitude IS NULL OR (latitude >= -90 AND latitude <= 90)",
            name=f"ck_{table}_latitude_range",
        ),
        CheckConstraint(
            "longitude IS NULL OR (longitude >= -180 AND longitude <= 180)",
            name=f"ck_{table}_longitude_range",
        ),
        # Bounding-box pre-filter for proximity search
        Index(f"idx_{table}_location", "latitude", "longitude"),
    )


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(100))
    bio: Mapped[Optional[str]] = mapped_column(Text)
    profile_picture_url: Mapped[Optional[str]] = mapped_column(Text)
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)
    city: Mapped[Optional[str]] = mapped_column(String(100))
    country: Mapped[Optional[str]] = mapped_column(String(100))
    genres: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    skills: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    spotify_url: Mapped[Optional[str]] = mapped_column(Text)
    soundcloud_url: Mapped[Optional[str]] = mapped_column(Text)
    instagram_handle: Mapped[Optional[str]] = mapped_column(String(50))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = _location_checks("users")


class Band(Base):
    __tablename__ = "bands"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    bio: Mapped[Optional[str]] = mapped_column(Text)
    profile_picture_url: Mapped[Optional[str]] = mapped_column(Text)
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)
    city: Mapped[Optional[str]] = mapped_column(String(100))
    country: Mapped[Optional[str]] = mapped_column(String(100))
    genres: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    # e.g. ['Drummer', 'Vocalist']
    looking_for: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        *_location_checks("bands"),
        Index("idx_bands_name", "name"),
    )


class BandMember(Base):
    __tablename__ = "band_members"

    band_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("bands.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    role: Mapped[str] = mapped_column(String(50), nullable=False, default=ROLE_MEMBER)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_band_members_user", "user_id"),
    )


class Post(Base):
    __tablename__ = "posts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    author_kind: Mapped[str] = mapped_column(String(10), nullable=False)
    author_id: Mapped[str] = mapped_column(String(36), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    # Parallel lists: media_urls[i] has type media_types[i] ('image' | 'audio' | 'video')
    media_urls: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    media_types: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            f"author_kind IN {_KIND_VALUES}", name="ck_posts_author_kind"
        ),
        Index("idx_posts_author", "author_kind", "author_id"),
        Index("idx_posts_created", "created_at", "id"),
    )


class Follow(Base):
    __tablename__ = "follows"

    follower_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    following_kind: Mapped[str] = mapped_column(String(10), primary_key=True)
    following_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "follower_id", "following_kind", "following_id", name="uq_follows_edge"
        ),
        CheckConstraint(
            f"following_kind IN {_KIND_VALUES}", name="ck_follows_kind"
        ),
        # follower lists: "who follows X?"
        Index("idx_follows_target", "following_kind", "following_id"),
    )


class Like(Base):
    __tablename__ = "likes"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    post_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("posts.id", ondelete="CASCADE"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_likes_post", "post_id"),
    )


class Repost(Base):
    __tablename__ = "reposts"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    post_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("posts.id", ondelete="CASCADE"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_reposts_post", "post_id"),
    )
