"""
Pydantic request / response schemas for the API layer.
Kept separate from ORM models to avoid coupling transport to storage.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from musicnet.models import EntityKind


class Location(BaseModel):
    """A WGS-84 point; both coordinates or none."""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


def _location_fields(location: Optional[Location]) -> dict:
    if location is None:
        return {}
    return {"latitude": location.latitude, "longitude": location.longitude}


# ──────────────────────────── Users ───────────────────────────────────────

class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.]+$")
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    display_name: Optional[str] = Field(None, max_length=100)
    bio: Optional[str] = Field(None, max_length=1000)
    location: Optional[Location] = None
    city: Optional[str] = Field(None, max_length=100)
    country: Optional[str] = Field(None, max_length=100)
    genres: list[str] = Field(default_factory=list)
    skills: list[str] = Field(default_factory=list)
    spotify_url: Optional[str] = None
    soundcloud_url: Optional[str] = None
    instagram_handle: Optional[str] = Field(None, max_length=50)

    def to_attrs(self) -> dict:
        attrs = self.model_dump(exclude={"location"})
        attrs.update(_location_fields(self.location))
        return attrs


class UserUpdate(BaseModel):
    display_name: Optional[str] = Field(None, max_length=100)
    bio: Optional[str] = Field(None, max_length=1000)
    # Explicit null clears the stored location
    location: Optional[Location] = None
    city: Optional[str] = Field(None, max_length=100)
    country: Optional[str] = Field(None, max_length=100)
    genres: Optional[list[str]] = None
    skills: Optional[list[str]] = None
    spotify_url: Optional[str] = None
    soundcloud_url: Optional[str] = None
    instagram_handle: Optional[str] = Field(None, max_length=50)

    def to_changes(self) -> dict:
        changes = self.model_dump(exclude_unset=True, exclude={"location"})
        if "location" in self.model_fields_set:
            changes["latitude"] = self.location.latitude if self.location else None
            changes["longitude"] = self.location.longitude if self.location else None
        return changes


class UserSummary(BaseModel):
    id: str
    username: str
    display_name: Optional[str]
    profile_picture_url: Optional[str]
    city: Optional[str]
    country: Optional[str]

    class Config:
        from_attributes = True


class UserResponse(UserSummary):
    bio: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    genres: list[str]
    skills: list[str]
    spotify_url: Optional[str]
    soundcloud_url: Optional[str]
    instagram_handle: Optional[str]
    created_at: datetime
    updated_at: datetime


class UserProfileResponse(BaseModel):
    user: UserResponse
    followers_count: int
    following_count: int


class NearbyUser(BaseModel):
    user: UserSummary
    distance_m: float


# ──────────────────────────── Bands ───────────────────────────────────────

class BandCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    bio: Optional[str] = Field(None, max_length=1000)
    location: Optional[Location] = None
    city: Optional[str] = Field(None, max_length=100)
    country: Optional[str] = Field(None, max_length=100)
    genres: list[str] = Field(default_factory=list)
    looking_for: list[str] = Field(default_factory=list)

    def to_attrs(self) -> dict:
        attrs = self.model_dump(exclude={"location"})
        attrs.update(_location_fields(self.location))
        return attrs


class BandUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    bio: Optional[str] = Field(None, max_length=1000)
    location: Optional[Location] = None
    city: Optional[str] = Field(None, max_length=100)
    country: Optional[str] = Field(None, max_length=100)
    genres: Optional[list[str]] = None
    looking_for: Optional[list[str]] = None

    def to_changes(self) -> dict:
        changes = self.model_dump(exclude_unset=True, exclude={"location"})
        if "location" in self.model_fields_set:
            changes["latitude"] = self.location.latitude if self.location else None
            changes["longitude"] = self.location.longitude if self.location else None
        return changes


class BandResponse(BaseModel):
    id: str
    name: str
    bio: Optional[str]
    profile_picture_url: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    city: Optional[str]
    country: Optional[str]
    genres: list[str]
    looking_for: list[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class BandProfileResponse(BaseModel):
    band: BandResponse
    followers_count: int
    members_count: int


class BandMemberResponse(BaseModel):
    user: UserSummary
    role: str
    joined_at: datetime


class UserBandResponse(BaseModel):
    band: BandResponse
    role: str
    joined_at: datetime


class NearbyBand(BaseModel):
    band: BandResponse
    distance_m: float


# ──────────────────────────── Follows ─────────────────────────────────────

class FollowRequest(BaseModel):
    kind: EntityKind = EntityKind.USER
    id: str = Field(..., min_length=1, max_length=36)


class FollowResponse(BaseModel):
    kind: EntityKind
    id: str
    outcome: str   # 'created' | 'already_following'


class FollowStatus(BaseModel):
    kind: EntityKind
    id: str
    following: bool


# ──────────────────────────── Posts ───────────────────────────────────────

class PostCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)
    # Post as this band (caller must be a member); omitted = post as the user
    band_id: Optional[str] = None
    media_urls: list[str] = Field(default_factory=list, max_length=10)
    media_types: list[str] = Field(default_factory=list, max_length=10)

    @model_validator(mode="after")
    def _media_lists_align(self):
        if len(self.media_urls) != len(self.media_types):
            raise ValueError("media_urls and media_types must have the same length")
        return self


class PostUpdate(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)


class AuthorResponse(BaseModel):
    kind: EntityKind
    id: str
    name: Optional[str] = None
    display_name: Optional[str] = None
    profile_picture_url: Optional[str] = None


class PostResponse(BaseModel):
    id: str
    # Exactly one of user_id / band_id is set, matching author.kind
    user_id: Optional[str] = None
    band_id: Optional[str] = None
    author: AuthorResponse
    content: str
    media_urls: list[str]
    media_types: list[str]
    likes_count: int
    reposts_count: int
    is_liked: bool = False
    is_reposted: bool = False
    created_at: datetime
    updated_at: datetime


class EngagementResponse(BaseModel):
    post_id: str
    changed: bool   # false when the call was a no-op (already liked, etc.)


# ──────────────────────────── Feed ────────────────────────────────────────

class FeedResponse(BaseModel):
    posts: list[PostResponse]
    limit: int
    offset: int


# ──────────────────────────── Media ───────────────────────────────────────

class ProfilePictureUpload(BaseModel):
    media_base64: str = Field(..., min_length=1)
    content_type: str = Field(..., pattern="^image/(jpeg|png|webp|gif)$")


class ProfilePictureResponse(BaseModel):
    url: str


class PostMediaUpload(BaseModel):
    media_base64: str = Field(..., min_length=1)
    content_type: str = Field(
        ...,
        pattern="^(image/(jpeg|png|webp|gif)|audio/(mpeg|wav|flac|aac|ogg|mp4))$",
    )
