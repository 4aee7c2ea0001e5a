"""
User endpoints:
  GET   /users                        — all users, newest first
  POST  /users                        — create a user profile
  GET   /users/nearby                 — users near a point
  GET   /users/{id}                   — profile + follower counts
  PATCH /users/{id}                   — edit own profile
  GET   /users/{id}/followers         — users following this user
  GET   /users/{id}/following         — users (or bands, ?kind=band) followed
  GET   /users/{id}/bands             — bands the user belongs to
  GET   /users/{id}/posts             — posts authored by the user
  PUT   /users/{id}/profile-picture   — upload a profile picture
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from musicnet.dependencies import get_principal, get_service, get_viewer
from musicnet.models import EntityKind, EntityRef
from musicnet.operations import SocialService
from musicnet.routers.posts import build_post_response
from musicnet.schemas import (
    BandResponse,
    FeedResponse,
    NearbyUser,
    ProfilePictureResponse,
    ProfilePictureUpload,
    UserBandResponse,
    UserCreate,
    UserProfileResponse,
    UserResponse,
    UserSummary,
    UserUpdate,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(body: UserCreate, service: SocialService = Depends(get_service)):
    return await service.create_user(body.to_attrs())


@router.get("/", response_model=list[UserResponse])
async def list_users(
    limit: Optional[int] = Query(None, description="Page size (1-100)"),
    offset: int = Query(0),
    service: SocialService = Depends(get_service),
):
    return await service.list_users(limit=limit, offset=offset)


@router.get("/nearby", response_model=list[NearbyUser])
async def nearby_users(
    lat: float = Query(..., description="Centre latitude"),
    lng: float = Query(..., description="Centre longitude"),
    radius_km: Optional[float] = Query(None, description="Search radius (1-500 km)"),
    limit: Optional[int] = Query(None, description="Max results (1-100)"),
    service: SocialService = Depends(get_service),
):
    matches = await service.get_nearby_users(lat, lng, radius_km=radius_km, limit=limit)
    return [
        NearbyUser(user=UserSummary.model_validate(m.entity), distance_m=m.distance_m)
        for m in matches
    ]


@router.get("/{user_id}", response_model=UserProfileResponse)
async def get_user(user_id: str, service: SocialService = Depends(get_service)):
    profile = await service.get_user(user_id)
    return UserProfileResponse(
        user=UserResponse.model_validate(profile.user),
        followers_count=profile.followers_count,
        following_count=profile.following_count,
    )


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    body: UserUpdate,
    principal: str = Depends(get_principal),
    service: SocialService = Depends(get_service),
):
    return await service.update_user(principal, user_id, body.to_changes())


@router.get("/{user_id}/followers", response_model=list[UserSummary])
async def list_followers(
    user_id: str,
    limit: Optional[int] = Query(None),
    offset: int = Query(0),
    service: SocialService = Depends(get_service),
):
    return await service.list_followers(EntityRef.user(user_id), limit=limit, offset=offset)


@router.get("/{user_id}/following")
async def list_following(
    user_id: str,
    kind: EntityKind = Query(EntityKind.USER),
    limit: Optional[int] = Query(None),
    offset: int = Query(0),
    service: SocialService = Depends(get_service),
):
    followed = await service.list_following(user_id, limit=limit, offset=offset, kind=kind)
    schema = UserSummary if kind is EntityKind.USER else BandResponse
    return [schema.model_validate(f) for f in followed]


@router.get("/{user_id}/bands", response_model=list[UserBandResponse])
async def list_user_bands(user_id: str, service: SocialService = Depends(get_service)):
    entries = await service.list_user_bands(user_id)
    return [
        UserBandResponse(
            band=BandResponse.model_validate(e.band), role=e.role, joined_at=e.joined_at
        )
        for e in entries
    ]


@router.get("/{user_id}/posts", response_model=FeedResponse)
async def list_user_posts(
    user_id: str,
    limit: Optional[int] = Query(None),
    offset: int = Query(0),
    viewer: Optional[str] = Depends(get_viewer),
    service: SocialService = Depends(get_service),
):
    items = await service.get_author_posts(
        viewer, EntityRef.user(user_id), limit=limit, offset=offset
    )
    return FeedResponse(
        posts=[build_post_response(i) for i in items],
        limit=limit or service.default_page_size,
        offset=offset,
    )


@router.put("/{user_id}/profile-picture", response_model=ProfilePictureResponse)
async def upload_profile_picture(
    user_id: str,
    body: ProfilePictureUpload,
    principal: str = Depends(get_principal),
    service: SocialService = Depends(get_service),
):
    url = await service.set_profile_picture(
        principal, EntityRef.user(user_id), body.media_base64, body.content_type
    )
    return ProfilePictureResponse(url=url)
