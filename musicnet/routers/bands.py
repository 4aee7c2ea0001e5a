"""
Band endpoints:
  GET    /bands                       — all bands, newest first
  POST   /bands                       — create a band (creator becomes Admin)
  GET    /bands/nearby                — bands near a point
  GET    /bands/{id}                  — band profile
  PATCH  /bands/{id}                  — edit (admins only)
  DELETE /bands/{id}                  — delete (admins only)
  POST   /bands/{id}/join             — join the band
  POST   /bands/{id}/leave            — leave the band
  GET    /bands/{id}/members          — members in join order
  GET    /bands/{id}/followers        — users following the band
  GET    /bands/{id}/posts            — posts authored by the band
  PUT    /bands/{id}/profile-picture  — upload a band picture (admins only)
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from musicnet.dependencies import get_principal, get_service, get_viewer
from musicnet.models import EntityRef
from musicnet.operations import SocialService
from musicnet.routers.posts import build_post_response
from musicnet.schemas import (
    BandCreate,
    BandMemberResponse,
    BandProfileResponse,
    BandResponse,
    BandUpdate,
    FeedResponse,
    NearbyBand,
    ProfilePictureResponse,
    ProfilePictureUpload,
    UserSummary,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", response_model=BandResponse, status_code=status.HTTP_201_CREATED)
async def create_band(
    body: BandCreate,
    principal: str = Depends(get_principal),
    service: SocialService = Depends(get_service),
):
    return await service.create_band(principal, body.to_attrs())


@router.get("/", response_model=list[BandResponse])
async def list_bands(
    limit: Optional[int] = Query(None, description="Page size (1-100)"),
    offset: int = Query(0),
    service: SocialService = Depends(get_service),
):
    return await service.list_bands(limit=limit, offset=offset)


@router.get("/nearby", response_model=list[NearbyBand])
async def nearby_bands(
    lat: float = Query(..., description="Centre latitude"),
    lng: float = Query(..., description="Centre longitude"),
    radius_km: Optional[float] = Query(None, description="Search radius (1-500 km)"),
    limit: Optional[int] = Query(None, description="Max results (1-100)"),
    service: SocialService = Depends(get_service),
):
    matches = await service.get_nearby_bands(lat, lng, radius_km=radius_km, limit=limit)
    return [
        NearbyBand(band=BandResponse.model_validate(m.entity), distance_m=m.distance_m)
        for m in matches
    ]


@router.get("/{band_id}", response_model=BandProfileResponse)
async def get_band(band_id: str, service: SocialService = Depends(get_service)):
    profile = await service.get_band(band_id)
    return BandProfileResponse(
        band=BandResponse.model_validate(profile.band),
        followers_count=profile.followers_count,
        members_count=profile.members_count,
    )


@router.patch("/{band_id}", response_model=BandResponse)
async def update_band(
    band_id: str,
    body: BandUpdate,
    principal: str = Depends(get_principal),
    service: SocialService = Depends(get_service),
):
    return await service.update_band(principal, band_id, body.to_changes())


@router.delete("/{band_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_band(
    band_id: str,
    principal: str = Depends(get_principal),
    service: SocialService = Depends(get_service),
):
    """Delete a band (admins only) along with its posts and followers."""
    await service.delete_band(principal, band_id)


@router.post("/{band_id}/join", status_code=status.HTTP_204_NO_CONTENT)
async def join_band(
    band_id: str,
    principal: str = Depends(get_principal),
    service: SocialService = Depends(get_service),
):
    """Join a band as a Member. Joining a band you already belong to is a 422."""
    await service.join_band(principal, band_id)


@router.post("/{band_id}/leave", status_code=status.HTTP_204_NO_CONTENT)
async def leave_band(
    band_id: str,
    principal: str = Depends(get_principal),
    service: SocialService = Depends(get_service),
):
    await service.leave_band(principal, band_id)


@router.get("/{band_id}/members", response_model=list[BandMemberResponse])
async def list_members(band_id: str, service: SocialService = Depends(get_service)):
    entries = await service.list_band_members(band_id)
    return [
        BandMemberResponse(
            user=UserSummary.model_validate(e.user), role=e.role, joined_at=e.joined_at
        )
        for e in entries
    ]


@router.get("/{band_id}/followers", response_model=list[UserSummary])
async def list_followers(
    band_id: str,
    limit: Optional[int] = Query(None),
    offset: int = Query(0),
    service: SocialService = Depends(get_service),
):
    return await service.list_followers(EntityRef.band(band_id), limit=limit, offset=offset)


@router.get("/{band_id}/posts", response_model=FeedResponse)
async def list_band_posts(
    band_id: str,
    limit: Optional[int] = Query(None),
    offset: int = Query(0),
    viewer: Optional[str] = Depends(get_viewer),
    service: SocialService = Depends(get_service),
):
    items = await service.get_author_posts(
        viewer, EntityRef.band(band_id), limit=limit, offset=offset
    )
    return FeedResponse(
        posts=[build_post_response(i) for i in items],
        limit=limit or service.default_page_size,
        offset=offset,
    )


@router.put("/{band_id}/profile-picture", response_model=ProfilePictureResponse)
async def upload_band_picture(
    band_id: str,
    body: ProfilePictureUpload,
    principal: str = Depends(get_principal),
    service: SocialService = Depends(get_service),
):
    url = await service.set_profile_picture(
        principal, EntityRef.band(band_id), body.media_base64, body.content_type
    )
    return ProfilePictureResponse(url=url)
