"""
Post endpoints:
  GET    /posts                — all posts, newest first
  POST   /posts                — create a post (as the user, or as a band)
  GET    /posts/{id}           — fetch a single post
  PATCH  /posts/{id}           — edit content (author / band admin only)
  DELETE /posts/{id}           — delete (author / band admin only)
  POST   /posts/{id}/like      — like (idempotent)
  DELETE /posts/{id}/like      — unlike (idempotent)
  POST   /posts/{id}/repost    — repost (idempotent)
  POST   /posts/{id}/media     — attach an image or audio file
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from musicnet.dependencies import get_principal, get_service, get_viewer
from musicnet.models import EntityKind
from musicnet.operations import SocialService
from musicnet.schemas import (
    AuthorResponse,
    EngagementResponse,
    FeedResponse,
    PostCreate,
    PostMediaUpload,
    PostResponse,
    PostUpdate,
)
from musicnet.services.feed import FeedItem

logger = logging.getLogger(__name__)
router = APIRouter()


def build_post_response(item: FeedItem) -> PostResponse:
    post, author = item.post, item.author
    is_user = post.author_kind == EntityKind.USER.value
    return PostResponse(
        id=post.id,
        user_id=post.author_id if is_user else None,
        band_id=None if is_user else post.author_id,
        author=AuthorResponse(
            kind=author.kind,
            id=author.id,
            name=author.name,
            display_name=author.display_name,
            profile_picture_url=author.profile_picture_url,
        ),
        content=post.content,
        media_urls=post.media_urls or [],
        media_types=post.media_types or [],
        likes_count=item.likes_count,
        reposts_count=item.reposts_count,
        is_liked=item.is_liked,
        is_reposted=item.is_reposted,
        created_at=post.created_at,
        updated_at=post.updated_at,
    )


@router.post("/", response_model=PostResponse, status_code=status.HTTP_201_CREATED)
async def create_post(
    body: PostCreate,
    principal: str = Depends(get_principal),
    service: SocialService = Depends(get_service),
):
    item = await service.create_post(
        principal,
        body.content,
        band_id=body.band_id,
        media_urls=body.media_urls,
        media_types=body.media_types,
    )
    return build_post_response(item)


@router.get("/", response_model=FeedResponse)
async def list_posts(
    limit: Optional[int] = Query(None, description="Page size (1-100)"),
    offset: int = Query(0),
    viewer: Optional[str] = Depends(get_viewer),
    service: SocialService = Depends(get_service),
):
    """Every post, newest first (same ordering as /feed/explore)."""
    items = await service.get_explore_feed(viewer, limit=limit, offset=offset)
    return FeedResponse(
        posts=[build_post_response(i) for i in items],
        limit=limit or service.default_page_size,
        offset=offset,
    )


@router.get("/{post_id}", response_model=PostResponse)
async def get_post(
    post_id: str,
    viewer: Optional[str] = Depends(get_viewer),
    service: SocialService = Depends(get_service),
):
    return build_post_response(await service.get_post(viewer, post_id))


@router.patch("/{post_id}", response_model=PostResponse)
async def update_post(
    post_id: str,
    body: PostUpdate,
    principal: str = Depends(get_principal),
    service: SocialService = Depends(get_service),
):
    return build_post_response(await service.update_post(principal, post_id, body.content))


@router.delete("/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_post(
    post_id: str,
    principal: str = Depends(get_principal),
    service: SocialService = Depends(get_service),
):
    await service.delete_post(principal, post_id)


@router.post("/{post_id}/like", response_model=EngagementResponse)
async def like_post(
    post_id: str,
    principal: str = Depends(get_principal),
    service: SocialService = Depends(get_service),
):
    """Like a post. Liking twice is a no-op (changed=false)."""
    changed = await service.like_post(principal, post_id)
    return EngagementResponse(post_id=post_id, changed=changed)


@router.delete("/{post_id}/like", response_model=EngagementResponse)
async def unlike_post(
    post_id: str,
    principal: str = Depends(get_principal),
    service: SocialService = Depends(get_service),
):
    changed = await service.unlike_post(principal, post_id)
    return EngagementResponse(post_id=post_id, changed=changed)


@router.post("/{post_id}/repost", response_model=EngagementResponse)
async def repost(
    post_id: str,
    principal: str = Depends(get_principal),
    service: SocialService = Depends(get_service),
):
    changed = await service.repost(principal, post_id)
    return EngagementResponse(post_id=post_id, changed=changed)


@router.post("/{post_id}/media", response_model=PostResponse)
async def upload_post_media(
    post_id: str,
    body: PostMediaUpload,
    principal: str = Depends(get_principal),
    service: SocialService = Depends(get_service),
):
    """Attach an image or audio file to a post (author / band admin only)."""
    item = await service.add_post_media(
        principal, post_id, body.media_base64, body.content_type
    )
    return build_post_response(item)
