"""
Feed endpoints:
  GET /feed          — personalized feed (followed users ∪ followed bands);
                       anonymous callers get the explore feed
  GET /feed/explore  — all posts, newest first
"""
import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, Query

from musicnet.dependencies import get_service, get_viewer
from musicnet.operations import SocialService
from musicnet.routers.posts import build_post_response
from musicnet.schemas import FeedResponse

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/", response_model=FeedResponse)
async def get_feed(
    limit: Optional[int] = Query(None, description="Page size (1-100)"),
    offset: int = Query(0),
    viewer: Optional[str] = Depends(get_viewer),
    service: SocialService = Depends(get_service),
):
    start_time = time.time()
    items = await service.get_feed(viewer, limit=limit, offset=offset)
    logger.info(
        "Feed for %s: %d posts in %.1fms",
        viewer or "anonymous", len(items), (time.time() - start_time) * 1000,
    )
    return FeedResponse(
        posts=[build_post_response(i) for i in items],
        limit=limit or service.default_page_size,
        offset=offset,
    )


@router.get("/explore", response_model=FeedResponse)
async def get_explore_feed(
    limit: Optional[int] = Query(None, description="Page size (1-100)"),
    offset: int = Query(0),
    viewer: Optional[str] = Depends(get_viewer),
    service: SocialService = Depends(get_service),
):
    items = await service.get_explore_feed(viewer, limit=limit, offset=offset)
    return FeedResponse(
        posts=[build_post_response(i) for i in items],
        limit=limit or service.default_page_size,
        offset=offset,
    )
