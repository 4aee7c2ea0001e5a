"""
Follow endpoints (the principal is always the follower):
  POST   /follows                 — follow a user or band (idempotent)
  GET    /follows/{kind}/{id}     — does the principal follow it?
  DELETE /follows/{kind}/{id}     — unfollow (idempotent)
"""
import logging

from fastapi import APIRouter, Depends, status

from musicnet.dependencies import get_principal, get_service
from musicnet.models import EntityKind, EntityRef
from musicnet.operations import SocialService
from musicnet.schemas import FollowRequest, FollowResponse, FollowStatus

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", response_model=FollowResponse)
async def follow(
    body: FollowRequest,
    principal: str = Depends(get_principal),
    service: SocialService = Depends(get_service),
):
    """
    Create a follower → (user | band) edge.

    Following twice succeeds both times; `outcome` tells the two apart.
    Following yourself is a 422.
    """
    outcome = await service.create_follow(principal, EntityRef(body.kind, body.id))
    return FollowResponse(kind=body.kind, id=body.id, outcome=outcome.value)


@router.get("/{kind}/{target_id}", response_model=FollowStatus)
async def follow_status(
    kind: EntityKind,
    target_id: str,
    principal: str = Depends(get_principal),
    service: SocialService = Depends(get_service),
):
    following = await service.is_following(principal, EntityRef(kind, target_id))
    return FollowStatus(kind=kind, id=target_id, following=following)


@router.delete("/{kind}/{target_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unfollow(
    kind: EntityKind,
    target_id: str,
    principal: str = Depends(get_principal),
    service: SocialService = Depends(get_service),
):
    await service.remove_follow(principal, EntityRef(kind, target_id))
