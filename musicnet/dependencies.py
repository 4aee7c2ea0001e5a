"""
FastAPI dependencies shared by the routers.

The acting principal arrives from the upstream gateway in the X-User-Id
header and is trusted as-is.
"""
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from musicnet.operations import SocialService


def get_service(request: Request) -> SocialService:
    return request.app.state.service


async def get_viewer(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    """Principal id, or None for anonymous requests."""
    return x_user_id or None


async def get_principal(x_user_id: Optional[str] = Header(None)) -> str:
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Id header required",
        )
    return x_user_id
