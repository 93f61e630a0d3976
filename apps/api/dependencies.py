"""
Request dependencies shared by the routers
"""
from typing import Optional

from fastapi import Header, HTTPException, status


async def get_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    """
    Opaque user id resolved by the identity collaborator in front of the API.

    The engine never authenticates; it only records who made each decision.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return x_user_id.strip()
