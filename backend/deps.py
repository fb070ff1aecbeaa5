"""Request-scoped dependencies shared by the routers."""

from typing import Optional

from fastapi import Header, HTTPException, status


async def current_user(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity, set by the upstream gateway in ``X-User-Id``."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return x_user_id.strip()
