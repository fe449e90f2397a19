"""Request-scoped dependencies shared by the routers."""
from __future__ import annotations

from typing import Optional

from fastapi import Header, HTTPException

USER_HEADER = "X-User-Id"


def get_user_id(x_user_id: Optional[str] = Header(None, alias=USER_HEADER)) -> str:
    """Return the authenticated user id forwarded by the gateway."""

    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(status_code=401, detail=f"Missing {USER_HEADER} header")
    return x_user_id.strip()
