"""
auth.py — Caller identity for the HTTP layer.

Token verification belongs to the upstream identity provider / gateway, which
forwards the authenticated user id in the X-User-Id header. Requests without
it are rejected with 401.

Admin routes additionally require the caller to be listed in
settings.admin_user_ids; everyone else gets 403.
"""
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException

from studytrack.config import settings

logger = logging.getLogger(__name__)


async def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None, max_length=64),
) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


async def require_admin(user_id: str = Depends(get_current_user_id)) -> str:
    if user_id not in settings.admin_user_ids_set:
        logger.warning("Admin route refused for user_id=%s", user_id)
        raise HTTPException(status_code=403, detail="Admin access required")
    return user_id
