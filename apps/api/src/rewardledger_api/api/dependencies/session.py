"""Resolve the member behind reward and claim requests."""

from __future__ import annotations

from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from rewardledger_api.db.session import get_session
from rewardledger_api.models.user import User


async def require_member_session(
    session_user: str | None = Header(None, alias="X-Session-User"),
    db: AsyncSession = Depends(get_session),
) -> User:
    """Return the member named by the gateway-forwarded ``X-Session-User`` header.

    The gateway authenticates the session; this service only checks that the
    forwarded identifier belongs to a known user.
    """

    if not session_user or not session_user.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing session user context")

    try:
        user_id = UUID(session_user.strip())
    except ValueError as error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid session user identifier",
        ) from error

    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session user not found")
    return user
