from __future__ import annotations

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from store.core.db import get_db
from store.core.errors import AuthError, Forbidden
from store.core.security import TokenError, decode_access_token
from store.models.user import User
from store.services.container import Services

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    try:
        payload = decode_access_token(token)
    except TokenError as e:
        raise AuthError(str(e)) from e

    res = await db.execute(select(User).where(User.id == int(payload["sub"])))
    user = res.scalar_one_or_none()

    if not user:
        raise AuthError("User not found")
    if not user.is_active:
        raise AuthError("User inactive")

    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != "admin":
        raise Forbidden("Admin only")
    return current_user


def get_services(request: Request) -> Services:
    return request.app.state.services
