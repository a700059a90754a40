from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from store.core.errors import Conflict, ValidationError
from store.core.security import hash_password
from store.models.user import User

logger = structlog.get_logger(__name__)

ROLES = ("user", "admin")


def normalize_username(username: str | None) -> str:
    return (username or "").strip().lower()


async def create_user(
    db: AsyncSession,
    *,
    username: str,
    password: str,
    role: str = "user",
    full_name: Optional[str] = None,
    email: Optional[str] = None,
    is_active: bool = True,
) -> User:
    """Create an account with an empty wallet. Usernames are unique, case-insensitively."""
    name = normalize_username(username)
    if not name:
        raise ValidationError("Username is required")
    if role not in ROLES:
        raise ValidationError("Invalid role")

    taken = await db.execute(select(User.id).where(User.username == name))
    if taken.first() is not None:
        raise Conflict("Username is already taken")

    user = User(
        username=name,
        password_hash=hash_password(password),
        role=role,
        full_name=(full_name or "").strip() or None,
        email=(email or "").strip().lower() or None,
        wallet_balance=0,
        is_active=is_active,
    )

    try:
        db.add(user)
        await db.commit()
    except IntegrityError as e:
        # lost a race with another signup for the same name
        await db.rollback()
        raise Conflict("Username is already taken") from e
    except Exception:
        await db.rollback()
        raise

    await db.refresh(user)
    logger.info("user_created", user_id=user.id, username=name, role=role)
    return user
