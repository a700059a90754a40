from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from store.core.security import MIN_PASSWORD_LENGTH
from store.schemas.common import ApiModel


class TokenOut(BaseModel):
    # OAuth2 clients expect these exact snake_case keys
    access_token: str
    token_type: str = "bearer"


class RegisterIn(ApiModel):
    username: str = Field(min_length=3, max_length=64, pattern=r"^\s*[A-Za-z0-9_.-]+\s*$")
    password: str = Field(min_length=MIN_PASSWORD_LENGTH, max_length=128)
    full_name: str = Field(min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)


class AdminUserCreateIn(RegisterIn):
    model_config = ConfigDict(extra="forbid")

    full_name: Optional[str] = Field(default=None, max_length=255)
    role: Literal["user", "admin"] = "user"
    is_active: bool = True


class UserOut(ApiModel):
    id: int
    username: str
    role: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    wallet_balance: int
    is_active: bool
    created_at: datetime


class RegisterOut(ApiModel):
    user: UserOut
    access_token: str
    token_type: str = "bearer"
