from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from store.core.db import get_db
from store.core.deps import get_current_user
from store.core.errors import AuthError
from store.core.security import create_access_token, verify_password
from store.models.user import User
from store.schemas.auth import RegisterIn, RegisterOut, TokenOut, UserOut
from store.services.users import create_user, normalize_username

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=RegisterOut, status_code=201)
async def register(
    payload: RegisterIn,
    db: AsyncSession = Depends(get_db),
):
    user = await create_user(
        db,
        username=payload.username,
        password=payload.password,
        full_name=payload.full_name,
        email=payload.email,
    )
    return RegisterOut(
        user=UserOut.model_validate(user),
        access_token=create_access_token(user_id=user.id, role=user.role),
    )


@router.post("/login", response_model=TokenOut)
async def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db),
):
    res = await db.execute(select(User).where(User.username == normalize_username(form_data.username)))
    user = res.scalar_one_or_none()

    if not user:
        raise AuthError("Invalid username or password")

    if not user.is_active:
        raise AuthError("User is inactive")

    if not verify_password(form_data.password, user.password_hash):
        raise AuthError("Invalid username or password")

    return TokenOut(access_token=create_access_token(user_id=user.id, role=user.role))


@router.get("/me", response_model=UserOut)
async def me(current_user: User = Depends(get_current_user)):
    return UserOut.model_validate(current_user)
