"""
Auth endpoints — login (OAuth2 password flow), token refresh and
admin user management.
"""

from __future__ import annotations

import logging

from fastapi import (APIRouter, Cookie, Depends, HTTPException, Request,
                     Response, status)
from fastapi.security import OAuth2PasswordRequestForm
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from worktime.api.v1.deps import get_clock, get_current_user, get_db, require_admin
from worktime.core.clock import Clock
from worktime.core.config import settings
from worktime.core.exceptions import Conflict, NotFound, Unauthorized
from worktime.core.security import (create_access_token, create_refresh_token,
                                    decode_refresh_token, get_password_hash,
                                    verify_password)
from worktime.db.session import transaction
from worktime.models.user import User
from worktime.repositories.users import UserRepository
from worktime.schemas.attendance import LogoutResponse
from worktime.schemas.token import RefreshRequest, Token
from worktime.schemas.user import UserCreate, UserRead, UserUpdate
from worktime.services import audit
from worktime.services.identity import Principal

# Rate limiter — keyed by client IP
limiter = Limiter(key_func=get_remote_address)

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


def _set_auth_cookies(response: Response, access_token: str, refresh_token: str) -> None:
    response.set_cookie(
        key="access_token",
        value=f"Bearer {access_token}",
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )
    response.set_cookie(
        key="refresh_token",
        value=refresh_token,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
    )


@router.post("/login", response_model=Token)
@limiter.limit("5/minute")
async def login_for_access_token(
    request: Request,
    response: Response,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db),
) -> Token:
    """Authenticate with user/pass. Returns tokens and sets HttpOnly cookies."""
    user = await UserRepository(db).get_by_email(form_data.username.lower().strip())

    if user is None or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )

    access_token = create_access_token(user.id)
    refresh_token = create_refresh_token(user.id)
    _set_auth_cookies(response, access_token, refresh_token)
    logger.info("User %d logged in", user.id)
    return Token(access_token=access_token, refresh_token=refresh_token)


@router.post("/refresh", response_model=Token)
@limiter.limit("10/minute")
async def refresh_access_token_endpoint(
    request: Request,
    response: Response,
    body: RefreshRequest | None = None,
    refresh_token_cookie: str | None = Cookie(None, alias="refresh_token"),
    db: AsyncSession = Depends(get_db),
) -> Token:
    # Priority: Body > Cookie
    token_str = None
    if body and body.refresh_token:
        token_str = body.refresh_token
    elif refresh_token_cookie:
        token_str = refresh_token_cookie

    if not token_str:
        raise Unauthorized("Refresh token missing")

    payload = decode_refresh_token(token_str)
    if payload is None or not str(payload.get("sub", "")).isdigit():
        raise Unauthorized("Invalid or expired refresh token")

    user = await UserRepository(db).get(int(payload["sub"]))
    if user is None or not user.is_active:
        raise Unauthorized("User not found or inactive")

    new_access = create_access_token(user.id)
    new_refresh = create_refresh_token(user.id)
    _set_auth_cookies(response, new_access, new_refresh)
    return Token(access_token=new_access, refresh_token=new_refresh)


@router.post("/logout", response_model=LogoutResponse)
async def logout(response: Response) -> LogoutResponse:
    """Clear auth cookies and end the session."""
    response.delete_cookie("access_token")
    response.delete_cookie("refresh_token")
    return LogoutResponse(message="Logged out")


# ── User management (admin-only) ───────────────────────────────────
@router.post("/users", response_model=UserRead, status_code=201)
async def create_user(
    body: UserCreate,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    admin: Principal = Depends(require_admin),
) -> User:
    """Create a new user account (admin only)."""
    users = UserRepository(db)
    async with transaction(db):
        if await users.get_by_email(body.email):
            raise Conflict("Email already registered")
        user = await users.add(
            User(
                email=body.email,
                hashed_password=get_password_hash(body.password),
                full_name=body.full_name,
                role=body.role,
                is_active=True,
            )
        )
        audit.record(
            db,
            actor_id=admin.id,
            action="create_user",
            target_type="user",
            target_id=user.id,
            at=clock(),
            metadata={"email": user.email, "role": user.role},
        )
    await db.refresh(user)
    logger.info("Admin %d created user %d (%s)", admin.id, user.id, user.role)
    return user


@router.patch("/users/{user_id}", response_model=UserRead)
async def update_user(
    user_id: int,
    body: UserUpdate,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    admin: Principal = Depends(require_admin),
) -> User:
    """Change a user's name, role, active status or password (admin only)."""
    users = UserRepository(db)
    changes = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
    async with transaction(db):
        user = await users.get(user_id)
        if user is None:
            raise NotFound("User not found")
        password = changes.pop("password", None)
        for field, value in changes.items():
            setattr(user, field, value)
        if password:
            user.hashed_password = get_password_hash(password)
        audit.record(
            db,
            actor_id=admin.id,
            action="update_user",
            target_type="user",
            target_id=user.id,
            at=clock(),
            metadata={**changes, "password_changed": bool(password)},
        )
    await db.refresh(user)
    logger.info("Admin %d updated user %d: %s", admin.id, user_id, sorted(changes))
    return user


@router.get("/me", response_model=UserRead)
async def read_current_user(
    current_user: User | None = Depends(get_current_user),
) -> User:
    """Return profile of the currently authenticated user."""
    if current_user is None:
        raise Unauthorized("Could not validate credentials")
    return current_user
