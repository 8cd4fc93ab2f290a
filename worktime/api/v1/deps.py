"""
FastAPI dependencies — database session, clock and caller identity.

Identity is resolved here into a ``Principal``; role checks happen inside
the engines, which receive the principal explicitly.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Optional

from fastapi import Cookie, Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from worktime.core.clock import Clock, system_clock
from worktime.core.exceptions import Forbidden
from worktime.core.security import decode_access_token
from worktime.db.session import async_session_factory
from worktime.models.user import User
from worktime.repositories.users import UserRepository
from worktime.services.attendance import GeoFix, Verification
from worktime.services.identity import ADMIN, Principal, require_role

# auto_error=False so we can fall back to the HttpOnly cookie
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)


# ── Database session ────────────────────────────────────────────────
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


# ── Clock ───────────────────────────────────────────────────────────
def get_clock() -> Clock:
    return system_clock


# ── Identity ────────────────────────────────────────────────────────
def _extract_token(header_token: str | None, cookie_token: str | None) -> str | None:
    # Priority: Header > Cookie ("Bearer <token>" or bare token)
    if header_token:
        return header_token
    if cookie_token:
        if cookie_token.startswith("Bearer "):
            return cookie_token.split(" ", 1)[1]
        return cookie_token
    return None


async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    access_token: Optional[str] = Cookie(default=None),
    db: AsyncSession = Depends(get_db),
) -> User | None:
    """Decode the JWT from header or cookie and load the user, if any."""
    final_token = _extract_token(token, access_token)
    if not final_token:
        return None

    payload = decode_access_token(final_token)
    if payload is None:
        return None

    subject = payload.get("sub")
    if subject is None or not str(subject).isdigit():
        return None

    user = await UserRepository(db).get(int(subject))
    if user is not None and not user.is_active:
        raise Forbidden("Inactive user account")
    return user


async def get_principal(
    user: User | None = Depends(get_current_user),
) -> Principal | None:
    if user is None:
        return None
    return Principal(id=user.id, role=user.role)


async def require_admin(
    principal: Principal | None = Depends(get_principal),
) -> Principal:
    """Only allow the admin role to proceed."""
    return require_role(principal, (ADMIN,))


# ── Request context ─────────────────────────────────────────────────
def client_verification(
    request: Request,
    geo: GeoFix | None = None,
    face_embedding: list[float] | None = None,
) -> Verification:
    """Verification evidence from the HTTP request plus optional payload bits."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    else:
        ip = request.client.host if request.client else "unknown"
    return Verification(
        ip=ip,
        user_agent=request.headers.get("user-agent", "unknown")[:500],
        geo=geo,
        face_embedding=face_embedding,
    )
