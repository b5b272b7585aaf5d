# auth.py — Authentication & session handling for Flowt
# Features:
# - bcrypt password hashing
# - Signed session tokens (HS256) carrying {user: {id, username, is_admin}, expires}
# - Sliding expiry: a cookie session is re-issued on every request it authenticates
# - Token accepted from the Authorization header or the HTTP-only cookie
# - Caller value object passed explicitly into every domain operation

import os
import secrets
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Tuple

import bcrypt
from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import HTTPException, Depends, Request, Response
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from models import User

logger = logging.getLogger("flowt.auth")

# ============================================================
# CONFIGURATION
# ============================================================

SECRET_KEY = os.getenv("SESSION_SECRET_KEY", "")
if not SECRET_KEY or len(SECRET_KEY) < 32:
    SECRET_KEY = secrets.token_urlsafe(64)
    logger.warning(
        "⚠️  SESSION_SECRET_KEY not set or too short. Generated ephemeral key; "
        "sessions will not survive a restart."
    )

ALGORITHM = "HS256"
SESSION_TTL_HOURS = int(os.getenv("SESSION_TTL_HOURS", "24"))
SESSION_COOKIE = "session"
COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "false").lower() == "true"
MIN_PASSWORD_LENGTH = 1

security = HTTPBearer(auto_error=False)


# ============================================================
# SCHEMAS
# ============================================================

class Caller(BaseModel):
    """Authenticated identity an operation runs on behalf of"""
    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    is_admin: bool = False


class Credentials(BaseModel):
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH)


class SessionOut(BaseModel):
    user: Caller
    expires: str
    token: str


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:

    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=10)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            # Malformed stored hash
            return False

    @staticmethod
    def create_session_token(caller: Caller, expires_delta: Optional[timedelta] = None) -> Tuple[str, datetime]:
        expires = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=SESSION_TTL_HOURS))
        payload = {
            "user": {"id": caller.id, "username": caller.username, "is_admin": caller.is_admin},
            "expires": expires.isoformat(),
            "exp": expires,
        }
        return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM), expires

    @staticmethod
    def verify_session_token(token: str) -> Dict[str, Any]:
        try:
            payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Session expired")
        except JWTError:
            raise HTTPException(status_code=401, detail="Unauthorized")
        user = payload.get("user")
        if not isinstance(user, dict) or not user.get("id"):
            raise HTTPException(status_code=401, detail="Unauthorized")
        return payload

    @staticmethod
    def refresh_session_token(token: str) -> Optional[Tuple[str, datetime]]:
        """Re-issue a still-valid token with a fresh expiry; None otherwise."""
        try:
            payload = AuthService.verify_session_token(token)
        except HTTPException:
            return None
        user = payload["user"]
        caller = Caller(
            id=user["id"],
            username=user.get("username", ""),
            is_admin=bool(user.get("is_admin", False)),
        )
        return AuthService.create_session_token(caller)

    @staticmethod
    def caller_for(user: User) -> Caller:
        return Caller(id=user.id, username=user.username, is_admin=bool(user.is_admin))

    @staticmethod
    async def needs_setup(db: AsyncSession) -> bool:
        count = (await db.execute(select(func.count(User.id)))).scalar() or 0
        return count == 0

    @staticmethod
    async def initial_setup(data: Credentials, db: AsyncSession) -> Optional[User]:
        """Create the first administrator. Returns None once users exist."""
        if not await AuthService.needs_setup(db):
            return None

        user = User(
            username=data.username,
            password_hash=AuthService.hash_password(data.password),
            is_admin=True,
            group_id=None,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        logger.info("Initial administrator %s created", user.username)
        return user

    @staticmethod
    async def authenticate_user(username: str, password: str, db: AsyncSession) -> Optional[User]:
        result = await db.execute(select(User).where(User.username == username))
        user = result.scalar_one_or_none()

        if user is None:
            # Case-insensitive fallback
            result = await db.execute(
                select(User).where(func.lower(User.username) == username.lower())
            )
            user = result.scalars().first()

        if user is None or not AuthService.verify_password(password, user.password_hash):
            logger.info("Failed login for %s", username)
            return None
        return user


def set_session_cookie(response: Response, token: str, expires: datetime) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        token,
        expires=expires,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="lax",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE)


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

def _extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(SESSION_COOKIE)


async def get_caller(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> Caller:
    token = _extract_token(request, credentials)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")

    payload = AuthService.verify_session_token(token)
    user_id = payload["user"]["id"]

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")

    # Read by session_refresh_middleware; only a resolved cookie session slides
    if token == request.cookies.get(SESSION_COOKIE):
        request.state.session_user_id = user.id
    return AuthService.caller_for(user)
