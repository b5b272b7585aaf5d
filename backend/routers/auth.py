# routers/auth.py — First-run setup, login/logout and the current session
from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    AuthService, Caller, Credentials, SessionOut,
    get_caller, set_session_cookie, clear_session_cookie,
)
from database import get_db_session
from models import Group, User
from permissions import ALL_PERMISSIONS, parse_permissions
from settings_store import DatabaseSettingsStore, LOGO_TEXT, ADMIN_ROLE_NAME

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


def _start_session(response: Response, user: User) -> SessionOut:
    caller = AuthService.caller_for(user)
    token, expires = AuthService.create_session_token(caller)
    set_session_cookie(response, token, expires)
    return SessionOut(user=caller, expires=expires.isoformat(), token=token)


@router.get("/setup")
async def setup_status(db: AsyncSession = Depends(get_db_session)):
    """Whether the instance still needs its first administrator"""
    return {"needs_setup": await AuthService.needs_setup(db)}


@router.get("/branding")
async def branding(db: AsyncSession = Depends(get_db_session)):
    """Instance branding shown before login"""
    store = DatabaseSettingsStore(db)
    return {
        LOGO_TEXT: await store.get(LOGO_TEXT),
        ADMIN_ROLE_NAME: await store.get(ADMIN_ROLE_NAME),
    }


@router.post("/setup", response_model=SessionOut)
async def initial_setup(
    data: Credentials,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
):
    """Create the first administrator and log them in"""
    user = await AuthService.initial_setup(data, db)
    if user is None:
        raise HTTPException(status_code=409, detail="System already initialised")
    return _start_session(response, user)


@router.post("/login", response_model=SessionOut)
async def login(
    credentials: Credentials,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
):
    """Authenticate and receive a session cookie"""
    user = await AuthService.authenticate_user(credentials.username, credentials.password, db)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _start_session(response, user)


@router.post("/logout")
async def logout(response: Response):
    clear_session_cookie(response)
    return {"status": "logged_out"}


@router.get("/me")
async def me(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    """Current caller with the permission keys they hold"""
    if caller.is_admin:
        permissions = list(ALL_PERMISSIONS)
    else:
        stmt = select(Group.permissions).join(User, User.group_id == Group.id).where(User.id == caller.id)
        permissions = parse_permissions((await db.execute(stmt)).scalar_one_or_none())
    return {
        "id": caller.id,
        "username": caller.username,
        "is_admin": caller.is_admin,
        "permissions": permissions,
    }
