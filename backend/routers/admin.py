# routers/admin.py — User, group and instance administration (admins only)
from typing import Optional, List

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

import admin_ops
from auth import Caller, get_caller, clear_session_cookie
from database import get_db_session
from models import Group, User
from permissions import PERMISSION_LABELS, parse_permissions
from results import unwrap
from settings_store import DatabaseSettingsStore

router = APIRouter(prefix="/api/v1/admin", tags=["Administration"])


# --- Schemas ---

class GroupRef(BaseModel):
    id: str
    name: str


class UserOut(BaseModel):
    id: str
    username: str
    is_admin: bool
    group: Optional[GroupRef] = None
    created_at: Optional[str] = None


class UserCreate(BaseModel):
    username: str = Field(..., max_length=100)
    password: str
    group_id: Optional[str] = Field(None, description='Group id, or "admin" for an administrator')


class UserBoards(BaseModel):
    board_ids: List[str] = Field(default_factory=list)


class GroupIn(BaseModel):
    name: str = Field(..., max_length=100)
    permissions: List[str] = Field(default_factory=list)


class GroupOut(BaseModel):
    id: str
    name: str
    permissions: List[str]
    member_count: int = 0


class SettingUpdate(BaseModel):
    value: str


# --- Helpers ---

def _user_to_out(u: User) -> UserOut:
    return UserOut(
        id=u.id,
        username=u.username,
        is_admin=bool(u.is_admin),
        group=GroupRef(id=u.group.id, name=u.group.name) if u.group else None,
        created_at=u.created_at.isoformat() if u.created_at else None,
    )


def _group_to_out(g: Group, member_count: int = 0) -> GroupOut:
    return GroupOut(id=g.id, name=g.name, permissions=parse_permissions(g.permissions), member_count=member_count)


# --- Users ---

@router.get("/users", response_model=List[UserOut])
async def list_users(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    return [_user_to_out(u) for u in await admin_ops.list_users(db, caller)]


@router.post("/users", status_code=201)
async def create_user(
    data: UserCreate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    user = unwrap(await admin_ops.create_user(db, caller, data.username, data.password, data.group_id))
    return {"id": user.id, "username": user.username, "is_admin": bool(user.is_admin), "group_id": user.group_id}


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a user (never yourself); boards they own go with them"""
    unwrap(await admin_ops.delete_user(db, caller, user_id))
    return {"status": "deleted", "user_id": user_id}


@router.get("/users/{user_id}/boards")
async def get_user_boards(
    user_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    admin_ops.ensure_admin(caller)
    return {"user_id": user_id, "board_ids": await admin_ops.member_board_ids(db, user_id)}


@router.put("/users/{user_id}/boards")
async def update_user_boards(
    user_id: str,
    data: UserBoards,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    """Replace the boards a user is a member of"""
    unwrap(await admin_ops.update_user_boards(db, caller, user_id, data.board_ids))
    return {"user_id": user_id, "board_ids": data.board_ids}


# --- Groups ---

@router.get("/groups", response_model=List[GroupOut])
async def list_groups(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    return [_group_to_out(g, len(g.users)) for g in await admin_ops.list_groups(db, caller)]


@router.get("/permissions")
async def list_permissions(caller: Caller = Depends(get_caller)):
    """Permission keys with their display labels"""
    admin_ops.ensure_admin(caller)
    return [{"key": key, "label": label} for key, label in PERMISSION_LABELS.items()]


@router.post("/groups", response_model=GroupOut, status_code=201)
async def create_group(
    data: GroupIn,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    group = unwrap(await admin_ops.create_group(db, caller, data.name, data.permissions))
    return _group_to_out(group)


@router.put("/groups/{group_id}", response_model=GroupOut)
async def update_group(
    group_id: str,
    data: GroupIn,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    group = unwrap(await admin_ops.update_group(db, caller, group_id, data.name, data.permissions))
    return _group_to_out(group)


@router.delete("/groups/{group_id}")
async def delete_group(
    group_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a group; its members are kept without a group"""
    unwrap(await admin_ops.delete_group(db, caller, group_id))
    return {"status": "deleted", "group_id": group_id}


# --- Settings & maintenance ---

@router.get("/settings")
async def get_settings(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    admin_ops.ensure_admin(caller)
    return await DatabaseSettingsStore(db).all()


@router.put("/settings/{key}")
async def update_setting(
    key: str,
    data: SettingUpdate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    canonical = unwrap(await admin_ops.update_setting(db, caller, key, data.value))
    return {"key": canonical, "value": data.value}


@router.post("/reset")
async def reset_database(
    response: Response,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    """Wipe all users, groups, boards and tasks"""
    await admin_ops.reset_database(db, caller)
    clear_session_cookie(response)
    return {"redirect": "/setup"}
