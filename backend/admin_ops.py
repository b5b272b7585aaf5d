# admin_ops.py — Administrator-only management of users, groups and settings
# All operations raise OperationDenied unless the caller is an administrator.

import logging
from typing import List, Optional

from sqlalchemy import select, update, delete, insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from auth import AuthService, Caller
from board_ops import purge_board
from models import (
    ActivityLog, Board, BoardColumn, Group, Label, Subtask, Task, User,
    board_members, task_dependencies, task_labels,
)
from permissions import invalid_permissions
from results import Ok, Err, Result, OperationDenied, not_found
from settings_store import DatabaseSettingsStore, SettingsStore, canonical_key

logger = logging.getLogger("flowt.admin")

ADMIN_GROUP_SENTINEL = "admin"


def ensure_admin(caller: Caller) -> None:
    if not caller.is_admin:
        raise OperationDenied("Unauthorized")


# ============================================================
# USERS
# ============================================================

async def list_users(db: AsyncSession, caller: Caller) -> List[User]:
    ensure_admin(caller)
    stmt = select(User).options(selectinload(User.group)).order_by(User.username)
    return list((await db.execute(stmt)).scalars().all())


async def create_user(
    db: AsyncSession,
    caller: Caller,
    username: str,
    password: str,
    group_id: Optional[str] = None,
) -> Result[User]:
    """Create a user; ``group_id == "admin"`` makes an administrator with no group."""
    ensure_admin(caller)

    username = (username or "").strip()
    if not username or not password:
        return Err("Missing fields")

    taken = (await db.execute(select(User.id).where(User.username == username))).first()
    if taken is not None:
        return Err("Username already exists", status_code=409)

    is_admin = group_id == ADMIN_GROUP_SENTINEL
    if is_admin or not group_id:
        group_id = None
    else:
        group = (await db.execute(select(Group.id).where(Group.id == group_id))).first()
        if group is None:
            return not_found("Group")

    user = User(
        username=username,
        password_hash=AuthService.hash_password(password),
        is_admin=is_admin,
        group_id=group_id,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    logger.info("User %s created by %s (admin=%s)", username, caller.username, is_admin)
    return Ok(user)


async def delete_user(db: AsyncSession, caller: Caller, user_id: str) -> Result[bool]:
    """Delete a user together with the boards they own."""
    ensure_admin(caller)

    if user_id == caller.id:
        return Err("Cannot delete yourself")
    found = (await db.execute(select(User.id).where(User.id == user_id))).first()
    if found is None:
        return not_found("User")

    owned = (await db.execute(select(Board.id).where(Board.owner_id == user_id))).scalars().all()
    for board_id in owned:
        await purge_board(db, board_id)

    await db.execute(update(Task).where(Task.assignee_id == user_id).values(assignee_id=None))
    await db.execute(update(ActivityLog).where(ActivityLog.user_id == user_id).values(user_id=None))
    await db.execute(delete(board_members).where(board_members.c.user_id == user_id))
    await db.execute(delete(User).where(User.id == user_id))
    await db.commit()
    logger.info("User %s deleted by %s", user_id, caller.username)
    return Ok(True)


async def update_user_boards(db: AsyncSession, caller: Caller, user_id: str, board_ids: List[str]) -> Result[bool]:
    """Replace the set of boards a user is a member of."""
    ensure_admin(caller)

    found = (await db.execute(select(User.id).where(User.id == user_id))).first()
    if found is None:
        return not_found("User")

    board_ids = list(dict.fromkeys(board_ids))
    if board_ids:
        existing = set((await db.execute(select(Board.id).where(Board.id.in_(board_ids)))).scalars().all())
        if len(existing) != len(board_ids):
            return not_found("Board")

    await db.execute(delete(board_members).where(board_members.c.user_id == user_id))
    if board_ids:
        await db.execute(
            insert(board_members),
            [{"board_id": board_id, "user_id": user_id} for board_id in board_ids],
        )
    await db.commit()
    return Ok(True)


async def member_board_ids(db: AsyncSession, user_id: str) -> List[str]:
    stmt = select(board_members.c.board_id).where(board_members.c.user_id == user_id)
    return list((await db.execute(stmt)).scalars().all())


# ============================================================
# GROUPS
# ============================================================

async def list_groups(db: AsyncSession, caller: Caller) -> List[Group]:
    ensure_admin(caller)
    stmt = select(Group).options(selectinload(Group.users)).order_by(Group.name)
    return list((await db.execute(stmt)).scalars().all())


async def create_group(db: AsyncSession, caller: Caller, name: str, permissions: Optional[List[str]] = None) -> Result[Group]:
    ensure_admin(caller)

    name = (name or "").strip()
    if not name:
        return Err("Missing name")
    permissions = list(dict.fromkeys(permissions or []))
    unknown = invalid_permissions(permissions)
    if unknown:
        return Err(f"Unknown permissions: {', '.join(unknown)}")

    group = Group(name=name, permissions=permissions)
    db.add(group)
    await db.commit()
    await db.refresh(group)
    return Ok(group)


async def update_group(db: AsyncSession, caller: Caller, group_id: str, name: str, permissions: List[str]) -> Result[Group]:
    ensure_admin(caller)

    group = (await db.execute(select(Group).where(Group.id == group_id))).scalar_one_or_none()
    if group is None:
        return not_found("Group")

    name = (name or "").strip()
    if not name:
        return Err("Missing name")
    permissions = list(dict.fromkeys(permissions))
    unknown = invalid_permissions(permissions)
    if unknown:
        return Err(f"Unknown permissions: {', '.join(unknown)}")

    group.name = name
    group.permissions = permissions
    await db.commit()
    await db.refresh(group)
    return Ok(group)


async def delete_group(db: AsyncSession, caller: Caller, group_id: str) -> Result[bool]:
    """Delete a group; its members stay, ungrouped."""
    ensure_admin(caller)

    found = (await db.execute(select(Group.id).where(Group.id == group_id))).first()
    if found is None:
        return not_found("Group")

    await db.execute(update(User).where(User.group_id == group_id).values(group_id=None))
    await db.execute(delete(Group).where(Group.id == group_id))
    await db.commit()
    return Ok(True)


# ============================================================
# SETTINGS & MAINTENANCE
# ============================================================

async def update_setting(
    db: AsyncSession,
    caller: Caller,
    key: str,
    value: str,
    store: Optional[SettingsStore] = None,
) -> Result[str]:
    ensure_admin(caller)

    try:
        key = canonical_key(key)
    except KeyError:
        return Err("Unknown setting")

    store = store or DatabaseSettingsStore(db)
    await store.set(key, value)
    await db.commit()
    return Ok(key)


async def reset_database(db: AsyncSession, caller: Caller) -> None:
    """Wipe every board, task, group and user. Instance settings are kept."""
    ensure_admin(caller)

    logger.warning("Database reset requested by %s", caller.username)
    try:
        for table in (task_dependencies, task_labels, board_members):
            await db.execute(delete(table))
        for model in (ActivityLog, Subtask, Label, Task, BoardColumn, Board, User, Group):
            await db.execute(delete(model))
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Database reset failed: %s", e)
        raise RuntimeError("Reset failed") from e
