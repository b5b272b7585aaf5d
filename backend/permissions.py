# permissions.py — Capability checks gating every board/task mutation
# Resolution order:
#   1. administrators are granted everything
#   2. otherwise the user's group permission list decides
#   3. users without a group are denied
# Board deletion is ownership based and ignores the group table.

import json
import logging
from enum import Enum
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import Board, Group, User

logger = logging.getLogger("flowt.permissions")


class PermissionKey(str, Enum):
    CREATE_BOARD = "create_board"
    EDIT_BOARD = "edit_board"
    DELETE_BOARD = "delete_board"
    CREATE_TASK = "create_task"
    EDIT_TASK = "edit_task"
    DELETE_TASK = "delete_task"


ALL_PERMISSIONS = [p.value for p in PermissionKey]

# Labels shown by the admin group editor
PERMISSION_LABELS = {
    PermissionKey.CREATE_BOARD.value: "Create boards",
    PermissionKey.EDIT_BOARD.value: "Edit boards, columns and labels",
    PermissionKey.DELETE_BOARD.value: "Delete boards",
    PermissionKey.CREATE_TASK.value: "Create tasks",
    PermissionKey.EDIT_TASK.value: "Edit, move and assign tasks",
    PermissionKey.DELETE_TASK.value: "Delete tasks",
}


def parse_permissions(raw) -> List[str]:
    """Decode a stored permission list.

    Older rows hold a JSON-encoded string rather than a JSON array, so both
    shapes are accepted. Anything unreadable yields an empty list.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("Unreadable group permission list: %r", raw[:80])
            return []
    if not isinstance(raw, (list, tuple, set)):
        return []
    return [str(p) for p in raw]


def invalid_permissions(keys: Iterable[str]) -> List[str]:
    return [k for k in keys if k not in ALL_PERMISSIONS]


def resolve_permission(user: Optional[User], group: Optional[Group], key: str) -> bool:
    """Pure decision for (user, group, key); no database access."""
    if user is None:
        return False
    if user.is_admin:
        return True
    if group is None:
        return False
    key = key.value if isinstance(key, PermissionKey) else key
    return key in parse_permissions(group.permissions)


async def has_permission(db: AsyncSession, user_id: str, key: str) -> bool:
    """Check whether a user currently holds a permission key"""
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        return False
    if user.is_admin:
        return True

    group = None
    if user.group_id:
        group_result = await db.execute(select(Group).where(Group.id == user.group_id))
        group = group_result.scalar_one_or_none()
    return resolve_permission(user, group, key)


def can_delete_board(board: Board, user_id: str, is_admin: bool) -> bool:
    return is_admin or board.owner_id == user_id
