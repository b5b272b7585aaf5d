# board_ops.py — Board, column, task, subtask and label mutations
# Every operation takes the session and the Caller explicitly.
#   - Data-returning operations answer Ok(value) / Err(reason)
#   - Column operations raise OperationDenied on authorization failure
#   - New columns/tasks are appended with order = current sibling count
#   - Deletions run child-first in code; nothing relies on FK cascades

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field
from sqlalchemy import select, func, or_, update, delete, insert, case, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

import dependency_guard
from activity_feed import record_activity
from auth import Caller
from models import (
    ActivityLog, Board, BoardColumn, Label, Subtask, Task, User,
    board_members, task_labels,
)
from permissions import has_permission, can_delete_board, PermissionKey
from results import Ok, Err, Result, OperationDenied, forbidden, not_found
from settings_store import DatabaseSettingsStore, SettingsStore, ALLOW_USER_BOARD_CREATION, is_enabled

logger = logging.getLogger("flowt.kanban")

DEFAULT_COLUMNS = ["To Do", "In Progress", "Done"]

CREATE_BOARD_DENIED = "You do not have permission to create boards."
DELETE_BOARD_DENIED = "You do not have permission to delete this board."
EDIT_TASK_DENIED = "You do not have permission to edit tasks."
PERMISSION_DENIED = "Permission denied"
TITLE_REQUIRED = "Title is required"


class TaskUpdate(BaseModel):
    """Editable task fields; only fields present in the payload are applied"""
    title: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = None
    due_date: Optional[datetime] = None


# ============================================================
# HELPERS
# ============================================================

def visible_to(caller: Caller):
    """WHERE clause selecting the boards a caller may read"""
    if caller.is_admin:
        return Board.id.is_not(None)
    member_of = select(board_members.c.board_id).where(board_members.c.user_id == caller.id)
    return or_(Board.owner_id == caller.id, Board.id.in_(member_of))


async def _can_view(db: AsyncSession, caller: Caller, board_id: str) -> bool:
    stmt = select(Board.id).where(Board.id == board_id, visible_to(caller))
    return (await db.execute(stmt)).first() is not None


async def _require(db: AsyncSession, caller: Caller, key: PermissionKey) -> None:
    if not await has_permission(db, caller.id, key):
        raise OperationDenied(PERMISSION_DENIED)


async def _get_task(db: AsyncSession, task_id: str) -> Optional[Task]:
    result = await db.execute(select(Task).where(Task.id == task_id))
    return result.scalar_one_or_none()


async def _get_column(db: AsyncSession, column_id: str) -> Optional[BoardColumn]:
    result = await db.execute(select(BoardColumn).where(BoardColumn.id == column_id))
    return result.scalar_one_or_none()


async def _next_task_order(db: AsyncSession, column_id: str) -> int:
    stmt = select(func.count(Task.id)).where(Task.column_id == column_id)
    return (await db.execute(stmt)).scalar() or 0


async def _next_column_order(db: AsyncSession, board_id: str) -> int:
    stmt = select(func.count(BoardColumn.id)).where(BoardColumn.board_id == board_id)
    return (await db.execute(stmt)).scalar() or 0


async def _purge_tasks(db: AsyncSession, task_ids: List[str]) -> None:
    """Delete tasks and everything hanging off them; caller commits."""
    if not task_ids:
        return
    await dependency_guard.purge_task_edges(db, task_ids)
    await db.execute(delete(task_labels).where(task_labels.c.task_id.in_(task_ids)))
    await db.execute(delete(Subtask).where(Subtask.task_id.in_(task_ids)))
    # Activity history survives its task
    await db.execute(
        update(ActivityLog).where(ActivityLog.task_id.in_(task_ids)).values(task_id=None)
    )
    await db.execute(delete(Task).where(Task.id.in_(task_ids)))


async def _load_board(db: AsyncSession, board_id: str) -> Optional[Board]:
    tasks = selectinload(Board.columns).selectinload(BoardColumn.tasks)
    stmt = (
        select(Board)
        .where(Board.id == board_id)
        .options(
            selectinload(Board.labels),
            selectinload(Board.members),
            tasks.selectinload(Task.labels),
            tasks.selectinload(Task.assignee),
        )
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


# ============================================================
# BOARDS
# ============================================================

async def list_boards(db: AsyncSession, caller: Caller) -> List[Board]:
    stmt = (
        select(Board)
        .where(visible_to(caller))
        .options(selectinload(Board.columns))
        .order_by(Board.created_at, Board.id)
        .execution_options(populate_existing=True)
    )
    return list((await db.execute(stmt)).scalars().all())


async def column_task_counts(db: AsyncSession, column_ids: List[str]) -> Dict[str, int]:
    if not column_ids:
        return {}
    stmt = (
        select(Task.column_id, func.count(Task.id))
        .where(Task.column_id.in_(column_ids))
        .group_by(Task.column_id)
    )
    return {cid: count for cid, count in (await db.execute(stmt)).all()}


async def create_board(
    db: AsyncSession,
    caller: Caller,
    title: str,
    settings: Optional[SettingsStore] = None,
) -> Result[Board]:
    settings = settings or DatabaseSettingsStore(db)
    allowed = await has_permission(db, caller.id, PermissionKey.CREATE_BOARD)
    if not allowed:
        allowed = is_enabled(await settings.get(ALLOW_USER_BOARD_CREATION))
    if not allowed:
        return forbidden(CREATE_BOARD_DENIED)

    title = (title or "").strip()
    if not title:
        return Err(TITLE_REQUIRED)

    board = Board(title=title, owner_id=caller.id)
    db.add(board)
    await db.flush()

    for position, column_title in enumerate(DEFAULT_COLUMNS):
        db.add(BoardColumn(board_id=board.id, title=column_title, order=position))

    await db.commit()
    logger.info("Board %s created by %s", board.id, caller.username)
    return Ok(await _load_board(db, board.id))


async def delete_board(db: AsyncSession, caller: Caller, board_id: str) -> Result[bool]:
    result = await db.execute(select(Board).where(Board.id == board_id))
    board = result.scalar_one_or_none()
    if board is None:
        return not_found("Board")

    if not can_delete_board(board, caller.id, caller.is_admin):
        return forbidden(DELETE_BOARD_DENIED)

    await purge_board(db, board_id)
    await db.commit()
    logger.info("Board %s deleted by %s", board_id, caller.username)
    return Ok(True)


async def purge_board(db: AsyncSession, board_id: str) -> None:
    """Remove a board with its columns, tasks and labels; caller commits."""
    column_ids = list((await db.execute(
        select(BoardColumn.id).where(BoardColumn.board_id == board_id)
    )).scalars().all())
    task_ids = []
    if column_ids:
        task_ids = list((await db.execute(
            select(Task.id).where(Task.column_id.in_(column_ids))
        )).scalars().all())

    await _purge_tasks(db, task_ids)
    label_ids = select(Label.id).where(Label.board_id == board_id)
    await db.execute(delete(task_labels).where(task_labels.c.label_id.in_(label_ids)))
    await db.execute(delete(Label).where(Label.board_id == board_id))
    await db.execute(delete(BoardColumn).where(BoardColumn.board_id == board_id))
    await db.execute(delete(board_members).where(board_members.c.board_id == board_id))
    await db.execute(delete(Board).where(Board.id == board_id))


async def get_board(db: AsyncSession, caller: Caller, board_id: str) -> Result[Board]:
    """Board with labels and (order, id)-sorted columns and tasks"""
    if not await _can_view(db, caller, board_id):
        return not_found("Board")
    board = await _load_board(db, board_id)
    if board is None:
        return not_found("Board")
    return Ok(board)


async def subtask_counts(db: AsyncSession, task_ids: List[str]) -> Dict[str, int]:
    if not task_ids:
        return {}
    stmt = (
        select(Subtask.task_id, func.count(Subtask.id))
        .where(Subtask.task_id.in_(task_ids))
        .group_by(Subtask.task_id)
    )
    return {tid: count for tid, count in (await db.execute(stmt)).all()}


async def eligible_users(db: AsyncSession, board_id: str) -> List[User]:
    """Administrators plus the owner and members of a board"""
    owner = select(Board.owner_id).where(Board.id == board_id)
    members = select(board_members.c.user_id).where(board_members.c.board_id == board_id)
    stmt = (
        select(User)
        .where(or_(User.is_admin.is_(True), User.id.in_(owner), User.id.in_(members)))
        .order_by(User.username)
    )
    return list((await db.execute(stmt)).scalars().all())


async def board_tasks_simple(db: AsyncSession, caller: Caller, board_id: str) -> Result[List[Tuple[str, str, str]]]:
    """(id, title, column title) for every task on a board"""
    if not await _can_view(db, caller, board_id):
        return not_found("Board")
    stmt = (
        select(Task.id, Task.title, BoardColumn.title)
        .join(BoardColumn, BoardColumn.id == Task.column_id)
        .where(BoardColumn.board_id == board_id)
        .order_by(BoardColumn.order, BoardColumn.id, Task.order, Task.id)
    )
    return Ok([tuple(row) for row in (await db.execute(stmt)).all()])


# ============================================================
# COLUMNS (raise OperationDenied)
# ============================================================

async def create_column(db: AsyncSession, caller: Caller, board_id: str, title: str) -> Result[BoardColumn]:
    await _require(db, caller, PermissionKey.EDIT_BOARD)

    title = (title or "").strip()
    if not title:
        return Err(TITLE_REQUIRED)
    board = (await db.execute(select(Board.id).where(Board.id == board_id))).first()
    if board is None:
        return not_found("Board")

    column = BoardColumn(board_id=board_id, title=title, order=await _next_column_order(db, board_id))
    db.add(column)
    await db.commit()
    await db.refresh(column)
    return Ok(column)


async def update_column(db: AsyncSession, caller: Caller, column_id: str, title: str) -> Result[BoardColumn]:
    await _require(db, caller, PermissionKey.EDIT_BOARD)

    title = (title or "").strip()
    if not title:
        return Err(TITLE_REQUIRED)
    column = await _get_column(db, column_id)
    if column is None:
        return not_found("Column")

    column.title = title
    await db.commit()
    return Ok(column)


async def delete_column(db: AsyncSession, caller: Caller, column_id: str) -> Result[bool]:
    await _require(db, caller, PermissionKey.EDIT_BOARD)

    column = await _get_column(db, column_id)
    if column is None:
        return not_found("Column")

    task_ids = list((await db.execute(
        select(Task.id).where(Task.column_id == column_id)
    )).scalars().all())
    await _purge_tasks(db, task_ids)
    await db.execute(delete(BoardColumn).where(BoardColumn.id == column_id))
    await db.commit()
    return Ok(True)


async def update_columns_order(
    db: AsyncSession,
    caller: Caller,
    column_ids: List[str],
    board_id: Optional[str] = None,
) -> Result[bool]:
    """Renumber columns 0..N-1 in the given order with a single UPDATE."""
    await _require(db, caller, PermissionKey.EDIT_BOARD)

    if not column_ids:
        return Ok(True)
    if len(set(column_ids)) != len(column_ids):
        return Err("Duplicate column ids")

    rows = (await db.execute(
        select(BoardColumn.id, BoardColumn.board_id).where(BoardColumn.id.in_(column_ids))
    )).all()
    if len(rows) != len(column_ids):
        return not_found("Column")
    boards = {owner for _, owner in rows}
    if len(boards) > 1 or (board_id is not None and boards != {board_id}):
        return Err("Columns must belong to the same board")

    # Orders are rewritten 0..N-1, so N must cover every column of the board
    board_column_ids = (await db.execute(
        select(BoardColumn.id).where(BoardColumn.board_id == boards.pop())
    )).scalars().all()
    if set(board_column_ids) != set(column_ids):
        return Err("Column list does not match board")

    positions = {column_id: index for index, column_id in enumerate(column_ids)}
    try:
        await db.execute(
            update(BoardColumn)
            .where(BoardColumn.id.in_(column_ids))
            .values(order=case(positions, value=BoardColumn.id))
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise
    return Ok(True)


# ============================================================
# TASKS
# ============================================================

async def create_task(db: AsyncSession, caller: Caller, column_id: str, title: str) -> Result[Task]:
    if not await has_permission(db, caller.id, PermissionKey.CREATE_TASK):
        return forbidden(PERMISSION_DENIED)

    title = (title or "").strip()
    if not title:
        return Err(TITLE_REQUIRED)
    if await _get_column(db, column_id) is None:
        return not_found("Column")

    task = Task(column_id=column_id, title=title, order=await _next_task_order(db, column_id))
    db.add(task)
    await db.flush()
    record_activity(db, f'created task "{title}"', task.id, caller.id)
    await db.commit()
    await db.refresh(task)
    return Ok(task)


async def get_task_details(db: AsyncSession, caller: Caller, task_id: str) -> Result[Task]:
    stmt = (
        select(Task)
        .where(Task.id == task_id)
        .options(
            selectinload(Task.labels),
            selectinload(Task.subtasks),
            selectinload(Task.activity).selectinload(ActivityLog.user),
            selectinload(Task.assignee),
            selectinload(Task.column),
            selectinload(Task.blocking).selectinload(Task.column),
            selectinload(Task.blocked_by).selectinload(Task.column),
        )
        .execution_options(populate_existing=True)
    )
    task = (await db.execute(stmt)).scalar_one_or_none()
    if task is None or not await _can_view(db, caller, task.column.board_id):
        return not_found("Task")
    return Ok(task)


async def update_task(db: AsyncSession, caller: Caller, task_id: str, data: TaskUpdate) -> Result[Task]:
    if not await has_permission(db, caller.id, PermissionKey.EDIT_TASK):
        return forbidden(EDIT_TASK_DENIED)

    task = await _get_task(db, task_id)
    if task is None:
        return not_found("Task")

    changes = data.model_dump(exclude_unset=True)
    if "title" in changes:
        title = (changes["title"] or "").strip()
        if not title:
            return Err(TITLE_REQUIRED)
        changes["title"] = title

    for field, value in changes.items():
        setattr(task, field, value)
    await db.commit()
    await db.refresh(task)
    return Ok(task)


async def update_task_column(db: AsyncSession, caller: Caller, task_id: str, column_id: str, order: int) -> Result[bool]:
    """Persist a drag: the task's column and its index there. Siblings keep their order."""
    if not await has_permission(db, caller.id, PermissionKey.EDIT_TASK):
        return forbidden(PERMISSION_DENIED)

    task = await _get_task(db, task_id)
    if task is None:
        return not_found("Task")
    target = await _get_column(db, column_id)
    if target is None:
        return not_found("Column")

    source = await _get_column(db, task.column_id)
    if source is not None and source.board_id != target.board_id:
        return Err("Cannot move a task to another board")

    await db.execute(
        update(Task)
        .where(Task.id == task_id)
        .values(column_id=column_id, order=max(order, 0))
    )
    await db.commit()
    return Ok(True)


async def delete_task(db: AsyncSession, caller: Caller, task_id: str) -> Result[bool]:
    if not await has_permission(db, caller.id, PermissionKey.DELETE_TASK):
        return forbidden(PERMISSION_DENIED)

    if await _get_task(db, task_id) is None:
        return not_found("Task")

    await _purge_tasks(db, [task_id])
    await db.commit()
    return Ok(True)


async def toggle_task_completion(db: AsyncSession, caller: Caller, task_id: str, is_completed: bool) -> Result[bool]:
    if not await has_permission(db, caller.id, PermissionKey.EDIT_TASK):
        return forbidden(PERMISSION_DENIED)

    task = await _get_task(db, task_id)
    if task is None:
        return not_found("Task")

    if is_completed and not await dependency_guard.can_complete(db, task_id):
        return Err(dependency_guard.BLOCKED_COMPLETION)

    task.is_completed = is_completed
    action = "marked task as complete" if is_completed else "marked task as incomplete"
    record_activity(db, action, task_id, caller.id)
    await db.commit()
    return Ok(True)


async def assign_task(db: AsyncSession, caller: Caller, task_id: str, user_id: Optional[str]) -> Result[bool]:
    if not await has_permission(db, caller.id, PermissionKey.EDIT_TASK):
        return forbidden(PERMISSION_DENIED)

    task = await _get_task(db, task_id)
    if task is None:
        return not_found("Task")
    if user_id is not None:
        exists = (await db.execute(select(User.id).where(User.id == user_id))).first()
        if exists is None:
            return not_found("User")

    task.assignee_id = user_id
    action = "assigned a user to task" if user_id else "unassigned user from task"
    record_activity(db, action, task_id, caller.id)
    await db.commit()
    return Ok(True)


# ============================================================
# SUBTASKS
# ============================================================

async def create_subtask(db: AsyncSession, caller: Caller, task_id: str, title: str) -> Result[Subtask]:
    if not await has_permission(db, caller.id, PermissionKey.EDIT_TASK):
        return forbidden(PERMISSION_DENIED)

    title = (title or "").strip()
    if not title:
        return Err(TITLE_REQUIRED)
    if await _get_task(db, task_id) is None:
        return not_found("Task")

    subtask = Subtask(task_id=task_id, title=title)
    db.add(subtask)
    await db.commit()
    await db.refresh(subtask)
    return Ok(subtask)


async def toggle_subtask(db: AsyncSession, caller: Caller, subtask_id: str, is_completed: bool) -> Result[bool]:
    if not await has_permission(db, caller.id, PermissionKey.EDIT_TASK):
        return forbidden(PERMISSION_DENIED)

    try:
        result = await db.execute(
            update(Subtask)
            .where(Subtask.id == subtask_id)
            .values(is_completed=is_completed)
        )
        if result.rowcount == 0:
            await db.rollback()
            return not_found("Subtask")
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.warning("Subtask %s toggle failed: %s", subtask_id, e)
        return Err(str(e))
    return Ok(True)


async def delete_subtask(db: AsyncSession, caller: Caller, subtask_id: str) -> Result[bool]:
    if not await has_permission(db, caller.id, PermissionKey.EDIT_TASK):
        return forbidden(PERMISSION_DENIED)

    result = await db.execute(delete(Subtask).where(Subtask.id == subtask_id))
    if result.rowcount == 0:
        await db.rollback()
        return not_found("Subtask")
    await db.commit()
    return Ok(True)


# ============================================================
# LABELS
# ============================================================

async def create_label(db: AsyncSession, caller: Caller, board_id: str, name: str, color: str) -> Result[Label]:
    if not await has_permission(db, caller.id, PermissionKey.EDIT_BOARD):
        return forbidden(PERMISSION_DENIED)

    name = (name or "").strip()
    if not name:
        return Err("Missing name")
    board = (await db.execute(select(Board.id).where(Board.id == board_id))).first()
    if board is None:
        return not_found("Board")

    label = Label(board_id=board_id, name=name, color=color or "#6366f1")
    db.add(label)
    await db.commit()
    await db.refresh(label)
    return Ok(label)


async def delete_label(db: AsyncSession, caller: Caller, label_id: str) -> Result[bool]:
    if not await has_permission(db, caller.id, PermissionKey.EDIT_BOARD):
        return forbidden(PERMISSION_DENIED)

    found = (await db.execute(select(Label.id).where(Label.id == label_id))).first()
    if found is None:
        return not_found("Label")

    await db.execute(delete(task_labels).where(task_labels.c.label_id == label_id))
    await db.execute(delete(Label).where(Label.id == label_id))
    await db.commit()
    return Ok(True)


async def toggle_task_label(db: AsyncSession, caller: Caller, task_id: str, label_id: str, add: bool) -> Result[bool]:
    if not await has_permission(db, caller.id, PermissionKey.EDIT_TASK):
        return forbidden(PERMISSION_DENIED)

    task = await _get_task(db, task_id)
    if task is None:
        return not_found("Task")
    label = (await db.execute(select(Label).where(Label.id == label_id))).scalar_one_or_none()
    if label is None:
        return not_found("Label")
    column = await _get_column(db, task.column_id)
    if column is None or column.board_id != label.board_id:
        return Err("Label belongs to another board")

    link = and_(task_labels.c.task_id == task_id, task_labels.c.label_id == label_id)
    linked = (await db.execute(select(task_labels.c.task_id).where(link))).first() is not None
    if add and not linked:
        await db.execute(insert(task_labels).values(task_id=task_id, label_id=label_id))
    elif not add and linked:
        await db.execute(delete(task_labels).where(link))
    await db.commit()
    return Ok(True)
