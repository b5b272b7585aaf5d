# routers/kanban.py — Boards, columns, tasks, subtasks, labels and dependencies
from datetime import datetime
from typing import Optional, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

import board_ops
import dependency_guard
from auth import Caller, get_caller
from board_ops import TaskUpdate
from database import get_db_session
from dependency_guard import DependencySets
from models import Board, BoardColumn, Label, Subtask, Task, User
from results import unwrap

router = APIRouter(prefix="/api/v1", tags=["Kanban Board"])


# ============================================================
# SCHEMAS
# ============================================================

# --- Board ---
class BoardCreate(BaseModel):
    title: str = Field(..., max_length=200)


class UserRef(BaseModel):
    id: str
    username: str


class LabelOut(BaseModel):
    id: str
    name: str
    color: str


class TaskCardOut(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    order: int
    is_completed: bool
    due_date: Optional[str] = None
    column_id: str
    assignee: Optional[UserRef] = None
    labels: List[LabelOut] = []
    subtask_count: int = 0
    blocked_by_count: int = 0


class ColumnOut(BaseModel):
    id: str
    title: str
    order: int
    board_id: str
    task_count: int = 0


class ColumnDetailOut(ColumnOut):
    tasks: List[TaskCardOut] = []


class BoardSummaryOut(BaseModel):
    id: str
    title: str
    owner_id: str
    columns: List[ColumnOut] = []
    task_count: int = 0
    created_at: Optional[str] = None


class BoardOut(BaseModel):
    id: str
    title: str
    owner_id: str
    members: List[UserRef] = []
    labels: List[LabelOut] = []
    columns: List[ColumnDetailOut] = []


# --- Column ---
class ColumnCreate(BaseModel):
    title: str = Field(..., max_length=100)


class ColumnsOrder(BaseModel):
    column_ids: List[str]


# --- Task ---
class TaskCreate(BaseModel):
    title: str = Field(..., max_length=500)


class TaskMove(BaseModel):
    column_id: str
    order: int = Field(0, ge=0)


class CompletionUpdate(BaseModel):
    is_completed: bool


class AssigneeUpdate(BaseModel):
    user_id: Optional[str] = None


class DependencyCreate(BaseModel):
    blocking_task_id: str


class SubtaskCreate(BaseModel):
    title: str = Field(..., max_length=500)


class SubtaskOut(BaseModel):
    id: str
    title: str
    is_completed: bool


class ActivityOut(BaseModel):
    id: str
    action: str
    timestamp: Optional[str] = None
    user: Optional[UserRef] = None


class TaskDetailOut(TaskCardOut):
    column_title: Optional[str] = None
    board_id: Optional[str] = None
    subtasks: List[SubtaskOut] = []
    activity: List[ActivityOut] = []
    blocked_by: list = []
    blocking: list = []


class TaskSimpleOut(BaseModel):
    id: str
    title: str
    column_title: str


# --- Label ---
class LabelCreate(BaseModel):
    name: str = Field(..., max_length=50)
    color: str = "#6366f1"


# ============================================================
# HELPERS
# ============================================================

def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, datetime) else str(dt)


def _user_ref(user: Optional[User]) -> Optional[UserRef]:
    return UserRef(id=user.id, username=user.username) if user is not None else None


def _label_out(label: Label) -> LabelOut:
    return LabelOut(id=label.id, name=label.name, color=label.color)


def _column_out(col: BoardColumn, task_count: int = 0) -> ColumnOut:
    return ColumnOut(id=col.id, title=col.title, order=col.order, board_id=col.board_id, task_count=task_count)


def _card_out(task: Task, subtasks: int = 0, blocked_by: int = 0) -> TaskCardOut:
    return TaskCardOut(
        id=task.id,
        title=task.title,
        description=task.description,
        order=task.order,
        is_completed=bool(task.is_completed),
        due_date=_ts(task.due_date),
        column_id=task.column_id,
        assignee=_user_ref(task.assignee),
        labels=[_label_out(l) for l in task.labels],
        subtask_count=subtasks,
        blocked_by_count=blocked_by,
    )


async def _board_out(db: AsyncSession, board: Board) -> BoardOut:
    task_ids = [t.id for c in board.columns for t in c.tasks]
    subtasks = await board_ops.subtask_counts(db, task_ids)
    blocked = await dependency_guard.blocked_by_counts(db, task_ids)
    return BoardOut(
        id=board.id,
        title=board.title,
        owner_id=board.owner_id,
        members=[_user_ref(m) for m in board.members],
        labels=[_label_out(l) for l in board.labels],
        columns=[
            ColumnDetailOut(
                **_column_out(c, len(c.tasks)).model_dump(),
                tasks=[_card_out(t, subtasks.get(t.id, 0), blocked.get(t.id, 0)) for t in c.tasks],
            )
            for c in board.columns
        ],
    )


def _plain_task(task: Task) -> dict:
    """Flat task payload without relationships"""
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "order": task.order,
        "is_completed": bool(task.is_completed),
        "due_date": _ts(task.due_date),
        "column_id": task.column_id,
    }


# ============================================================
# BOARD ENDPOINTS
# ============================================================

@router.get("/boards", response_model=List[BoardSummaryOut])
async def list_boards(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    """Boards the caller owns or belongs to (every board for admins)"""
    boards = await board_ops.list_boards(db, caller)
    counts = await board_ops.column_task_counts(db, [c.id for b in boards for c in b.columns])
    return [
        BoardSummaryOut(
            id=b.id,
            title=b.title,
            owner_id=b.owner_id,
            columns=[_column_out(c, counts.get(c.id, 0)) for c in b.columns],
            task_count=sum(counts.get(c.id, 0) for c in b.columns),
            created_at=_ts(b.created_at),
        )
        for b in boards
    ]


@router.post("/boards", response_model=BoardOut, status_code=201)
async def create_board(
    data: BoardCreate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a board seeded with To Do / In Progress / Done"""
    board = unwrap(await board_ops.create_board(db, caller, data.title))
    return await _board_out(db, board)


@router.get("/boards/{board_id}", response_model=BoardOut)
async def get_board(
    board_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    board = unwrap(await board_ops.get_board(db, caller, board_id))
    return await _board_out(db, board)


@router.delete("/boards/{board_id}")
async def delete_board(
    board_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    unwrap(await board_ops.delete_board(db, caller, board_id))
    return {"status": "deleted", "board_id": board_id}


@router.get("/boards/{board_id}/users", response_model=List[UserRef])
async def eligible_users(
    board_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    """Users a task on this board may be assigned to"""
    users = await board_ops.eligible_users(db, board_id)
    return [_user_ref(u) for u in users]


@router.get("/boards/{board_id}/tasks/simple", response_model=List[TaskSimpleOut])
async def board_tasks_simple(
    board_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    rows = unwrap(await board_ops.board_tasks_simple(db, caller, board_id))
    return [TaskSimpleOut(id=tid, title=title, column_title=col) for tid, title, col in rows]


# ============================================================
# COLUMN ENDPOINTS
# ============================================================

@router.post("/boards/{board_id}/columns", response_model=ColumnOut, status_code=201)
async def create_column(
    board_id: str,
    data: ColumnCreate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    """Append a column to the right of the board"""
    column = unwrap(await board_ops.create_column(db, caller, board_id, data.title))
    return _column_out(column)


@router.put("/boards/{board_id}/columns/order")
async def update_columns_order(
    board_id: str,
    data: ColumnsOrder,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    """Persist a column drag: ids in their new left-to-right order"""
    unwrap(await board_ops.update_columns_order(db, caller, data.column_ids, board_id=board_id))
    return {"status": "reordered", "column_ids": data.column_ids}


@router.patch("/columns/{column_id}", response_model=ColumnOut)
async def update_column(
    column_id: str,
    data: ColumnCreate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    column = unwrap(await board_ops.update_column(db, caller, column_id, data.title))
    return _column_out(column)


@router.delete("/columns/{column_id}")
async def delete_column(
    column_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    unwrap(await board_ops.delete_column(db, caller, column_id))
    return {"status": "deleted", "column_id": column_id}


# ============================================================
# TASK ENDPOINTS
# ============================================================

@router.post("/columns/{column_id}/tasks", status_code=201)
async def create_task(
    column_id: str,
    data: TaskCreate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    """Append a task to the bottom of a column"""
    task = unwrap(await board_ops.create_task(db, caller, column_id, data.title))
    return _plain_task(task)


@router.get("/tasks/{task_id}", response_model=TaskDetailOut)
async def get_task(
    task_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    """Full task detail: labels, subtasks, activity and dependencies"""
    task = unwrap(await board_ops.get_task_details(db, caller, task_id))
    deps = await dependency_guard.get_dependency_sets(db, task_id)
    card = _card_out(task, len(task.subtasks), len(deps.blocked_by))
    return TaskDetailOut(
        **card.model_dump(),
        column_title=task.column.title if task.column else None,
        board_id=task.column.board_id if task.column else None,
        subtasks=[SubtaskOut(id=s.id, title=s.title, is_completed=bool(s.is_completed)) for s in task.subtasks],
        activity=[
            ActivityOut(id=a.id, action=a.action, timestamp=_ts(a.timestamp), user=_user_ref(a.user))
            for a in task.activity
        ],
        blocked_by=[d.model_dump() for d in deps.blocked_by],
        blocking=[d.model_dump() for d in deps.blocking],
    )


@router.patch("/tasks/{task_id}")
async def update_task(
    task_id: str,
    data: TaskUpdate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    task = unwrap(await board_ops.update_task(db, caller, task_id, data))
    return {"success": True, "task": _plain_task(task)}


@router.put("/tasks/{task_id}/move")
async def move_task(
    task_id: str,
    data: TaskMove,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    """Persist a task drag: destination column and index"""
    unwrap(await board_ops.update_task_column(db, caller, task_id, data.column_id, data.order))
    return {"success": True}


@router.delete("/tasks/{task_id}")
async def delete_task(
    task_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    unwrap(await board_ops.delete_task(db, caller, task_id))
    return {"success": True}


@router.put("/tasks/{task_id}/completion")
async def toggle_completion(
    task_id: str,
    data: CompletionUpdate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    unwrap(await board_ops.toggle_task_completion(db, caller, task_id, data.is_completed))
    return {"success": True}


@router.put("/tasks/{task_id}/assignee")
async def assign_task(
    task_id: str,
    data: AssigneeUpdate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    """Assign a user, or unassign with user_id null"""
    unwrap(await board_ops.assign_task(db, caller, task_id, data.user_id))
    return {"success": True}


# ============================================================
# DEPENDENCY ENDPOINTS
# ============================================================

@router.get("/tasks/{task_id}/dependencies", response_model=DependencySets)
async def get_dependencies(
    task_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    unwrap(await board_ops.get_task_details(db, caller, task_id))
    return await dependency_guard.get_dependency_sets(db, task_id)


@router.post("/tasks/{task_id}/dependencies")
async def add_dependency(
    task_id: str,
    data: DependencyCreate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    """Mark this task as blocked by another task on the same board"""
    unwrap(await dependency_guard.add_dependency(db, caller, task_id, data.blocking_task_id))
    return {"success": True}


@router.delete("/tasks/{task_id}/dependencies/{blocking_task_id}")
async def remove_dependency(
    task_id: str,
    blocking_task_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    unwrap(await dependency_guard.remove_dependency(db, caller, task_id, blocking_task_id))
    return {"success": True}


# ============================================================
# SUBTASK ENDPOINTS
# ============================================================

@router.post("/tasks/{task_id}/subtasks", response_model=SubtaskOut, status_code=201)
async def create_subtask(
    task_id: str,
    data: SubtaskCreate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    subtask: Subtask = unwrap(await board_ops.create_subtask(db, caller, task_id, data.title))
    return SubtaskOut(id=subtask.id, title=subtask.title, is_completed=bool(subtask.is_completed))


@router.put("/subtasks/{subtask_id}/completion")
async def toggle_subtask(
    subtask_id: str,
    data: CompletionUpdate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    unwrap(await board_ops.toggle_subtask(db, caller, subtask_id, data.is_completed))
    return {"success": True}


@router.delete("/subtasks/{subtask_id}")
async def delete_subtask(
    subtask_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    unwrap(await board_ops.delete_subtask(db, caller, subtask_id))
    return {"success": True}


# ============================================================
# LABEL ENDPOINTS
# ============================================================

@router.post("/boards/{board_id}/labels", response_model=LabelOut, status_code=201)
async def create_label(
    board_id: str,
    data: LabelCreate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    label = unwrap(await board_ops.create_label(db, caller, board_id, data.name, data.color))
    return _label_out(label)


@router.delete("/labels/{label_id}")
async def delete_label(
    label_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    unwrap(await board_ops.delete_label(db, caller, label_id))
    return {"success": True}


@router.put("/tasks/{task_id}/labels/{label_id}")
async def add_task_label(
    task_id: str,
    label_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    unwrap(await board_ops.toggle_task_label(db, caller, task_id, label_id, add=True))
    return {"success": True}


@router.delete("/tasks/{task_id}/labels/{label_id}")
async def remove_task_label(
    task_id: str,
    label_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    unwrap(await board_ops.toggle_task_label(db, caller, task_id, label_id, add=False))
    return {"success": True}
