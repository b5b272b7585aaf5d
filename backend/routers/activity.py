# routers/activity.py — Activity feed, dashboard, deadlines and personal task lists
from datetime import datetime
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

import activity_feed
from auth import Caller, get_caller
from database import get_db_session
from models import ActivityLog, Task

router = APIRouter(prefix="/api/v1", tags=["Activity"])


# --- Schemas ---

class BoardRef(BaseModel):
    id: str
    title: str


class ActivityEntryOut(BaseModel):
    id: str
    action: str
    timestamp: Optional[str] = None
    user_id: Optional[str] = None
    username: Optional[str] = None
    task_id: Optional[str] = None
    task_title: Optional[str] = None
    column_title: Optional[str] = None
    board: Optional[BoardRef] = None


class DashboardOut(BaseModel):
    total_tasks: int
    completed_tasks: int
    pending_tasks: int
    efficiency: str


class TaskListItemOut(BaseModel):
    id: str
    title: str
    order: int
    is_completed: bool
    due_date: Optional[str] = None
    column_id: str
    column_title: Optional[str] = None
    board: Optional[BoardRef] = None
    labels: list = []


# --- Helpers ---

def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, datetime) else str(dt)


def _entry_out(entry: ActivityLog) -> ActivityEntryOut:
    task = entry.task
    column = task.column if task is not None else None
    board = column.board if column is not None else None
    return ActivityEntryOut(
        id=entry.id,
        action=entry.action,
        timestamp=_ts(entry.timestamp),
        user_id=entry.user_id,
        username=entry.user.username if entry.user else None,
        task_id=entry.task_id,
        task_title=task.title if task else None,
        column_title=column.title if column else None,
        board=BoardRef(id=board.id, title=board.title) if board else None,
    )


def _task_item(task: Task, with_labels: bool = False) -> TaskListItemOut:
    column = task.column
    board = column.board if column is not None else None
    return TaskListItemOut(
        id=task.id,
        title=task.title,
        order=task.order,
        is_completed=bool(task.is_completed),
        due_date=_ts(task.due_date),
        column_id=task.column_id,
        column_title=column.title if column else None,
        board=BoardRef(id=board.id, title=board.title) if board else None,
        labels=[{"id": l.id, "name": l.name, "color": l.color} for l in task.labels] if with_labels else [],
    )


# --- Endpoints ---

@router.get("/activity/recent", response_model=List[ActivityEntryOut])
async def recent_activity(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    return [_entry_out(e) for e in await activity_feed.recent_activity(db)]


@router.get("/activity", response_model=List[ActivityEntryOut])
async def all_activity(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    return [_entry_out(e) for e in await activity_feed.all_activity(db)]


@router.get("/dashboard", response_model=DashboardOut)
async def dashboard(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    stats = await activity_feed.dashboard_stats(db)
    return DashboardOut(**stats.__dict__)


@router.get("/deadlines", response_model=List[TaskListItemOut])
async def upcoming_deadlines(
    range: str = Query(default="all", pattern="^(day|week|month|all|overdue)$"),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    """Incomplete tasks with a due date that involve the caller"""
    tasks = await activity_feed.upcoming_deadlines(db, caller, range)
    return [_task_item(t) for t in tasks]


@router.get("/me/tasks", response_model=List[TaskListItemOut])
async def my_tasks(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    return [_task_item(t, with_labels=True) for t in await activity_feed.user_tasks(db, caller)]


@router.get("/users", response_model=List[dict])
async def all_users(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    """Id and username of every user, for assignment pickers"""
    return [{"id": u.id, "username": u.username} for u in await activity_feed.all_users(db)]


@router.get("/users/{user_id}/profile")
async def user_profile(
    user_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db_session),
):
    profile = await activity_feed.user_profile(db, user_id)
    if profile is None:
        raise HTTPException(status_code=404, detail="User not found")
    user, tasks = profile
    return {
        "id": user.id,
        "username": user.username,
        "is_admin": bool(user.is_admin),
        "group": {"id": user.group.id, "name": user.group.name} if user.group else None,
        "tasks": [_task_item(t, with_labels=True).model_dump() for t in tasks],
    }
