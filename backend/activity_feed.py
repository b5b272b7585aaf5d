# activity_feed.py — Audit trail, dashboard statistics and personal task views
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from auth import Caller
from models import ActivityLog, Board, BoardColumn, Task, User, board_members, utcnow

logger = logging.getLogger("flowt.activity")

DONE_COLUMN_TITLE = "Done"
RECENT_LIMIT = 5
FEED_LIMIT = 50
DEADLINE_LIMIT = 10

DEADLINE_RANGES = ("day", "week", "month", "all", "overdue")
_RANGE_SPANS = {
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
}


@dataclass
class DashboardStats:
    total_tasks: int
    completed_tasks: int
    pending_tasks: int
    efficiency: str


def record_activity(db: AsyncSession, action: str, task_id: Optional[str], user_id: Optional[str]) -> ActivityLog:
    """Stage an activity entry; committed with the surrounding mutation."""
    entry = ActivityLog(action=action, task_id=task_id, user_id=user_id)
    db.add(entry)
    return entry


def _feed_query(limit: int):
    return (
        select(ActivityLog)
        .options(
            selectinload(ActivityLog.user),
            selectinload(ActivityLog.task).selectinload(Task.column).selectinload(BoardColumn.board),
        )
        .order_by(ActivityLog.timestamp.desc(), ActivityLog.id)
        .limit(limit)
    )


async def recent_activity(db: AsyncSession) -> List[ActivityLog]:
    result = await db.execute(_feed_query(RECENT_LIMIT))
    return list(result.scalars().all())


async def all_activity(db: AsyncSession) -> List[ActivityLog]:
    result = await db.execute(_feed_query(FEED_LIMIT))
    return list(result.scalars().all())


async def dashboard_stats(db: AsyncSession) -> DashboardStats:
    """Completion is judged by column title, not by the task's own flag."""
    total = (await db.execute(select(func.count(Task.id)))).scalar() or 0
    completed = (await db.execute(
        select(func.count(Task.id))
        .join(BoardColumn, BoardColumn.id == Task.column_id)
        .where(BoardColumn.title == DONE_COLUMN_TITLE)
    )).scalar() or 0

    efficiency = f"{round(completed / total * 100)}%" if total > 0 else "0%"
    return DashboardStats(
        total_tasks=total,
        completed_tasks=completed,
        pending_tasks=total - completed,
        efficiency=efficiency,
    )


def _involves(caller: Caller):
    member_of = select(board_members.c.board_id).where(board_members.c.user_id == caller.id)
    return or_(
        Task.assignee_id == caller.id,
        Board.owner_id == caller.id,
        Board.id.in_(member_of),
    )


async def upcoming_deadlines(db: AsyncSession, caller: Caller, range_: str = "all") -> List[Task]:
    if range_ not in DEADLINE_RANGES:
        raise ValueError(f"Unknown range: {range_}")

    now = utcnow()
    stmt = (
        select(Task)
        .join(BoardColumn, BoardColumn.id == Task.column_id)
        .join(Board, Board.id == BoardColumn.board_id)
        .where(Task.due_date.is_not(None), Task.is_completed.is_(False), _involves(caller))
        .options(selectinload(Task.column).selectinload(BoardColumn.board))
        .order_by(Task.due_date.asc(), Task.id)
        .limit(DEADLINE_LIMIT)
    )

    if range_ == "overdue":
        stmt = stmt.where(Task.due_date <= now)
    elif range_ in _RANGE_SPANS:
        stmt = stmt.where(Task.due_date >= now, Task.due_date <= now + _RANGE_SPANS[range_])

    result = await db.execute(stmt)
    return list(result.scalars().all())


def _open_assigned(user_id: str):
    return (
        select(Task)
        .join(BoardColumn, BoardColumn.id == Task.column_id)
        .where(Task.assignee_id == user_id, BoardColumn.title != DONE_COLUMN_TITLE)
        .options(
            selectinload(Task.labels),
            selectinload(Task.column).selectinload(BoardColumn.board),
        )
    )


async def user_tasks(db: AsyncSession, caller: Caller) -> List[Task]:
    """Tasks assigned to the caller outside the Done column"""
    result = await db.execute(_open_assigned(caller.id).order_by(Task.order, Task.id))
    return list(result.scalars().all())


async def user_profile(db: AsyncSession, user_id: str):
    """(user, open assigned tasks) or None when the user does not exist"""
    result = await db.execute(
        select(User).where(User.id == user_id).options(selectinload(User.group))
    )
    user = result.scalar_one_or_none()
    if user is None:
        return None

    tasks = await db.execute(
        _open_assigned(user_id).order_by(Task.due_date.is_(None), Task.due_date.asc(), Task.id)
    )
    return user, list(tasks.scalars().all())


async def all_users(db: AsyncSession) -> List[User]:
    result = await db.execute(select(User).order_by(User.username))
    return list(result.scalars().all())
