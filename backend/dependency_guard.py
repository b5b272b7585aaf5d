# dependency_guard.py — Task "blocked by" graph with cycle prevention
"""
Maintains the directed relation ``task -> blocking task`` (the task cannot be
completed before the blocking task) and gates completion on it.

An edge is rejected when it would close a cycle of any length: before
inserting ``task -> blocking``, the walk follows ``blocked_by`` edges from the
blocking task and fails if it reaches the dependent task.
"""

import logging
from typing import Dict, List, Optional, Set

from pydantic import BaseModel
from sqlalchemy import select, delete, insert, and_, func
from sqlalchemy.ext.asyncio import AsyncSession

from auth import Caller
from models import Task, BoardColumn, task_dependencies
from permissions import has_permission, PermissionKey
from results import Ok, Err, Result, forbidden, not_found

logger = logging.getLogger("flowt.dependencies")

SELF_DEPENDENCY = "Cannot depend on self"
CIRCULAR_DEPENDENCY = "Circular dependency detected"
CROSS_BOARD_DEPENDENCY = "Tasks must belong to the same board"
BLOCKED_COMPLETION = "Resolve dependencies first"


class DependencyRef(BaseModel):
    """Minimal projection of a related task for display"""
    id: str
    title: str
    column_title: Optional[str] = None
    is_completed: bool = False


class DependencySets(BaseModel):
    blocked_by: List[DependencyRef] = []
    blocking: List[DependencyRef] = []


# ============================================================
# GRAPH QUERIES
# ============================================================

async def _board_of(db: AsyncSession, task_id: str) -> Optional[str]:
    stmt = (
        select(BoardColumn.board_id)
        .join(Task, Task.column_id == BoardColumn.id)
        .where(Task.id == task_id)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def blocker_ids(db: AsyncSession, task_id: str) -> List[str]:
    stmt = select(task_dependencies.c.blocking_task_id).where(task_dependencies.c.task_id == task_id)
    return list((await db.execute(stmt)).scalars().all())


async def is_reachable(db: AsyncSession, start_id: str, target_id: str) -> bool:
    """True if ``target_id`` is reachable from ``start_id`` over blocked_by edges."""
    visited: Set[str] = set()
    frontier = {start_id}

    while frontier:
        if target_id in frontier:
            return True
        visited |= frontier
        stmt = select(task_dependencies.c.blocking_task_id).where(
            task_dependencies.c.task_id.in_(frontier)
        )
        found = set((await db.execute(stmt)).scalars().all())
        frontier = found - visited

    return False


async def edge_exists(db: AsyncSession, task_id: str, blocking_task_id: str) -> bool:
    stmt = select(task_dependencies.c.task_id).where(
        and_(
            task_dependencies.c.task_id == task_id,
            task_dependencies.c.blocking_task_id == blocking_task_id,
        )
    )
    return (await db.execute(stmt)).first() is not None


async def get_dependency_sets(db: AsyncSession, task_id: str) -> DependencySets:
    """blocked_by: tasks this one waits on; blocking: tasks waiting on this one"""

    async def _refs(join_col, filter_col) -> List[DependencyRef]:
        stmt = (
            select(Task.id, Task.title, Task.is_completed, BoardColumn.title)
            .join(task_dependencies, Task.id == join_col)
            .outerjoin(BoardColumn, BoardColumn.id == Task.column_id)
            .where(filter_col == task_id)
            .order_by(Task.title, Task.id)
        )
        rows = (await db.execute(stmt)).all()
        return [
            DependencyRef(id=tid, title=title, is_completed=bool(done), column_title=col_title)
            for tid, title, done, col_title in rows
        ]

    return DependencySets(
        blocked_by=await _refs(task_dependencies.c.blocking_task_id, task_dependencies.c.task_id),
        blocking=await _refs(task_dependencies.c.task_id, task_dependencies.c.blocking_task_id),
    )


async def blocked_by_counts(db: AsyncSession, task_ids: List[str]) -> Dict[str, int]:
    if not task_ids:
        return {}
    stmt = (
        select(task_dependencies.c.task_id, func.count())
        .where(task_dependencies.c.task_id.in_(task_ids))
        .group_by(task_dependencies.c.task_id)
    )
    return {tid: count for tid, count in (await db.execute(stmt)).all()}


# ============================================================
# MUTATIONS
# ============================================================

async def add_dependency(db: AsyncSession, caller: Caller, task_id: str, blocking_task_id: str) -> Result[bool]:
    if not await has_permission(db, caller.id, PermissionKey.EDIT_TASK):
        return forbidden("Permission denied")

    if task_id == blocking_task_id:
        return Err(SELF_DEPENDENCY)

    task_board = await _board_of(db, task_id)
    blocking_board = await _board_of(db, blocking_task_id)
    if task_board is None or blocking_board is None:
        return not_found("Task")
    if task_board != blocking_board:
        return Err(CROSS_BOARD_DEPENDENCY)

    if await edge_exists(db, task_id, blocking_task_id):
        return Ok(True)

    if await is_reachable(db, blocking_task_id, task_id):
        logger.info("Rejected dependency %s -> %s: cycle", task_id, blocking_task_id)
        return Err(CIRCULAR_DEPENDENCY)

    await db.execute(insert(task_dependencies).values(task_id=task_id, blocking_task_id=blocking_task_id))
    await db.commit()
    return Ok(True)


async def remove_dependency(db: AsyncSession, caller: Caller, task_id: str, blocking_task_id: str) -> Result[bool]:
    if not await has_permission(db, caller.id, PermissionKey.EDIT_TASK):
        return forbidden("Permission denied")

    await db.execute(
        delete(task_dependencies).where(
            and_(
                task_dependencies.c.task_id == task_id,
                task_dependencies.c.blocking_task_id == blocking_task_id,
            )
        )
    )
    await db.commit()
    return Ok(True)


async def can_complete(db: AsyncSession, task_id: str) -> bool:
    return not await blocker_ids(db, task_id)


async def purge_task_edges(db: AsyncSession, task_ids: List[str]) -> None:
    """Drop every edge touching the given tasks; caller commits."""
    if not task_ids:
        return
    await db.execute(
        delete(task_dependencies).where(
            task_dependencies.c.task_id.in_(task_ids)
            | task_dependencies.c.blocking_task_id.in_(task_ids)
        )
    )
