# models.py — Database models for Flowt
# - UUID string primary keys everywhere
# - Admin flag XOR group membership for authorization
# - Self-referential task dependency graph (blocked_by / blocking)
# - Append-only activity log
# - Key/value system settings

import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, Integer, Table,
    ForeignKey, Text, Index, CheckConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


# ============================================================
# ASSOCIATION TABLES
# ============================================================

board_members = Table(
    "board_members",
    Base.metadata,
    Column("board_id", String, ForeignKey("boards.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)

task_labels = Table(
    "task_labels",
    Base.metadata,
    Column("task_id", String, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True),
    Column("label_id", String, ForeignKey("labels.id", ondelete="CASCADE"), primary_key=True),
)

# task_id cannot be completed before blocking_task_id
task_dependencies = Table(
    "task_dependencies",
    Base.metadata,
    Column("task_id", String, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True),
    Column("blocking_task_id", String, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True),
    CheckConstraint("task_id != blocking_task_id", name="no_self_dependency"),
    Index("idx_dep_blocking", "blocking_task_id"),
)


# ============================================================
# USERS & GROUPS
# ============================================================

class Group(Base):
    """Named bundle of permission keys assignable to non-admin users"""
    __tablename__ = "groups"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    permissions = Column(JSON, nullable=False, default=list)  # e.g. ["create_board", "edit_task"]
    created_at = Column(DateTime(timezone=True), default=utcnow)

    users = relationship("User", back_populates="group")


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    username = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    is_admin = Column(Boolean, nullable=False, default=False)
    group_id = Column(String, ForeignKey("groups.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    group = relationship("Group", back_populates="users")
    owned_boards = relationship("Board", back_populates="owner")
    member_boards = relationship("Board", secondary=board_members, back_populates="members")
    assigned_tasks = relationship("Task", back_populates="assignee")


# ============================================================
# KANBAN
# ============================================================

class Board(Base):
    """Project workspace holding ordered columns and labels"""
    __tablename__ = "boards"

    id = Column(String, primary_key=True, default=new_uuid)
    title = Column(String, nullable=False)
    owner_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    owner = relationship("User", back_populates="owned_boards")
    members = relationship("User", secondary=board_members, back_populates="member_boards")
    columns = relationship("BoardColumn", back_populates="board", order_by=lambda: [BoardColumn.order, BoardColumn.id])
    labels = relationship("Label", back_populates="board")


class BoardColumn(Base):
    """Ordered bucket of tasks within a board"""
    __tablename__ = "board_columns"

    id = Column(String, primary_key=True, default=new_uuid)
    board_id = Column(String, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    board = relationship("Board", back_populates="columns")
    tasks = relationship("Task", back_populates="column", order_by=lambda: [Task.order, Task.id])

    __table_args__ = (
        Index("idx_col_board_order", "board_id", "order"),
    )


class Label(Base):
    __tablename__ = "labels"

    id = Column(String, primary_key=True, default=new_uuid)
    board_id = Column(String, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    color = Column(String, nullable=False, default="#6366f1")

    board = relationship("Board", back_populates="labels")
    tasks = relationship("Task", secondary=task_labels, back_populates="labels")


class Task(Base):
    """Task card; belongs to exactly one column at a time"""
    __tablename__ = "tasks"

    id = Column(String, primary_key=True, default=new_uuid)
    column_id = Column(String, ForeignKey("board_columns.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    order = Column(Integer, nullable=False, default=0)  # Position within column
    is_completed = Column(Boolean, nullable=False, default=False)
    due_date = Column(DateTime(timezone=True), nullable=True)
    assignee_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    column = relationship("BoardColumn", back_populates="tasks")
    assignee = relationship("User", back_populates="assigned_tasks")
    labels = relationship("Label", secondary=task_labels, back_populates="tasks")
    subtasks = relationship("Subtask", back_populates="task", order_by="Subtask.id")
    activity = relationship("ActivityLog", back_populates="task", order_by="ActivityLog.timestamp.desc()")
    blocked_by = relationship(
        "Task",
        secondary=task_dependencies,
        primaryjoin=lambda: Task.id == task_dependencies.c.task_id,
        secondaryjoin=lambda: Task.id == task_dependencies.c.blocking_task_id,
        back_populates="blocking",
    )
    blocking = relationship(
        "Task",
        secondary=task_dependencies,
        primaryjoin=lambda: Task.id == task_dependencies.c.blocking_task_id,
        secondaryjoin=lambda: Task.id == task_dependencies.c.task_id,
        back_populates="blocked_by",
    )

    __table_args__ = (
        Index("idx_task_col_order", "column_id", "order"),
        Index("idx_task_due", "due_date"),
    )


class Subtask(Base):
    __tablename__ = "subtasks"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    is_completed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    task = relationship("Task", back_populates="subtasks")


# ============================================================
# ACTIVITY LOG (append-only; task_id is nulled when its task goes)
# ============================================================

class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(String, primary_key=True, default=new_uuid)
    action = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), default=utcnow, index=True)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    task = relationship("Task", back_populates="activity")
    user = relationship("User")


# ============================================================
# SYSTEM SETTINGS
# ============================================================

class SystemSetting(Base):
    __tablename__ = "system_settings"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False, default="")
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
