# reorder.py — Drag-and-drop board client: optimistic moves with rollback
"""
Client-side half of the board reorder protocol.

``plan_drag`` is pure: given the board as the client currently renders it
and a finished drag gesture, it returns the board as it should look
afterwards plus the single persistence call that makes the server agree.

* Column drag: splice the column to its new index, renumber 0..N-1 and
  persist the whole ordered id list in one call.
* Task drag inside a column: splice within the lane and persist
  ``(task, same column, destination index)``. Siblings keep their stored
  order; readers break ties by id.
* Task drag across columns: remove from the source lane, insert into the
  destination lane and persist ``(task, destination column, destination index)``.
* Dropping outside a droppable, or on the exact spot it came from, plans
  nothing and nothing is persisted.

``OptimisticBoard`` shows the planned board immediately, awaits the
gateway, and when the gateway fails moves only that drag's item back,
leaving drags that landed in the meantime in place.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional, Protocol, Tuple, Union

import httpx

from results import Ok, Err, Result

logger = logging.getLogger("flowt.reorder")

BOARD_DROPPABLE = "board"
COLUMN_DRAG = "column"
TASK_DRAG = "task"


class GatewayError(Exception):
    """Persistence call rejected or failed"""

    def __init__(self, reason: str, status_code: Optional[int] = None):
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code


class StaleDragError(ValueError):
    """Drag gesture does not match the board being rendered"""


# ============================================================
# SNAPSHOTS
# ============================================================

@dataclass(frozen=True)
class TaskCard:
    id: str
    title: str
    is_completed: bool = False


@dataclass(frozen=True)
class ColumnLane:
    id: str
    title: str
    tasks: Tuple[TaskCard, ...] = ()

    def task_ids(self) -> List[str]:
        return [t.id for t in self.tasks]


@dataclass(frozen=True)
class BoardSnapshot:
    id: str
    title: str
    columns: Tuple[ColumnLane, ...] = ()

    def column_ids(self) -> List[str]:
        return [c.id for c in self.columns]

    def lane_index(self, column_id: str) -> int:
        for index, lane in enumerate(self.columns):
            if lane.id == column_id:
                return index
        raise StaleDragError(f"Unknown column {column_id}")

    @classmethod
    def from_api(cls, data: dict) -> "BoardSnapshot":
        """Build from the GET /boards/{id} payload"""
        return cls(
            id=data["id"],
            title=data["title"],
            columns=tuple(
                ColumnLane(
                    id=col["id"],
                    title=col["title"],
                    tasks=tuple(
                        TaskCard(id=t["id"], title=t["title"], is_completed=t.get("is_completed", False))
                        for t in col.get("tasks", [])
                    ),
                )
                for col in data.get("columns", [])
            ),
        )


@dataclass(frozen=True)
class DragLocation:
    droppable_id: str
    index: int


@dataclass(frozen=True)
class DragResult:
    """A finished drag gesture as reported by the UI"""
    kind: str
    draggable_id: str
    source: DragLocation
    destination: Optional[DragLocation] = None


# ============================================================
# PERSISTENCE INSTRUCTIONS
# ============================================================

@dataclass(frozen=True)
class ColumnsReordered:
    board_id: str
    column_ids: Tuple[str, ...]


@dataclass(frozen=True)
class TaskMoved:
    task_id: str
    column_id: str
    order: int


Persistence = Union[ColumnsReordered, TaskMoved]


def _splice(items: tuple, source: int, destination: int, expected_id: str) -> tuple:
    if not 0 <= source < len(items):
        raise StaleDragError(f"Source index {source} out of range")
    if items[source].id != expected_id:
        raise StaleDragError(f"Item at index {source} is not {expected_id}")
    moved = list(items)
    removed = moved.pop(source)
    moved.insert(max(0, min(destination, len(moved))), removed)
    return tuple(moved)


def plan_drag(board: BoardSnapshot, drag: DragResult) -> Optional[Tuple[BoardSnapshot, Persistence]]:
    """New board plus the call that persists it; None when nothing changes."""
    dest = drag.destination
    if dest is None:
        return None
    if dest.droppable_id == drag.source.droppable_id and dest.index == drag.source.index:
        return None

    if drag.kind == COLUMN_DRAG:
        columns = _splice(board.columns, drag.source.index, dest.index, drag.draggable_id)
        new_board = replace(board, columns=columns)
        return new_board, ColumnsReordered(board_id=board.id, column_ids=tuple(new_board.column_ids()))

    if drag.kind != TASK_DRAG:
        raise StaleDragError(f"Unknown drag type {drag.kind}")

    src_index = board.lane_index(drag.source.droppable_id)
    dest_index = board.lane_index(dest.droppable_id)
    columns = list(board.columns)
    src_lane = columns[src_index]

    if src_index == dest_index:
        tasks = _splice(src_lane.tasks, drag.source.index, dest.index, drag.draggable_id)
        columns[src_index] = replace(src_lane, tasks=tasks)
        position = max(0, min(dest.index, len(tasks) - 1))
        persist = TaskMoved(task_id=drag.draggable_id, column_id=src_lane.id, order=position)
    else:
        if not 0 <= drag.source.index < len(src_lane.tasks):
            raise StaleDragError(f"Source index {drag.source.index} out of range")
        card = src_lane.tasks[drag.source.index]
        if card.id != drag.draggable_id:
            raise StaleDragError(f"Item at index {drag.source.index} is not {drag.draggable_id}")

        dest_lane = columns[dest_index]
        remaining = src_lane.tasks[:drag.source.index] + src_lane.tasks[drag.source.index + 1:]
        position = max(0, min(dest.index, len(dest_lane.tasks)))
        inserted = dest_lane.tasks[:position] + (card,) + dest_lane.tasks[position:]
        columns[src_index] = replace(src_lane, tasks=remaining)
        columns[dest_index] = replace(dest_lane, tasks=inserted)
        persist = TaskMoved(task_id=card.id, column_id=dest_lane.id, order=position)

    return replace(board, columns=tuple(columns)), persist


def revert_drag(board: BoardSnapshot, drag: DragResult) -> BoardSnapshot:
    """Undo one drag on a board that may have changed since it was planned.

    Only the dragged item goes back to its source position; moves made
    after it are kept.
    """
    if drag.kind == COLUMN_DRAG:
        ids = board.column_ids()
        if drag.draggable_id not in ids:
            return board
        current = ids.index(drag.draggable_id)
        columns = _splice(board.columns, current, drag.source.index, drag.draggable_id)
        return replace(board, columns=columns)

    columns = list(board.columns)
    card = None
    for index, lane in enumerate(columns):
        if drag.draggable_id in lane.task_ids():
            card = lane.tasks[lane.task_ids().index(drag.draggable_id)]
            columns[index] = replace(lane, tasks=tuple(t for t in lane.tasks if t.id != card.id))
            break
    if card is None:
        return board

    try:
        src_index = board.lane_index(drag.source.droppable_id)
    except StaleDragError:
        # Source column is gone; the card stays where it is
        return board
    lane = columns[src_index]
    position = max(0, min(drag.source.index, len(lane.tasks)))
    columns[src_index] = replace(lane, tasks=lane.tasks[:position] + (card,) + lane.tasks[position:])
    return replace(board, columns=tuple(columns))


# ============================================================
# GATEWAYS
# ============================================================

class BoardGateway(Protocol):
    async def reorder_columns(self, board_id: str, column_ids: List[str]) -> None: ...

    async def move_task(self, task_id: str, column_id: str, order: int) -> None: ...


class HttpBoardGateway:
    """BoardGateway speaking to the Flowt REST API"""

    def __init__(self, client: httpx.AsyncClient, prefix: str = "/api/v1"):
        self.client = client
        self.prefix = prefix.rstrip("/")

    async def _send(self, method: str, path: str, payload: dict) -> None:
        try:
            response = await self.client.request(method, f"{self.prefix}{path}", json=payload)
        except httpx.HTTPError as e:
            raise GatewayError(f"Request failed: {e}") from e

        if response.status_code >= 400:
            reason = response.reason_phrase or "Request failed"
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("error"):
                reason = str(body["error"])
            raise GatewayError(reason, status_code=response.status_code)

    async def reorder_columns(self, board_id: str, column_ids: List[str]) -> None:
        await self._send("PUT", f"/boards/{board_id}/columns/order", {"column_ids": list(column_ids)})

    async def move_task(self, task_id: str, column_id: str, order: int) -> None:
        await self._send("PUT", f"/tasks/{task_id}/move", {"column_id": column_id, "order": order})


# ============================================================
# OPTIMISTIC STATE
# ============================================================

@dataclass
class OptimisticBoard:
    """Rendered board state that follows drags before the server confirms them"""
    snapshot: BoardSnapshot
    gateway: BoardGateway
    rollbacks: int = field(default=0)

    async def apply(self, drag: DragResult) -> Result[BoardSnapshot]:
        try:
            plan = plan_drag(self.snapshot, drag)
        except StaleDragError as e:
            logger.warning("Ignoring drag of %s: %s", drag.draggable_id, e)
            return Err(str(e))

        if plan is None:
            return Ok(self.snapshot)

        self.snapshot, persist = plan
        try:
            if isinstance(persist, ColumnsReordered):
                await self.gateway.reorder_columns(persist.board_id, list(persist.column_ids))
            else:
                await self.gateway.move_task(persist.task_id, persist.column_id, persist.order)
        except GatewayError as e:
            # Other drags may have landed while this one was in flight
            self.snapshot = revert_drag(self.snapshot, drag)
            self.rollbacks += 1
            logger.info("Rolled back drag of %s: %s", drag.draggable_id, e.reason)
            return Err(e.reason, status_code=e.status_code or 400)

        return Ok(self.snapshot)
