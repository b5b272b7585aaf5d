# tests/test_dependency_guard.py — Blocked-by graph, cycle checks and completion gating
import uuid

import pytest
import pytest_asyncio
from httpx import AsyncClient

import board_ops
import dependency_guard
from models import Board, BoardColumn
from results import Ok, Err
from tests.conftest import as_caller, board_columns, get_auth_headers, make_task


@pytest_asyncio.fixture
async def tasks(db_session, board):
    todo, doing, _ = await board_columns(db_session, board.id)
    a = await make_task(db_session, todo, "A", 0)
    b = await make_task(db_session, todo, "B", 1)
    c = await make_task(db_session, doing, "C", 0)
    return a, b, c


@pytest.mark.asyncio
class TestAddDependency:
    async def test_self_dependency_rejected(self, db_session, test_user, tasks):
        a, _, _ = tasks
        result = await dependency_guard.add_dependency(db_session, as_caller(test_user), a.id, a.id)
        assert isinstance(result, Err)
        assert result.reason == "Cannot depend on self"

    async def test_reverse_edge_rejected(self, db_session, test_user, tasks):
        a, b, _ = tasks
        caller = as_caller(test_user)
        assert isinstance(await dependency_guard.add_dependency(db_session, caller, a.id, b.id), Ok)

        result = await dependency_guard.add_dependency(db_session, caller, b.id, a.id)
        assert isinstance(result, Err)
        assert result.reason == "Circular dependency detected"

    async def test_three_node_cycle_rejected(self, db_session, test_user, tasks):
        a, b, c = tasks
        caller = as_caller(test_user)
        # A blocked by B, B blocked by C
        assert (await dependency_guard.add_dependency(db_session, caller, a.id, b.id)).ok
        assert (await dependency_guard.add_dependency(db_session, caller, b.id, c.id)).ok

        result = await dependency_guard.add_dependency(db_session, caller, c.id, a.id)
        assert isinstance(result, Err)
        assert result.reason == "Circular dependency detected"
        assert await dependency_guard.blocker_ids(db_session, c.id) == []

    async def test_diamond_is_not_a_cycle(self, db_session, test_user, tasks, board):
        a, b, c = tasks
        todo = (await board_columns(db_session, board.id))[0]
        d = await make_task(db_session, todo, "D", 2)
        caller = as_caller(test_user)
        for task_id, blocking_id in [(a.id, b.id), (a.id, c.id), (b.id, d.id), (c.id, d.id)]:
            assert (await dependency_guard.add_dependency(db_session, caller, task_id, blocking_id)).ok

    async def test_idempotent(self, db_session, test_user, tasks):
        a, b, _ = tasks
        caller = as_caller(test_user)
        assert (await dependency_guard.add_dependency(db_session, caller, a.id, b.id)).ok
        assert (await dependency_guard.add_dependency(db_session, caller, a.id, b.id)).ok
        assert await dependency_guard.blocker_ids(db_session, a.id) == [b.id]

    async def test_unknown_task(self, db_session, test_user, tasks):
        a, _, _ = tasks
        result = await dependency_guard.add_dependency(db_session, as_caller(test_user), a.id, "missing")
        assert isinstance(result, Err)
        assert result.status_code == 404

    async def test_cross_board_rejected(self, db_session, test_user, tasks):
        a, _, _ = tasks
        other = Board(id=str(uuid.uuid4()), title="Other", owner_id=test_user.id)
        db_session.add(other)
        await db_session.flush()
        column = BoardColumn(id=str(uuid.uuid4()), board_id=other.id, title="To Do", order=0)
        db_session.add(column)
        await db_session.commit()
        foreign = await make_task(db_session, column, "Elsewhere")

        result = await dependency_guard.add_dependency(db_session, as_caller(test_user), a.id, foreign.id)
        assert isinstance(result, Err)
        assert result.reason == "Tasks must belong to the same board"

    async def test_requires_edit_task(self, db_session, viewer_user, tasks):
        a, b, _ = tasks
        result = await dependency_guard.add_dependency(db_session, as_caller(viewer_user), a.id, b.id)
        assert isinstance(result, Err)
        assert result.status_code == 403


@pytest.mark.asyncio
class TestDependencySets:
    async def test_add_then_remove(self, db_session, test_user, tasks):
        a, b, _ = tasks
        caller = as_caller(test_user)
        await dependency_guard.add_dependency(db_session, caller, a.id, b.id)

        a_sets = await dependency_guard.get_dependency_sets(db_session, a.id)
        b_sets = await dependency_guard.get_dependency_sets(db_session, b.id)
        assert [d.id for d in a_sets.blocked_by] == [b.id]
        assert a_sets.blocked_by[0].column_title == "To Do"
        assert [d.id for d in b_sets.blocking] == [a.id]

        assert (await dependency_guard.remove_dependency(db_session, caller, a.id, b.id)).ok
        a_sets = await dependency_guard.get_dependency_sets(db_session, a.id)
        b_sets = await dependency_guard.get_dependency_sets(db_session, b.id)
        assert a_sets.blocked_by == []
        assert b_sets.blocking == []

    async def test_remove_missing_edge_is_ok(self, db_session, test_user, tasks):
        a, b, _ = tasks
        assert (await dependency_guard.remove_dependency(db_session, as_caller(test_user), a.id, b.id)).ok


@pytest.mark.asyncio
class TestCompletionGate:
    async def test_blocked_task_cannot_complete(self, db_session, test_user, tasks):
        a, b, _ = tasks
        caller = as_caller(test_user)
        await dependency_guard.add_dependency(db_session, caller, a.id, b.id)

        result = await board_ops.toggle_task_completion(db_session, caller, a.id, True)
        assert isinstance(result, Err)
        assert result.reason == "Resolve dependencies first"

        # Un-completing is always allowed
        assert (await board_ops.toggle_task_completion(db_session, caller, a.id, False)).ok

    async def test_unblocked_task_completes(self, db_session, test_user, tasks):
        a, b, _ = tasks
        caller = as_caller(test_user)
        await dependency_guard.add_dependency(db_session, caller, a.id, b.id)
        await dependency_guard.remove_dependency(db_session, caller, a.id, b.id)

        assert (await board_ops.toggle_task_completion(db_session, caller, a.id, True)).ok
        assert await dependency_guard.can_complete(db_session, a.id)

    async def test_deleting_blocker_releases_task(self, db_session, test_user, tasks):
        a, b, _ = tasks
        caller = as_caller(test_user)
        await dependency_guard.add_dependency(db_session, caller, a.id, b.id)
        assert (await board_ops.delete_task(db_session, caller, b.id)).ok
        assert await dependency_guard.can_complete(db_session, a.id)


@pytest.mark.asyncio
async def test_dependency_endpoints(client: AsyncClient, test_user, tasks):
    a, b, c = tasks
    headers = get_auth_headers(test_user)

    r = await client.post(f"/api/v1/tasks/{a.id}/dependencies", json={"blocking_task_id": b.id}, headers=headers)
    assert r.status_code == 200
    assert r.json() == {"success": True}

    r = await client.post(f"/api/v1/tasks/{b.id}/dependencies", json={"blocking_task_id": a.id}, headers=headers)
    assert r.status_code == 400
    assert r.json()["error"] == "Circular dependency detected"

    r = await client.get(f"/api/v1/tasks/{a.id}/dependencies", headers=headers)
    assert r.status_code == 200
    assert [d["id"] for d in r.json()["blocked_by"]] == [b.id]

    r = await client.put(f"/api/v1/tasks/{a.id}/completion", json={"is_completed": True}, headers=headers)
    assert r.status_code == 400
    assert r.json()["error"] == "Resolve dependencies first"

    r = await client.delete(f"/api/v1/tasks/{a.id}/dependencies/{b.id}", headers=headers)
    assert r.status_code == 200

    r = await client.put(f"/api/v1/tasks/{a.id}/completion", json={"is_completed": True}, headers=headers)
    assert r.status_code == 200
