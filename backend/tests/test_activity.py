# tests/test_activity.py — Activity feed, dashboard statistics and deadline views
from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import AsyncClient

import activity_feed
import board_ops
from models import utcnow
from tests.conftest import as_caller, board_columns, get_auth_headers, make_task


@pytest_asyncio.fixture
async def dated_tasks(db_session, board):
    """Tasks due in two hours, in three days, yesterday, plus a completed one"""
    todo, doing, _ = await board_columns(db_session, board.id)
    now = utcnow()
    soon = await make_task(db_session, todo, "Soon", 0)
    later = await make_task(db_session, todo, "Later", 1)
    late = await make_task(db_session, doing, "Late", 0)
    finished = await make_task(db_session, doing, "Finished", 1)
    soon.due_date = now + timedelta(hours=2)
    later.due_date = now + timedelta(days=3)
    late.due_date = now - timedelta(days=1)
    finished.due_date = now + timedelta(hours=1)
    finished.is_completed = True
    await db_session.commit()
    return soon, later, late, finished


@pytest.mark.asyncio
class TestDashboard:
    async def test_empty(self, db_session):
        stats = await activity_feed.dashboard_stats(db_session)
        assert stats == activity_feed.DashboardStats(0, 0, 0, "0%")

    async def test_completion_follows_done_column(self, db_session, board):
        todo, _, done = await board_columns(db_session, board.id)
        await make_task(db_session, todo, "A")
        await make_task(db_session, todo, "B")
        await make_task(db_session, done, "C")

        stats = await activity_feed.dashboard_stats(db_session)
        assert (stats.total_tasks, stats.completed_tasks, stats.pending_tasks) == (3, 1, 2)
        assert stats.efficiency == "33%"


@pytest.mark.asyncio
class TestDeadlines:
    @pytest.mark.parametrize("range_,expected", [
        ("day", ["Soon"]),
        ("week", ["Soon", "Later"]),
        ("month", ["Soon", "Later"]),
        ("overdue", ["Late"]),
        ("all", ["Late", "Soon", "Later"]),
    ])
    async def test_ranges(self, db_session, test_user, dated_tasks, range_, expected):
        tasks = await activity_feed.upcoming_deadlines(db_session, as_caller(test_user), range_)
        assert [t.title for t in tasks] == expected

    async def test_uninvolved_user_sees_nothing(self, db_session, viewer_user, dated_tasks):
        assert await activity_feed.upcoming_deadlines(db_session, as_caller(viewer_user)) == []

    async def test_assignee_sees_task(self, db_session, viewer_user, dated_tasks):
        soon = dated_tasks[0]
        soon.assignee_id = viewer_user.id
        await db_session.commit()
        tasks = await activity_feed.upcoming_deadlines(db_session, as_caller(viewer_user))
        assert [t.id for t in tasks] == [soon.id]

    async def test_unknown_range(self, db_session, test_user):
        with pytest.raises(ValueError):
            await activity_feed.upcoming_deadlines(db_session, as_caller(test_user), "year")


@pytest.mark.asyncio
class TestPersonalViews:
    async def test_user_tasks_skip_done_column(self, db_session, test_user, board):
        todo, _, done = await board_columns(db_session, board.id)
        open_task = await make_task(db_session, todo, "Open")
        closed = await make_task(db_session, done, "Closed")
        open_task.assignee_id = test_user.id
        closed.assignee_id = test_user.id
        await db_session.commit()

        tasks = await activity_feed.user_tasks(db_session, as_caller(test_user))
        assert [t.title for t in tasks] == ["Open"]

        user, profile_tasks = await activity_feed.user_profile(db_session, test_user.id)
        assert user.group.name == "Editors"
        assert [t.title for t in profile_tasks] == ["Open"]

    async def test_profile_of_missing_user(self, db_session):
        assert await activity_feed.user_profile(db_session, "missing") is None


@pytest.mark.asyncio
class TestActivityFeed:
    async def test_recent_is_capped(self, db_session, test_user, board):
        todo = (await board_columns(db_session, board.id))[0]
        caller = as_caller(test_user)
        for i in range(7):
            await board_ops.create_task(db_session, caller, todo.id, f"Task {i}")

        assert len(await activity_feed.recent_activity(db_session)) == activity_feed.RECENT_LIMIT
        assert len(await activity_feed.all_activity(db_session)) == 7

    async def test_endpoints(self, client: AsyncClient, db_session, test_user, board, dated_tasks):
        todo = (await board_columns(db_session, board.id))[0]
        await board_ops.create_task(db_session, as_caller(test_user), todo.id, "Logged")
        headers = get_auth_headers(test_user)

        r = await client.get("/api/v1/activity/recent", headers=headers)
        assert r.status_code == 200
        entry = r.json()[0]
        assert entry["action"] == 'created task "Logged"'
        assert entry["username"] == "testuser"
        assert entry["column_title"] == "To Do"
        assert entry["board"] == {"id": board.id, "title": "Sprint"}

        r = await client.get("/api/v1/dashboard", headers=headers)
        assert r.json()["total_tasks"] == 5

        r = await client.get("/api/v1/deadlines", params={"range": "overdue"}, headers=headers)
        assert [t["title"] for t in r.json()] == ["Late"]

        r = await client.get("/api/v1/deadlines", params={"range": "year"}, headers=headers)
        assert r.status_code == 422

        r = await client.get("/api/v1/users/missing/profile", headers=headers)
        assert r.status_code == 404
        assert r.json()["error"] == "User not found"
