# tests/test_admin.py — User, group, settings and reset administration
import pytest
from httpx import AsyncClient
from sqlalchemy import select, func

import admin_ops
from models import Board, Group, SystemSetting, Task, User
from results import Err, OperationDenied
from settings_store import DatabaseSettingsStore
from tests.conftest import as_caller, board_columns, get_auth_headers, make_task, make_user


async def _reload_user(db_session, user_id):
    result = await db_session.execute(
        select(User).where(User.id == user_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


@pytest.mark.asyncio
class TestUsers:
    async def test_non_admin_rejected(self, db_session, test_user):
        with pytest.raises(OperationDenied) as exc:
            await admin_ops.list_users(db_session, as_caller(test_user))
        assert exc.value.reason == "Unauthorized"

    async def test_create_user_in_group(self, db_session, admin_user, editors):
        result = await admin_ops.create_user(db_session, as_caller(admin_user), "dana", "pw", editors.id)
        assert result.ok
        assert result.value.group_id == editors.id
        assert result.value.is_admin is False

    async def test_create_admin_user(self, db_session, admin_user):
        result = await admin_ops.create_user(db_session, as_caller(admin_user), "root2", "pw", "admin")
        assert result.value.is_admin is True
        assert result.value.group_id is None

    async def test_create_user_validation(self, db_session, admin_user, test_user):
        caller = as_caller(admin_user)
        assert (await admin_ops.create_user(db_session, caller, "", "pw")).reason == "Missing fields"
        assert (await admin_ops.create_user(db_session, caller, "x", "")).reason == "Missing fields"
        assert await admin_ops.create_user(db_session, caller, "testuser", "pw") == Err(
            "Username already exists", status_code=409
        )
        assert (await admin_ops.create_user(db_session, caller, "y", "pw", "missing")).status_code == 404

    async def test_cannot_delete_self(self, db_session, admin_user):
        result = await admin_ops.delete_user(db_session, as_caller(admin_user), admin_user.id)
        assert result == Err("Cannot delete yourself")
        assert await _reload_user(db_session, admin_user.id) is not None

    async def test_delete_user_takes_owned_boards(self, db_session, admin_user, test_user, viewer_user, board):
        other = Board(title="Viewer board", owner_id=viewer_user.id)
        db_session.add(other)
        await db_session.commit()
        columns = await board_columns(db_session, board.id)
        await make_task(db_session, columns[0], "Orphan")

        result = await admin_ops.delete_user(db_session, as_caller(admin_user), test_user.id)
        assert result.ok
        assert await _reload_user(db_session, test_user.id) is None

        titles = (await db_session.execute(select(Board.title))).scalars().all()
        assert titles == ["Viewer board"]
        assert (await db_session.execute(select(func.count(Task.id)))).scalar() == 0

    async def test_delete_user_unassigns_tasks(self, db_session, admin_user, test_user, viewer_user, board):
        todo = (await board_columns(db_session, board.id))[0]
        task = await make_task(db_session, todo, "Assigned")
        task.assignee_id = viewer_user.id
        await db_session.commit()

        assert (await admin_ops.delete_user(db_session, as_caller(admin_user), viewer_user.id)).ok
        reloaded = (await db_session.execute(
            select(Task).where(Task.id == task.id).execution_options(populate_existing=True)
        )).scalar_one()
        assert reloaded.assignee_id is None

    async def test_board_membership(self, db_session, admin_user, viewer_user, board):
        caller = as_caller(admin_user)
        assert (await admin_ops.update_user_boards(db_session, caller, viewer_user.id, [board.id, board.id])).ok
        assert await admin_ops.member_board_ids(db_session, viewer_user.id) == [board.id]

        assert (await admin_ops.update_user_boards(db_session, caller, viewer_user.id, [])).ok
        assert await admin_ops.member_board_ids(db_session, viewer_user.id) == []

        result = await admin_ops.update_user_boards(db_session, caller, viewer_user.id, ["missing"])
        assert result.status_code == 404


@pytest.mark.asyncio
class TestGroups:
    async def test_create_group_rejects_unknown_keys(self, db_session, admin_user):
        result = await admin_ops.create_group(db_session, as_caller(admin_user), "Ops", ["edit_task", "fly"])
        assert result == Err("Unknown permissions: fly")
        assert (await admin_ops.create_group(db_session, as_caller(admin_user), " ", [])).reason == "Missing name"

    async def test_update_group(self, db_session, admin_user, viewers):
        result = await admin_ops.update_group(
            db_session, as_caller(admin_user), viewers.id, "Readers", ["create_task"]
        )
        assert result.value.name == "Readers"
        assert result.value.permissions == ["create_task"]

        result = await admin_ops.update_group(db_session, as_caller(admin_user), viewers.id, "Readers", ["nope"])
        assert isinstance(result, Err)

    async def test_delete_group_keeps_members(self, db_session, admin_user, editors, test_user):
        boss = await make_user(db_session, "boss", is_admin=True, group=editors)

        assert (await admin_ops.delete_group(db_session, as_caller(admin_user), editors.id)).ok

        member = await _reload_user(db_session, test_user.id)
        assert member.group_id is None
        assert member.is_admin is False
        boss = await _reload_user(db_session, boss.id)
        assert boss.group_id is None
        assert boss.is_admin is True
        assert (await db_session.execute(select(func.count(Group.id)))).scalar() == 0

    async def test_list_groups(self, db_session, admin_user, editors, test_user):
        groups = await admin_ops.list_groups(db_session, as_caller(admin_user))
        assert [(g.name, len(g.users)) for g in groups] == [("Editors", 1)]


@pytest.mark.asyncio
class TestSettingsAndReset:
    async def test_update_setting_by_alias(self, db_session, admin_user):
        result = await admin_ops.update_setting(db_session, as_caller(admin_user), "logoText", "Acme")
        assert result.value == "logo_text"
        assert await DatabaseSettingsStore(db_session).get("logo_text") == "Acme"

    async def test_unknown_setting(self, db_session, admin_user):
        result = await admin_ops.update_setting(db_session, as_caller(admin_user), "theme", "dark")
        assert result == Err("Unknown setting")

    async def test_reset_keeps_settings(self, db_session, admin_user, test_user, board):
        caller = as_caller(admin_user)
        await admin_ops.update_setting(db_session, caller, "adminRoleName", "Owner")
        todo = (await board_columns(db_session, board.id))[0]
        await make_task(db_session, todo, "Gone soon")

        await admin_ops.reset_database(db_session, caller)

        for model in (User, Group, Board, Task):
            assert (await db_session.execute(select(func.count()).select_from(model))).scalar() == 0
        assert (await db_session.execute(select(func.count()).select_from(SystemSetting))).scalar() == 1

    async def test_reset_requires_admin(self, db_session, test_user):
        with pytest.raises(OperationDenied):
            await admin_ops.reset_database(db_session, as_caller(test_user))


@pytest.mark.asyncio
class TestAdminEndpoints:
    async def test_non_admin_gets_403(self, client: AsyncClient, test_user):
        r = await client.get("/api/v1/admin/users", headers=get_auth_headers(test_user))
        assert r.status_code == 403
        assert r.json()["error"] == "Unauthorized"

    async def test_user_and_group_flow(self, client: AsyncClient, admin_user):
        headers = get_auth_headers(admin_user)
        r = await client.post(
            "/api/v1/admin/groups", json={"name": "Writers", "permissions": ["create_task"]}, headers=headers
        )
        assert r.status_code == 201
        group_id = r.json()["id"]

        r = await client.post(
            "/api/v1/admin/users",
            json={"username": "writer", "password": "pw", "group_id": group_id},
            headers=headers,
        )
        assert r.status_code == 201
        assert r.json()["group_id"] == group_id

        r = await client.get("/api/v1/admin/users", headers=headers)
        writer = next(u for u in r.json() if u["username"] == "writer")
        assert writer["group"] == {"id": group_id, "name": "Writers"}

        r = await client.delete(f"/api/v1/admin/groups/{group_id}", headers=headers)
        assert r.status_code == 200
        r = await client.get("/api/v1/admin/users", headers=headers)
        writer = next(u for u in r.json() if u["username"] == "writer")
        assert writer["group"] is None
        assert writer["is_admin"] is False

    async def test_permissions_catalogue(self, client: AsyncClient, admin_user):
        r = await client.get("/api/v1/admin/permissions", headers=get_auth_headers(admin_user))
        assert {p["key"] for p in r.json()} == {
            "create_board", "edit_board", "delete_board", "create_task", "edit_task", "delete_task",
        }

    async def test_settings_endpoints(self, client: AsyncClient, admin_user):
        headers = get_auth_headers(admin_user)
        r = await client.put("/api/v1/admin/settings/logoText", json={"value": "Acme"}, headers=headers)
        assert r.json() == {"key": "logo_text", "value": "Acme"}

        r = await client.get("/api/v1/admin/settings", headers=headers)
        assert r.json()["logo_text"] == "Acme"

        r = await client.put("/api/v1/admin/settings/theme", json={"value": "dark"}, headers=headers)
        assert r.status_code == 400

    async def test_reset_returns_to_setup(self, client: AsyncClient, admin_user):
        r = await client.post("/api/v1/admin/reset", headers=get_auth_headers(admin_user))
        assert r.status_code == 200
        assert r.json() == {"redirect": "/setup"}
        assert "session=" in r.headers.get("set-cookie", "")

        r = await client.get("/api/v1/auth/setup")
        assert r.json() == {"needs_setup": True}
