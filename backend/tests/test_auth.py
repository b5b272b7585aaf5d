# tests/test_auth.py — Setup, login and session handling
from datetime import timedelta

import pytest
from fastapi import HTTPException
from httpx import AsyncClient
from sqlalchemy import delete

from auth import AuthService, Caller
from models import User
from tests.conftest import get_auth_headers


@pytest.mark.asyncio
class TestSetup:
    async def test_needs_setup_on_empty_instance(self, client: AsyncClient):
        res = await client.get("/api/v1/auth/setup")
        assert res.status_code == 200
        assert res.json() == {"needs_setup": True}

    async def test_setup_creates_admin_and_logs_in(self, client: AsyncClient):
        res = await client.post("/api/v1/auth/setup", json={"username": "root", "password": "RootPass1!"})
        assert res.status_code == 200
        data = res.json()
        assert data["user"]["username"] == "root"
        assert data["user"]["is_admin"] is True
        assert data["token"]
        assert "session=" in res.headers.get("set-cookie", "")

        res = await client.get("/api/v1/auth/setup")
        assert res.json() == {"needs_setup": False}

    async def test_setup_rejected_once_users_exist(self, client: AsyncClient, admin_user):
        res = await client.post("/api/v1/auth/setup", json={"username": "other", "password": "x"})
        assert res.status_code == 409
        assert res.json()["error"] == "System already initialised"


@pytest.mark.asyncio
class TestLogin:
    async def test_login_success(self, client: AsyncClient, test_user):
        res = await client.post("/api/v1/auth/login", json={
            "username": "testuser",
            "password": "TestPassword123!",
        })
        assert res.status_code == 200
        data = res.json()
        assert data["user"]["id"] == test_user.id
        assert data["user"]["is_admin"] is False
        assert "session=" in res.headers.get("set-cookie", "")

    async def test_login_is_case_insensitive_fallback(self, client: AsyncClient, test_user):
        res = await client.post("/api/v1/auth/login", json={
            "username": "TestUser",
            "password": "TestPassword123!",
        })
        assert res.status_code == 200
        assert res.json()["user"]["username"] == "testuser"

    async def test_login_wrong_password(self, client: AsyncClient, test_user):
        res = await client.post("/api/v1/auth/login", json={
            "username": "testuser",
            "password": "WrongPassword123!",
        })
        assert res.status_code == 401
        assert res.json()["error"] == "Invalid credentials"

    async def test_login_unknown_user(self, client: AsyncClient):
        res = await client.post("/api/v1/auth/login", json={"username": "nobody", "password": "x"})
        assert res.status_code == 401


@pytest.mark.asyncio
class TestSessions:
    async def test_me_with_bearer_token(self, client: AsyncClient, test_user):
        res = await client.get("/api/v1/auth/me", headers=get_auth_headers(test_user))
        assert res.status_code == 200
        data = res.json()
        assert data["username"] == "testuser"
        assert "edit_task" in data["permissions"]
        assert "delete_board" not in data["permissions"]

    async def test_admin_holds_every_permission(self, client: AsyncClient, admin_user):
        res = await client.get("/api/v1/auth/me", headers=get_auth_headers(admin_user))
        assert len(res.json()["permissions"]) == 6

    async def test_me_without_session(self, client: AsyncClient):
        res = await client.get("/api/v1/auth/me")
        assert res.status_code == 401
        assert res.json()["error"] == "Unauthorized"

    async def test_cookie_session_is_refreshed(self, client: AsyncClient, test_user):
        token, _ = AuthService.create_session_token(AuthService.caller_for(test_user))
        res = await client.get("/api/v1/auth/me", headers={"Cookie": f"session={token}"})
        assert res.status_code == 200
        assert "session=" in res.headers.get("set-cookie", "")

    async def test_expired_session_rejected(self, client: AsyncClient, test_user):
        token, _ = AuthService.create_session_token(
            AuthService.caller_for(test_user), expires_delta=timedelta(seconds=-10)
        )
        res = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401
        assert "set-cookie" not in res.headers

    async def test_deleted_user_token_rejected(self, client: AsyncClient, db_session, test_user):
        headers = get_auth_headers(test_user)
        await db_session.execute(delete(User).where(User.id == test_user.id))
        await db_session.commit()
        res = await client.get("/api/v1/auth/me", headers=headers)
        assert res.status_code == 401

    async def test_public_endpoint_does_not_extend_session(self, client: AsyncClient, test_user):
        token, _ = AuthService.create_session_token(AuthService.caller_for(test_user))
        res = await client.get("/api/v1/auth/setup", headers={"Cookie": f"session={token}"})
        assert res.status_code == 200
        assert "set-cookie" not in res.headers

    async def test_deleted_user_cookie_not_extended(self, client: AsyncClient, db_session, viewer_user):
        token, _ = AuthService.create_session_token(AuthService.caller_for(viewer_user))
        await db_session.execute(delete(User).where(User.id == viewer_user.id))
        await db_session.commit()

        res = await client.get("/api/v1/auth/setup", headers={"Cookie": f"session={token}"})
        assert res.status_code == 200
        assert "set-cookie" not in res.headers

        res = await client.get("/api/v1/auth/me", headers={"Cookie": f"session={token}"})
        assert res.status_code == 401
        assert "set-cookie" not in res.headers

    async def test_logout_clears_cookie(self, client: AsyncClient):
        res = await client.post("/api/v1/auth/logout")
        assert res.status_code == 200
        assert "session=" in res.headers.get("set-cookie", "")


class TestTokens:
    def test_token_round_trip(self):
        caller = Caller(id="u1", username="alice", is_admin=True)
        token, expires = AuthService.create_session_token(caller)
        payload = AuthService.verify_session_token(token)
        assert payload["user"] == {"id": "u1", "username": "alice", "is_admin": True}
        assert payload["expires"] == expires.isoformat()

    def test_tampered_token_rejected(self):
        token, _ = AuthService.create_session_token(Caller(id="u1", username="alice"))
        with pytest.raises(HTTPException) as exc:
            AuthService.verify_session_token(token[:-4] + "abcd")
        assert exc.value.status_code == 401

    def test_refresh_extends_expiry(self):
        caller = Caller(id="u1", username="alice")
        token, expires = AuthService.create_session_token(caller, expires_delta=timedelta(minutes=5))
        refreshed = AuthService.refresh_session_token(token)
        assert refreshed is not None
        assert refreshed[1] > expires

    def test_password_hashing(self):
        hashed = AuthService.hash_password("secret")
        assert AuthService.verify_password("secret", hashed)
        assert not AuthService.verify_password("wrong", hashed)
        assert not AuthService.verify_password("secret", "not-a-hash")
