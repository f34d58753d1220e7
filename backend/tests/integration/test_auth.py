"""Integration tests: authentication, bootstrap and operational endpoints."""
import pytest
from sqlalchemy import func, select

from portfolio.core.errors import ErrorCode
from portfolio.db.models.user import ADMIN_ROLE, Permission, Role, User
from portfolio.main import _seed_database

pytestmark = pytest.mark.asyncio

PASSWORD = "Corr3ct-Horse-Battery"


# ─── POST /auth/login ─────────────────────────────────────────────────────────

async def test_login_success(client, make_user):
    await make_user("alice")
    resp = await client.post(
        "/api/v1/auth/login", json={"username": "alice", "password": PASSWORD}
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["access_token"]
    assert body["refresh_token"]
    assert body["token_type"] == "bearer"
    assert body["expires_in"] > 0


async def test_login_wrong_password(client, make_user):
    await make_user("alice")
    resp = await client.post(
        "/api/v1/auth/login", json={"username": "alice", "password": "wrongpassword"}
    )
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == ErrorCode.AUTH_INVALID_CREDENTIALS.value


async def test_login_unknown_user(client):
    resp = await client.post(
        "/api/v1/auth/login", json={"username": "ghost", "password": "irrelevant"}
    )
    assert resp.status_code == 401


async def test_login_inactive_user(client, make_user):
    await make_user("sleepy", is_active=False)
    resp = await client.post(
        "/api/v1/auth/login", json={"username": "sleepy", "password": PASSWORD}
    )
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == ErrorCode.AUTH_USER_INACTIVE.value


# ─── POST /auth/register ──────────────────────────────────────────────────────

async def test_register_creates_plain_user(client):
    resp = await client.post(
        "/api/v1/auth/register",
        json={"username": "newbie", "email": "newbie@example.com", "password": "s3cretpass"},
    )
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["role"] == "user"
    assert body["role_id"] is None
    assert body["is_active"] is True

    login = await client.post(
        "/api/v1/auth/login", json={"username": "newbie", "password": "s3cretpass"}
    )
    assert login.status_code == 200


async def test_register_duplicate_username(client, make_user):
    await make_user("taken")
    resp = await client.post(
        "/api/v1/auth/register",
        json={"username": "taken", "email": "other@example.com", "password": "s3cretpass"},
    )
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == ErrorCode.USER_USERNAME_TAKEN.value


async def test_register_rejects_weak_password(client):
    resp = await client.post(
        "/api/v1/auth/register",
        json={"username": "weakling", "email": "weak@example.com", "password": "onlyletters"},
    )
    assert resp.status_code == 422


# ─── POST /auth/refresh ───────────────────────────────────────────────────────

async def test_refresh_returns_new_access_token(client, make_user):
    await make_user("alice")
    login = await client.post(
        "/api/v1/auth/login", json={"username": "alice", "password": PASSWORD}
    )
    refresh_token = login.json()["refresh_token"]

    resp = await client.post("/api/v1/auth/refresh", json={"refresh_token": refresh_token})
    assert resp.status_code == 200
    access = resp.json()["access_token"]

    me = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {access}"})
    assert me.status_code == 200
    assert me.json()["username"] == "alice"


async def test_refresh_rejects_access_token(client, make_user):
    await make_user("alice")
    login = await client.post(
        "/api/v1/auth/login", json={"username": "alice", "password": PASSWORD}
    )
    resp = await client.post(
        "/api/v1/auth/refresh", json={"refresh_token": login.json()["access_token"]}
    )
    assert resp.status_code == 401


async def test_refresh_with_invalid_token_fails(client):
    resp = await client.post("/api/v1/auth/refresh", json={"refresh_token": "not.a.valid.token"})
    assert resp.status_code == 401


async def test_refresh_token_is_not_a_bearer_token(client, make_user):
    await make_user("alice")
    login = await client.post(
        "/api/v1/auth/login", json={"username": "alice", "password": PASSWORD}
    )
    resp = await client.get(
        "/api/v1/auth/me",
        headers={"Authorization": f"Bearer {login.json()['refresh_token']}"},
    )
    assert resp.status_code == 401


# ─── GET /auth/me ─────────────────────────────────────────────────────────────

async def test_me_requires_auth(client):
    resp = await client.get("/api/v1/auth/me")
    assert resp.status_code == 401


async def test_me_returns_current_user(admin_client):
    resp = await admin_client.get("/api/v1/auth/me")
    assert resp.status_code == 200
    body = resp.json()
    assert body["username"] == "testadmin"
    assert body["role"] == ADMIN_ROLE
    assert "password_hash" not in body


async def test_admin_holds_every_catalog_permission(admin_client, app):
    resp = await admin_client.get("/api/v1/auth/me/permissions")
    assert resp.status_code == 200
    assert resp.json()["permissions"] == sorted(app.state.authorization.catalog.codes())


async def test_deactivated_user_token_stops_working(admin_client, make_user, login_as):
    user_id = await make_user("fading")
    fading = await login_as("fading")
    assert (await fading.get("/api/v1/auth/me")).status_code == 200

    await admin_client.post(f"/api/v1/users/{user_id}/toggle-status")

    resp = await fading.get("/api/v1/auth/me")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == ErrorCode.AUTH_USER_INACTIVE.value


# ─── POST /auth/logout ────────────────────────────────────────────────────────

async def test_logout_requires_token(client, user_client):
    assert (await client.post("/api/v1/auth/logout")).status_code == 401
    assert (await user_client.post("/api/v1/auth/logout")).status_code == 204


# ─── Bootstrap ────────────────────────────────────────────────────────────────

async def test_seed_creates_permissions_admin_role_and_account(app, session_factory, settings):
    await _seed_database(app)
    await _seed_database(app)

    catalog_size = len(app.state.authorization.catalog.codes())
    async with session_factory() as db:
        assert await db.scalar(select(func.count()).select_from(Permission)) == catalog_size
        role = (await db.execute(select(Role).where(Role.name == ADMIN_ROLE))).scalar_one()
        assert len(role.permissions) == catalog_size
        admin = (
            await db.execute(select(User).where(User.username == settings.admin_username))
        ).scalar_one()
        assert admin.role == ADMIN_ROLE
        assert admin.role_id == role.id


async def test_bootstrap_admin_can_log_in(app, client, settings):
    await _seed_database(app)
    resp = await client.post(
        "/api/v1/auth/login",
        json={
            "username": settings.admin_username,
            "password": settings.admin_password.get_secret_value(),
        },
    )
    assert resp.status_code == 200


# ─── Operational endpoints ────────────────────────────────────────────────────

async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["database"] == "ok"
    assert body["scheduler"] == "stopped"


async def test_metrics_exposes_scheduler_histogram(client):
    resp = await client.get("/metrics")
    assert resp.status_code == 200
    assert "portfolio_scheduler_run_duration_seconds" in resp.text


async def test_responses_carry_correlation_id(client):
    resp = await client.get("/health", headers={"X-Correlation-ID": "abc-123"})
    assert resp.headers["X-Correlation-ID"] == "abc-123"
