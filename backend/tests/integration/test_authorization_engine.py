"""Integration tests: AuthorizationEngine against the identity tables."""
import pytest
from sqlalchemy import update

from portfolio.core.errors import ErrorCode, NotFoundError
from portfolio.db.models.user import Permission, User
from portfolio.services.authorization import (
    CANONICAL_ACTIONS,
    AuthorizationEngine,
    PermissionCatalog,
)

pytestmark = pytest.mark.asyncio

RESOURCES = ["users", "roles", "permissions", "projects", "contacts", "uploads", "resources"]


@pytest.fixture
def engine() -> AuthorizationEngine:
    return AuthorizationEngine(PermissionCatalog.from_resources(RESOURCES))


async def test_support_role_grants_exact_pair(engine, session_factory, make_role, make_user):
    role_id = await make_role("support", ["contacts:read"])
    bob = await make_user("bob", legacy_role="", role_id=role_id)

    async with session_factory() as db:
        assert await engine.has_permission(db, bob, "contacts", "read") is True
        assert await engine.has_permission(db, bob, "contacts", "delete") is False
        assert await engine.has_permission(db, bob, "projects", "read") is False


async def test_legacy_admin_without_role(engine, session_factory, make_user):
    admin = await make_user("root", legacy_role="admin")

    async with session_factory() as db:
        for resource in ("projects", "never-seeded"):
            for action in CANONICAL_ACTIONS:
                assert await engine.has_permission(db, admin, resource, action) is True


async def test_admin_role_allows_without_grants(engine, session_factory, make_role, make_user):
    role_id = await make_role("admin")
    user = await make_user("delegate", legacy_role="user", role_id=role_id)

    async with session_factory() as db:
        assert await engine.has_permission(db, user, "uploads", "delete") is True
        assert await engine.has_role(db, user, "admin") is True


async def test_deactivated_permission_stops_granting(
    engine, session_factory, make_role, make_user
):
    role_id = await make_role("viewer", ["projects:read"])
    user = await make_user("vera", role_id=role_id)

    async with session_factory() as db:
        assert await engine.has_permission(db, user, "projects", "read") is True

    async with session_factory() as db:
        await db.execute(
            update(Permission).where(Permission.name == "projects:read").values(is_active=False)
        )
        await db.commit()

    async with session_factory() as db:
        assert await engine.has_permission(db, user, "projects", "read") is False
        assert await engine.get_user_permissions(db, user) == []


async def test_require_any_short_circuits_on_second_entry(
    engine, session_factory, make_role, make_user
):
    role_id = await make_role("editor", ["projects:update"])
    user = await make_user("eddie", role_id=role_id)

    async with session_factory() as db:
        assert await engine.has_permission(db, user, "projects", "read") is False
        assert await engine.has_any_permission(db, user, ["projects:read", "projects:update"])
        assert not await engine.has_any_permission(db, user, ["projects:read"])


async def test_require_any_skips_malformed_entries(
    engine, session_factory, make_role, make_user
):
    role_id = await make_role("editor", ["projects:update"])
    user = await make_user("eddie", role_id=role_id)

    async with session_factory() as db:
        assert await engine.has_any_permission(db, user, ["projects", "a:b:c", "projects:update"])
        assert not await engine.has_any_permission(db, user, ["projects", ""])
        assert not await engine.has_any_permission(db, user, [])


async def test_admin_enumeration_ignores_permission_rows(engine, session_factory, make_user):
    admin = await make_user("root", legacy_role="admin")

    async with session_factory() as db:
        codes = await engine.get_user_permissions(db, admin)

    assert len(codes) == len(RESOURCES) * len(CANONICAL_ACTIONS)
    assert codes == sorted(codes)
    assert "contacts:delete" in codes


async def test_non_admin_enumeration_lists_role_grants(
    engine, session_factory, make_role, make_user
):
    role_id = await make_role("support", ["contacts:read", "contacts:update"])
    user = await make_user("sam", role_id=role_id)

    async with session_factory() as db:
        assert await engine.get_user_permissions(db, user) == ["contacts:read", "contacts:update"]


async def test_unknown_user_is_an_error_not_a_denial(engine, session_factory):
    async with session_factory() as db:
        with pytest.raises(NotFoundError) as exc_info:
            await engine.has_permission(db, "missing-id", "projects", "read")
    assert exc_info.value.code == ErrorCode.USER_NOT_FOUND


async def test_soft_deleted_user_is_unknown(engine, session_factory, make_user):
    user_id = await make_user("ghost", legacy_role="admin")
    async with session_factory() as db:
        user = await db.get(User, user_id)
        user.soft_delete()
        await db.commit()

    async with session_factory() as db:
        with pytest.raises(NotFoundError):
            await engine.has_role(db, user_id, "admin")


async def test_has_role_is_exact_match(engine, session_factory, make_role, make_user):
    role_id = await make_role("support")
    user = await make_user("sue", legacy_role="editor", role_id=role_id)

    async with session_factory() as db:
        assert await engine.has_role(db, user, "support") is True
        assert await engine.has_role(db, user, "editor") is True
        assert await engine.has_role(db, user, "Support") is False
