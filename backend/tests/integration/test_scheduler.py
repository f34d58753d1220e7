"""Integration tests: UrlRefreshScheduler and its admin endpoints."""
import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import update

from portfolio.db.base import as_utc, utcnow
from portfolio.db.models.resource import ResourceType
from portfolio.db.models.upload import Upload
from portfolio.schemas.resource import ResourceCreate
from portfolio.services.resources import ResourceService
from portfolio.services.scheduler import UrlRefreshScheduler
from portfolio.services.uploads import UploadService

pytestmark = pytest.mark.asyncio


async def _upload(session_factory, storage, settings, *, referenced: bool, expires_at) -> str:
    async with session_factory() as db:
        upload = await UploadService(db, storage, settings).create(b"img", "a.png", "image/png")
        if referenced:
            await ResourceService(db, storage, settings).create(
                ResourceCreate(name="Logo", type=ResourceType.IMAGE, upload_id=upload.id)
            )
        await db.flush()
        await db.execute(
            update(Upload).where(Upload.id == upload.id).values(expires_at=expires_at, url="old")
        )
        await db.commit()
        return upload.id


async def _load(session_factory, upload_id: str) -> Upload:
    async with session_factory() as db:
        return await db.get(Upload, upload_id)


@pytest.fixture
def scheduler(session_factory, storage, settings) -> UrlRefreshScheduler:
    return UrlRefreshScheduler(session_factory, storage, settings)


# ─── Runs ─────────────────────────────────────────────────────────────────────

async def test_run_now_refreshes_expiring_and_expired(scheduler, session_factory, storage, settings):
    now = utcnow()
    expiring = await _upload(
        session_factory, storage, settings, referenced=True, expires_at=now + timedelta(hours=2)
    )
    expired = await _upload(
        session_factory, storage, settings, referenced=True, expires_at=now - timedelta(hours=2)
    )
    distant = await _upload(
        session_factory, storage, settings, referenced=True, expires_at=now + timedelta(days=3)
    )

    result = await scheduler.run_now()

    assert result.error is None
    assert result.expiring.refreshed == 1
    assert result.expired is not None and result.expired.refreshed == 1
    assert result.cleanup is not None
    for upload_id in (expiring, expired):
        upload = await _load(session_factory, upload_id)
        assert upload.url != "old"
        assert as_utc(upload.expires_at) > utcnow() + timedelta(days=6)
    assert (await _load(session_factory, distant)).url == "old"
    assert scheduler.last_result == result


async def test_expired_pass_can_be_disabled(session_factory, storage, settings):
    cfg = settings.model_copy(update={"refresh_expired_urls": False})
    scheduler = UrlRefreshScheduler(session_factory, storage, cfg)
    expired = await _upload(
        session_factory, storage, cfg, referenced=True, expires_at=utcnow() - timedelta(hours=2)
    )

    result = await scheduler.run_now()

    assert result.expired is None
    assert (await _load(session_factory, expired)).url == "old"


async def test_cleanup_retires_stale_unreferenced_uploads(
    scheduler, session_factory, storage, settings
):
    long_ago = utcnow() - timedelta(days=settings.upload_retention_days + 1)
    stale = await _upload(session_factory, storage, settings, referenced=False, expires_at=long_ago)
    recent = await _upload(
        session_factory, storage, settings, referenced=False, expires_at=utcnow() - timedelta(days=1)
    )
    kept = await _upload(session_factory, storage, settings, referenced=True, expires_at=long_ago)

    result = await scheduler.run_now()

    assert result.cleanup.deactivated == 1
    stale_row = await _load(session_factory, stale)
    assert stale_row.is_active is False
    assert stale_row.s3_key in storage.deleted
    assert (await _load(session_factory, recent)).is_active is True
    kept_row = await _load(session_factory, kept)
    assert kept_row.is_active is True
    assert kept_row.s3_key not in storage.deleted


async def test_cleanup_survives_blob_delete_failure(scheduler, session_factory, storage, settings):
    long_ago = utcnow() - timedelta(days=settings.upload_retention_days + 1)
    stale = await _upload(session_factory, storage, settings, referenced=False, expires_at=long_ago)
    storage.fail_delete = True

    result = await scheduler.run_now()

    assert result.cleanup.deactivated == 1
    assert (await _load(session_factory, stale)).is_active is False


async def test_failed_run_is_reported_not_raised(scheduler, monkeypatch):
    async def broken(self, *args, **kwargs):
        raise RuntimeError("database on fire")

    monkeypatch.setattr(ResourceService, "refresh_expiring", broken)

    result = await scheduler.run_now()

    assert result.error == "database on fire"
    assert scheduler.status().last_result.error == "database on fire"


async def test_timer_tick_skips_while_run_in_progress(scheduler, monkeypatch):
    release = asyncio.Event()
    calls = 0
    original = ResourceService.refresh_expiring

    async def slow(self, *args, **kwargs):
        nonlocal calls
        calls += 1
        await release.wait()
        return await original(self, *args, **kwargs)

    monkeypatch.setattr(ResourceService, "refresh_expiring", slow)

    manual = asyncio.create_task(scheduler.run_now())
    while not scheduler.status().run_in_progress:
        await asyncio.sleep(0)

    await scheduler._tick()
    assert calls == 1

    release.set()
    await manual
    assert calls == 1
    assert scheduler.status().run_in_progress is False


# ─── Lifecycle ────────────────────────────────────────────────────────────────

async def test_start_and_stop(session_factory, storage, settings):
    cfg = settings.model_copy(update={"scheduler_interval_seconds": 3600})
    scheduler = UrlRefreshScheduler(session_factory, storage, cfg)

    scheduler.start()
    await asyncio.sleep(0)
    status = scheduler.status()
    assert status.running is True
    assert status.next_run_at is not None
    assert status.last_run_at is None

    await scheduler.stop()
    status = scheduler.status()
    assert status.running is False
    assert status.next_run_at is None

    # A stopped scheduler still serves manual runs
    result = await scheduler.run_now()
    assert result.error is None


async def test_loop_runs_on_interval(session_factory, storage, settings):
    cfg = settings.model_copy(update={"scheduler_interval_seconds": 1})
    scheduler = UrlRefreshScheduler(session_factory, storage, cfg)
    expiring = await _upload(
        session_factory, storage, cfg, referenced=True, expires_at=utcnow() + timedelta(hours=1)
    )

    scheduler.start()
    try:
        for _ in range(50):
            if scheduler.last_result is not None:
                break
            await asyncio.sleep(0.1)
    finally:
        await scheduler.stop()

    assert scheduler.last_result is not None
    assert (await _load(session_factory, expiring)).url != "old"


# ─── /admin/scheduler ─────────────────────────────────────────────────────────

async def test_status_and_manual_run_over_http(admin_client):
    status = await admin_client.get("/api/v1/admin/scheduler")
    assert status.status_code == 200
    assert status.json()["running"] is False
    assert status.json()["last_run_at"] is None

    run = await admin_client.post("/api/v1/admin/scheduler/run")
    assert run.status_code == 200, run.text
    assert run.json()["error"] is None

    status = (await admin_client.get("/api/v1/admin/scheduler")).json()
    assert status["last_run_at"] is not None
    assert status["last_result"]["expiring"]["scanned"] == 0


async def test_scheduler_endpoints_are_admin_only(user_client, client):
    assert (await client.get("/api/v1/admin/scheduler")).status_code == 401
    resp = await user_client.post("/api/v1/admin/scheduler/run")
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "AUTH_005"
