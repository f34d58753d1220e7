"""API v1 router aggregator."""

from fastapi import APIRouter

from portfolio.api.v1 import auth, permissions, resources, roles, scheduler, uploads, users

router = APIRouter(prefix="/api/v1")
router.include_router(auth.router)
router.include_router(users.router)
router.include_router(roles.router)
router.include_router(permissions.router)
router.include_router(uploads.router)
router.include_router(resources.router)
router.include_router(scheduler.router)
