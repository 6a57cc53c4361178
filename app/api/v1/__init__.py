from fastapi import APIRouter

from app.api.v1 import admin, blocks, chats, mentoring, notifications, reports

router = APIRouter(prefix="/api/v1")

router.include_router(mentoring.router)
router.include_router(admin.router)
router.include_router(blocks.router)
router.include_router(chats.router)
router.include_router(notifications.router)
router.include_router(reports.router)
