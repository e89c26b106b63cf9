from fastapi import APIRouter, Depends

from feedsync.api.dependencies import get_feed_service
from feedsync.schemas import ActionResult, GlobalNotificationSettings, SyncSettings
from feedsync.services.feed_service import FeedService

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("/notifications", response_model=GlobalNotificationSettings)
async def get_notification_settings(service: FeedService = Depends(get_feed_service)):
    return await service.get_notification_settings()


@router.put("/notifications", response_model=ActionResult)
async def update_notification_settings(
    notification_settings: GlobalNotificationSettings,
    service: FeedService = Depends(get_feed_service),
):
    return await service.update_notification_settings(notification_settings)


@router.post(
    "/notifications/test",
    response_model=ActionResult,
    summary="Send Test Notification",
    description="Send a test notification through the configured delivery path, bypassing quiet hours and opt-in settings.",
)
async def send_test_notification(service: FeedService = Depends(get_feed_service)):
    return await service.send_test_notification()


@router.get("/sync", response_model=SyncSettings)
async def get_sync_settings(service: FeedService = Depends(get_feed_service)):
    return await service.get_sync_settings()


@router.put("/sync", response_model=ActionResult)
async def update_sync_settings(
    sync_settings: SyncSettings,
    service: FeedService = Depends(get_feed_service),
):
    """
    Save the fetch interval (applied to the running scheduler) and retention period.
    """
    return await service.update_sync_settings(sync_settings)
