from fastapi import Request

from feedsync.runtime import FeedSyncRuntime
from feedsync.services.feed_service import FeedService


def get_runtime(request: Request) -> FeedSyncRuntime:
    return request.app.state.runtime


def get_feed_service(request: Request) -> FeedService:
    return get_runtime(request).service
