from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import asyncio
import logging

from feedsync.api import feeds, items, settings as settings_api
from feedsync.core.config import settings
from feedsync.core.database import AsyncSessionLocal, engine, init_models
from feedsync.core.exceptions import StoreError
from feedsync.runtime import build_runtime

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
# Quiet noisy loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("apscheduler").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for the FastAPI app"""
    # Startup
    logger.info("Starting FeedSync API")
    await init_models(engine)

    runtime = build_runtime(AsyncSessionLocal, settings)
    app.state.runtime = runtime

    # Start the sync scheduler, then catch up in the background
    await runtime.scheduler.start()
    bootstrap_task = asyncio.create_task(runtime.scheduler.bootstrap())

    yield

    # Shutdown
    logger.info("Shutting down FeedSync API")
    if not bootstrap_task.done():
        bootstrap_task.cancel()
    await runtime.aclose()
    await engine.dispose()


async def store_error_handler(request: Request, exc: StoreError):
    logger.error(f"Store error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": str(exc)})


def create_app(with_lifespan: bool = True) -> FastAPI:
    app = FastAPI(
        title="FeedSync API",
        description="""
## Feed Synchronization & Local Item Store

Keeps subscribed RSS/Atom feeds synchronized into a local indexed store.

### Features

* **Conditional fetching**: ETag / Last-Modified validators skip unchanged feeds
* **Watermark diffing**: only items newer than the last ingested one are stored
* **Item store**: recency pagination, unread and starred filters, per-feed unread counts
* **Retention**: daily eviction of old items, starred items are kept
* **Notifications**: grouping, quiet hours and per-batch caps
* **Background scheduler**: periodic sync with offline deferral
        """,
        version="1.0.0",
        lifespan=lifespan if with_lifespan else None,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:3000"],  # Frontend URLs
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StoreError, store_error_handler)

    # Include routers
    app.include_router(feeds.router)
    app.include_router(items.router)
    app.include_router(settings_api.router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        runtime = getattr(app.state, "runtime", None)
        return {
            "status": "healthy",
            "sync_state": runtime.scheduler.state.value if runtime else None,
        }

    return app


# Create FastAPI app
app = create_app()
