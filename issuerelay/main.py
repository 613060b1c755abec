"""Main FastAPI application"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from issuerelay.api import integration_accounts, issues, sync, webhooks
from issuerelay.config import settings
from issuerelay.models.base import init_db
from issuerelay.scheduler import scheduler
from issuerelay.security import BasicAuthMiddleware

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    logger.info("Starting IssueRelay")
    init_db()
    scheduler.start()
    yield
    # Shutdown
    logger.info("Stopping IssueRelay")
    scheduler.stop()


app = FastAPI(
    title="IssueRelay",
    description="Sync issues with chat and code-hosting tools",
    version="1.0.0",
    lifespan=lifespan,
)

# Optional built-in auth (recommended if exposed beyond localhost/private networks).
# Webhooks authenticate with provider signatures instead.
if settings.auth_enabled:
    if not settings.auth_username or not settings.auth_password:
        raise RuntimeError("AUTH_ENABLED=true requires AUTH_USERNAME and AUTH_PASSWORD to be set")
    app.add_middleware(
        BasicAuthMiddleware,
        username=settings.auth_username,
        password=settings.auth_password,
        allow_paths={"/health"},
        allow_prefixes=("/api/webhooks/",),
    )

# Include API routers
app.include_router(webhooks.router)
app.include_router(issues.router)
app.include_router(integration_accounts.router)
app.include_router(sync.router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "IssueRelay"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "issuerelay.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )
