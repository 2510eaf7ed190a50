"""
Lhamascred API - Main application entry point.

Batch CPF balance/offer lookups against credit providers, reconciled through
provider webhooks.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lhamascred.core.config import get_settings
from lhamascred.core.database import Database
from lhamascred.core.logging_config import configure_logging
from lhamascred.core.middleware import MaxBodySizeMiddleware
from lhamascred.auth.views import router as auth_router
from lhamascred.batches.views import router as batches_router
from lhamascred.admin.views import router as admin_router
from lhamascred.webhooks.views import router as webhooks_router

settings = get_settings()
API_PREFIX = "/api/v1/lhamascred"
# Registered with the providers; must not change.
WEBHOOK_PREFIX = "/api"

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown events."""
    # Startup
    await Database.connect()
    yield
    # Shutdown
    await Database.disconnect()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="""
## Lhamascred API

Batch consultation of CPFs against credit providers.

### Features

- **Batches**: submit a CPF list (JSON or .xlsx), follow its progress, download the Excel report
- **Providers**: V8 Digital and Facta (FGTS balance), C6 Bank (CLT payroll offers)
- **Webhooks**: asynchronous provider answers at `/api/webhook/balance`
- **Admin**: account approval, roles and teams, activity log
    """,
    lifespan=lifespan,
    docs_url=f"{API_PREFIX}/docs",
    redoc_url=f"{API_PREFIX}/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(MaxBodySizeMiddleware)

# Include routers
routers = [
    auth_router,
    batches_router,
    admin_router,
]

for router in routers:
    app.include_router(router, prefix=API_PREFIX)

app.include_router(webhooks_router, prefix=WEBHOOK_PREFIX)


@app.get("/", tags=["Health"])
async def root():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """Detailed health check."""
    return {
        "status": "healthy",
        "database": "connected" if Database.client else "disconnected",
        "version": settings.APP_VERSION,
    }
