"""
ProfitFirst Dashboard
Main FastAPI application
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from profitfirst.config import get_settings
from profitfirst.utils.logger import log

# Import routers
from profitfirst.api import dashboard, health
from profitfirst.services.data_cache_service import build_cache_service

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    log.info(f"Starting {settings.app_name} v{settings.app_version}")
    log.info(f"Environment: {settings.environment}")

    # Initialize database
    try:
        from profitfirst.models.base import init_db
        init_db()
        log.info("Database initialized")
    except Exception as e:
        log.error(f"Database initialization error: {str(e)}")

    cache_service = build_cache_service()
    app.state.cache_service = cache_service

    # Start the scheduler for cache housekeeping
    from profitfirst.scheduler import start_scheduler, stop_scheduler
    try:
        start_scheduler(cache_service)
    except Exception as e:
        log.error(f"Scheduler startup error: {str(e)}")

    yield

    # Shutdown
    stop_scheduler()
    await cache_service.drain()
    log.info("Shutting down application")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    Profit-first dashboard for D2C brands

    Combines, per owner and date range:
    - Shopify orders (revenue, COGS, customers, products)
    - Meta ad spend and reach
    - Shiprocket shipping costs and delivery status

    Source responses are cached for a short TTL; a failing source degrades
    to zeros instead of failing the whole dashboard.
    """,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(dashboard.router)
