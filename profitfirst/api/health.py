"""
Health check and status endpoints
"""
from fastapi import APIRouter
from datetime import datetime
from profitfirst.config import get_settings

settings = get_settings()

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": settings.app_version
    }


@router.get("/status")
async def get_status():
    """Get system status"""
    return {
        "app_name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "cache": {
            "backend": settings.cache_backend,
            "ttl_minutes": settings.dashboard_cache_ttl_minutes,
            "purge_days": settings.cache_purge_days
        },
        "features": {
            "llm_forecast": bool(settings.enable_llm_insights and settings.anthropic_api_key),
            "fail_on_order_outage": settings.dashboard_fail_on_order_outage
        },
        "timestamp": datetime.utcnow().isoformat()
    }
