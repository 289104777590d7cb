"""
FastAPI dependencies shared by the routers
"""
from typing import Mapping

from fastapi import Depends, HTTPException, Request

from profitfirst.models.records import OwnerCredentials
from profitfirst.services.dashboard_service import DashboardPipeline
from profitfirst.services.data_cache_service import DataCacheService


def get_current_owner(request: Request) -> OwnerCredentials:
    """Dependency: the owner attached by the auth layer, or 401."""
    owner = getattr(request.state, "owner", None)
    if not owner:
        raise HTTPException(status_code=401, detail="Not authenticated")
    if isinstance(owner, OwnerCredentials):
        return owner
    if isinstance(owner, Mapping):
        try:
            return OwnerCredentials.from_mapping(owner)
        except ValueError:
            raise HTTPException(status_code=401, detail="Not authenticated")
    raise HTTPException(status_code=401, detail="Not authenticated")


def get_cache_service(request: Request) -> DataCacheService:
    return request.app.state.cache_service


def get_pipeline(cache_service: DataCacheService = Depends(get_cache_service)) -> DashboardPipeline:
    return DashboardPipeline(cache_service)
