"""Health and site settings endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, Field

from ...models import SiteInfo, ThumbnailFilter

router = APIRouter()
logger = logging.getLogger(__name__)


class SiteInfoUpdate(BaseModel):
    """Scanner settings to change; omitted fields keep their value."""

    model_config = ConfigDict(extra='forbid')

    periodic_scan_interval: Optional[int] = Field(default=None, description="Seconds, 0 disables")
    concurrent_workers: Optional[int] = None
    thumbnail_method: Optional[ThumbnailFilter] = None


def site_info_payload(site_info: SiteInfo) -> dict:
    return {
        "periodic_scan_interval": site_info.periodic_scan_interval,
        "concurrent_workers": site_info.concurrent_workers,
        "thumbnail_method": site_info.thumbnail_method.value,
    }


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    from mediavault.indexer import __version__

    logger.debug("Health check requested")
    status = request.app.state.library.orchestrator.scanner_status()
    return {
        "status": "healthy",
        "version": __version__,
        "scans_running": len(status["running"]),
        "scans_queued": len(status["queued"]),
    }


@router.get("/site-info")
def get_site_info(request: Request):
    return site_info_payload(request.app.state.library.site_info())


@router.put("/site-info")
def update_site_info(update: SiteInfoUpdate, request: Request):
    """Apply admin changes to the scanner settings."""
    library = request.app.state.library
    if update.concurrent_workers is not None:
        library.set_scanner_concurrent_workers(update.concurrent_workers)
    if update.periodic_scan_interval is not None:
        library.set_periodic_scan_interval(update.periodic_scan_interval)
    if update.thumbnail_method is not None:
        library.set_thumbnail_downsample_method(update.thumbnail_method)
    return site_info_payload(library.site_info())
