"""
Source routes: registration, on-demand refresh, effective and source-level settings.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from ..config import get_db
from ..database import Database
from ..exceptions import require_source
from ..notification_service import NotificationService
from ..schemas import (
    AddSourceRequest,
    EffectiveSettingsResponse,
    ItemResponse,
    RefreshResultResponse,
    SettingsOverridesModel,
    SourceResponse,
)
from ..services import RefreshPipelineDep, SubscriptionServiceDep

router = APIRouter(prefix="/sources", tags=["sources"])


@router.get("")
async def list_sources(service: SubscriptionServiceDep) -> list[SourceResponse]:
    """List all sources, least recently fetched first."""
    return [SourceResponse.from_db(s) for s in service.list_sources()]


@router.post("")
async def add_source(
    request: AddSourceRequest,
    service: SubscriptionServiceDep,
) -> SourceResponse:
    """Register a source. A known URL returns the existing source."""
    return SourceResponse.from_db(service.add_source(request.url, request.title))


@router.delete("/{source_id}")
async def delete_source(source_id: int, service: SubscriptionServiceDep) -> dict:
    """Delete a source and its items. 409 while any user is subscribed."""
    service.delete_source(source_id)
    return {"success": True}


@router.get("/{source_id}/items")
async def list_items(
    source_id: int,
    db: Annotated[Database, Depends(get_db)],
    limit: int = Query(default=50, ge=1, le=500),
) -> list[ItemResponse]:
    """Stored items for a source, most recently published first."""
    require_source(db.get_source(source_id))
    return [ItemResponse.from_db(item) for item in db.get_items(source_id, limit)]


@router.post("/{source_id}/refresh")
async def refresh_source(
    source_id: int,
    pipeline: RefreshPipelineDep,
) -> RefreshResultResponse:
    """Refresh one source now and wait for the result."""
    db: Database = pipeline.db
    require_source(db.get_source(source_id))
    result = await pipeline.refresh_source(source_id)
    NotificationService(db).notify_refresh(result)
    return RefreshResultResponse.from_result(result)


@router.get("/{source_id}/settings")
async def get_source_settings(
    source_id: int,
    service: SubscriptionServiceDep,
    user_id: int | None = None,
) -> EffectiveSettingsResponse:
    """
    Effective settings for a source.

    With user_id, as that user sees them; without, the aggregate the batch
    jobs use across all subscribers.
    """
    settings = service.get_source_settings(source_id, user_id)
    return EffectiveSettingsResponse.from_settings(source_id, settings, user_id)


@router.put("/{source_id}/settings")
async def update_source_settings(
    source_id: int,
    request: SettingsOverridesModel,
    service: SubscriptionServiceDep,
) -> SourceResponse:
    """Replace the source-level overrides."""
    return SourceResponse.from_db(service.update_source_settings(source_id, request.to_overrides()))
