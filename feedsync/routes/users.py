"""
User routes: subscriptions, per-user defaults, categories, pinned items and notifications.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from ..config import get_db
from ..database import Database
from ..schemas import (
    CategoryResponse,
    CreateCategoryRequest,
    NotificationResponse,
    PinRequest,
    SettingsOverridesModel,
    SubscribeRequest,
    SubscriptionResponse,
)
from ..services import SubscriptionServiceDep

router = APIRouter(tags=["users"])


# ─────────────────────────────────────────────────────────────
# Subscriptions
# ─────────────────────────────────────────────────────────────

@router.get("/users/{user_id}/subscriptions")
async def list_subscriptions(
    user_id: int,
    service: SubscriptionServiceDep,
) -> list[SubscriptionResponse]:
    return [SubscriptionResponse.from_db(s) for s in service.list_subscriptions(user_id)]


@router.post("/users/{user_id}/subscriptions")
async def subscribe(
    user_id: int,
    request: SubscribeRequest,
    service: SubscriptionServiceDep,
) -> SubscriptionResponse:
    """Subscribe a user to a source (by ID or URL)."""
    subscription = service.subscribe(
        user_id,
        source_id=request.source_id,
        url=request.url,
        display_name=request.display_name,
    )
    return SubscriptionResponse.from_db(subscription)


@router.delete("/users/{user_id}/subscriptions/{source_id}")
async def unsubscribe(
    user_id: int,
    source_id: int,
    service: SubscriptionServiceDep,
) -> dict:
    """Remove a subscription. The source and its items stay."""
    service.unsubscribe(user_id, source_id)
    return {"success": True}


@router.put("/users/{user_id}/subscriptions/{source_id}/settings")
async def update_subscription_settings(
    user_id: int,
    source_id: int,
    request: SettingsOverridesModel,
    service: SubscriptionServiceDep,
) -> SubscriptionResponse:
    """Replace the subscription-level overrides."""
    subscription = service.update_subscription_settings(user_id, source_id, request.to_overrides())
    return SubscriptionResponse.from_db(subscription)


# ─────────────────────────────────────────────────────────────
# Preferences & categories
# ─────────────────────────────────────────────────────────────

@router.put("/users/{user_id}/preferences")
async def update_preferences(
    user_id: int,
    request: SettingsOverridesModel,
    service: SubscriptionServiceDep,
) -> SettingsOverridesModel:
    """Replace the user's default settings."""
    return SettingsOverridesModel.from_overrides(
        service.set_preferences(user_id, request.to_overrides())
    )


@router.post("/users/{user_id}/categories")
async def create_category(
    user_id: int,
    request: CreateCategoryRequest,
    service: SubscriptionServiceDep,
) -> CategoryResponse:
    """Create a category, optionally with overrides and member subscriptions."""
    category = service.create_category(
        user_id,
        request.name,
        overrides=request.settings.to_overrides() if request.settings else None,
        source_ids=request.source_ids,
    )
    return CategoryResponse.from_db(category)


@router.put("/categories/{category_id}/settings")
async def update_category_settings(
    category_id: int,
    request: SettingsOverridesModel,
    service: SubscriptionServiceDep,
) -> CategoryResponse:
    """Replace the category-level overrides."""
    return CategoryResponse.from_db(
        service.update_category_settings(category_id, request.to_overrides())
    )


# ─────────────────────────────────────────────────────────────
# Pins
# ─────────────────────────────────────────────────────────────

@router.put("/users/{user_id}/items/{item_id}/pin")
async def set_pinned(
    user_id: int,
    item_id: int,
    request: PinRequest,
    service: SubscriptionServiceDep,
) -> dict:
    """Pin or unpin an item. Pinned items are never cleaned up."""
    pinned = service.set_pinned(user_id, item_id, request.pinned)
    return {"success": True, "pinned": pinned}


# ─────────────────────────────────────────────────────────────
# Notifications
# ─────────────────────────────────────────────────────────────

@router.get("/users/{user_id}/notifications")
async def list_notifications(
    user_id: int,
    db: Annotated[Database, Depends(get_db)],
    unread_only: bool = False,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> list[NotificationResponse]:
    """Refresh notifications for a user, newest first."""
    notifications = db.notifications.get_for_user(
        user_id, unread_only=unread_only, limit=limit, offset=offset
    )
    return [NotificationResponse.from_db(n) for n in notifications]


@router.post("/users/{user_id}/notifications/{notification_id}/read")
async def mark_notification_read(
    user_id: int,
    notification_id: int,
    db: Annotated[Database, Depends(get_db)],
) -> dict:
    if not db.notifications.mark_read(user_id, notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"success": True}
