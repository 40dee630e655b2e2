"""
Service layer for business logic.

Services encapsulate business logic, keeping routes as thin HTTP adapters.
Each service receives its dependencies via constructor injection.

Usage in routes:
    from ..services import SubscriptionServiceDep

    @router.post("/users/{user_id}/subscriptions")
    async def subscribe(user_id: int, service: SubscriptionServiceDep):
        return service.subscribe(user_id, ...)
"""

from typing import Annotated

from fastapi import Depends, HTTPException

from ..config import config, get_db, state
from ..database import Database

from .cleanup_service import CleanupPolicy, CleanupResult, RetentionLimits
from .refresh_service import RefreshPipeline, RefreshResult, RefreshStats
from .settings_service import (
    EffectiveSettings,
    SettingsResolver,
    SystemDefaults,
    resolve_settings,
    validate_overrides,
)
from .subscription_service import SubscriptionService

__all__ = [
    # Services
    "CleanupPolicy",
    "RefreshPipeline",
    "SettingsResolver",
    "SubscriptionService",
    # Value types
    "CleanupResult",
    "EffectiveSettings",
    "RefreshResult",
    "RefreshStats",
    "RetentionLimits",
    "SystemDefaults",
    "resolve_settings",
    "validate_overrides",
    # Dependency factories
    "get_refresh_pipeline",
    "get_subscription_service",
    # Type aliases for dependency injection
    "RefreshPipelineDep",
    "SubscriptionServiceDep",
]


def get_subscription_service(db: Annotated[Database, Depends(get_db)]) -> SubscriptionService:
    """Dependency to get SubscriptionService instance."""
    return SubscriptionService(db=db)


def get_refresh_pipeline(db: Annotated[Database, Depends(get_db)]) -> RefreshPipeline:
    """Dependency to get a RefreshPipeline bound to the shared parser and queue."""
    if not state.feed_parser:
        raise HTTPException(status_code=500, detail="Feed parser not initialized")
    return RefreshPipeline(
        db,
        state.feed_parser,
        embedding_queue=state.embedding_queue,
        auto_enqueue=config.EMBEDDING_AUTO_ENQUEUE,
    )


SubscriptionServiceDep = Annotated[SubscriptionService, Depends(get_subscription_service)]
RefreshPipelineDep = Annotated[RefreshPipeline, Depends(get_refresh_pipeline)]
