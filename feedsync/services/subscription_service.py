"""
Subscription service: business logic for sources, subscriptions and the
override values that feed the settings cascade.
"""

import logging

from fastapi import HTTPException

from ..database import Database
from ..database.models import DBCategory, DBSource, DBSubscription, SettingsOverrides
from ..exceptions import (
    SettingsValidationError,
    require_category,
    require_item,
    require_source,
    require_subscription,
)
from .settings_service import EffectiveSettings, SettingsResolver, validate_overrides

logger = logging.getLogger(__name__)


def _validated(overrides: SettingsOverrides) -> SettingsOverrides:
    try:
        validate_overrides(overrides)
    except SettingsValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return overrides


class SubscriptionService:
    """Service for subscription and settings management."""

    def __init__(self, db: Database, resolver: SettingsResolver | None = None):
        self.db = db
        self.resolver = resolver or SettingsResolver(db)

    # ─────────────────────────────────────────────────────────────
    # Sources
    # ─────────────────────────────────────────────────────────────

    def list_sources(self) -> list[DBSource]:
        return self.db.get_sources()

    def add_source(self, url: str, title: str | None = None) -> DBSource:
        """Register a source by URL. Adding a known URL returns the existing source."""
        source_id = self.db.add_source(url, title)
        return require_source(self.db.get_source(source_id))

    def get_source_settings(self, source_id: int, user_id: int | None = None) -> EffectiveSettings:
        """Effective settings for one user, or the aggregate over all subscribers."""
        require_source(self.db.get_source(source_id))
        if user_id is None:
            return self.resolver.resolve_for_source(source_id)
        return self.resolver.resolve(source_id, user_id)

    def update_source_settings(self, source_id: int, overrides: SettingsOverrides) -> DBSource:
        require_source(self.db.get_source(source_id))
        self.db.update_source_settings(source_id, _validated(overrides))
        logger.info(f"Updated settings for source {source_id}")
        return self.db.get_source(source_id)

    def delete_source(self, source_id: int) -> None:
        """Delete a source and its items. Refused while any user is subscribed."""
        require_source(self.db.get_source(source_id))
        if not self.db.sources.delete(source_id):
            raise HTTPException(status_code=409, detail="Source has subscribers")
        logger.info(f"Deleted source {source_id}")

    # ─────────────────────────────────────────────────────────────
    # Subscriptions
    # ─────────────────────────────────────────────────────────────

    def list_subscriptions(self, user_id: int) -> list[DBSubscription]:
        return self.db.subscriptions.get_for_user(user_id)

    def subscribe(
        self,
        user_id: int,
        source_id: int | None = None,
        url: str | None = None,
        display_name: str | None = None,
    ) -> DBSubscription:
        """Subscribe a user to an existing source, or to a URL (creating the source)."""
        if source_id is None:
            if not url:
                raise HTTPException(status_code=400, detail="Either source_id or url is required")
            source_id = self.db.add_source(url)
        else:
            require_source(self.db.get_source(source_id))

        self.db.subscriptions.subscribe(user_id, source_id, display_name)
        return require_subscription(self.db.get_subscription(user_id, source_id))

    def unsubscribe(self, user_id: int, source_id: int) -> None:
        """Remove a subscription. The source and its items stay."""
        require_subscription(self.db.get_subscription(user_id, source_id))
        self.db.subscriptions.unsubscribe(user_id, source_id)

    def update_subscription_settings(
        self,
        user_id: int,
        source_id: int,
        overrides: SettingsOverrides,
    ) -> DBSubscription:
        subscription = require_subscription(self.db.get_subscription(user_id, source_id))
        self.db.subscriptions.update_overrides(subscription.id, _validated(overrides))
        return self.db.get_subscription(user_id, source_id)

    def set_preferences(self, user_id: int, overrides: SettingsOverrides) -> SettingsOverrides:
        self.db.set_user_preferences(user_id, _validated(overrides))
        return self.db.get_user_preferences(user_id)

    # ─────────────────────────────────────────────────────────────
    # Categories
    # ─────────────────────────────────────────────────────────────

    def create_category(
        self,
        user_id: int,
        name: str,
        overrides: SettingsOverrides | None = None,
        source_ids: list[int] | None = None,
    ) -> DBCategory:
        """Create (or reuse) a named category and optionally file subscriptions under it."""
        if overrides is not None:
            _validated(overrides)
        category_id = self.db.subscriptions.add_category(user_id, name)
        if overrides is not None:
            self.db.subscriptions.update_category_overrides(category_id, overrides)
        for source_id in source_ids or []:
            subscription = require_subscription(self.db.get_subscription(user_id, source_id))
            self.db.subscriptions.assign_category(subscription.id, category_id)
        return self.db.subscriptions.get_category(category_id)

    def update_category_settings(self, category_id: int, overrides: SettingsOverrides) -> DBCategory:
        require_category(self.db.subscriptions.get_category(category_id))
        self.db.subscriptions.update_category_overrides(category_id, _validated(overrides))
        return self.db.subscriptions.get_category(category_id)

    # ─────────────────────────────────────────────────────────────
    # Pins
    # ─────────────────────────────────────────────────────────────

    def set_pinned(self, user_id: int, item_id: int, pinned: bool) -> bool:
        require_item(self.db.get_item(item_id))
        if pinned:
            self.db.pin_item(user_id, item_id)
        else:
            self.db.unpin_item(user_id, item_id)
        return pinned
