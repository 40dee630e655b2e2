"""
Settings service: cascading resolution of refresh and retention settings.

Each field resolves independently, highest precedence first:

    subscription > category > user default > source override > system default

A value counts as present only when explicitly set. Malformed stored values
are dropped when rows are read, so resolution falls through to the next level
instead of failing.
"""

from dataclasses import dataclass, field

from ..config import Config, config
from ..database import Database
from ..database.models import SettingsOverrides
from ..exceptions import SettingsValidationError
from .cleanup_service import RetentionLimits


FIELDS = ("refresh_interval_minutes", "max_items", "max_item_age_days")

# Accepted ranges at the write boundary (inclusive)
REFRESH_INTERVAL_RANGE = (15, 1440)
MAX_ITEMS_RANGE = (1, 5000)
MAX_ITEM_AGE_RANGE = (1, 365)


@dataclass(frozen=True)
class SystemDefaults:
    """Lowest level of the cascade. Retention limits may be absent."""
    refresh_interval_minutes: int = 60
    max_items: int | None = 500
    max_item_age_days: int | None = 90

    @classmethod
    def from_config(cls, settings: Config = config) -> "SystemDefaults":
        return cls(
            refresh_interval_minutes=settings.DEFAULT_REFRESH_INTERVAL_MINUTES,
            max_items=settings.DEFAULT_MAX_ITEMS,
            max_item_age_days=settings.DEFAULT_MAX_ITEM_AGE_DAYS,
        )


@dataclass
class EffectiveSettings:
    """Fully resolved settings, with the level each field came from."""
    refresh_interval_minutes: int
    max_items: int | None
    max_item_age_days: int | None
    origin: dict[str, str] = field(default_factory=dict)

    @property
    def retention(self) -> RetentionLimits:
        return RetentionLimits(
            max_items=self.max_items,
            max_item_age_days=self.max_item_age_days,
        )


def merge_overrides(records: list[SettingsOverrides]) -> SettingsOverrides:
    """Collapse several records of one level; the first record with a value wins per field."""
    merged = SettingsOverrides()
    for record in records:
        for name in FIELDS:
            if getattr(merged, name) is None and getattr(record, name) is not None:
                setattr(merged, name, getattr(record, name))
    return merged


def resolve_settings(
    levels: list[tuple[str, SettingsOverrides | None]],
    defaults: SystemDefaults,
) -> EffectiveSettings:
    """
    Resolve each field against an ordered list of (level name, overrides),
    highest precedence first, falling back to the system defaults.
    """
    values: dict[str, int | None] = {}
    origin: dict[str, str] = {}
    for name in FIELDS:
        for level_name, overrides in levels:
            if overrides is None:
                continue
            value = getattr(overrides, name)
            if value is not None:
                values[name] = value
                origin[name] = level_name
                break
        else:
            values[name] = getattr(defaults, name)
            origin[name] = "system"

    return EffectiveSettings(
        refresh_interval_minutes=values["refresh_interval_minutes"],
        max_items=values["max_items"],
        max_item_age_days=values["max_item_age_days"],
        origin=origin,
    )


def validate_overrides(overrides: SettingsOverrides):
    """Reject out-of-range override values. None (clear) is always accepted."""
    errors = []
    checks = (
        ("refresh_interval_minutes", REFRESH_INTERVAL_RANGE),
        ("max_items", MAX_ITEMS_RANGE),
        ("max_item_age_days", MAX_ITEM_AGE_RANGE),
    )
    for name, (low, high) in checks:
        value = getattr(overrides, name)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f"{name} must be an integer")
        elif not low <= value <= high:
            errors.append(f"{name} must be between {low} and {high}")
    if errors:
        raise SettingsValidationError(errors)


class SettingsResolver:
    """Loads the cascade levels from the database and resolves them."""

    def __init__(self, db: Database, defaults: SystemDefaults | None = None):
        self.db = db
        self.defaults = defaults or SystemDefaults.from_config()

    def resolve(self, source_id: int, user_id: int | None = None) -> EffectiveSettings:
        """Effective settings for a source as seen by one user (or by no user)."""
        levels: list[tuple[str, SettingsOverrides | None]] = []

        if user_id is not None:
            subscription = self.db.subscriptions.get(user_id, source_id)
            if subscription is not None:
                levels.append(("subscription", subscription.overrides))
                categories = self.db.subscriptions.get_categories_for_subscription(subscription.id)
                levels.append(("category", merge_overrides([c.overrides for c in categories])))
            levels.append(("user", self.db.subscriptions.get_preferences(user_id)))

        source = self.db.sources.get(source_id)
        if source is not None:
            levels.append(("source", source.settings))

        return resolve_settings(levels, self.defaults)

    def resolve_for_source(self, source_id: int) -> EffectiveSettings:
        """
        Settings governing a shared source across all of its subscribers.

        Refresh runs as often as the most demanding subscriber asks; retention
        keeps what the most lenient subscriber wants, and is unbounded for a
        field if any subscriber leaves it unbounded.
        """
        subscriptions = self.db.subscriptions.get_for_source(source_id)
        if not subscriptions:
            return self.resolve(source_id)

        resolved = [self.resolve(source_id, s.user_id) for s in subscriptions]

        fastest = min(resolved, key=lambda r: r.refresh_interval_minutes)
        origin = {"refresh_interval_minutes": fastest.origin["refresh_interval_minutes"]}
        limits: dict[str, int | None] = {}
        for name in ("max_items", "max_item_age_days"):
            unbounded = next((r for r in resolved if getattr(r, name) is None), None)
            if unbounded is not None:
                limits[name] = None
                origin[name] = unbounded.origin[name]
            else:
                loosest = max(resolved, key=lambda r: getattr(r, name))
                limits[name] = getattr(loosest, name)
                origin[name] = loosest.origin[name]

        return EffectiveSettings(
            refresh_interval_minutes=fastest.refresh_interval_minutes,
            max_items=limits["max_items"],
            max_item_age_days=limits["max_item_age_days"],
            origin=origin,
        )
