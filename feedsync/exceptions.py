"""
Domain exceptions and HTTP exception utilities for common error patterns.
"""

from typing import TypeVar

from fastapi import HTTPException

T = TypeVar("T")


# ─────────────────────────────────────────────────────────────
# Fetch/parse failures
# ─────────────────────────────────────────────────────────────

class FeedFetchError(Exception):
    """A source could not be fetched or parsed."""
    kind = "fetch"


class FeedTransportError(FeedFetchError):
    """Timeout, network failure or non-success HTTP status."""
    kind = "transport"


class FeedParseError(FeedFetchError):
    """The fetched document is not a usable feed."""
    kind = "parse"


# ─────────────────────────────────────────────────────────────
# Settings and jobs
# ─────────────────────────────────────────────────────────────

class SettingsValidationError(ValueError):
    """Override values rejected at the write boundary."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


class JobAlreadyRunningError(RuntimeError):
    """A run for the same job name is already in progress."""

    def __init__(self, job_name: str):
        self.job_name = job_name
        super().__init__(f"Job '{job_name}' is already running")


class UnknownJobError(KeyError):
    """No job is registered under the given name."""

    def __init__(self, job_name: str):
        self.job_name = job_name
        super().__init__(job_name)

    def __str__(self) -> str:
        return f"Unknown job: {self.job_name}"


# ─────────────────────────────────────────────────────────────
# HTTP helpers
# ─────────────────────────────────────────────────────────────

def require_resource(resource: T | None, detail: str = "Resource not found") -> T:
    """
    Raise 404 if resource is None, otherwise return the resource.

    Usage:
        source = require_resource(db.get_source(id), "Source not found")
    """
    if resource is None:
        raise HTTPException(status_code=404, detail=detail)
    return resource


def require_source(source: T | None) -> T:
    """Raise 404 if source is None."""
    return require_resource(source, "Source not found")


def require_subscription(subscription: T | None) -> T:
    """Raise 404 if subscription is None."""
    return require_resource(subscription, "Subscription not found")


def require_category(category: T | None) -> T:
    """Raise 404 if category is None."""
    return require_resource(category, "Category not found")


def require_item(item: T | None) -> T:
    """Raise 404 if item is None."""
    return require_resource(item, "Item not found")
