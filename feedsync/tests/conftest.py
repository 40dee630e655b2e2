"""
Pytest fixtures for feedsync tests.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from feedsync.config import Config, state
from feedsync.database import Database
from feedsync.embeddings import EmbeddingQueue
from feedsync.exceptions import FeedTransportError
from feedsync.feeds import ParsedFeed, ParsedItem, content_fingerprint
from feedsync.jobs import build_scheduler
from feedsync.server import app


class FakeFeedParser:
    """Stands in for FeedParser: serves canned feeds or errors per URL."""

    def __init__(self):
        self.responses: dict[str, ParsedFeed | Exception] = {}
        self.calls: list[str] = []

    def set_items(self, url: str, items: list[ParsedItem], title: str | None = None):
        self.responses[url] = ParsedFeed(url=url, title=title, items=list(items))

    def fail(self, url: str, error: Exception):
        self.responses[url] = error

    async def fetch(self, url: str) -> ParsedFeed:
        self.calls.append(url)
        response = self.responses.get(url)
        if response is None:
            raise FeedTransportError(f"HTTP 404 fetching {url}")
        if isinstance(response, Exception):
            raise response
        return response


def job_settings(enabled: bool = False, **overrides) -> Config:
    """A Config whose scheduled jobs are off unless asked for."""
    settings = Config()
    settings.ENABLE_SCHEDULED_JOBS = enabled
    for key, value in overrides.items():
        setattr(settings, key, value)
    return settings


@pytest.fixture
def temp_db_path():
    """Create a temporary database file path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        yield Path(f.name)
    # Cleanup
    if os.path.exists(f.name):
        os.unlink(f.name)


@pytest.fixture
def test_db(temp_db_path):
    """Create a test database instance."""
    db = Database(temp_db_path)
    yield db


@pytest.fixture
def fake_parser():
    return FakeFeedParser()


@pytest.fixture
def make_item():
    """Factory for parsed feed items with distinct bodies."""
    def _make(n: int, **kwargs) -> ParsedItem:
        values = {
            "external_id": f"https://example.com/items/{n}",
            "title": f"Item {n}",
            "body": f"<p>Body of item {n}</p>",
            "published_at": datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(hours=n),
        }
        values.update(kwargs)
        return ParsedItem(**values)
    return _make


@pytest.fixture
def add_items(test_db):
    """Insert n items into a source, one hour apart, newest last. Returns their IDs."""
    def _add(source_id: int, count: int, newest: datetime | None = None) -> list[int]:
        newest = newest or datetime.now(timezone.utc)
        ids = []
        for n in range(count):
            body = f"stored body {source_id}-{n}"
            ids.append(test_db.items.add(
                source_id=source_id,
                fingerprint=content_fingerprint(body),
                title=f"Stored {n}",
                body=body,
                published_at=newest - timedelta(hours=count - 1 - n),
            ))
        return ids
    return _add


@pytest.fixture
def make_scheduler(test_db, fake_parser):
    """Factory for a fully wired Scheduler over the test database and fake parser."""
    def _make(enabled: bool = False, embedding_queue: EmbeddingQueue | None = None, **overrides):
        return build_scheduler(
            test_db,
            fake_parser,
            embedding_queue,
            settings=job_settings(enabled=enabled, **overrides),
        )
    return _make


@pytest.fixture
def client(temp_db_path, fake_parser):
    """Create a test client with an isolated database and a fake feed parser."""
    # Store original state
    original_db = state.db
    original_feed_parser = state.feed_parser
    original_embedding_queue = state.embedding_queue
    original_embedding_worker = state.embedding_worker
    original_scheduler = state.scheduler

    # Set up test state with fresh instances
    test_db = Database(temp_db_path)
    state.db = test_db
    state.feed_parser = fake_parser
    state.embedding_queue = EmbeddingQueue(max_size=100)
    state.embedding_worker = None
    state.scheduler = build_scheduler(
        test_db, fake_parser, state.embedding_queue, settings=job_settings()
    )

    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client

    # Restore original state
    state.db = original_db
    state.feed_parser = original_feed_parser
    state.embedding_queue = original_embedding_queue
    state.embedding_worker = original_embedding_worker
    state.scheduler = original_scheduler
