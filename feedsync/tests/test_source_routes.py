"""
Tests for source, subscription and settings routes.
"""

from datetime import datetime, timedelta, timezone

from feedsync.config import state
from feedsync.exceptions import FeedParseError
from feedsync.notification_service import NotificationService
from feedsync.services import RefreshResult

FEED_URL = "https://example.com/feed.xml"


def _add_source(client, url=FEED_URL):
    response = client.post("/sources", json={"url": url})
    assert response.status_code == 200
    return response.json()["id"]


class TestStatus:
    def test_health_check(self, client):
        response = client.get("/status")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["database"] is True
        assert data["scheduler_initialized"] is False


class TestSources:
    """Tests for /sources endpoints."""

    def test_list_sources_empty(self, client):
        response = client.get("/sources")
        assert response.status_code == 200
        assert response.json() == []

    def test_add_source(self, client):
        response = client.post("/sources", json={"url": FEED_URL, "title": "Example"})
        assert response.status_code == 200
        source = response.json()
        assert source["url"] == FEED_URL
        assert source["title"] == "Example"
        assert source["last_fetched_at"] is None
        assert source["error_count"] == 0

    def test_add_same_url_returns_existing(self, client):
        first = _add_source(client)
        second = _add_source(client)
        assert first == second
        assert len(client.get("/sources").json()) == 1

    def test_add_source_missing_url(self, client):
        response = client.post("/sources", json={})
        assert response.status_code == 422


class TestRefreshRoute:
    def test_refresh_stores_items(self, client, fake_parser, make_item):
        recent = datetime.now(timezone.utc) - timedelta(hours=1)
        fake_parser.set_items(FEED_URL, [
            make_item(1, published_at=recent),
            make_item(2, published_at=recent),
        ], title="Example Feed")
        source_id = _add_source(client)

        response = client.post(f"/sources/{source_id}/refresh")

        assert response.status_code == 200
        result = response.json()
        assert result["success"] is True
        assert result["new_item_count"] == 2
        assert result["embeddings_enqueued"] == 2
        source = client.get("/sources").json()[0]
        assert source["title"] == "Example Feed"
        assert source["item_count"] == 2

    def test_refresh_failure_is_reported(self, client, fake_parser):
        fake_parser.fail(FEED_URL, FeedParseError("Failed to parse feed"))
        source_id = _add_source(client)

        response = client.post(f"/sources/{source_id}/refresh")

        assert response.status_code == 200
        result = response.json()
        assert result["success"] is False
        assert result["error_kind"] == "parse"
        assert client.get("/sources").json()[0]["error_count"] == 1

    def test_refresh_unknown_source(self, client):
        response = client.post("/sources/9999/refresh")
        assert response.status_code == 404


class TestSettingsRoutes:
    def test_defaults(self, client):
        source_id = _add_source(client)
        response = client.get(f"/sources/{source_id}/settings")
        assert response.status_code == 200
        settings = response.json()
        assert settings["origin"]["refresh_interval_minutes"] == "system"

    def test_update_source_settings(self, client):
        source_id = _add_source(client)

        response = client.put(f"/sources/{source_id}/settings", json={"max_items": 50})
        assert response.status_code == 200
        assert response.json()["settings"]["max_items"] == 50

        settings = client.get(f"/sources/{source_id}/settings").json()
        assert settings["max_items"] == 50
        assert settings["origin"]["max_items"] == "source"

    def test_invalid_settings_rejected(self, client):
        source_id = _add_source(client)
        response = client.put(
            f"/sources/{source_id}/settings", json={"refresh_interval_minutes": 5}
        )
        assert response.status_code == 400
        assert "refresh_interval_minutes" in response.json()["detail"]

    def test_settings_unknown_source(self, client):
        assert client.get("/sources/9999/settings").status_code == 404
        assert client.put("/sources/9999/settings", json={}).status_code == 404

    def test_user_view_follows_cascade(self, client):
        source_id = _add_source(client)
        client.post("/users/1/subscriptions", json={"source_id": source_id})
        client.put("/users/1/preferences", json={"refresh_interval_minutes": 120})
        client.put(
            f"/users/1/subscriptions/{source_id}/settings",
            json={"refresh_interval_minutes": 15},
        )

        settings = client.get(f"/sources/{source_id}/settings", params={"user_id": 1}).json()
        assert settings["user_id"] == 1
        assert settings["refresh_interval_minutes"] == 15
        assert settings["origin"]["refresh_interval_minutes"] == "subscription"

        other = client.get(f"/sources/{source_id}/settings", params={"user_id": 2}).json()
        assert other["origin"]["refresh_interval_minutes"] == "system"


class TestSubscriptionRoutes:
    def test_subscribe_by_url_creates_source(self, client):
        response = client.post("/users/1/subscriptions", json={"url": FEED_URL, "display_name": "Mine"})
        assert response.status_code == 200
        subscription = response.json()
        assert subscription["display_name"] == "Mine"
        assert client.get("/sources").json()[0]["id"] == subscription["source_id"]

    def test_subscribe_requires_source_or_url(self, client):
        response = client.post("/users/1/subscriptions", json={})
        assert response.status_code == 400

    def test_subscribe_unknown_source(self, client):
        response = client.post("/users/1/subscriptions", json={"source_id": 9999})
        assert response.status_code == 404

    def test_unsubscribe_keeps_source(self, client):
        source_id = _add_source(client)
        client.post("/users/1/subscriptions", json={"source_id": source_id})

        response = client.delete(f"/users/1/subscriptions/{source_id}")
        assert response.status_code == 200
        assert client.delete(f"/users/1/subscriptions/{source_id}").status_code == 404
        assert len(client.get("/sources").json()) == 1

    def test_subscription_settings_validation(self, client):
        source_id = _add_source(client)
        client.post("/users/1/subscriptions", json={"source_id": source_id})

        response = client.put(
            f"/users/1/subscriptions/{source_id}/settings", json={"max_items": 0}
        )
        assert response.status_code == 400

    def test_preferences_validation(self, client):
        response = client.put("/users/1/preferences", json={"max_item_age_days": 1000})
        assert response.status_code == 400


class TestCategoryRoutes:
    def test_create_category_with_members(self, client):
        source_id = _add_source(client)
        client.post("/users/1/subscriptions", json={"source_id": source_id})

        response = client.post("/users/1/categories", json={
            "name": "Daily",
            "settings": {"max_item_age_days": 7},
            "source_ids": [source_id],
        })

        assert response.status_code == 200
        category = response.json()
        assert category["name"] == "Daily"
        settings = client.get(f"/sources/{source_id}/settings", params={"user_id": 1}).json()
        assert settings["max_item_age_days"] == 7
        assert settings["origin"]["max_item_age_days"] == "category"

    def test_update_category_settings(self, client):
        category = client.post("/users/1/categories", json={"name": "Weekly"}).json()

        response = client.put(
            f"/categories/{category['id']}/settings", json={"max_items": 20}
        )
        assert response.status_code == 200
        assert response.json()["settings"]["max_items"] == 20

    def test_unknown_category(self, client):
        assert client.put("/categories/9999/settings", json={}).status_code == 404


class TestPinRoutes:
    def test_pin_and_unpin(self, client):
        source_id = _add_source(client)
        item_id = state.db.items.add(
            source_id=source_id,
            fingerprint="pinned-item",
            title="Keep me",
            published_at=datetime.now(timezone.utc),
        )

        response = client.put(f"/users/1/items/{item_id}/pin", json={"pinned": True})
        assert response.status_code == 200
        assert response.json()["pinned"] is True
        assert state.db.pins.is_pinned(item_id)

        client.put(f"/users/1/items/{item_id}/pin", json={"pinned": False})
        assert not state.db.pins.is_pinned(item_id)

    def test_pin_unknown_item(self, client):
        response = client.put("/users/1/items/9999/pin", json={})
        assert response.status_code == 404


class TestSourceLifecycle:
    def test_list_items(self, client, fake_parser, make_item):
        recent = datetime.now(timezone.utc)
        fake_parser.set_items(FEED_URL, [
            make_item(1, published_at=recent - timedelta(hours=2)),
            make_item(2, published_at=recent - timedelta(hours=1)),
        ])
        source_id = _add_source(client)
        client.post(f"/sources/{source_id}/refresh")

        response = client.get(f"/sources/{source_id}/items", params={"limit": 1})

        assert response.status_code == 200
        items = response.json()
        assert [item["title"] for item in items] == ["Item 2"]

    def test_delete_refused_while_subscribed(self, client):
        source_id = _add_source(client)
        client.post("/users/1/subscriptions", json={"source_id": source_id})

        assert client.delete(f"/sources/{source_id}").status_code == 409

        client.delete(f"/users/1/subscriptions/{source_id}")
        assert client.delete(f"/sources/{source_id}").status_code == 200
        assert client.get("/sources").json() == []
        assert client.delete(f"/sources/{source_id}").status_code == 404

    def test_list_subscriptions(self, client):
        first = _add_source(client)
        second = _add_source(client, "https://example.org/rss")
        client.post("/users/1/subscriptions", json={"source_id": first})
        client.post("/users/1/subscriptions", json={"source_id": second})
        client.post("/users/2/subscriptions", json={"source_id": second})

        subscriptions = client.get("/users/1/subscriptions").json()
        assert [s["source_id"] for s in subscriptions] == [first, second]


class TestNotificationRoutes:
    def test_refresh_notifies_subscribers(self, client, fake_parser, make_item):
        recent = datetime.now(timezone.utc)
        fake_parser.set_items(FEED_URL, [make_item(1, published_at=recent)])
        subscription = client.post(
            "/users/3/subscriptions", json={"url": FEED_URL, "display_name": "Daily News"}
        ).json()

        client.post(f"/sources/{subscription['source_id']}/refresh")

        notifications = client.get("/users/3/notifications").json()
        assert len(notifications) == 1
        assert notifications[0]["title"] == "Daily News updated"
        assert notifications[0]["message"] == "1 new item"
        assert notifications[0]["is_read"] is False

        notification_id = notifications[0]["id"]
        assert client.post(f"/users/3/notifications/{notification_id}/read").status_code == 200
        assert client.get("/users/3/notifications", params={"unread_only": True}).json() == []

    def test_mark_read_other_user(self, client):
        notification_id = state.db.notifications.add(
            user_id=1, type="feed_refresh", title="t", message="m"
        )
        response = client.post(f"/users/2/notifications/{notification_id}/read")
        assert response.status_code == 404

    def test_notifications_pruned_per_user(self, client):
        source_id = _add_source(client)
        client.post("/users/1/subscriptions", json={"source_id": source_id})
        service = NotificationService(state.db, keep=3)
        for _ in range(5):
            service.notify_refresh(RefreshResult(source_id=source_id, success=True, new_item_count=1))

        assert len(client.get("/users/1/notifications").json()) == 3
