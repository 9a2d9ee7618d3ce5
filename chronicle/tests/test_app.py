import unittest
from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

from chronicle import dependencies
from chronicle.app import create_app
from chronicle.cache import InMemoryCacheStore, RedisCacheStore
from chronicle.config import IN_MEMORY_DATABASE_URL, Settings
from chronicle.db import Database
from chronicle.dependencies import get_cache_store, get_database

STORY = {
    "title": "How are you?",
    "excerpt": "An excerpt",
    "content": "Some content",
    "reporter": "Reporter",
    "editor": "Editor",
    "author": "Author",
}


class RecordingStore(InMemoryCacheStore):
    def __post_init__(self):
        super().__post_init__()
        self.calls = []

    def get(self, key):
        self.calls.append(("get", key))
        return super().get(key)

    def set_with_expiry(self, key, value, ttl_seconds):
        self.calls.append(("set_with_expiry", key))
        super().set_with_expiry(key, value, ttl_seconds)


class UnreachableStore(RecordingStore):
    def ping(self):
        return False


class ApiTestCase(unittest.TestCase):
    cache_response = False

    def setUp(self):
        self.db = Database("sqlite+pysqlite:///:memory:")
        self.addCleanup(self.db.dispose)
        self.store = RecordingStore()
        self.client = self.make_client(self.store, cache_response=self.cache_response)

    def make_client(self, store, cache_response=True):
        settings = Settings(use_in_memory_backends=True, cache_response=cache_response)
        app = create_app(settings, cache_store=store)
        app.dependency_overrides[get_database] = lambda: self.db
        return TestClient(app)

    def create_topic(self, name):
        response = self.client.post("/api/topics/insert", json={"name": name})
        self.assertEqual(response.status_code, 201)
        return response.json()["topic"]

    def create_story(self, topics=(), **fields):
        payload = {**STORY, **fields, "topics": list(topics)}
        response = self.client.post("/api/stories/insert", json=payload)
        self.assertEqual(response.status_code, 201)
        return response.json()["story"]


class StoryApiTests(ApiTestCase):
    def test_create_and_fetch(self):
        topic = self.create_topic("Pemilu 2019")
        response = self.client.post(
            "/api/stories/insert", json={**STORY, "topics": [topic["id"]]}
        )
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["status"], 201)
        story = body["story"]
        self.assertEqual(story["slug"], "how-are-you")
        self.assertEqual(story["status"], "Draft")
        self.assertEqual([t["id"] for t in story["topics"]], [topic["id"]])

        by_id = self.client.get(f"/api/stories/{story['id']}")
        self.assertEqual(by_id.status_code, 200)
        self.assertEqual(by_id.json()["story"]["title"], "How are you?")

        by_slug = self.client.get("/api/stories/how-are-you")
        self.assertEqual(by_slug.status_code, 200)
        self.assertEqual(by_slug.json()["story"]["id"], story["id"])

    def test_missing_story_is_404(self):
        self.assertEqual(self.client.get("/api/stories/99").status_code, 404)
        self.assertEqual(self.client.get("/api/stories/nope").status_code, 404)
        self.assertEqual(
            self.client.patch("/api/stories/99/update", json={"title": "x"}).status_code,
            404,
        )
        self.assertEqual(self.client.delete("/api/stories/99/delete").status_code, 404)

    def test_create_requires_fields(self):
        response = self.client.post("/api/stories/insert", json={"title": "Only"})
        self.assertEqual(response.status_code, 422)

    def test_unknown_topic_is_rejected(self):
        response = self.client.post(
            "/api/stories/insert", json={**STORY, "topics": [404]}
        )
        self.assertEqual(response.status_code, 400)
        listing = self.client.get("/api/stories/").json()
        self.assertEqual(listing["pagination"]["total_items"], 0)

    def test_update_merges_fields(self):
        first = self.create_topic("First")
        second = self.create_topic("Second")
        story = self.create_story([first["id"]])

        response = self.client.patch(
            f"/api/stories/{story['id']}/update",
            json={"title": "Brand new title", "excerpt": "", "status": "Published"},
        )
        self.assertEqual(response.status_code, 200)
        updated = response.json()["story"]
        self.assertEqual(updated["slug"], "brand-new-title")
        self.assertEqual(updated["excerpt"], "An excerpt")
        self.assertEqual(updated["status"], "Published")
        self.assertEqual([t["id"] for t in updated["topics"]], [first["id"]])

        response = self.client.patch(
            f"/api/stories/{story['id']}/update", json={"topics": [second["id"]]}
        )
        self.assertEqual(
            [t["id"] for t in response.json()["story"]["topics"]], [second["id"]]
        )

    def test_delete(self):
        story = self.create_story()
        response = self.client.delete(f"/api/stories/{story['id']}/delete")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": 200, "message": "Story Deleted"})
        self.assertEqual(self.client.get(f"/api/stories/{story['id']}").status_code, 404)

    def test_listing_pagination(self):
        for i in range(5):
            self.create_story(title=f"Story {i}")
        response = self.client.get(
            "/api/stories/",
            params={"page": 2, "limit": 2, "sort-by": "createdAt", "order": "asc"},
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual([s["title"] for s in body["stories"]], ["Story 2", "Story 3"])
        self.assertEqual(
            body["pagination"],
            {"total_items": 5, "page": 2, "items_per_page": 2, "total_page": 3},
        )

        past_end = self.client.get("/api/stories/", params={"page": 9, "limit": 2})
        self.assertEqual(past_end.json()["stories"], [])
        self.assertEqual(past_end.json()["pagination"]["total_items"], 5)

    def test_listing_filters_by_topic_and_status(self):
        t1 = self.create_topic("T1")
        t2 = self.create_topic("T2")
        a = self.create_story([t1["id"], t2["id"]], title="Story A")
        b = self.create_story([t2["id"]], title="Story B")
        self.client.patch(f"/api/stories/{b['id']}/update", json={"status": "Published"})

        by_t2 = self.client.get("/api/stories/", params={"topic": t2["id"]}).json()
        self.assertEqual({s["id"] for s in by_t2["stories"]}, {a["id"], b["id"]})
        self.assertEqual(by_t2["pagination"]["total_items"], 2)

        by_t1 = self.client.get("/api/stories/", params={"topic": t1["id"]}).json()
        self.assertEqual([s["id"] for s in by_t1["stories"]], [a["id"]])
        self.assertEqual(
            {t["id"] for t in by_t1["stories"][0]["topics"]}, {t1["id"], t2["id"]}
        )

        published = self.client.get(
            "/api/stories/", params={"topic": t2["id"], "status": "Published"}
        ).json()
        self.assertEqual([s["id"] for s in published["stories"]], [b["id"]])

    def test_invalid_listing_parameters_are_400(self):
        for params in (
            {"sort-by": "name"},
            {"order": "sideways"},
            {"page": 0},
            {"limit": 1000},
            {"status": "Archived"},
            {"topic": 10**20},
            {"topic": 0},
            {"page": 10**20},
        ):
            with self.subTest(params=params):
                response = self.client.get("/api/stories/", params=params)
                self.assertEqual(response.status_code, 400)

    def test_oversized_ids_are_not_found(self):
        huge = 10**20
        self.assertEqual(self.client.get(f"/api/stories/{huge}").status_code, 404)
        self.assertEqual(self.client.get(f"/api/topics/{huge}").status_code, 404)
        self.assertEqual(
            self.client.patch(f"/api/stories/{huge}/update", json={"title": "x"}).status_code,
            404,
        )
        self.assertEqual(self.client.delete(f"/api/topics/{huge}/delete").status_code, 404)

    def test_oversized_topic_ids_in_body_are_rejected(self):
        response = self.client.post(
            "/api/stories/insert", json={**STORY, "topics": [10**20]}
        )
        self.assertEqual(response.status_code, 422)
        story = self.create_story()
        response = self.client.patch(
            f"/api/stories/{story['id']}/update", json={"topics": [10**20]}
        )
        self.assertEqual(response.status_code, 422)

    def test_blank_parameters_use_defaults(self):
        response = self.client.get("/api/stories/?page=&limit=&sort-by=")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["pagination"]["items_per_page"], 20)

    def test_datastore_failure_is_500(self):
        broken = MagicMock()
        broken.Session.side_effect = OperationalError("SELECT 1", {}, Exception("down"))
        self.client.app.dependency_overrides[get_database] = lambda: broken
        response = self.client.get("/api/stories/1")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"detail": "Something is wrong"})
        self.assertIn("x-request-id", response.headers)


class TopicApiTests(ApiTestCase):
    def test_topic_crud(self):
        topic = self.create_topic("Pilkada 2019")
        self.assertEqual(topic["slug"], "pilkada-2019")

        self.assertEqual(
            self.client.get("/api/topics/pilkada-2019").json()["topic"]["id"], topic["id"]
        )
        renamed = self.client.patch(
            f"/api/topics/{topic['id']}/update", json={"name": "Pilkada DKI"}
        ).json()["topic"]
        self.assertEqual(renamed["slug"], "pilkada-dki")

        listing = self.client.get("/api/topics/").json()
        self.assertEqual([t["id"] for t in listing["topics"]], [topic["id"]])
        self.assertEqual(listing["pagination"]["total_page"], 1)

        deleted = self.client.delete(f"/api/topics/{topic['id']}/delete")
        self.assertEqual(deleted.json()["message"], "Topic Deleted")
        self.assertEqual(self.client.get(f"/api/topics/{topic['id']}").status_code, 404)

    def test_deleting_topic_unlinks_stories(self):
        topic = self.create_topic("Short lived")
        story = self.create_story([topic["id"]])
        self.client.delete(f"/api/topics/{topic['id']}/delete")
        fetched = self.client.get(f"/api/stories/{story['id']}").json()["story"]
        self.assertEqual(fetched["topics"], [])


class ResponseCachingTests(ApiTestCase):
    cache_response = True

    def test_listing_is_served_from_cache_until_expiry(self):
        self.create_story(title="Before")
        first = self.client.get("/api/stories/").json()
        self.create_story(title="After")
        second = self.client.get("/api/stories/").json()
        # No invalidation on write: the cached page stays until its TTL.
        self.assertEqual(second, first)
        self.assertEqual(second["pagination"]["total_items"], 1)

        self.store.clear()
        third = self.client.get("/api/stories/").json()
        self.assertEqual(third["pagination"]["total_items"], 2)

    def test_writes_are_never_cached(self):
        self.create_topic("Not cached")
        self.assertEqual(self.store.calls, [])

    def test_rejected_sort_touches_neither_cache_nor_database(self):
        statements = []
        event.listen(
            self.db.engine,
            "before_cursor_execute",
            lambda *args, **kwargs: statements.append(args[2]),
        )
        response = self.client.get("/api/stories/", params={"sort-by": "name"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.store.calls, [])
        self.assertEqual(statements, [])

    def test_unreachable_cache_disables_caching(self):
        store = UnreachableStore()
        client = self.make_client(store)
        self.assertEqual(client.get("/api/stories/").status_code, 200)
        self.assertEqual(store.calls, [])

    def test_request_id_header(self):
        first = self.client.get("/api/topics/")
        second = self.client.get("/api/topics/")
        self.assertNotEqual(first.headers["x-request-id"], second.headers["x-request-id"])


class SettingsAndWiringTests(unittest.TestCase):
    def test_effective_database_url(self):
        self.assertEqual(
            Settings(database_url=None).effective_database_url, IN_MEMORY_DATABASE_URL
        )
        url = "postgresql+psycopg2://user:pw@db/chronicle"
        self.assertEqual(Settings(database_url=url).effective_database_url, url)
        self.assertEqual(
            Settings(database_url=url, use_in_memory_backends=True).effective_database_url,
            IN_MEMORY_DATABASE_URL,
        )

    def test_redis_url_selects_redis_store(self):
        original = dependencies._cache_store
        self.addCleanup(setattr, dependencies, "_cache_store", original)
        dependencies._cache_store = None
        settings = Settings(redis_url="redis://cache:6379/0", use_in_memory_backends=False)
        with patch("chronicle.dependencies.get_settings", return_value=settings), patch(
            "chronicle.cache.redis.Redis.from_url"
        ) as from_url:
            store = get_cache_store()
        self.assertIsInstance(store, RedisCacheStore)
        from_url.assert_called_once_with("redis://cache:6379/0")

    def test_in_memory_store_without_redis(self):
        original = dependencies._cache_store
        self.addCleanup(setattr, dependencies, "_cache_store", original)
        dependencies._cache_store = None
        settings = Settings(redis_url=None)
        with patch("chronicle.dependencies.get_settings", return_value=settings):
            self.assertIsInstance(get_cache_store(), InMemoryCacheStore)


if __name__ == "__main__":
    unittest.main()
