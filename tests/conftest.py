import json

import httpx
import pytest
from fastapi.testclient import TestClient

from classintake.config import Settings
from classintake.db.connection import Database, run_migrations
from classintake.main import create_app
from classintake.repositories.submission_repository import SubmissionRepository
from classintake.services.moderation_service import ModerationService
from classintake.services.shopify_client import ShopifyAdminClient


class FakeShopify:
    """In-memory stand-in for the Admin GraphQL endpoint, served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.metaobjects: dict[str, dict] = {}
        self.next_user_errors: list[dict] | None = None

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def client(self) -> ShopifyAdminClient:
        return ShopifyAdminClient("test-shop.myshopify.com", "shpat_test", transport=self.transport)

    def seed(self, handle: str, fields: dict[str, str], publish_status: str = "DRAFT") -> dict:
        metaobject = {
            "id": f"gid://shopify/Metaobject/{len(self.metaobjects) + 1000}",
            "handle": handle,
            "updatedAt": "2026-01-01T00:00:00Z",
            "capabilities": {"publishable": {"status": publish_status}},
            "fields": [{"key": k, "value": v} for k, v in fields.items()],
        }
        self.metaobjects[handle] = metaobject
        return metaobject

    def field(self, handle: str, key: str) -> str:
        metaobject = self.metaobjects[handle]
        return next((f["value"] for f in metaobject["fields"] if f["key"] == key), "")

    def publish_status(self, handle: str) -> str:
        return self.metaobjects[handle]["capabilities"]["publishable"]["status"]

    def by_id(self, metaobject_id: str) -> dict | None:
        return next((m for m in self.metaobjects.values() if m["id"] == metaobject_id), None)

    @staticmethod
    def _apply(metaobject: dict, changes: dict) -> None:
        current = {f["key"]: f["value"] for f in metaobject["fields"]}
        for f in changes.get("fields") or []:
            current[f["key"]] = f["value"]
        metaobject["fields"] = [{"key": k, "value": v} for k, v in current.items()]
        status = ((changes.get("capabilities") or {}).get("publishable") or {}).get("status")
        if status:
            metaobject["capabilities"] = {"publishable": {"status": status}}

    def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.calls.append(body)
        query, variables = body["query"], body["variables"]
        if "metaobject(id:" in query:
            return httpx.Response(200, json={"data": {"metaobject": self.by_id(variables["id"])}})
        if "metaobjects(" in query:
            nodes = list(self.metaobjects.values())[: variables["first"]]
            return httpx.Response(200, json={"data": {"metaobjects": {"nodes": nodes}}})

        root = "metaobjectUpsert" if "metaobjectUpsert(" in query else "metaobjectUpdate"
        if self.next_user_errors is not None:
            errors, self.next_user_errors = self.next_user_errors, None
            return httpx.Response(200, json={"data": {root: {"metaobject": None, "userErrors": errors}}})

        if root == "metaobjectUpsert":
            handle = variables["handle"]["handle"]
            metaobject = self.metaobjects.get(handle) or self.seed(handle, {})
        else:
            metaobject = self.by_id(variables["id"])
            if metaobject is None:
                errors = [{"field": ["id"], "message": "Metaobject not found", "code": "RECORD_NOT_FOUND"}]
                return httpx.Response(200, json={"data": {root: {"metaobject": None, "userErrors": errors}}})
        self._apply(metaobject, variables["metaobject"])
        return httpx.Response(200, json={"data": {root: {"metaobject": metaobject, "userErrors": []}}})


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        DB_PATH=str(tmp_path / "classintake.db"),
        TURNSTILE_SECRET_KEY="",
        TURNSTILE_SITE_KEY="site-key",
        SHOPIFY_SHOP="",
        SHOPIFY_ACCESS_TOKEN="",
        ALLOWED_ORIGINS="",
    )


@pytest.fixture
def db(settings):
    database = Database(settings.DB_PATH, pool_size=2)
    run_migrations(database)
    yield database
    database.close()


@pytest.fixture
def repository(db) -> SubmissionRepository:
    return SubmissionRepository(db)


@pytest.fixture
def fake_shopify() -> FakeShopify:
    return FakeShopify()


@pytest.fixture
def client(settings, fake_shopify):
    app = create_app(settings)
    with TestClient(app, raise_server_exceptions=True) as c:
        # Swap in a Shopify client that talks to the in-memory fake.
        app.state.moderation_service = ModerationService(app.state.repository, fake_shopify.client())
        yield c
