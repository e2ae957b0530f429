"""Async client for the parts of the Shopify Admin GraphQL API used for class metaobjects."""
import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

METAOBJECT_FIELDS = """
      id
      handle
      updatedAt
      capabilities { publishable { status } }
      fields { key value }
"""

METAOBJECT_UPSERT = """
mutation MetaobjectUpsert($handle: MetaobjectHandleInput!, $metaobject: MetaobjectUpsertInput!) {
  metaobjectUpsert(handle: $handle, metaobject: $metaobject) {
    metaobject {%s}
    userErrors { field message code }
  }
}
""" % METAOBJECT_FIELDS

METAOBJECT_UPDATE = """
mutation MetaobjectUpdate($id: ID!, $metaobject: MetaobjectUpdateInput!) {
  metaobjectUpdate(id: $id, metaobject: $metaobject) {
    metaobject {%s}
    userErrors { field message code }
  }
}
""" % METAOBJECT_FIELDS

METAOBJECTS_LIST = """
query ListMetaobjects($type: String!, $first: Int!) {
  metaobjects(type: $type, first: $first) {
    nodes {%s}
  }
}
""" % METAOBJECT_FIELDS

METAOBJECT_GET = """
query GetMetaobject($id: ID!) {
  metaobject(id: $id) {%s}
}
""" % METAOBJECT_FIELDS

ACTIVE = "ACTIVE"
DRAFT = "DRAFT"
MAX_PAGE_SIZE = 250


class ShopifyError(Exception):
    """Transport, HTTP or top-level GraphQL failure talking to Shopify."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ShopifyNotConfigured(ShopifyError):
    pass


class ShopifyUserError(ShopifyError):
    """A mutation came back with userErrors; the change was not applied."""

    def __init__(self, user_errors: list[dict]) -> None:
        self.user_errors = user_errors
        super().__init__("; ".join(str(e.get("message", "")) for e in user_errors))

    @property
    def already_published(self) -> bool:
        for e in self.user_errors:
            message = str(e.get("message", "")).lower()
            if "already" in message and ("publish" in message or "active" in message):
                return True
        return False


def field_value(metaobject: dict, key: str) -> str:
    for f in metaobject.get("fields") or []:
        if f.get("key") == key:
            return f.get("value") or ""
    return ""


def publish_status(metaobject: dict) -> str:
    capabilities = metaobject.get("capabilities") or {}
    publishable = capabilities.get("publishable") or {}
    return publishable.get("status") or ""


def _publishable(publish: bool | None) -> dict:
    if publish is None:
        return {}
    return {"capabilities": {"publishable": {"status": ACTIVE if publish else DRAFT}}}


class ShopifyAdminClient:
    def __init__(
        self,
        shop: str,
        access_token: str,
        api_version: str = "2025-01",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._shop = shop.strip().removeprefix("https://").rstrip("/")
        self._access_token = access_token
        self._api_version = api_version
        self._timeout = timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self._shop and self._access_token)

    @property
    def endpoint(self) -> str:
        return f"https://{self._shop}/admin/api/{self._api_version}/graphql.json"

    async def graphql(self, query: str, variables: dict[str, Any]) -> dict:
        """POST one GraphQL document and return its `data` object."""
        if not self.is_configured:
            raise ShopifyNotConfigured("Shopify Admin API is not configured.")

        headers = {
            "X-Shopify-Access-Token": self._access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    self.endpoint, json={"query": query, "variables": variables}, headers=headers
                )
        except httpx.HTTPError as exc:
            logger.error("[shopify] request failed | error=%s", exc)
            raise ShopifyError(f"Shopify request failed: {exc}") from exc

        if response.status_code >= 400:
            logger.error("[shopify] http error | status=%d", response.status_code)
            raise ShopifyError(
                f"Shopify API error ({response.status_code}): {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise ShopifyError("Shopify returned a non-JSON response.", response.status_code) from exc

        errors = body.get("errors")
        if errors:
            if not isinstance(errors, list):
                errors = [errors]
            messages = "; ".join(
                str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors
            )
            raise ShopifyError(f"Shopify returned errors: {messages}", response.status_code)
        return body.get("data") or {}

    @staticmethod
    def _payload(data: dict, root: str) -> dict:
        result = data.get(root) or {}
        user_errors = result.get("userErrors") or []
        if user_errors:
            raise ShopifyUserError(user_errors)
        return result.get("metaobject") or {}

    async def upsert_metaobject(
        self, metaobject_type: str, handle: str, fields: list[dict], publish: bool | None = None
    ) -> dict:
        """Create or update a metaobject keyed by handle. Raises ShopifyUserError on userErrors."""
        variables = {
            "handle": {"type": metaobject_type, "handle": handle},
            "metaobject": {"fields": fields, **_publishable(publish)},
        }
        data = await self.graphql(METAOBJECT_UPSERT, variables)
        metaobject = self._payload(data, "metaobjectUpsert")
        logger.info("[shopify] metaobject upserted | handle=%s | id=%s", handle, metaobject.get("id"))
        return metaobject

    async def update_metaobject(
        self, metaobject_id: str, fields: list[dict] | None = None, publish: bool | None = None
    ) -> dict:
        metaobject: dict[str, Any] = {**_publishable(publish)}
        if fields:
            metaobject["fields"] = fields
        data = await self.graphql(METAOBJECT_UPDATE, {"id": metaobject_id, "metaobject": metaobject})
        updated = self._payload(data, "metaobjectUpdate")
        logger.info("[shopify] metaobject updated | id=%s", metaobject_id)
        return updated

    async def list_metaobjects(self, metaobject_type: str, first: int = MAX_PAGE_SIZE) -> list[dict]:
        first = max(1, min(first, MAX_PAGE_SIZE))
        data = await self.graphql(METAOBJECTS_LIST, {"type": metaobject_type, "first": first})
        return (data.get("metaobjects") or {}).get("nodes") or []

    async def get_metaobject(self, metaobject_id: str) -> dict | None:
        """Fetch one metaobject by GID; None when Shopify has no such object."""
        data = await self.graphql(METAOBJECT_GET, {"id": metaobject_id})
        return data.get("metaobject")
