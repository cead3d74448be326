"""In-memory stand-ins for the identity store API and the ERP stock feed."""

from __future__ import annotations

import json
from typing import Any

import httpx

IDENTITY_BASE_PATH = "/v1"


def _error(status_code: int, message: str) -> httpx.Response:
    return httpx.Response(status_code, json={"errors": [{"message": message}]})


class FakeIdentityStore:
    def __init__(self) -> None:
        self.users: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[tuple[str, str], int | Exception] = {}
        self.clock_ms = 1_700_000_000_000
        self._sequence = 0

    def client(self, page_size: int | None = None):
        from app.ricedash.clients.identity_store import IdentityStoreClient

        return IdentityStoreClient(page_size=page_size, transport=httpx.MockTransport(self.handler))

    def fail(self, method: str, path: str, outcome: int | Exception) -> None:
        self.failures[(method, path)] = outcome

    def add_user(self, username: str, *, role: str = "NO_ROLE", locations: list | None = None, **extra) -> dict:
        self._sequence += 1
        user_id = extra.pop("id", None) or f"user_{self._sequence:04d}"
        self.users[user_id] = {
            "id": user_id,
            "username": username,
            "first_name": extra.get("first_name"),
            "last_name": extra.get("last_name"),
            "public_metadata": {"role": role, "locations": locations or []},
            "updated_at": self._tick(),
        }
        return self.users[user_id]

    def _tick(self) -> int:
        self.clock_ms += 1000
        return self.clock_ms

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.startswith(IDENTITY_BASE_PATH):
            path = path[len(IDENTITY_BASE_PATH):]
        method = request.method
        self.calls.append((method, path))

        assert request.headers["Authorization"] == "Bearer sk_test_identity"

        outcome = self.failures.get((method, path))
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, int):
            return _error(outcome, "injected failure")

        parts = [part for part in path.split("/") if part]
        if parts == ["users"] and method == "POST":
            return self._create(json.loads(request.content))
        if parts == ["users"] and method == "GET":
            limit = int(request.url.params.get("limit", 10))
            offset = int(request.url.params.get("offset", 0))
            return httpx.Response(200, json=list(self.users.values())[offset:offset + limit])
        if len(parts) >= 2 and parts[0] == "users":
            user = self.users.get(parts[1])
            if user is None:
                return _error(404, "not found")
            if len(parts) == 2 and method == "GET":
                return httpx.Response(200, json=user)
            if len(parts) == 2 and method == "DELETE":
                del self.users[parts[1]]
                return httpx.Response(200, json={"id": parts[1], "object": "user", "deleted": True})
            if parts[2:] == ["metadata"] and method == "PATCH":
                body = json.loads(request.content)
                user["public_metadata"] = {**user["public_metadata"], **body.get("public_metadata", {})}
                user["updated_at"] = self._tick()
                return httpx.Response(200, json=user)
        return _error(405, "unsupported")

    def _create(self, body: dict) -> httpx.Response:
        if any(user["username"] == body.get("username") for user in self.users.values()):
            return _error(422, "That username is taken")
        metadata = body.get("public_metadata") or {}
        user = self.add_user(body["username"], role=metadata.get("role"), locations=metadata.get("locations"))
        return httpx.Response(200, json=user)


def feed_record(
    product_id: int,
    org_id: int,
    *,
    name: str | None = None,
    org_name: str = "ORG",
    product_type: str | None = "RAW MATERIAL",
    quantity: float = 100,
    weight: float = 50,
) -> dict:
    record = {
        "id": product_id,
        "Name": name or f"Beras {product_id}",
        "AD_Org_ID": {"id": org_id, "identifier": org_name},
        "C_UOM_ID": {"id": 100, "identifier": "Kg"},
        "M_Product_Category_ID": {"id": 200, "identifier": "Beras Premium"},
        "Weight": weight,
        "SumQtyOnHand": quantity,
    }
    if product_type is not None:
        record["product_type"] = product_type
    return record


class FakeStockFeed:
    def __init__(self) -> None:
        self.records: list[dict] = []
        self.payload: Any = None
        self.status_code = 200
        self.error: Exception | None = None
        self.requests: list[httpx.Request] = []

    def client(self):
        from app.ricedash.clients.stock_feed import StockFeedClient

        return StockFeedClient(transport=httpx.MockTransport(self.handler))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": "feed failure"})
        if self.payload is not None:
            return httpx.Response(200, json=self.payload)
        return httpx.Response(200, json={"records": self.records})
