"""Shared fixtures: in-memory cache and a fake REST API behind httpx.MockTransport."""
import json
from typing import Dict, List, Optional

import httpx
import pytest

from subtracker.models.base import create_local_engine, init_db, make_session_factory
from subtracker.services.api_client import ApiClient
from subtracker.services.connectivity import ConnectivityMonitor
from subtracker.services.local_store import LocalStore
from subtracker.services.offline_sync import SyncQueue
from subtracker.services.subscription_repository import SubscriptionRepository

BASE_URL = "http://testserver/api"


class FakeSubscriptionApi:
    """In-process stand-in for the serverless handlers."""

    def __init__(self):
        self.subscriptions: Dict[str, dict] = {}
        self.users: Dict[str, dict] = {}
        self.passwords: Dict[str, str] = {}
        self.requests: List[httpx.Request] = []
        self.next_id = 1
        self.network_down = False
        self.force_status: Optional[int] = None
        self.fail_paths: Dict[str, int] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.network_down:
            raise httpx.ConnectError("Network Error", request=request)
        if self.force_status is not None:
            return httpx.Response(self.force_status, json={"error": "forced failure"})

        path = request.url.path[len("/api"):]
        if path in self.fail_paths:
            return httpx.Response(self.fail_paths[path], json={"error": "forced failure"})
        body = json.loads(request.content) if request.content else None
        method = request.method

        if path == "/auth" and method == "POST":
            return self._auth(body)

        if path.startswith("/subscriptions/user/") and method == "GET":
            user_id = path.rsplit("/", 1)[-1]
            rows = [s for s in self.subscriptions.values() if str(s.get("user_id", s.get("userId"))) == user_id]
            return httpx.Response(200, json=rows)

        if path == "/subscriptions" and method == "POST":
            new_id = f"srv-{self.next_id}"
            self.next_id += 1
            record = {**body, "id": new_id}
            self.subscriptions[new_id] = record
            return httpx.Response(201, json={"message": "Subscription created successfully", "subscription": record})

        if path.startswith("/subscriptions/"):
            sub_id = path.rsplit("/", 1)[-1]
            if sub_id not in self.subscriptions:
                return httpx.Response(404, json={"error": "Subscription not found"})
            if method == "PUT":
                self.subscriptions[sub_id] = {**body, "id": sub_id}
                return httpx.Response(200, json={"message": "Subscription updated successfully", "subscription": body})
            if method == "DELETE":
                del self.subscriptions[sub_id]
                return httpx.Response(200, json={"message": "Subscription deleted successfully"})

        if path == "/payments" and method == "POST":
            return httpx.Response(201, json={**body, "id": "pay-1"})

        return httpx.Response(405, json={"error": "Method not allowed"})

    def _auth(self, body: dict) -> httpx.Response:
        email = body["email"]
        if body["type"] == "register":
            if email in self.users:
                return httpx.Response(400, json={"message": "User already exists"})
            user = {"id": f"user-{len(self.users) + 1}", "email": email, "name": body.get("name"), "role": "user"}
            self.users[email] = user
            self.passwords[email] = body["password"]
            return httpx.Response(201, json={"token": f"jwt-{user['id']}", "user": user})
        if email not in self.users or self.passwords[email] != body["password"]:
            return httpx.Response(401, json={"message": "Invalid credentials"})
        user = self.users[email]
        return httpx.Response(200, json={"token": f"jwt-{user['id']}", "user": user})

    def calls(self, method: str, prefix: str = "") -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path[len("/api"):].startswith(prefix)]


@pytest.fixture()
def store():
    engine = create_local_engine("sqlite:///:memory:")
    init_db(engine)
    yield LocalStore(make_session_factory(engine))
    engine.dispose()


@pytest.fixture()
def fake_api():
    return FakeSubscriptionApi()


@pytest.fixture()
def api(fake_api):
    client = ApiClient(base_url=BASE_URL, timeout=10, transport=httpx.MockTransport(fake_api.handler))
    client.set_token("test-token")
    yield client
    client.close()


@pytest.fixture()
def connectivity():
    return ConnectivityMonitor(online=True)


@pytest.fixture()
def sync_queue(store, api, connectivity):
    return SyncQueue(store, api, connectivity, flush_on_enqueue=True)


@pytest.fixture()
def repository(api, store, sync_queue):
    return SubscriptionRepository(api, store, sync_queue)
