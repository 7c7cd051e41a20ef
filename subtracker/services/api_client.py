"""
REST client for the subscription API.
Thin wrapper over httpx: attaches the bearer token, enforces a bounded
timeout and classifies every failure into the error taxonomy so callers
never see raw transport exceptions.
"""
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from ..core.config import settings
from ..core.exceptions import AuthenticationError, NetworkError, NotFoundError, ServerError

logger = logging.getLogger(__name__)

# Entity type -> collection path
ENTITY_PATHS = {
    "subscription": "subscriptions",
    "payment": "payments",
}


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return body.get("message") or body.get("error") or response.reason_phrase
    return response.reason_phrase


def extract_created_id(body: Any) -> str:
    """Server id from a create response; a timestamp when the server omits it."""
    if isinstance(body, dict):
        nested = body.get("subscription")
        if isinstance(nested, dict) and nested.get("id") is not None:
            return str(nested["id"])
        if body.get("id") is not None:
            return str(body["id"])
    logger.warning("Create response carried no id, falling back to a timestamp id")
    return str(int(time.time() * 1000))


class ApiClient:
    """HTTP client for the remote REST API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.API_TIMEOUT
        self._token: Optional[str] = None
        self._client = httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=transport)

    # ── Session ──────────────────────────────────────────────────────────────

    @property
    def token(self) -> Optional[str]:
        return self._token

    def set_token(self, token: Optional[str]) -> None:
        self._token = token

    def _auth_headers(self) -> Dict[str, str]:
        if not self._token:
            return {}
        token = self._token if self._token.startswith("Bearer ") else f"Bearer {self._token}"
        return {"Authorization": token}

    def close(self) -> None:
        self._client.close()

    # ── Transport ────────────────────────────────────────────────────────────

    def _request(self, method: str, path: str, authenticated: bool = True, **kwargs) -> Any:
        headers = self._auth_headers() if authenticated else {}
        try:
            resp = self._client.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("%s %s timed out after %ss", method, path, self.timeout)
            raise NetworkError(f"Request timed out: {method} {path}") from exc
        except httpx.TransportError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise NetworkError(f"Network error: {exc}") from exc

        if resp.status_code in (401, 403):
            raise AuthenticationError(_error_message(resp), status_code=resp.status_code)
        if resp.status_code == 404:
            raise NotFoundError(_error_message(resp))
        if resp.status_code >= 400:
            raise ServerError(_error_message(resp), status_code=resp.status_code)

        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError:
            return resp.text

    # ── Auth ─────────────────────────────────────────────────────────────────

    def login(self, email: str, password: str) -> Dict[str, Any]:
        """POST /auth {type: login} -> {token, user}."""
        return self._request(
            "POST", "/auth", authenticated=False,
            json={"type": "login", "email": email, "password": password},
        )

    def register(self, email: str, password: str, name: str) -> Dict[str, Any]:
        return self._request(
            "POST", "/auth", authenticated=False,
            json={"type": "register", "email": email, "password": password, "name": name},
        )

    # ── Subscriptions ────────────────────────────────────────────────────────

    def list_subscriptions(self, user_id: str) -> List[Dict[str, Any]]:
        body = self._request("GET", f"/subscriptions/user/{user_id}")
        return body if isinstance(body, list) else []

    def create_subscription(self, payload: Dict[str, Any]) -> Any:
        return self.create("subscription", payload)

    def update_subscription(self, subscription_id: str, payload: Dict[str, Any]) -> Any:
        return self.update("subscription", subscription_id, payload)

    def delete_subscription(self, subscription_id: str) -> Any:
        return self.delete("subscription", subscription_id)

    # ── Generic entity calls (used by the sync queue) ────────────────────────

    def create(self, entity_type: str, payload: Optional[Dict[str, Any]]) -> Any:
        return self._request("POST", f"/{ENTITY_PATHS[entity_type]}", json=payload)

    def update(self, entity_type: str, entity_id: str, payload: Optional[Dict[str, Any]]) -> Any:
        return self._request("PUT", f"/{ENTITY_PATHS[entity_type]}/{entity_id}", json=payload)

    def delete(self, entity_type: str, entity_id: str) -> Any:
        return self._request("DELETE", f"/{ENTITY_PATHS[entity_type]}/{entity_id}")
