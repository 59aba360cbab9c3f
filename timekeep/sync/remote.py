"""HTTP client for the remote document store and auth provider.

Every call is a single attempt. Failed writes are not retried here; the
sync engine re-sends the whole document on the next commit instead.
"""

import logging
from typing import Any

import httpx

from ..models import Authenticated, Document, DocumentFormatError, merge_onto_default

logger = logging.getLogger(__name__)


class RemoteError(Exception):
    """A remote call failed (non-2xx status, bad payload, or transport)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AuthError(RemoteError):
    """The credential was missing, invalid, or expired (HTTP 401)."""


class OfflineError(RemoteError):
    """The server could not be reached or did not answer in time."""


class RemoteClient:
    """Client for the ``/auth`` and ``/data`` endpoints."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the remote client.

        Args:
            base_url: Backend base URL (e.g., "http://localhost:4000").
            timeout: Request timeout in seconds.
            transport: Optional httpx transport, e.g. an ASGI transport that
                serves the backend in-process.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        token: str | None = None,
        json_data: Any = None,
    ) -> Any:
        """Make one HTTP request and decode the JSON response.

        Raises:
            AuthError: On HTTP 401.
            OfflineError: On connection failure or timeout.
            RemoteError: On any other failure.
        """
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method, path, headers=headers, json=json_data
                )
        except httpx.ConnectError as e:
            raise OfflineError(f"Connection failed: {e}") from e
        except httpx.TimeoutException as e:
            raise OfflineError(f"Request timeout: {e}") from e
        except httpx.HTTPError as e:
            raise RemoteError(f"Request error: {e}") from e

        if not response.is_success:
            message = _error_message(response)
            logger.debug(f"{method} {path} -> {response.status_code}: {message}")
            if response.status_code == 401:
                raise AuthError(message, response.status_code)
            raise RemoteError(message, response.status_code)

        if response.status_code == 204:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise RemoteError(
                f"Invalid JSON from {path}", response.status_code
            ) from e

    # ==================== Auth ====================

    async def register(self, name: str, email: str, password: str) -> Authenticated:
        data = await self._request(
            "POST",
            "/auth/register",
            json_data={"name": name, "email": email, "password": password},
        )
        return _session_from(data)

    async def login(self, email: str, password: str) -> Authenticated:
        data = await self._request(
            "POST",
            "/auth/login",
            json_data={"email": email, "password": password},
        )
        return _session_from(data)

    async def update_name(self, token: str, name: str) -> Authenticated:
        data = await self._request(
            "POST", "/auth/update-name", token=token, json_data={"name": name}
        )
        return _session_from({"user": (data or {}).get("user"), "token": token})

    async def update_password(self, token: str, password: str) -> None:
        await self._request(
            "POST",
            "/auth/update-password",
            token=token,
            json_data={"password": password},
        )

    async def delete_account(self, token: str) -> None:
        await self._request("DELETE", "/auth/delete", token=token)

    # ==================== Data ====================

    async def fetch_document(self, token: str) -> Document:
        """Fetch the full document, shallow-merged onto defaults."""
        data = await self._request("GET", "/data/full", token=token)
        try:
            return merge_onto_default(data)
        except DocumentFormatError as e:
            raise RemoteError(f"Server returned a malformed document: {e}") from e

    async def push_document(self, token: str, document: Document) -> None:
        """Replace the remote document with ``document`` as a whole."""
        payload = document.to_dict()
        await self._request("POST", "/data/full", token=token, json_data=payload)
        logger.debug(f"Pushed document with {len(document.tasks)} tasks")

    async def check_health(self) -> bool:
        try:
            data = await self._request("GET", "/api/health")
        except RemoteError as e:
            logger.debug(f"Health check failed: {e}")
            return False
        return isinstance(data, dict) and data.get("status") == "ok"


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"HTTP {response.status_code}"


def _session_from(data: Any) -> Authenticated:
    if not isinstance(data, dict):
        raise RemoteError("Unexpected auth response")
    user = data.get("user")
    token = data.get("token")
    if not isinstance(user, dict) or "id" not in user or not token:
        raise RemoteError("Auth response is missing user or token")
    return Authenticated.from_user(user, token)
