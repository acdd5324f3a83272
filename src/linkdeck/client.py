"""Async HTTP client for the LinkDeck remote store.

The client attaches the current credential to every request and translates
transport outcomes into two error kinds: :class:`AuthorizationError` when the
store rejects the credential, and :class:`PersistenceError` for everything
else. Authorization rejections are also reported to the session coordinator
before the error is raised, so callers only have to stop what they were doing.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

import httpx

if TYPE_CHECKING:
    from linkdeck.sync.session import SessionCoordinator

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://127.0.0.1:8080"


class LinkDeckError(Exception):
    """Base class for remote store errors."""


class AuthorizationError(LinkDeckError):
    """The remote store rejected the credential (HTTP 401)."""


class PersistenceError(LinkDeckError):
    """A network or server error while talking to the remote store."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class ExportPayload:
    """Opaque export artifact as returned by the store."""

    content: bytes
    content_disposition: Optional[str] = None
    media_type: str = "application/json"


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(data, dict):
        detail = data.get("detail") or data.get("error")
        if detail:
            return str(detail)
    return response.reason_phrase


class LinkDeckClient:
    """Client for the LinkDeck API."""

    USER_AGENT = "LinkDeck-Client"

    def __init__(
        self,
        base_url: Optional[str] = None,
        coordinator: Optional["SessionCoordinator"] = None,
        timeout: Optional[float] = None,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Server root, e.g. ``http://127.0.0.1:8080``.
            coordinator: Session coordinator supplying the credential and
                receiving authorization rejections.
            timeout: Request timeout in seconds. When omitted the transport's
                own default applies.
            max_retries: Retries for GET requests that fail to connect.
            retry_delay: Base delay between retries (exponential backoff).
            transport: Optional custom httpx transport (e.g. ASGI in tests).
        """
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.coordinator = coordinator
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            kwargs: dict[str, Any] = {}
            if self.timeout is not None:
                kwargs["timeout"] = self.timeout
            if self._transport is not None:
                kwargs["transport"] = self._transport
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Accept": "application/json",
                    "User-Agent": self.USER_AGENT,
                },
                event_hooks={"request": [self._attach_credential]},
                **kwargs,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "LinkDeckClient":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def _attach_credential(self, request: httpx.Request) -> None:
        if self.coordinator is None:
            return
        # Pick up a logout done by another process before using the token.
        sync = getattr(self.coordinator.store, "sync", None)
        if callable(sync):
            sync()
        token = self.coordinator.token
        if token:
            request.headers["Authorization"] = f"Bearer {token}"

    async def _request(
        self,
        method: str,
        url: str,
        report_unauthorized: bool = True,
        **kwargs,
    ) -> httpx.Response:
        """Make a request and map failures onto the client's error kinds.

        Raises:
            AuthorizationError: The store answered 401.
            PersistenceError: Any other failure.
        """
        attempts = self.max_retries + 1 if method == "GET" else 1
        response: Optional[httpx.Response] = None
        for attempt in range(attempts):
            try:
                response = await self.client.request(method, url, **kwargs)
                break
            except (httpx.ConnectError, httpx.ConnectTimeout) as e:
                if attempt + 1 < attempts:
                    delay = self.retry_delay * (2 ** attempt)
                    logger.debug("%s %s failed (%s), retrying in %.1fs", method, url, e, delay)
                    await asyncio.sleep(delay)
                    continue
                raise PersistenceError(f"{method} {url} failed: {e}") from e
            except httpx.HTTPError as e:
                raise PersistenceError(f"{method} {url} failed: {e}") from e

        assert response is not None
        if response.status_code == 401:
            detail = _error_detail(response)
            if report_unauthorized and self.coordinator is not None:
                self.coordinator.report_unauthorized()
            raise AuthorizationError(detail)
        if response.is_error:
            raise PersistenceError(
                f"{method} {url} returned {response.status_code}: {_error_detail(response)}",
                status_code=response.status_code,
            )
        return response

    # =========================================================================
    # Auth
    # =========================================================================

    async def login(self, username: str, password: str) -> tuple[str, str]:
        """Exchange credentials for a token.

        Returns:
            ``(token, username)``

        Raises:
            AuthorizationError: Invalid username or password. This is not a
                session expiry and is not reported to the coordinator.
        """
        response = await self._request(
            "POST",
            "/api/login",
            report_unauthorized=False,
            json={"username": username, "password": password},
        )
        data = response.json()
        return data["token"], data["username"]

    async def change_password(self, old_password: str, new_password: str) -> None:
        await self._request(
            "POST",
            "/api/admin/change-password",
            json={"old_password": old_password, "new_password": new_password},
        )

    # =========================================================================
    # Groups and links
    # =========================================================================

    async def get_link_groups(self) -> list[dict]:
        """Fetch the public groups-with-links list."""
        response = await self._request("GET", "/api/links")
        return response.json()

    async def get_admin_link_groups(self) -> list[dict]:
        """Fetch groups-with-links through the authenticated admin route."""
        response = await self._request("GET", "/api/admin/link-groups")
        return response.json()

    async def get_group_links(self, group_id: int) -> list[dict]:
        response = await self._request("GET", f"/api/admin/link-groups/{group_id}/links")
        return response.json()

    async def create_link_group(self, name: str, sort_order: int) -> int:
        """Create a group and return the store-assigned id."""
        response = await self._request(
            "POST",
            "/api/admin/link-groups",
            json={"name": name, "sort_order": sort_order},
        )
        return int(response.json()["id"])

    async def update_link_group(self, group_id: int, name: str, sort_order: int) -> None:
        await self._request(
            "PUT",
            f"/api/admin/link-groups/{group_id}",
            json={"name": name, "sort_order": sort_order},
        )

    async def delete_link_group(self, group_id: int) -> None:
        await self._request("DELETE", f"/api/admin/link-groups/{group_id}")

    async def create_link(self, group_id: int, name: str, url: str, sort_order: int) -> int:
        """Create a link and return the store-assigned id."""
        response = await self._request(
            "POST",
            "/api/admin/links",
            json={"group_id": group_id, "name": name, "url": url, "sort_order": sort_order},
        )
        return int(response.json()["id"])

    async def update_link(
        self,
        link_id: int,
        group_id: int,
        name: str,
        url: str,
        sort_order: int,
    ) -> None:
        await self._request(
            "PUT",
            f"/api/admin/links/{link_id}",
            json={"group_id": group_id, "name": name, "url": url, "sort_order": sort_order},
        )

    async def delete_link(self, link_id: int) -> None:
        await self._request("DELETE", f"/api/admin/links/{link_id}")

    # =========================================================================
    # Bulk replace
    # =========================================================================

    async def export_data(self) -> ExportPayload:
        """Download the full document."""
        response = await self._request("GET", "/api/admin/export")
        return ExportPayload(
            content=response.content,
            content_disposition=response.headers.get("content-disposition"),
            media_type=response.headers.get("content-type", "application/json"),
        )

    async def import_data(self, filename: str, content: bytes) -> None:
        """Upload a full document; the store replaces everything with it."""
        await self._request(
            "POST",
            "/api/admin/import",
            files={"file": (filename, content, "application/json")},
        )
