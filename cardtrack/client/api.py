"""
CardTrack API client.

Calls the collection endpoints on behalf of one signed-in user. Every
failure surfaces as a KnownError subclass:

- UnauthenticatedError when no credential is available (raised before
  any request) or the server answers 401.
- TransportError on timeouts and connection failures.
- ServerError / KnownError for other non-success responses.
"""

from collections.abc import Callable
from typing import Any, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel

from cardtrack.config import settings
from cardtrack.models.failure import (
    FailureKind,
    KnownError,
    ServerError,
    TransportError,
    UnauthenticatedError,
)
from cardtrack.models.sync import (
    CardResponse,
    CollectionCardPayload,
    CollectionPage,
    ServerCard,
    SyncResult,
)

TokenProvider = Callable[[], str | None]

ModelT = TypeVar("ModelT", bound=BaseModel)


def _server_message(response: httpx.Response) -> str | None:
    """Extract the `detail` message from an error response, if any."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and body.get("detail") is not None:
        return str(body["detail"])
    return None


class CollectionAPIClient:
    """
    Client for the CardTrack collection API.

    The credential is read from `token_provider` on every call, so a token
    refreshed by the auth layer is picked up without rebuilding the client.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the API client.

        Args:
            token_provider: Returns the bearer token, or None when signed out.
            base_url: API base URL. Defaults to settings.api_base_url.
            timeout: Request timeout in seconds. Defaults to settings.sync_timeout.
            transport: Optional httpx transport (used to target an in-process app).
        """
        self.token_provider = token_provider
        self.base_url = base_url or settings.api_base_url
        self.timeout = timeout if timeout is not None else settings.sync_timeout
        self.transport = transport

    def has_credential(self) -> bool:
        return bool(self.token_provider())

    def _auth_headers(self) -> dict[str, str]:
        token = self.token_provider()
        if not token:
            raise UnauthenticatedError(detail="No credential available")
        return {"Authorization": f"Bearer {token}"}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        headers = self._auth_headers()

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = await client.request(
                    method, path, json=json, params=params, headers=headers
                )
        except httpx.TransportError as e:
            raise TransportError(str(e) or type(e).__name__) from e
        except httpx.RequestError as e:
            # Undecodable bodies and redirect loops: the server answered, but unusably.
            raise KnownError(
                kind=FailureKind.INVALID_RESPONSE,
                message="Invalid response from server",
                detail=str(e) or type(e).__name__,
                status_code=502,
            ) from e

        self._raise_for_status(response)
        return response

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.is_success:
            return

        message = _server_message(response)
        if response.status_code == 401:
            raise UnauthenticatedError(detail=message)
        if response.status_code == 404:
            raise KnownError(
                kind=FailureKind.NOT_FOUND,
                message=message or "Not found",
                status_code=404,
            )
        if response.status_code in (400, 422):
            raise KnownError(
                kind=FailureKind.INVALID_INPUT,
                message=message or "Invalid request",
                status_code=response.status_code,
            )
        raise ServerError(response.status_code, message)

    @staticmethod
    def _parse(model: type[ModelT], response: httpx.Response) -> ModelT:
        try:
            return model.model_validate(response.json())
        except ValueError as e:
            raise KnownError(
                kind=FailureKind.INVALID_RESPONSE,
                message="Invalid response from server",
                detail=type(e).__name__,
                status_code=response.status_code,
            ) from e

    # --- Collection ---

    async def get_collection(self, page: int = 1, limit: int = 50) -> CollectionPage:
        """Fetch one page of the caller's collection."""
        response = await self._request(
            "GET", "/collection", params={"page": page, "limit": limit}
        )
        return self._parse(CollectionPage, response)

    async def fetch_all_cards(self, page_size: int | None = None) -> list[ServerCard]:
        """
        Fetch every page of the caller's collection.

        Returns:
            All server rows, in server order
        """
        limit = page_size or settings.sync_page_size
        cards: list[ServerCard] = []
        page = 1

        while True:
            result = await self.get_collection(page=page, limit=limit)
            cards.extend(result.data)
            if page >= result.pagination.total_pages or not result.data:
                return cards
            page += 1

    async def add_card(self, card: CollectionCardPayload) -> CardResponse:
        """Add a card, merging into an owned row by quantity."""
        response = await self._request(
            "POST", "/collection", json=card.model_dump(mode="json", exclude_none=True)
        )
        return self._parse(CardResponse, response)

    async def update_card(self, card_id: str, changes: dict[str, Any]) -> CardResponse:
        """Edit quantity or prices of an owned card."""
        response = await self._request(
            "PUT", f"/collection/{quote(card_id, safe='')}", json=changes
        )
        return self._parse(CardResponse, response)

    async def delete_card(self, card_id: str) -> None:
        """Remove a card from the server copy of the collection."""
        await self._request("DELETE", f"/collection/{quote(card_id, safe='')}")

    async def sync_collection(self, entries: list[dict[str, Any]]) -> SyncResult:
        """
        Push a batch of client entries for reconciliation.

        Args:
            entries: Serialized records, one per dirty card

        Returns:
            SyncResult with counts and conflicts
        """
        response = await self._request("POST", "/collection/sync", json={"cards": entries})
        return self._parse(SyncResult, response)
