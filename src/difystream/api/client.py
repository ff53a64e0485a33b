"""Async HTTP client for the Dify chat app API."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, TypeVar

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from difystream.models.config import AppProfile, ClientConfig
from difystream.models.message import ChatMessageRequest, ConversationPage, MessagePage

_PageT = TypeVar("_PageT", bound=BaseModel)

# ── Exceptions ─────────────────────────────────────────────────────────────────


class TransportError(Exception):
    """Base class for faults that end a request without a usable response."""


class HTTPStatusFault(TransportError):
    """Raised when the backend answers with a non-2xx status."""

    def __init__(self, status_code: int, reason: str, detail: str = "") -> None:
        message = f"API error: {status_code} {reason}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason
        self.detail = detail


class NetworkFault(TransportError):
    """Raised when the request could not be sent or the connection broke mid-body."""


class ProtocolFault(TransportError):
    """Raised when a response arrives but its body is not what the API promises."""


# ── Client ─────────────────────────────────────────────────────────────────────


class DifyClient:
    """
    Thin async wrapper over the Dify app API.

    Every call is authenticated with the profile's API key. Non-2xx responses
    raise :class:`HTTPStatusFault`, connection problems raise
    :class:`NetworkFault`, unparseable JSON bodies raise :class:`ProtocolFault`.
    Nothing is retried.

    Usage::

        async with DifyClient(profile) as client:
            page = await client.get_messages(conversation_id, user_id)
            async with client.stream_chat(request) as chunks:
                async for chunk in chunks:
                    ...

    Pass ``transport=httpx.MockTransport(handler)`` to test without a network.
    """

    def __init__(
        self,
        profile: AppProfile,
        config: ClientConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        cfg = config or ClientConfig()
        self._profile = profile
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=profile.base_url,
            headers={
                "Authorization": f"Bearer {profile.api_key}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(cfg.timeout, connect=cfg.connect_timeout),
            transport=transport,
        )
        self._logger = structlog.get_logger("difystream.client").bind(app_id=profile.id)

    @property
    def profile(self) -> AppProfile:
        """The app profile this client talks to."""
        return self._profile

    async def get_conversations(
        self,
        user_id: str,
        last_id: str | None = None,
        limit: int = 20,
    ) -> ConversationPage:
        """
        List conversations for ``user_id``, newest first.

        Args:
            user_id: The local user identifier.
            last_id: Id of the last conversation of the previous page, if any.
            limit: Page size.

        Returns:
            One page of conversations.
        """
        params: dict[str, Any] = {"user": user_id, "limit": limit}
        if last_id:
            params["last_id"] = last_id
        response = await self._request("GET", "/conversations", params=params)
        return self._parse_page(response, ConversationPage)

    async def get_messages(
        self,
        conversation_id: str,
        user_id: str,
        first_id: str | None = None,
        limit: int = 20,
    ) -> MessagePage:
        """
        Fetch one page of message history for a conversation.

        Args:
            conversation_id: The conversation to read.
            user_id: The local user identifier.
            first_id: Cursor; the backend returns messages older than this id.
            limit: Page size.

        Returns:
            One page of messages, in the order the backend sends them.
        """
        params: dict[str, Any] = {
            "conversation_id": conversation_id,
            "user": user_id,
            "limit": limit,
        }
        if first_id:
            params["first_id"] = first_id
        response = await self._request("GET", "/messages", params=params)
        return self._parse_page(response, MessagePage)

    @asynccontextmanager
    async def stream_chat(
        self, request: ChatMessageRequest
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        """
        Send a chat message and expose the response body as raw byte chunks.

        The response is closed when the ``async with`` block exits, whether
        the body was read to the end or not.

        Args:
            request: The chat message request. ``response_mode`` should be
                ``"streaming"``.

        Yields:
            An async iterator of body chunks in arrival order.

        Raises:
            HTTPStatusFault: The backend rejected the request.
            NetworkFault: The connection failed before or while reading the body.
        """
        payload = request.model_dump(exclude_none=True)
        try:
            async with self._client.stream("POST", "/chat-messages", json=payload) as response:
                if response.is_error:
                    await response.aread()
                    raise self._status_fault(response)
                self._logger.debug("chat_stream_opened", status=response.status_code)
                yield response.aiter_bytes()
        except httpx.RequestError as exc:
            self._logger.warning("chat_stream_network_error", error=str(exc))
            raise NetworkFault(f"Network error: {exc}") from exc

    async def delete_conversation(self, conversation_id: str, user_id: str) -> None:
        """Delete a conversation owned by ``user_id``."""
        await self._request(
            "DELETE", f"/conversations/{conversation_id}", json={"user": user_id}
        )

    async def rename_conversation(self, conversation_id: str, user_id: str, name: str) -> None:
        """Rename a conversation owned by ``user_id``."""
        await self._request(
            "POST",
            f"/conversations/{conversation_id}/name",
            json={"name": name, "user": user_id},
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> DifyClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def _request(self, method: str, endpoint: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, endpoint, **kwargs)
        except httpx.RequestError as exc:
            self._logger.warning("request_network_error", endpoint=endpoint, error=str(exc))
            raise NetworkFault(f"Network error: {exc}") from exc
        if response.is_error:
            raise self._status_fault(response)
        return response

    def _status_fault(self, response: httpx.Response) -> HTTPStatusFault:
        detail = ""
        try:
            body = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            body = None
        if isinstance(body, dict):
            detail = str(body.get("message") or body.get("code") or "")
        self._logger.warning(
            "http_error",
            path=response.request.url.path,
            status=response.status_code,
            detail=detail,
        )
        return HTTPStatusFault(response.status_code, response.reason_phrase, detail)

    def _parse_page(self, response: httpx.Response, model: type[_PageT]) -> _PageT:
        try:
            return model.model_validate(response.json())
        except (json.JSONDecodeError, ValidationError) as exc:
            raise ProtocolFault(
                f"Unexpected response body from {response.request.url.path}: {exc}"
            ) from exc
