"""
Message feed backed by the Firebase Realtime Database REST API.

Chat logs live under ``chats/<tower_id>/messages`` keyed by push ids, each
entry shaped like ``{"message", "userId", "username", "timestamp", ...}``
with ``timestamp`` in epoch milliseconds.

Reads are retried with exponential backoff on timeouts, connection errors,
429 and 5xx responses. Appends are sent exactly once: a POST that timed out
may still have been applied, and replaying it would duplicate the message.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..errors import TransientStoreError
from ..models import ChatMessage
from ..tools.retry import retry_read
from .base import MessageFeedStore

logger = logging.getLogger(__name__)


class RealtimeDatabaseFeed(MessageFeedStore):
    """
    :class:`MessageFeedStore` over the Realtime Database REST endpoints.

    Args:
        base_url: Database root, e.g. ``https://<project>.firebaseio.com``
        auth: Optional database secret / ID token sent as ``auth`` param
        timeout_s: Per-request timeout
        read_retries: Attempts for range reads
        client: Shared ``httpx.AsyncClient``; owned by the caller. When
            omitted a short-lived client is opened per request.
    """

    def __init__(
        self,
        base_url: str,
        auth: Optional[str] = None,
        timeout_s: float = 10.0,
        read_retries: int = 3,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth = auth
        self.timeout_s = timeout_s
        self.read_retries = read_retries
        self._client = client

    def _messages_url(self, tower_id: str) -> str:
        return f"{self.base_url}/chats/{tower_id}/messages.json"

    def _params(self, **extra: Any) -> Dict[str, Any]:
        params = {k: v for k, v in extra.items() if v is not None}
        if self.auth:
            params["auth"] = self.auth
        return params

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            if self._client is not None:
                response = await self._client.request(method, url, timeout=self.timeout_s, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                    response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientStoreError(f"{method} {url} timed out after {self.timeout_s}s") from exc
        except httpx.TransportError as exc:
            raise TransientStoreError(f"{method} {url} failed: {exc}") from exc

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientStoreError(f"{method} {url} returned {response.status_code}")

        response.raise_for_status()
        return response

    async def append(self, tower_id: str, message: ChatMessage) -> ChatMessage:
        response = await self._request(
            "POST",
            self._messages_url(tower_id),
            params=self._params(),
            json=message.to_wire(),
        )
        push_id = response.json()["name"]
        logger.debug("Appended message %s to tower %s", push_id, tower_id)
        return message.model_copy(update={"id": push_id})

    async def range_by_time(
        self,
        tower_id: str,
        from_ts: int,
        to_ts: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[ChatMessage]:
        url = self._messages_url(tower_id)
        params = self._params(
            orderBy='"timestamp"',
            startAt=int(from_ts),
            endAt=int(to_ts) if to_ts is not None else None,
            limitToLast=int(limit) if limit is not None else None,
        )

        response = await retry_read(
            lambda: self._request("GET", url, params=params),
            attempts=self.read_retries,
            description=f"feed read for tower {tower_id}",
        )
        return self._parse_messages(response.json())

    @staticmethod
    def _parse_messages(payload: Optional[Dict[str, Any]]) -> List[ChatMessage]:
        """Turn a ``{push_id: entry}`` payload into messages, oldest first."""
        messages: List[ChatMessage] = []
        for push_id, entry in (payload or {}).items():
            if not isinstance(entry, dict) or "message" not in entry:
                continue
            ts = entry.get("timestamp")
            if isinstance(ts, bool) or not isinstance(ts, (int, float)):
                continue
            messages.append(ChatMessage(
                id=push_id,
                user_id=str(entry.get("userId", "unknown")),
                username=str(entry.get("username", "Anonymous")),
                text=str(entry.get("message") or ""),
                timestamp=int(ts),
                image=entry.get("image"),
            ))
        messages.sort(key=lambda m: m.timestamp)
        return messages
