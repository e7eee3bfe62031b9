"""
Interfaces of the external stores the engine depends on.

Content Store: document semantics keyed by ``(collection, id)`` with a
monotonically increasing per-document version that backs optimistic
(compare-and-set) transactions.

Message Feed Store: append-only, time-ordered log per tower.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..errors import TransactionConflictError
from ..models import ChatMessage
from ..tools.retry import full_jitter_backoff

logger = logging.getLogger(__name__)

ABSENT_VERSION = 0
"""Version reported for a document that does not exist."""

DEFAULT_UPDATE_DEADLINE_S = 30.0
"""Time budget of one optimistic update under contention."""

UpdateFn = Callable[[Optional[Dict[str, Any]]], Optional[Dict[str, Any]]]


@dataclass(frozen=True)
class Document:
    """Snapshot of a stored document."""
    id: str
    data: Dict[str, Any]
    version: int


class ContentStore(ABC):
    """Document store for towers and content items."""

    @abstractmethod
    async def new_id(self, collection: str) -> str:
        """Allocate a fresh, unique document id."""

    @abstractmethod
    async def put(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> Document:
        """Unconditionally write ``fields`` as the document's full content."""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        ...

    @abstractmethod
    async def list_documents(self, collection: str, limit: Optional[int] = None) -> List[Document]:
        ...

    @abstractmethod
    async def query_by_field(self, collection: str, field: str, value: Any) -> List[Document]:
        """Documents whose ``field`` equals ``value`` (a missing field equals None)."""

    @abstractmethod
    async def compare_and_set(
        self,
        collection: str,
        doc_id: str,
        expected_version: int,
        fields: Dict[str, Any],
    ) -> bool:
        """
        Write ``fields`` only if the stored version still equals ``expected_version``.

        ``ABSENT_VERSION`` means "only if the document does not exist".
        Returns False when another writer got there first.
        """

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> bool:
        ...

    async def transactional_update(
        self,
        collection: str,
        doc_id: str,
        fn: UpdateFn,
        *,
        max_attempts: Optional[int] = None,
        deadline_s: Optional[float] = DEFAULT_UPDATE_DEADLINE_S,
        backoff_s: float = 0.005,
        max_backoff_s: float = 0.25,
    ) -> Optional[Document]:
        """
        Read-modify-write ``doc_id`` atomically with optimistic retries.

        ``fn`` receives the current data (None if absent) and returns the new
        data, or None to leave the document untouched. It may run several
        times and must not have side effects. Exceptions raised by ``fn``
        abort the transaction and propagate.

        A lost compare-and-set means another writer committed, so the loop
        always makes progress. It keeps retrying until ``deadline_s`` has
        elapsed, or ``max_attempts`` attempts when that is set. Delays are
        drawn uniformly below an exponentially growing ceiling.

        Returns:
            The document as written (or as read, when ``fn`` returned None)

        Raises:
            TransactionConflictError: the attempt or time budget ran out
        """
        loop = asyncio.get_running_loop()
        started = loop.time()
        attempt = 0
        while True:
            current = await self.get(collection, doc_id)
            current_data = dict(current.data) if current is not None else None
            version = current.version if current is not None else ABSENT_VERSION

            new_data = fn(current_data)
            if new_data is None:
                return current

            if await self.compare_and_set(collection, doc_id, version, new_data):
                return Document(id=doc_id, data=new_data, version=version + 1)

            attempt += 1
            if max_attempts is not None and attempt >= max_attempts:
                break
            delay = full_jitter_backoff(attempt - 1, backoff_s, max_backoff_s)
            if deadline_s is not None and loop.time() - started + delay > deadline_s:
                break
            logger.debug(
                "Version conflict on %s/%s (attempt %d), retrying in %.4fs",
                collection, doc_id, attempt, delay,
            )
            await asyncio.sleep(delay)

        raise TransactionConflictError(collection, doc_id, attempt)


class MessageFeedStore(ABC):
    """Append-only chat log per tower."""

    @abstractmethod
    async def append(self, tower_id: str, message: ChatMessage) -> ChatMessage:
        """Append ``message`` and return it with its assigned id."""

    @abstractmethod
    async def range_by_time(
        self,
        tower_id: str,
        from_ts: int,
        to_ts: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[ChatMessage]:
        """
        Messages with ``from_ts <= timestamp (<= to_ts)``, oldest first.

        When ``limit`` is set only the newest ``limit`` matching messages are
        returned.
        """

    async def aclose(self) -> None:
        """Release network resources, if any."""
