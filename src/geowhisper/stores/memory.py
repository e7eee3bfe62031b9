"""
In-memory store implementations.

Both stores are safe to share between asyncio tasks of one event loop. Every
operation yields to the loop once (``latency`` seconds, 0 by default) before
touching state, so concurrent callers interleave the way they would against a
networked store and the optimistic transaction path is actually exercised.
"""

from __future__ import annotations

import asyncio
import copy
import uuid
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple

from ..models import ChatMessage
from .base import ABSENT_VERSION, ContentStore, Document, MessageFeedStore


def _auto_id() -> str:
    # 20 characters, same shape as Firestore auto ids
    return uuid.uuid4().hex[:20]


class InMemoryContentStore(ContentStore):
    """Versioned document store kept in process memory."""

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self._collections: Dict[str, Dict[str, Tuple[int, Dict[str, Any]]]] = defaultdict(dict)

    async def _pause(self) -> None:
        await asyncio.sleep(self.latency)

    def _snapshot(self, collection: str, doc_id: str) -> Optional[Document]:
        entry = self._collections[collection].get(doc_id)
        if entry is None:
            return None
        version, data = entry
        return Document(id=doc_id, data=copy.deepcopy(data), version=version)

    async def new_id(self, collection: str) -> str:
        docs = self._collections[collection]
        doc_id = _auto_id()
        while doc_id in docs:
            doc_id = _auto_id()
        return doc_id

    async def put(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> Document:
        await self._pause()
        docs = self._collections[collection]
        version = docs[doc_id][0] + 1 if doc_id in docs else 1
        docs[doc_id] = (version, copy.deepcopy(fields))
        return Document(id=doc_id, data=copy.deepcopy(fields), version=version)

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        await self._pause()
        return self._snapshot(collection, doc_id)

    async def list_documents(self, collection: str, limit: Optional[int] = None) -> List[Document]:
        await self._pause()
        ids = list(self._collections[collection])
        if limit is not None:
            ids = ids[:limit]
        return [self._snapshot(collection, doc_id) for doc_id in ids]

    async def query_by_field(self, collection: str, field: str, value: Any) -> List[Document]:
        await self._pause()
        return [
            self._snapshot(collection, doc_id)
            for doc_id, (_version, data) in list(self._collections[collection].items())
            if data.get(field) == value
        ]

    async def compare_and_set(
        self,
        collection: str,
        doc_id: str,
        expected_version: int,
        fields: Dict[str, Any],
    ) -> bool:
        await self._pause()
        docs = self._collections[collection]
        current_version = docs[doc_id][0] if doc_id in docs else ABSENT_VERSION
        if current_version != expected_version:
            return False
        docs[doc_id] = (current_version + 1, copy.deepcopy(fields))
        return True

    async def delete(self, collection: str, doc_id: str) -> bool:
        await self._pause()
        return self._collections[collection].pop(doc_id, None) is not None

    def count(self, collection: str) -> int:
        return len(self._collections[collection])


class InMemoryMessageFeed(MessageFeedStore):
    """Per-tower chat logs kept in process memory.

    ``delay`` slows every read down, which is how tests provoke the scorer's
    fetch timeout.
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self._logs: Dict[str, List[ChatMessage]] = defaultdict(list)

    async def append(self, tower_id: str, message: ChatMessage) -> ChatMessage:
        await asyncio.sleep(0)
        stored = message if message.id else message.model_copy(update={"id": _auto_id()})
        self._logs[tower_id].append(stored)
        return stored

    async def range_by_time(
        self,
        tower_id: str,
        from_ts: int,
        to_ts: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[ChatMessage]:
        await asyncio.sleep(self.delay)
        matching = [
            m for m in self._logs.get(tower_id, [])
            if m.timestamp >= from_ts and (to_ts is None or m.timestamp <= to_ts)
        ]
        matching.sort(key=lambda m: m.timestamp)
        if limit is not None:
            matching = matching[-limit:] if limit > 0 else []
        return matching
