"""Content Store and Message Feed Store interfaces and implementations."""

from .base import ABSENT_VERSION, ContentStore, Document, MessageFeedStore
from .memory import InMemoryContentStore, InMemoryMessageFeed
from .realtime_feed import RealtimeDatabaseFeed

__all__ = [
    "ABSENT_VERSION",
    "ContentStore",
    "Document",
    "MessageFeedStore",
    "InMemoryContentStore",
    "InMemoryMessageFeed",
    "RealtimeDatabaseFeed",
]
