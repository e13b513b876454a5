"""
Domain Interfaces
=================
의존성 역전을 위한 Protocol 정의
"""

from .index_store import IndexMapper, IndexStore
from .model_clients import CompletionProvider, EmbeddingProvider
from .repository import (
    ChatMessageRepository,
    ChatSummaryRepository,
    DocumentRepository,
    MemoryRepository,
    NotebookRepository,
    SessionRepository,
)

__all__ = [
    "IndexMapper",
    "IndexStore",
    "CompletionProvider",
    "EmbeddingProvider",
    "ChatMessageRepository",
    "ChatSummaryRepository",
    "DocumentRepository",
    "MemoryRepository",
    "NotebookRepository",
    "SessionRepository",
]
