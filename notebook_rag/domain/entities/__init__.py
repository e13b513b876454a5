"""
Domain Entities
===============
핵심 엔티티 정의 (Pydantic BaseModel 기반)
"""

from notebook_rag.domain.entities.chat import ChatMessage, ChatSummary, MessageRole
from notebook_rag.domain.entities.memory import Memory, MemoryType, clamp_importance
from notebook_rag.domain.entities.notebook import (
    Chunk,
    Document,
    DocumentStatus,
    InteractionMode,
    Session,
    new_id,
)

__all__ = [
    "ChatMessage",
    "ChatSummary",
    "MessageRole",
    "Memory",
    "MemoryType",
    "clamp_importance",
    "Chunk",
    "Document",
    "DocumentStatus",
    "InteractionMode",
    "Session",
    "new_id",
]
