"""
Domain Layer
============
Clean Architecture의 Entities Layer

구조:
- entities/: 핵심 엔티티 (Session, Document, Chunk, ChatMessage, Memory)
- value_objects/: 값 객체 (ParsedDocument, SearchResult, ConfidenceResult)
- interfaces/: 의존성 역전을 위한 Protocol (IndexStore, 모델 클라이언트, 저장소)

원칙:
- 외부 서비스 의존성 없음 (LiteLLM, numpy 등 금지)
- 순수 Python 타입, 표준 라이브러리, Pydantic만 사용
"""

from notebook_rag.domain.entities import (
    ChatMessage,
    ChatSummary,
    Chunk,
    Document,
    DocumentStatus,
    InteractionMode,
    Memory,
    MemoryType,
    MessageRole,
    Session,
)
from notebook_rag.domain.exceptions import (
    ConfigurationError,
    DocumentNotFoundError,
    ExternalServiceUnavailableError,
    MalformedModelOutputError,
    MemoryNotFoundError,
    NotebookRagError,
    NotFoundError,
    SessionNotFoundError,
    ValidationError,
)

__all__ = [
    "ChatMessage",
    "ChatSummary",
    "Chunk",
    "Document",
    "DocumentStatus",
    "InteractionMode",
    "Memory",
    "MemoryType",
    "MessageRole",
    "Session",
    "ConfigurationError",
    "DocumentNotFoundError",
    "ExternalServiceUnavailableError",
    "MalformedModelOutputError",
    "MemoryNotFoundError",
    "NotebookRagError",
    "NotFoundError",
    "SessionNotFoundError",
    "ValidationError",
]
