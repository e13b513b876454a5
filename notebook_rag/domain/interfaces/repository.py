"""
Repository Protocols
====================
Session, Document, ChatMessage, ChatSummary, Memory 메타데이터 저장소 인터페이스

코어는 원시 저장소 호출 없이 이 인터페이스로만 읽고 씁니다.

구현체:
- InMemoryRepository (notebook_rag/infrastructure/persistence/memory_repository.py)
- SQLiteRepository (notebook_rag/infrastructure/persistence/sqlite_repository.py)
"""

from typing import Protocol, runtime_checkable

from notebook_rag.domain.entities import ChatMessage, ChatSummary, Document, Memory, Session


@runtime_checkable
class SessionRepository(Protocol):
    async def save_session(self, session: Session) -> Session: ...

    async def get_session(self, session_id: str) -> Session | None: ...

    async def delete_session(self, session_id: str) -> bool: ...


@runtime_checkable
class DocumentRepository(Protocol):
    async def save_document(self, document: Document) -> Document: ...

    async def get_document(self, document_id: str) -> Document | None: ...

    async def list_documents(self, session_id: str) -> list[Document]: ...

    async def delete_document(self, document_id: str) -> bool: ...


@runtime_checkable
class ChatMessageRepository(Protocol):
    async def save_messages(self, messages: list[ChatMessage]) -> None:
        """메시지 일괄 저장 (upsert)"""
        ...

    async def list_messages(
        self, session_id: str, include_compacted: bool = True
    ) -> list[ChatMessage]:
        """생성 순서대로 반환합니다."""
        ...


@runtime_checkable
class ChatSummaryRepository(Protocol):
    async def save_summary(self, summary: ChatSummary) -> ChatSummary: ...

    async def list_summaries(self, session_id: str) -> list[ChatSummary]:
        """생성 시각 오름차순"""
        ...


@runtime_checkable
class MemoryRepository(Protocol):
    async def save_memory(self, memory: Memory) -> Memory: ...

    async def get_memory(self, memory_id: str) -> Memory | None: ...

    async def list_memories(self, session_id: str) -> list[Memory]:
        """중요도 내림차순, 동점은 최신 순"""
        ...

    async def delete_memory(self, memory_id: str) -> bool: ...


@runtime_checkable
class NotebookRepository(
    SessionRepository,
    DocumentRepository,
    ChatMessageRepository,
    ChatSummaryRepository,
    MemoryRepository,
    Protocol,
):
    """모든 저장소 능력을 합친 인터페이스"""

    async def delete_session_data(self, session_id: str) -> None:
        """세션에 속한 문서, 메시지, 요약, 메모리를 모두 삭제합니다."""
        ...
