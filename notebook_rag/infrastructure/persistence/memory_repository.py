"""
In-Memory Repository Implementation
===================================
NotebookRepository Protocol 구현 - 프로세스 내 dict 백엔드

단일 프로세스 실행 및 테스트용으로 사용됩니다.
저장/조회 시 사본을 주고받아 호출자가 내부 상태를 직접 바꾸지 못합니다.
"""

import logging

from notebook_rag.domain.entities import ChatMessage, ChatSummary, Document, Memory, Session

logger = logging.getLogger(__name__)


class InMemoryRepository:
    """dict 기반 Repository 구현"""

    def __init__(self):
        self._sessions: dict[str, Session] = {}
        self._documents: dict[str, Document] = {}
        # 삽입 순서 = 생성 순서
        self._messages: dict[str, ChatMessage] = {}
        self._summaries: dict[str, ChatSummary] = {}
        self._memories: dict[str, Memory] = {}

    async def initialize(self) -> None:
        pass

    # =========================================================================
    # Session
    # =========================================================================

    async def save_session(self, session: Session) -> Session:
        self._sessions[session.id] = session.model_copy()
        return session

    async def get_session(self, session_id: str) -> Session | None:
        session = self._sessions.get(session_id)
        return session.model_copy() if session else None

    async def delete_session(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    async def delete_session_data(self, session_id: str) -> None:
        for store in (self._documents, self._messages, self._summaries, self._memories):
            for key in [k for k, v in store.items() if v.session_id == session_id]:
                del store[key]
        logger.debug(f"Deleted in-memory data for session {session_id}")

    # =========================================================================
    # Document
    # =========================================================================

    async def save_document(self, document: Document) -> Document:
        self._documents[document.id] = document.model_copy()
        return document

    async def get_document(self, document_id: str) -> Document | None:
        document = self._documents.get(document_id)
        return document.model_copy() if document else None

    async def list_documents(self, session_id: str) -> list[Document]:
        return [d.model_copy() for d in self._documents.values() if d.session_id == session_id]

    async def delete_document(self, document_id: str) -> bool:
        return self._documents.pop(document_id, None) is not None

    # =========================================================================
    # Chat
    # =========================================================================

    async def save_messages(self, messages: list[ChatMessage]) -> None:
        for message in messages:
            self._messages[message.id] = message.model_copy()

    async def list_messages(
        self, session_id: str, include_compacted: bool = True
    ) -> list[ChatMessage]:
        return [
            m.model_copy()
            for m in self._messages.values()
            if m.session_id == session_id and (include_compacted or not m.is_compacted)
        ]

    async def save_summary(self, summary: ChatSummary) -> ChatSummary:
        self._summaries[summary.id] = summary.model_copy()
        return summary

    async def list_summaries(self, session_id: str) -> list[ChatSummary]:
        return [s.model_copy() for s in self._summaries.values() if s.session_id == session_id]

    # =========================================================================
    # Memory
    # =========================================================================

    async def save_memory(self, memory: Memory) -> Memory:
        self._memories[memory.id] = memory.model_copy()
        return memory

    async def get_memory(self, memory_id: str) -> Memory | None:
        memory = self._memories.get(memory_id)
        return memory.model_copy() if memory else None

    async def list_memories(self, session_id: str) -> list[Memory]:
        memories = [m.model_copy() for m in self._memories.values() if m.session_id == session_id]
        memories.sort(key=lambda m: (m.importance, m.created_at), reverse=True)
        return memories

    async def delete_memory(self, memory_id: str) -> bool:
        return self._memories.pop(memory_id, None) is not None
