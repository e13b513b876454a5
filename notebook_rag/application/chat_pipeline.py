"""
Chat Pipeline
=============
RAG 기반 대화 한 턴을 이벤트 스트림으로 처리합니다.

Flow:
1. 사용자 메시지 저장
2. 최근/관련 대화 기준으로 후속 질문 재구성
3. 하이브리드 검색 (벡터 + 키워드, RRF, 의미 재순위, 다양성)
   - 후속 질문이면 직전 답변의 출처 문서에 가산점 (출처 고정)
4. 검색 신뢰도 평가 (LOW → 고정된 정보 부족 답변)
5. 메시지 조립 (모드 프롬프트, 문서 컨텍스트, 메모리, 요약, 최근 대화)
6. 전체 타임아웃 안에서 스트리밍 생성
7. 출처 이벤트 전송, assistant 메시지 저장, 답변 검증
8. 메모리 추출 / 압축 검사 / 대화 기록 색인은 백그라운드 풀로 넘김

생성 실패나 타임아웃은 ``error`` 이벤트로 스트림을 끝냅니다.
검색 실패는 검색 서비스 안에서 저하 처리되며 여기까지 오지 않습니다.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from notebook_rag.application.workers import BackgroundWorkerPool
from notebook_rag.domain.entities import ChatMessage, Chunk, InteractionMode, MessageRole
from notebook_rag.domain.exceptions import SessionNotFoundError
from notebook_rag.domain.interfaces import CompletionProvider
from notebook_rag.domain.interfaces.repository import NotebookRepository
from notebook_rag.domain.value_objects import ConfidenceLevel, ConfidenceResult, VerificationResult
from notebook_rag.memory.chat_compaction import ChatCompactionService
from notebook_rag.memory.memory_service import MemoryService
from notebook_rag.monitoring.logger import RagLogger
from notebook_rag.monitoring.rag_metrics import RAGMetricsCollector
from notebook_rag.rag.answer_verifier import AnswerVerifier
from notebook_rag.rag.chat_history_search import ChatHistorySearch
from notebook_rag.rag.confidence import RetrievalConfidenceScorer
from notebook_rag.rag.context_builder import ContextBuilder
from notebook_rag.rag.hybrid_search import HybridSearchService
from notebook_rag.rag.query_rewriter import QueryReformulator
from notebook_rag.shared.constants import (
    CITATION_SNIPPET_CHARS,
    GENERATION_TIMEOUT_MESSAGE,
    GENERATION_UNAVAILABLE_MESSAGE,
    INSUFFICIENT_CONTEXT_ANSWER,
    estimate_tokens,
)

logger = logging.getLogger(__name__)


@dataclass
class StreamEvent:
    """스트리밍 응답의 단일 이벤트"""

    type: str  # "token" | "citation" | "done" | "error"
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def token(cls, content: str) -> "StreamEvent":
        return cls("token", {"content": content})

    @classmethod
    def citation(cls, chunk: Chunk, file_name: str | None = None) -> "StreamEvent":
        snippet = chunk.content[:CITATION_SNIPPET_CHARS] + "..."
        return cls(
            "citation",
            {
                "document_id": chunk.document_id,
                "chunk_id": chunk.id,
                "file_name": file_name,
                "title": chunk.document_title,
                "snippet": snippet,
                "section_breadcrumb": list(chunk.section_breadcrumb),
                "image_ids": list(chunk.associated_image_ids),
            },
        )

    @classmethod
    def done(
        cls,
        message_id: str | None,
        token_count: int,
        confidence: ConfidenceResult | None = None,
        verification: VerificationResult | None = None,
        query: str | None = None,
    ) -> "StreamEvent":
        return cls(
            "done",
            {
                "message_id": message_id,
                "token_count": token_count,
                "query": query,
                "confidence": confidence.to_dict() if confidence else None,
                "verification": verification.to_dict() if verification else None,
            },
        )

    @classmethod
    def error(cls, message: str) -> "StreamEvent":
        return cls("error", {"message": message})

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data}


class ChatPipeline:
    """
    RAG 대화 파이프라인

    Usage:
        pipeline = Container.get_chat_pipeline()
        async for event in pipeline.stream_chat(session_id, "What is the deadline?"):
            if event.type == "token":
                print(event.data["content"], end="")
    """

    def __init__(
        self,
        repository: NotebookRepository,
        search: HybridSearchService,
        confidence_scorer: RetrievalConfidenceScorer,
        reformulator: QueryReformulator,
        context_builder: ContextBuilder,
        llm: CompletionProvider,
        verifier: AnswerVerifier,
        memory_service: MemoryService,
        compaction: ChatCompactionService,
        worker_pool: BackgroundWorkerPool | None = None,
        metrics: RAGMetricsCollector | None = None,
        rag_logger: RagLogger | None = None,
        stream_timeout: float = 120.0,
        sliding_window_size: int = 10,
        max_tokens: int = 2000,
        temperature: float | None = None,
        source_anchoring_enabled: bool = True,
        history_search: ChatHistorySearch | None = None,
    ):
        """
        Args:
            stream_timeout: 스트리밍 생성 한 번의 전체 제한 시간 (초)
            sliding_window_size: 모델에 보내는 압축되지 않은 최근 메시지 수
            worker_pool: 메모리 추출/압축 검사/대화 기록 색인 실행 (None이면 생략)
            source_anchoring_enabled: 후속 질문 검색 시 직전 답변의 출처 문서 가산
            history_search: 질문 재구성용 대화 기록 색인 (None이면 색인하지 않음)
        """
        self.repository = repository
        self.search = search
        self.confidence_scorer = confidence_scorer
        self.reformulator = reformulator
        self.context_builder = context_builder
        self.llm = llm
        self.verifier = verifier
        self.memory_service = memory_service
        self.compaction = compaction
        self.worker_pool = worker_pool
        self.metrics = metrics or RAGMetricsCollector()
        self.rag_logger = rag_logger or RagLogger("notebook_rag.chat")
        self.stream_timeout = stream_timeout
        self.sliding_window_size = sliding_window_size
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.source_anchoring_enabled = source_anchoring_enabled
        self.history_search = history_search

    async def stream_chat(self, session_id: str, message: str) -> AsyncIterator[StreamEvent]:
        """
        사용자 메시지 하나에 대한 응답을 이벤트 스트림으로 생성

        Raises:
            SessionNotFoundError: 세션 없음 (첫 이벤트 전에 발생)
        """
        session = await self.repository.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        mode = session.current_mode
        request_context = self.rag_logger.chat_request(message, session_id)

        history = await self.repository.list_messages(session_id, include_compacted=False)
        user_saved = await self._save_message(session_id, MessageRole.USER, message)

        # Step 1: 후속 질문 재구성
        reformulated = await self.reformulator.reformulate(message, history, session_id)
        query = reformulated.query
        if reformulated.was_reformulated:
            logger.debug(f"Original: {message} | Rewritten: {query}")

        # Step 2: 검색 + 신뢰도
        start = time.perf_counter()
        anchors = reformulated.anchor_document_ids if self.source_anchoring_enabled else []
        if anchors:
            result = await self.search.search_with_details(
                session_id, query, mode, anchor_document_ids=anchors
            )
        else:
            result = await self.search.search_with_details(session_id, query, mode)
        confidence = self.confidence_scorer.score(query, result)
        self.metrics.record_retrieval(
            result, confidence, retrieval_time_ms=(time.perf_counter() - start) * 1000
        )
        chunks = result.final_results
        logger.info(f"Retrieval confidence: {confidence.level.value} ({confidence.explanation})")

        if confidence.level == ConfidenceLevel.LOW:
            logger.warning("Low confidence retrieval, returning insufficient information message")
            answer = INSUFFICIENT_CONTEXT_ANSWER
            saved = await self._save_message(session_id, MessageRole.ASSISTANT, answer)
            self._schedule_history_indexing(session_id, [user_saved, saved])
            yield StreamEvent.token(answer)
            yield StreamEvent.done(saved.id, 0, confidence=confidence, query=query)
            self.rag_logger.chat_response(
                request_context, answer, chunks_count=len(chunks), confidence_level="low"
            )
            return

        # Step 3: 메시지 조립
        file_names = await self._file_names(session_id)
        messages = await self._build_messages(
            session_id, mode, message, chunks, file_names, confidence, history
        )

        # Step 4: 스트리밍 생성
        parts: list[str] = []
        try:
            async for token in self._stream_with_timeout(messages):
                parts.append(token)
                yield StreamEvent.token(token)
        except asyncio.TimeoutError:
            logger.error(f"Chat stream timed out after {self.stream_timeout}s for {session_id}")
            self.rag_logger.chat_response(
                request_context, "".join(parts), success=False, error="timeout"
            )
            yield StreamEvent.error(GENERATION_TIMEOUT_MESSAGE)
            return
        except Exception as e:
            logger.error(f"Error during chat streaming: {e}")
            self.rag_logger.chat_response(
                request_context, "".join(parts), success=False, error=str(e)
            )
            yield StreamEvent.error(GENERATION_UNAVAILABLE_MESSAGE)
            return

        answer = "".join(parts)

        # Step 5: 출처 + 저장 + 검증
        for chunk in chunks:
            yield StreamEvent.citation(chunk, file_names.get(chunk.document_id))

        saved = await self._save_message(
            session_id,
            MessageRole.ASSISTANT,
            answer,
            retrieved_document_ids=list(dict.fromkeys(c.document_id for c in chunks)),
        )
        verification = await self.verifier.verify(answer, chunks)
        if not verification.is_valid:
            logger.warning(
                f"Answer has {len(verification.unsupported_claims)} unsupported claims "
                f"(session {session_id})"
            )

        # Step 6: 백그라운드 작업
        self._schedule_background(session_id, message, answer)
        self._schedule_history_indexing(session_id, [user_saved, saved])

        self.rag_logger.chat_response(
            request_context,
            answer,
            chunks_count=len(chunks),
            confidence_level=confidence.level.value,
            verified=verification.is_valid,
        )
        yield StreamEvent.done(
            saved.id, len(parts), confidence=confidence, verification=verification, query=query
        )

    async def _stream_with_timeout(self, messages: list[dict[str, str]]) -> AsyncIterator[str]:
        """토큰 스트리밍. 전체 기한이 지나면 asyncio.TimeoutError"""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.stream_timeout
        stream = self.llm.stream(messages, temperature=self.temperature, max_tokens=self.max_tokens)
        iterator = stream.__aiter__()
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise asyncio.TimeoutError()
                try:
                    token = await asyncio.wait_for(iterator.__anext__(), timeout=remaining)
                except StopAsyncIteration:
                    return
                yield token
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _build_messages(
        self,
        session_id: str,
        mode: InteractionMode,
        message: str,
        chunks: list[Chunk],
        file_names: dict[str, str],
        confidence: ConfidenceResult,
        history: list[ChatMessage],
    ) -> list[dict[str, str]]:
        memories = await self.memory_service.get_relevant_memories(session_id, message)
        summary = await self.compaction.get_latest_summary(session_id)
        recent = history[-self.sliding_window_size :] if self.sliding_window_size else []
        return self.context_builder.build_messages(
            mode=mode,
            user_message=message,
            chunks=chunks,
            file_names=file_names,
            confidence=confidence,
            memory_context=self.memory_service.build_memory_context(memories),
            summary=summary,
            recent_messages=recent,
        )

    async def _file_names(self, session_id: str) -> dict[str, str]:
        documents = await self.repository.list_documents(session_id)
        return {d.id: d.file_name for d in documents}

    async def _save_message(
        self,
        session_id: str,
        role: MessageRole,
        content: str,
        retrieved_document_ids: list[str] | None = None,
    ) -> ChatMessage:
        message = ChatMessage(
            session_id=session_id,
            role=role,
            content=content,
            token_count=estimate_tokens(content),
            retrieved_document_ids=retrieved_document_ids or [],
        )
        await self.repository.save_messages([message])
        return message

    def _schedule_background(self, session_id: str, user_message: str, answer: str) -> None:
        if self.worker_pool is None:
            return
        self.worker_pool.submit(
            f"memory:{session_id}",
            self.memory_service.extract_and_save,
            session_id,
            user_message,
            answer,
        )
        self.worker_pool.submit(
            f"compaction:{session_id}", self.compaction.check_and_compact, session_id
        )

    def _schedule_history_indexing(self, session_id: str, messages: list[ChatMessage]) -> None:
        if self.worker_pool is None or self.history_search is None:
            return
        self.worker_pool.submit(
            f"history:{session_id}", self.history_search.index_messages, messages
        )

    async def get_chat_history(self, session_id: str, limit: int = 50) -> list[ChatMessage]:
        """최근 ``limit``개 메시지 (시간순, 압축된 메시지 포함)"""
        if await self.repository.get_session(session_id) is None:
            raise SessionNotFoundError(session_id)
        messages = await self.repository.list_messages(session_id, include_compacted=True)
        return messages[-limit:] if limit > 0 else []

    async def collect(self, session_id: str, message: str) -> tuple[str, list[StreamEvent]]:
        """``stream_chat``을 끝까지 소비해 답변 전체와 이벤트 목록 반환"""
        events = [event async for event in self.stream_chat(session_id, message)]
        answer = "".join(e.data["content"] for e in events if e.type == "token")
        return answer, events
