"""
Chat History Search
===================
지난 대화 메시지를 벡터 + BM25로 검색해 RRF로 융합합니다.

질문 재구성 시 최근 메시지만으로는 빠지는 오래된 맥락(이미 압축된 메시지 포함)을
찾아 보강하는 용도입니다. 문서 청크와 같은 IndexStore 구현을 쓰되,
메시지 타입에 대한 매핑은 ChatMessageIndexMapper로 주입합니다.

실패 정책:
- 임베딩 실패 → 키워드 채널만 사용 (색인 시에는 벡터 없이 저장)
- 색인/검색 실패 → 빈 결과 (재구성은 최근 메시지만으로 진행)

Usage:
    history_search = ChatHistorySearch(InMemoryIndexStore(ChatMessageIndexMapper()), embedder)
    await history_search.index_messages([user_message, assistant_message])
    related = await history_search.search(session_id, "budget approval", limit=10)
"""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from typing import Any

from notebook_rag.core.circuit_breaker import CircuitBreaker
from notebook_rag.core.resilience import INDEX_RETRY, RetryPolicy, call_with_resilience, resilient
from notebook_rag.domain.entities import ChatMessage
from notebook_rag.domain.exceptions import (
    ExternalServiceUnavailableError,
    MalformedModelOutputError,
)
from notebook_rag.domain.interfaces import EmbeddingProvider, IndexStore
from notebook_rag.rag.hybrid_search import reciprocal_rank_fusion

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexedMessage:
    """색인 단위: 메시지 + 임베딩 + 검색 점수"""

    message: ChatMessage
    embedding: list[float] | None = None
    relevance_score: float | None = None


class ChatMessageIndexMapper:
    """IndexedMessage용 IndexMapper. 키워드 검색은 메시지 본문을 대상으로 합니다."""

    def id_of(self, item: IndexedMessage) -> str:
        return item.message.id

    def session_of(self, item: IndexedMessage) -> str:
        return item.message.session_id

    def vector_of(self, item: IndexedMessage) -> list[float] | None:
        return item.embedding

    def text_of(self, item: IndexedMessage) -> str:
        return item.message.content

    def matches(self, item: IndexedMessage, criteria: dict[str, Any]) -> bool:
        return all(getattr(item.message, key, None) == value for key, value in criteria.items())

    def with_score(self, item: IndexedMessage, score: float) -> IndexedMessage:
        return dataclasses.replace(item, relevance_score=score)


class ChatHistorySearch:
    """
    대화 기록 하이브리드 검색

    Args:
        index_store: IndexedMessage 색인 저장소
        embedder: 임베딩 클라이언트
        rrf_k: RRF 상수
        candidates_multiplier: 채널별 후보 수 = limit × multiplier
    """

    def __init__(
        self,
        index_store: IndexStore[IndexedMessage],
        embedder: EmbeddingProvider,
        rrf_k: int = 60,
        candidates_multiplier: int = 4,
        breaker: CircuitBreaker | None = None,
        retry_policy: RetryPolicy = INDEX_RETRY,
    ):
        self.index_store = index_store
        self.embedder = embedder
        self.rrf_k = rrf_k
        self.candidates_multiplier = candidates_multiplier
        self.mapper = ChatMessageIndexMapper()
        self.breaker = breaker or CircuitBreaker(name="index")
        self.retry_policy = retry_policy

        degrade_to_empty = resilient(self.breaker, retry_policy, fallback=lambda *args, **kwargs: [])
        self._vector_search = degrade_to_empty(self._query_vectors)
        self._keyword_search = degrade_to_empty(self._query_keywords)

    async def index_messages(self, messages: list[ChatMessage]) -> int:
        """메시지 색인. 실패하면 0 (채팅 응답에는 영향 없음)"""
        messages = [m for m in messages if m.content.strip()]
        if not messages:
            return 0

        try:
            vectors: list[list[float] | None] = list(
                await self.embedder.embed_batch([m.content for m in messages])
            )
        except (ExternalServiceUnavailableError, MalformedModelOutputError) as e:
            logger.warning(f"Chat message embedding failed, indexing for keyword search only: {e}")
            vectors = [None] * len(messages)

        items = [
            IndexedMessage(message=message, embedding=vector)
            for message, vector in zip(messages, vectors, strict=True)
        ]
        try:
            return await call_with_resilience(
                self.breaker, self.retry_policy, self.index_store.index_chunks, items
            )
        except ExternalServiceUnavailableError as e:
            logger.warning(f"Failed to index {len(items)} chat messages: {e}")
            return 0

    async def search(self, session_id: str, query: str, limit: int = 10) -> list[ChatMessage]:
        """
        세션 내 관련 메시지 검색 (RRF 점수 내림차순)

        Raises:
            ValidationError: session_id가 비어 있음
        """
        if limit <= 0 or not query.strip():
            return []
        candidate_limit = limit * self.candidates_multiplier

        try:
            query_vector = await self.embedder.embed_query(query)
        except (ExternalServiceUnavailableError, MalformedModelOutputError) as e:
            logger.warning(f"History query embedding failed, keyword search only: {e}")
            query_vector = []

        if query_vector:
            vector_hits, keyword_hits = await asyncio.gather(
                self._vector_search(session_id, query_vector, candidate_limit),
                self._keyword_search(session_id, query, candidate_limit),
            )
        else:
            vector_hits = []
            keyword_hits = await self._keyword_search(session_id, query, candidate_limit)

        fused = reciprocal_rank_fusion(
            vector_hits, keyword_hits, self.rrf_k, limit=limit, mapper=self.mapper
        )
        logger.debug(
            f"Chat history search: vector={len(vector_hits)}, keyword={len(keyword_hits)}, "
            f"returned={len(fused)}"
        )
        return [item.message for item in fused]

    async def delete_session(self, session_id: str) -> int:
        return await call_with_resilience(
            self.breaker, self.retry_policy, self.index_store.delete_by, session_id
        )

    async def _query_vectors(
        self, session_id: str, vector: list[float], k: int
    ) -> list[IndexedMessage]:
        return await self.index_store.vector_search(session_id, vector, k)

    async def _query_keywords(
        self, session_id: str, query: str, k: int
    ) -> list[IndexedMessage]:
        return await self.index_store.keyword_search(session_id, query, k)
