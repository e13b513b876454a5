"""
Hybrid Search
=============
벡터 검색 + BM25 키워드 검색을 RRF로 융합한 뒤 의미/다양성 재순위를 적용합니다.

파이프라인:
1. 쿼리 임베딩 (실패 시 키워드 검색만 사용)
2. 벡터/키워드 채널을 동시에 조회 (각 채널 top_k × candidates_multiplier)
3. RRF 융합: score = Σ 1 / (rrf_k + rank), rank는 1부터
4. 후속 질문이면 직전 답변의 출처 문서에 가산점 (출처 고정)
5. 의미 재순위 (top_k × 2)
6. 다양성 재순위로 최종 top_k 선택 (한 문서가 결과를 독점하지 않도록 마지막에 적용)

모든 색인 호출은 session_id를 필수로 전달하므로 세션을 넘는 검색 경로가 없습니다.
색인 호출 실패는 빈 결과로 저하되며 예외를 밖으로 던지지 않습니다.

RRF 동점 규칙:
    (-점수, 벡터 채널 순위, 키워드 채널 순위, 청크 ID) 오름차순.
    채널에 없는 청크의 순위는 무한대로 취급합니다.
"""

import asyncio
import logging
import math
from typing import TypeVar

from notebook_rag.core.circuit_breaker import CircuitBreaker
from notebook_rag.core.resilience import INDEX_RETRY, RetryPolicy, resilient
from notebook_rag.domain.entities import Chunk, InteractionMode
from notebook_rag.domain.exceptions import (
    ExternalServiceUnavailableError,
    MalformedModelOutputError,
)
from notebook_rag.domain.interfaces import EmbeddingProvider, IndexMapper, IndexStore
from notebook_rag.domain.value_objects import SearchResult
from notebook_rag.monitoring.logger import timed
from notebook_rag.rag.diversity_reranker import DiversityReranker
from notebook_rag.rag.reranker import SemanticReranker

logger = logging.getLogger(__name__)

T = TypeVar("T")


def reciprocal_rank_fusion(
    vector_results: list[T],
    keyword_results: list[T],
    rrf_k: int = 60,
    limit: int | None = None,
    mapper: IndexMapper[T] | None = None,
) -> list[T]:
    """
    Reciprocal Rank Fusion

    채널마다 같은 ID는 처음 등장한 순위만 사용합니다.
    mapper를 주면 Chunk 외 문서 타입(예: 대화 메시지)도 융합할 수 있습니다.

    Returns:
        relevance 점수가 융합 점수로 설정된 사본 (내림차순)
    """
    id_of = mapper.id_of if mapper else (lambda item: item.id)
    with_score = mapper.with_score if mapper else (lambda item, score: item.with_score(score))

    channel_ranks: list[dict[str, int]] = []
    items: dict[str, T] = {}

    for results in (vector_results, keyword_results):
        ranks: dict[str, int] = {}
        for item in results:
            item_id = id_of(item)
            if item_id in ranks:
                continue
            ranks[item_id] = len(ranks) + 1
            items.setdefault(item_id, item)
        channel_ranks.append(ranks)

    vector_ranks, keyword_ranks = channel_ranks
    scores = {
        item_id: sum(1.0 / (rrf_k + ranks[item_id]) for ranks in channel_ranks if item_id in ranks)
        for item_id in items
    }

    ordered = sorted(
        items,
        key=lambda item_id: (
            -scores[item_id],
            vector_ranks.get(item_id, math.inf),
            keyword_ranks.get(item_id, math.inf),
            item_id,
        ),
    )
    if limit is not None:
        ordered = ordered[:limit]
    return [with_score(items[item_id], scores[item_id]) for item_id in ordered]


def boost_anchored(fused: list[Chunk], anchor_document_ids: list[str], boost: float) -> list[Chunk]:
    """
    후속 질문의 출처 고정

    직전 답변이 인용한 문서의 청크에 boost를 더해 다시 정렬합니다.
    다른 문서를 제외하지는 않으므로 새 문서도 충분히 높으면 남습니다.
    동점은 기존 융합 순서를 유지합니다.
    """
    anchors = set(anchor_document_ids)
    if not anchors or boost <= 0:
        return fused
    boosted = [
        chunk.with_score((chunk.relevance_score or 0.0) + boost)
        if chunk.document_id in anchors
        else chunk
        for chunk in fused
    ]
    return sorted(boosted, key=lambda c: c.relevance_score or 0.0, reverse=True)


class HybridSearchService:
    """
    하이브리드 검색 서비스

    사용 예:
        service = HybridSearchService(index_store, embedder, diversity, reranker)
        result = await service.search_with_details(session_id, query, InteractionMode.RESEARCH)
        chunks = result.final_results
    """

    def __init__(
        self,
        index_store: IndexStore[Chunk],
        embedder: EmbeddingProvider,
        diversity_reranker: DiversityReranker,
        semantic_reranker: SemanticReranker,
        rrf_k: int = 60,
        candidates_multiplier: int = 2,
        default_top_k: int = 6,
        anchor_weight: float = 1.0,
        breaker: CircuitBreaker | None = None,
        retry_policy: RetryPolicy = INDEX_RETRY,
    ):
        """
        Args:
            anchor_weight: 출처 고정 가산점 (1.0 = 한 채널 1위 기여분, 1 / (rrf_k + 1))
        """
        self.index_store = index_store
        self.embedder = embedder
        self.diversity_reranker = diversity_reranker
        self.semantic_reranker = semantic_reranker
        self.rrf_k = rrf_k
        self.candidates_multiplier = candidates_multiplier
        self.default_top_k = default_top_k
        self.anchor_weight = anchor_weight
        self.breaker = breaker or CircuitBreaker(name="index")
        self.retry_policy = retry_policy

        # 색인 호출 경계: 회로 차단 + 재시도, 실패하면 빈 결과로 저하
        degrade_to_empty = resilient(self.breaker, retry_policy, fallback=lambda *args, **kwargs: [])
        self.vector_search = degrade_to_empty(self._query_vectors)
        self.keyword_search = degrade_to_empty(self._query_keywords)

    def _top_k(self, mode: InteractionMode | int | None) -> int:
        if isinstance(mode, InteractionMode):
            return mode.retrieval_count
        if isinstance(mode, int) and mode > 0:
            return mode
        return self.default_top_k

    async def search(
        self, session_id: str, query: str, mode: InteractionMode | int | None = None
    ) -> list[Chunk]:
        result = await self.search_with_details(session_id, query, mode)
        return result.final_results

    @timed("hybrid_search")
    async def search_with_details(
        self,
        session_id: str,
        query: str,
        mode: InteractionMode | int | None = None,
        anchor_document_ids: list[str] | None = None,
    ) -> SearchResult:
        """
        하이브리드 검색 (중간 단계 결과 포함)

        Args:
            session_id: 검색 대상 세션 (필수)
            query: 검색 쿼리
            mode: 대화 모드 또는 top_k 정수 (None이면 기본값)
            anchor_document_ids: 후속 질문이면 직전 답변이 인용한 문서 (융합 점수 가산)

        Raises:
            ValidationError: session_id가 비어 있음
        """
        top_k = self._top_k(mode)
        pool_size = top_k * self.candidates_multiplier
        logger.debug(f"Starting hybrid search: session={session_id}, top_k={top_k}, pool={pool_size}")

        query_vector = await self._embed_query(query)
        if query_vector:
            vector_results, keyword_results = await asyncio.gather(
                self.vector_search(session_id, query_vector, pool_size),
                self.keyword_search(session_id, query, pool_size),
            )
        else:
            logger.warning("Query embedding unavailable, falling back to keyword search only")
            vector_results = []
            keyword_results = await self.keyword_search(session_id, query, pool_size)

        fused = reciprocal_rank_fusion(vector_results, keyword_results, self.rrf_k)
        if anchor_document_ids:
            boost = self.anchor_weight / (self.rrf_k + 1)
            logger.debug(f"Anchoring to {len(anchor_document_ids)} documents (boost={boost:.4f})")
            fused = boost_anchored(fused, anchor_document_ids, boost)
        fused = fused[:pool_size]

        reranked = await self.semantic_reranker.rerank(query, fused, top_k * 2)
        final = self.diversity_reranker.rerank(reranked, top_k)

        logger.debug(
            f"Hybrid search: vector={len(vector_results)}, keyword={len(keyword_results)}, "
            f"fused={len(fused)}, final={len(final)} from "
            f"{len({c.document_id for c in final})} documents"
        )
        return SearchResult(
            query=query,
            vector_results=vector_results,
            keyword_results=keyword_results,
            fused_results=fused,
            final_results=final,
        )

    async def _query_vectors(self, session_id: str, vector: list[float], k: int) -> list[Chunk]:
        return await self.index_store.vector_search(session_id, vector, k)

    async def _query_keywords(self, session_id: str, query: str, k: int) -> list[Chunk]:
        return await self.index_store.keyword_search(session_id, query, k)

    async def _embed_query(self, query: str) -> list[float]:
        try:
            return await self.embedder.embed_query(query)
        except (ExternalServiceUnavailableError, MalformedModelOutputError) as e:
            logger.warning(f"Query embedding failed: {e}")
            return []
