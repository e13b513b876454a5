"""
Semantic Reranker
=================
융합 결과를 쿼리-패시지 관련도로 재채점하는 2단계 정밀 검색 모듈

Bi-Encoder vs Cross-Encoder:
- Bi-Encoder: 쿼리와 문서를 독립적으로 임베딩 후 유사도 계산 (빠름, 정확도 낮음)
- Cross-Encoder: 쿼리-문서 쌍을 함께 입력하여 관련도 직접 예측 (느림, 정확도 높음)

구현체 (SemanticReranker 프로토콜):
- LLMReranker: 채점 루브릭으로 LLM에게 배치별 [0, 1] 점수를 요청 (기본)
- CrossEncoderReranker: sentence-transformers CrossEncoder 로짓에 sigmoid 적용

두 구현 모두 배치 호출이 실패하면 이전 융합 점수 × 10 (0이면 0.5)을 점수로 쓰고,
예외를 밖으로 던지지 않습니다.
"""

import asyncio
import json
import logging
import re
from typing import Any, Protocol

import numpy as np

from notebook_rag.core.circuit_breaker import CircuitBreaker
from notebook_rag.core.resilience import RERANKER_RETRY, RetryPolicy, call_with_resilience
from notebook_rag.domain.entities import Chunk
from notebook_rag.domain.exceptions import MalformedModelOutputError
from notebook_rag.domain.interfaces import CompletionProvider
from notebook_rag.shared.constants import FALLBACK_SCORE_SCALE, NEUTRAL_SCORE
from notebook_rag.shared.llm_client import strip_code_fences

logger = logging.getLogger(__name__)

RERANK_SYSTEM_PROMPT = """You are a passage relevance scoring expert. Score the relevance of each passage to
the query on a scale of 0.0 to 1.0.

Scoring Guidelines:
- 1.0 = Perfectly answers the query with precise information
- 0.7-0.9 = Highly relevant, contains most needed information
- 0.4-0.6 = Somewhat relevant, contains related information
- 0.1-0.3 = Marginally relevant, tangentially related
- 0.0 = Not relevant at all

Return a JSON object with a "scores" array containing one float per passage in order.
Example: {"scores": [0.8, 0.3, 0.9, 0.5]}"""

_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")


class SemanticReranker(Protocol):
    async def rerank(self, query: str, candidates: list[Chunk], top_k: int) -> list[Chunk]:
        """relevance_score가 재채점된 상위 top_k 청크 (내림차순)"""
        ...


def fallback_score(chunk: Chunk) -> float:
    """융합 점수 기반 결정적 대체 점수"""
    prior = chunk.relevance_score or 0.0
    if prior > 0:
        return min(1.0, prior * FALLBACK_SCORE_SCALE)
    return NEUTRAL_SCORE


def clamp_score(value: float) -> float:
    return max(0.0, min(1.0, value))


def parse_scores(text: str) -> list[float]:
    """
    점수 응답을 관대하게 해석

    {"scores": [...]} → [...] → 본문의 숫자 나열 (쉼표 구분 등) 순으로 시도합니다.
    해석할 수 없으면 빈 리스트를 반환합니다.
    """
    cleaned = strip_code_fences(text or "")
    if not cleaned:
        return []

    try:
        data: Any = json.loads(cleaned)
    except json.JSONDecodeError:
        data = None

    if isinstance(data, dict):
        data = data.get("scores")
    if isinstance(data, list):
        scores = []
        for value in data:
            try:
                scores.append(float(value))
            except (TypeError, ValueError):
                continue
        return scores

    return [float(match) for match in _NUMBER.findall(cleaned)]


def fit_scores(scores: list[float], size: int) -> list[float]:
    """클램프 후 부족하면 0.5로 채우고 넘치면 자름"""
    fitted = [clamp_score(s) for s in scores[:size]]
    fitted.extend([NEUTRAL_SCORE] * (size - len(fitted)))
    return fitted


def _sorted_top(scored: list[Chunk], top_k: int) -> list[Chunk]:
    # sorted는 안정 정렬이므로 동점이면 입력 순서 유지
    return sorted(scored, key=lambda c: c.relevance_score or 0.0, reverse=True)[:top_k]


class LLMReranker:
    """
    LLM 기반 의미 재순위

    사용 예:
        reranker = LLMReranker(llm_client, batch_size=20)
        ranked = await reranker.rerank(query, fused_chunks, top_k=6)
    """

    name = "llm"

    def __init__(
        self,
        llm: CompletionProvider,
        batch_size: int = 20,
        passage_max_chars: int = 500,
        enabled: bool = True,
    ):
        """
        Args:
            llm: 채점용 LLM 클라이언트 (재순위 전용 회로 차단기/재시도 정책으로 구성)
            batch_size: 한 번의 호출에 넣을 패시지 수
            passage_max_chars: 패시지 절단 길이
            enabled: False면 이전 점수 순으로 통과
        """
        self.llm = llm
        self.batch_size = batch_size
        self.passage_max_chars = passage_max_chars
        self.enabled = enabled

    async def rerank(self, query: str, candidates: list[Chunk], top_k: int) -> list[Chunk]:
        if not self.enabled:
            logger.debug("LLM reranking disabled, returning candidates by prior score")
            return _sorted_top(candidates, top_k)
        if not candidates:
            return []

        logger.debug(
            f"Reranking {len(candidates)} candidates with LLM (batch size: {self.batch_size})"
        )
        scored: list[Chunk] = []
        for start in range(0, len(candidates), self.batch_size):
            batch = candidates[start : start + self.batch_size]
            scored.extend(await self._score_batch(query, batch, start))

        ranked = _sorted_top(scored, top_k)
        if ranked:
            logger.debug(f"LLM reranking complete, top score: {ranked[0].relevance_score:.3f}")
        return ranked

    async def _score_batch(self, query: str, batch: list[Chunk], offset: int) -> list[Chunk]:
        try:
            response = await self.llm.complete(
                system_prompt=RERANK_SYSTEM_PROMPT,
                user_prompt=f"Query: {query}\n\nPassages:\n{self.build_passages(batch)}",
                temperature=0.0,
                max_tokens=200,
            )
            scores = parse_scores(response)
            if not scores:
                raise MalformedModelOutputError("No scores found in reranker response", response)
        except Exception as e:
            logger.warning(
                f"Reranking batch {offset}-{offset + len(batch)} failed: {e}, using fallback scores"
            )
            return [chunk.with_score(fallback_score(chunk)) for chunk in batch]

        if len(scores) != len(batch):
            logger.debug(f"Reranker returned {len(scores)} scores for {len(batch)} passages")
        return [
            chunk.with_score(score)
            for chunk, score in zip(batch, fit_scores(scores, len(batch)), strict=True)
        ]

    def build_passages(self, batch: list[Chunk]) -> str:
        lines = []
        for i, chunk in enumerate(batch):
            content = chunk.content
            if len(content) > self.passage_max_chars:
                content = content[: self.passage_max_chars] + "..."
            lines.append(f"[{i}] {content}\n")
        return "\n".join(lines)


class CrossEncoderReranker:
    """
    Cross-Encoder 기반 재순위화 (sentence-transformers, 선택 의존성)

    모델은 첫 호출 시 지연 로드되며 추론은 스레드에서 실행됩니다.
    로짓은 sigmoid로 [0, 1]에 매핑합니다.
    """

    name = "cross-encoder"

    # 지원되는 Cross-Encoder 모델 별칭
    SUPPORTED_MODELS = {
        "ms-marco-MiniLM-L-6-v2": "cross-encoder/ms-marco-MiniLM-L-6-v2",
        "ms-marco-MiniLM-L-12-v2": "cross-encoder/ms-marco-MiniLM-L-12-v2",
        "bge-reranker-base": "BAAI/bge-reranker-base",
    }

    def __init__(
        self,
        model_name: str = "cross-encoder/ms-marco-MiniLM-L-6-v2",
        batch_size: int = 20,
        enabled: bool = True,
        device: str = "cpu",
        breaker: CircuitBreaker | None = None,
        retry_policy: RetryPolicy = RERANKER_RETRY,
    ):
        self.model_name = self.SUPPORTED_MODELS.get(model_name, model_name)
        self.batch_size = batch_size
        self.enabled = enabled
        self.device = device
        self.breaker = breaker or CircuitBreaker(name="reranker")
        self.retry_policy = retry_policy
        self._model = None

    def _get_model(self):
        if self._model is None:
            from sentence_transformers import CrossEncoder

            logger.info(f"Initializing local CrossEncoder: {self.model_name}")
            self._model = CrossEncoder(self.model_name, device=self.device)
        return self._model

    def _predict(self, query: str, passages: list[str]) -> list[float]:
        logits = self._get_model().predict(
            [(query, passage) for passage in passages],
            batch_size=self.batch_size,
            show_progress_bar=False,
        )
        return (1.0 / (1.0 + np.exp(-np.asarray(logits, dtype=float)))).tolist()

    async def _predict_async(self, query: str, passages: list[str]) -> list[float]:
        return await asyncio.to_thread(self._predict, query, passages)

    async def rerank(self, query: str, candidates: list[Chunk], top_k: int) -> list[Chunk]:
        if not self.enabled:
            return _sorted_top(candidates, top_k)
        if not candidates:
            return []

        scored: list[Chunk] = []
        for start in range(0, len(candidates), self.batch_size):
            batch = candidates[start : start + self.batch_size]
            try:
                scores = await call_with_resilience(
                    self.breaker,
                    self.retry_policy,
                    self._predict_async,
                    query,
                    [chunk.content for chunk in batch],
                )
            except Exception as e:
                logger.warning(f"CrossEncoder batch {start} failed: {e}, using fallback scores")
                scored.extend(chunk.with_score(fallback_score(chunk)) for chunk in batch)
                continue
            scored.extend(
                chunk.with_score(score)
                for chunk, score in zip(batch, fit_scores(scores, len(batch)), strict=True)
            )

        return _sorted_top(scored, top_k)


def create_reranker(
    strategy: str,
    llm: CompletionProvider,
    batch_size: int = 20,
    passage_max_chars: int = 500,
    enabled: bool = True,
    cross_encoder_model: str = "cross-encoder/ms-marco-MiniLM-L-6-v2",
    breaker: CircuitBreaker | None = None,
) -> SemanticReranker:
    if strategy == "cross-encoder":
        return CrossEncoderReranker(
            model_name=cross_encoder_model,
            batch_size=batch_size,
            enabled=enabled,
            breaker=breaker,
        )
    return LLMReranker(
        llm, batch_size=batch_size, passage_max_chars=passage_max_chars, enabled=enabled
    )
