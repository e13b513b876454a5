"""
Retrieval Confidence Scorer
===========================
검색 결과가 답변 생성에 충분한지 판단합니다.

score = 0.4 × 최고 RRF 점수 정규화
      + 0.3 × 벡터/키워드 상위 10개 자카드 일치도
      + 0.2 × 쿼리 용어 커버리지 (최상위 청크 기준)
      + 0.1 × 문서 다양성 (고유 문서 5개 = 1.0)

등급:
- HIGH (≥ 0.7): 그대로 생성 (PROCEED)
- MEDIUM (≥ 0.4): 불확실성을 밝히며 생성 (HEDGE)
- LOW: 생성 대신 재질문 요청 (CLARIFY)
"""

import logging

from notebook_rag.domain.value_objects import ConfidenceLevel, ConfidenceResult, SearchResult
from notebook_rag.shared.constants import (
    AGREEMENT_TOP_N,
    COVERAGE_STOP_WORDS,
    DIVERSITY_FULL_DOCS,
    RRF_TOP_SCORE,
)

logger = logging.getLogger(__name__)


class RetrievalConfidenceScorer:
    """
    Args:
        high_threshold: HIGH 등급 하한
        medium_threshold: MEDIUM 등급 하한
        weights: (max_rrf, agreement, coverage, diversity) 가중치
    """

    def __init__(
        self,
        high_threshold: float = 0.7,
        medium_threshold: float = 0.4,
        max_rrf_weight: float = 0.4,
        agreement_weight: float = 0.3,
        coverage_weight: float = 0.2,
        diversity_weight: float = 0.1,
    ):
        self.high_threshold = high_threshold
        self.medium_threshold = medium_threshold
        self.max_rrf_weight = max_rrf_weight
        self.agreement_weight = agreement_weight
        self.coverage_weight = coverage_weight
        self.diversity_weight = diversity_weight

    def score(self, query: str, result: SearchResult) -> ConfidenceResult:
        if not result.final_results:
            return ConfidenceResult(
                score=0.0, level=ConfidenceLevel.LOW, explanation="No documents retrieved"
            )

        components = {
            "max_rrf": self.max_rrf_score(result),
            "agreement": self.channel_agreement(result),
            "coverage": self.query_coverage(query, result),
            "diversity": self.document_diversity(result),
        }
        score = (
            self.max_rrf_weight * components["max_rrf"]
            + self.agreement_weight * components["agreement"]
            + self.coverage_weight * components["coverage"]
            + self.diversity_weight * components["diversity"]
        )
        score = max(0.0, min(1.0, score))
        level = self.level_for(score)

        final = result.final_results
        score_gap = 0.0
        if len(final) > 1:
            score_gap = (final[0].relevance_score or 0.0) - (final[1].relevance_score or 0.0)

        logger.debug(f"Retrieval confidence {score:.3f} ({level.value}): {components}")
        return ConfidenceResult(
            score=score,
            level=level,
            explanation=self.explain(score, components),
            components=components,
            score_gap=score_gap,
        )

    def level_for(self, score: float) -> ConfidenceLevel:
        if score >= self.high_threshold:
            return ConfidenceLevel.HIGH
        if score >= self.medium_threshold:
            return ConfidenceLevel.MEDIUM
        return ConfidenceLevel.LOW

    @staticmethod
    def max_rrf_score(result: SearchResult) -> float:
        """융합 1위 점수를 순위 1의 RRF 점수로 정규화 (재순위 점수가 아닌 융합 점수 기준)"""
        ranked = result.fused_results or result.final_results
        top = ranked[0].relevance_score or 0.0
        return min(1.0, top / RRF_TOP_SCORE)

    @staticmethod
    def channel_agreement(result: SearchResult) -> float:
        if not result.vector_results or not result.keyword_results:
            return 0.0
        vector_ids = {c.id for c in result.vector_results[:AGREEMENT_TOP_N]}
        keyword_ids = {c.id for c in result.keyword_results[:AGREEMENT_TOP_N]}
        union = vector_ids | keyword_ids
        return len(vector_ids & keyword_ids) / len(union) if union else 0.0

    @staticmethod
    def query_coverage(query: str, result: SearchResult) -> float:
        terms = [t for t in query.lower().split() if len(t) > 2]
        if not terms:
            return 0.0
        top_content = result.final_results[0].content.lower()
        matched = sum(
            1 for t in terms if t not in COVERAGE_STOP_WORDS and t in top_content
        )
        return matched / len(terms)

    @staticmethod
    def document_diversity(result: SearchResult) -> float:
        unique_docs = len({c.document_id for c in result.final_results})
        return min(1.0, unique_docs / DIVERSITY_FULL_DOCS)

    @staticmethod
    def explain(score: float, components: dict[str, float]) -> str:
        parts = [f"Confidence: {score * 100:.1f}% | "]

        max_rrf = components["max_rrf"]
        if max_rrf > 0.8:
            parts.append("Strong relevance match")
        elif max_rrf > 0.5:
            parts.append("Moderate relevance")
        else:
            parts.append("Weak relevance")

        agreement = components["agreement"]
        if agreement > 0.5:
            parts.append(", high vector-keyword agreement")
        elif agreement < 0.2:
            parts.append(", low vector-keyword agreement")

        if components["coverage"] < 0.3:
            parts.append(", few query terms matched")

        return "".join(parts)
