"""
Retrieval Result Value Objects
==============================
하이브리드 검색, 신뢰도, 답변 검증 결과를 나타내는 값 객체.
"""

from dataclasses import dataclass, field
from enum import Enum

from notebook_rag.domain.entities import Chunk


@dataclass
class SearchResult:
    """Hybrid search output with every intermediate stage.

    Attributes:
        query: 실제 검색에 사용된 쿼리 (재작성 후)
        vector_results: 벡터 채널 결과 (유사도 점수)
        keyword_results: 키워드 채널 결과 (BM25 점수)
        fused_results: RRF 융합 결과 (융합 점수)
        final_results: 다양성 + 의미 재순위 후 최종 결과
    """

    query: str
    vector_results: list[Chunk] = field(default_factory=list)
    keyword_results: list[Chunk] = field(default_factory=list)
    fused_results: list[Chunk] = field(default_factory=list)
    final_results: list[Chunk] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        """한쪽 채널이라도 비어 있으면 True"""
        return not self.vector_results or not self.keyword_results


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ConfidenceDecision(str, Enum):
    """신뢰도에 따른 생성 정책"""

    PROCEED = "proceed"
    HEDGE = "hedge"
    CLARIFY = "clarify"


@dataclass
class ConfidenceResult:
    score: float
    level: ConfidenceLevel
    explanation: str
    components: dict[str, float] = field(default_factory=dict)
    score_gap: float = 0.0

    @property
    def decision(self) -> ConfidenceDecision:
        if self.level == ConfidenceLevel.HIGH:
            return ConfidenceDecision.PROCEED
        if self.level == ConfidenceLevel.MEDIUM:
            return ConfidenceDecision.HEDGE
        return ConfidenceDecision.CLARIFY

    def to_dict(self) -> dict:
        return {
            "score": round(self.score, 4),
            "level": self.level.value,
            "decision": self.decision.value,
            "explanation": self.explanation,
            "components": {k: round(v, 4) for k, v in self.components.items()},
            "score_gap": round(self.score_gap, 4),
        }


@dataclass
class VerificationResult:
    """답변 근거 검증 결과. is_valid=False는 노출용 경고 신호입니다."""

    is_valid: bool
    unsupported_claims: list[str] = field(default_factory=list)
    checked_claims: int = 0

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "unsupported_claims": list(self.unsupported_claims),
            "checked_claims": self.checked_claims,
        }
