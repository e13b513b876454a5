"""
Runtime RAG Metrics Collector
==============================
검색 품질 메트릭을 런타임에 수집합니다.

수집 메트릭:
- total_retrievals: 총 검색 횟수
- avg_chunks_returned: 평균 반환 청크 수
- avg_unique_documents: 결과당 평균 고유 문서 수
- avg_diversity_score: 평균 다양성 점수 (고유 문서 수 / 청크 수)
- degraded_rate: 한쪽 채널이 비어 있던 검색 비율
- confidence_distribution: 신뢰도 레벨별 건수
- avg_retrieval_time_ms: 평균 검색 시간
"""

import logging
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any

from notebook_rag.domain.value_objects import ConfidenceResult, SearchResult

logger = logging.getLogger(__name__)


@dataclass
class RetrievalRecord:
    """단일 검색 기록"""

    query: str
    chunks_returned: int
    unique_documents: int
    degraded: bool
    confidence_level: str | None
    retrieval_time_ms: float
    timestamp: float = field(default_factory=time.time)

    @property
    def diversity_score(self) -> float:
        if self.chunks_returned == 0:
            return 0.0
        return self.unique_documents / self.chunks_returned


class RAGMetricsCollector:
    """
    런타임 RAG 검색 메트릭 수집기

    Usage:
        collector = RAGMetricsCollector()
        collector.record_retrieval(result, confidence, retrieval_time_ms=42.0)
        metrics = collector.get_metrics()
    """

    def __init__(self, window_size: int = 100):
        """
        Args:
            window_size: 메트릭 계산에 사용할 최근 기록 수
        """
        self._records: deque[RetrievalRecord] = deque(maxlen=window_size)
        self._total_retrievals: int = 0
        self._window_size = window_size

    def record_retrieval(
        self,
        result: SearchResult,
        confidence: ConfidenceResult | None = None,
        retrieval_time_ms: float = 0.0,
    ) -> None:
        self._total_retrievals += 1

        record = RetrievalRecord(
            query=result.query,
            chunks_returned=len(result.final_results),
            unique_documents=len({c.document_id for c in result.final_results}),
            degraded=result.degraded,
            confidence_level=confidence.level.value if confidence else None,
            retrieval_time_ms=retrieval_time_ms,
        )
        self._records.append(record)

        logger.debug(
            f"RAG metric recorded: chunks={record.chunks_returned}, "
            f"docs={record.unique_documents}, diversity={record.diversity_score:.2f}"
        )

    def get_metrics(self) -> dict[str, Any]:
        if not self._records:
            return {
                "total_retrievals": self._total_retrievals,
                "window_size": self._window_size,
                "records_in_window": 0,
                "avg_chunks_returned": 0.0,
                "avg_unique_documents": 0.0,
                "avg_diversity_score": 0.0,
                "degraded_rate": 0.0,
                "confidence_distribution": {},
                "avg_retrieval_time_ms": 0.0,
            }

        records = list(self._records)
        n = len(records)

        return {
            "total_retrievals": self._total_retrievals,
            "window_size": self._window_size,
            "records_in_window": n,
            "avg_chunks_returned": round(sum(r.chunks_returned for r in records) / n, 2),
            "avg_unique_documents": round(sum(r.unique_documents for r in records) / n, 2),
            "avg_diversity_score": round(sum(r.diversity_score for r in records) / n, 4),
            "degraded_rate": round(sum(1 for r in records if r.degraded) / n, 4),
            "confidence_distribution": dict(
                Counter(r.confidence_level for r in records if r.confidence_level)
            ),
            "avg_retrieval_time_ms": round(sum(r.retrieval_time_ms for r in records) / n, 2),
        }

    def reset(self) -> None:
        self._records.clear()
        self._total_retrievals = 0
