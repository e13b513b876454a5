"""
Diversity Reranker
==================
한 문서가 검색 결과를 독점하지 않도록 문서 간 라운드 로빈으로 재배치합니다.

알고리즘:
1. 청크를 문서 ID로 그룹화 (처음 등장한 순서 유지)
2. 각 그룹을 relevance 점수 내림차순 정렬
3. 라운드마다 각 문서에서 하나씩 선택
4. min_chunks_per_document를 채운 뒤 소진된 문서는 순환에서 제외
5. top_k개가 차면 종료

비활성화 시 입력 순서 그대로 상위 top_k를 반환합니다.
"""

import logging

from notebook_rag.domain.entities import Chunk

logger = logging.getLogger(__name__)


class DiversityReranker:
    """
    문서 다양성 재순위

    Args:
        enabled: False면 입력 순서 유지
        min_chunks_per_document: 순환에서 빠지기 전 문서당 최소 선택 수
    """

    def __init__(self, enabled: bool = True, min_chunks_per_document: int = 1):
        self.enabled = enabled
        self.min_chunks_per_document = min_chunks_per_document

    def rerank(self, chunks: list[Chunk], top_k: int) -> list[Chunk]:
        if not self.enabled:
            logger.debug("Diversity reranking disabled, returning original order")
            return list(chunks[:top_k])
        if not chunks or top_k <= 0:
            return []

        by_document: dict[str, list[Chunk]] = {}
        for chunk in chunks:
            by_document.setdefault(chunk.document_id, []).append(chunk)
        for group in by_document.values():
            group.sort(key=lambda c: c.relevance_score or 0.0, reverse=True)

        logger.debug(
            f"Diversity reranking: {len(chunks)} chunks from {len(by_document)} documents, "
            f"top_k={top_k}, min_per_doc={self.min_chunks_per_document}"
        )

        taken = dict.fromkeys(by_document, 0)
        result: list[Chunk] = []
        round_index = 0

        while len(result) < top_k and by_document:
            exhausted = []
            for document_id, group in by_document.items():
                if round_index < len(group):
                    result.append(group[round_index])
                    taken[document_id] += 1
                    if len(result) >= top_k:
                        break
                elif taken[document_id] >= self.min_chunks_per_document:
                    exhausted.append(document_id)

            for document_id in exhausted:
                del by_document[document_id]
            round_index += 1

            if round_index > len(chunks):
                logger.warning("Diversity reranking hit safety limit, breaking loop")
                break

        logger.debug(
            f"Diversity reranking complete: {len(result)} chunks from "
            f"{len({c.document_id for c in result})} documents "
            f"(diversity score: {calculate_diversity_score(result):.2f})"
        )
        return result


def calculate_diversity_score(chunks: list[Chunk]) -> float:
    """고유 문서 수 / 청크 수 (0.0 = 한 문서, 1.0 = 청크마다 다른 문서)"""
    if not chunks:
        return 0.0
    return len({c.document_id for c in chunks}) / len(chunks)


def document_distribution(chunks: list[Chunk]) -> dict[str, int]:
    distribution: dict[str, int] = {}
    for chunk in chunks:
        distribution[chunk.document_id] = distribution.get(chunk.document_id, 0) + 1
    return distribution
