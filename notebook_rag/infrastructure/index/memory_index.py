"""
In-Memory Index Store
=====================
IndexStore Protocol 구현 - numpy 코사인 유사도 + rank_bm25 키워드 검색

문서 타입에 대한 지식은 IndexMapper로 주입받습니다.
세션 ID는 모든 검색/삭제의 필수 필터이며, 다른 세션의 문서는 점수 계산에도 참여하지 않습니다.

Usage:
    store = InMemoryIndexStore(ChunkIndexMapper())
    await store.index_chunks(chunks)
    hits = await store.vector_search(session_id, query_vector, k=12)
"""

import logging
import re
from typing import Any, Generic, TypeVar

import numpy as np
from rank_bm25 import BM25Okapi

from notebook_rag.domain.entities import Chunk
from notebook_rag.domain.exceptions import ValidationError
from notebook_rag.domain.interfaces import IndexMapper

logger = logging.getLogger(__name__)

T = TypeVar("T")

TOKEN_PATTERN = re.compile(r"\b\w+\b")


def tokenize(text: str) -> list[str]:
    """소문자 단어 토큰화 (유니코드 단어 문자 기준)"""
    return TOKEN_PATTERN.findall(text.lower())


class ChunkIndexMapper:
    """Chunk용 IndexMapper. 키워드 검색은 보강된 텍스트(enriched_content)를 대상으로 합니다."""

    def id_of(self, item: Chunk) -> str:
        return item.id

    def session_of(self, item: Chunk) -> str:
        return item.session_id

    def vector_of(self, item: Chunk) -> list[float] | None:
        return item.embedding

    def text_of(self, item: Chunk) -> str:
        return item.enriched_content or item.content

    def matches(self, item: Chunk, criteria: dict[str, Any]) -> bool:
        return all(getattr(item, key, None) == value for key, value in criteria.items())

    def with_score(self, item: Chunk, score: float) -> Chunk:
        return item.with_score(score)


class InMemoryIndexStore(Generic[T]):
    """
    프로세스 내 색인 저장소

    Args:
        mapper: 문서 타입별 매핑 로직
    """

    def __init__(self, mapper: IndexMapper[T]):
        self.mapper = mapper
        # session_id -> {doc_id: item}, 삽입 순서 유지
        self._items: dict[str, dict[str, T]] = {}

    def _session_items(self, session_id: str) -> list[T]:
        if not session_id:
            raise ValidationError("session_id is required", field="session_id", value=session_id)
        return list(self._items.get(session_id, {}).values())

    async def index_chunks(self, items: list[T]) -> int:
        for item in items:
            session_id = self.mapper.session_of(item)
            if not session_id:
                raise ValidationError("indexed item has no session", field="session_id")
            self._items.setdefault(session_id, {})[self.mapper.id_of(item)] = item
        logger.debug(f"Indexed {len(items)} items")
        return len(items)

    async def vector_search(self, session_id: str, vector: list[float], k: int) -> list[T]:
        candidates = [
            item for item in self._session_items(session_id) if self.mapper.vector_of(item)
        ]
        if not candidates or not vector or k <= 0:
            return []

        query = np.asarray(vector, dtype=float)
        query_norm = np.linalg.norm(query)
        if query_norm == 0:
            return []

        scored: list[tuple[float, T]] = []
        for item in candidates:
            doc = np.asarray(self.mapper.vector_of(item), dtype=float)
            if doc.shape != query.shape:
                logger.warning(f"Skipping item with mismatched dimension: {self.mapper.id_of(item)}")
                continue
            doc_norm = np.linalg.norm(doc)
            if doc_norm == 0:
                continue
            scored.append((float(np.dot(query, doc) / (query_norm * doc_norm)), item))

        # 안정 정렬: 동점은 색인 순서 유지
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [self.mapper.with_score(item, score) for score, item in scored[:k]]

    async def keyword_search(self, session_id: str, query: str, k: int) -> list[T]:
        items = self._session_items(session_id)
        query_tokens = tokenize(query or "")
        if not items or not query_tokens or k <= 0:
            return []

        corpus = [tokenize(self.mapper.text_of(item)) for item in items]
        if not any(corpus):
            return []

        bm25 = BM25Okapi(corpus)
        scores = bm25.get_scores(query_tokens)

        # 작은 코퍼스에서는 IDF가 0 이하가 될 수 있어 점수 대신 토큰 겹침으로 필터링
        query_set = set(query_tokens)
        scored = [
            (float(scores[i]), item)
            for i, item in enumerate(items)
            if query_set.intersection(corpus[i])
        ]
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [self.mapper.with_score(item, score) for score, item in scored[:k]]

    async def delete_by(self, session_id: str, **criteria: Any) -> int:
        items = self._session_items(session_id)
        bucket = self._items.get(session_id, {})
        removed = 0
        for item in items:
            if self.mapper.matches(item, criteria):
                del bucket[self.mapper.id_of(item)]
                removed += 1
        if not bucket:
            self._items.pop(session_id, None)
        logger.info(f"Deleted {removed} items from session {session_id} (criteria={criteria})")
        return removed

    async def refresh(self) -> None:
        """프로세스 내 저장소는 쓰기 즉시 검색 가능"""
        return None

    def count(self, session_id: str) -> int:
        return len(self._items.get(session_id, {}))
