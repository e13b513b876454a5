"""
Index Store Protocol
====================
벡터 유사도 검색, BM25 키워드 검색, 일괄 색인/삭제를 지원하는 색인 저장소 인터페이스

문서 타입 T에 대한 매핑 로직은 IndexMapper로 주입합니다 (상속 대신 합성).
모든 검색/삭제 연산은 session_id를 필수 인자로 받습니다.

구현체:
- InMemoryIndexStore (notebook_rag/infrastructure/index/memory_index.py)
"""

from typing import Any, Protocol, TypeVar, runtime_checkable

T = TypeVar("T")


@runtime_checkable
class IndexMapper(Protocol[T]):
    """
    문서 타입별 매핑 로직

    Methods:
        id_of: 문서 ID
        session_of: 소속 세션 ID
        vector_of: 임베딩 벡터 (없으면 None)
        text_of: 키워드 검색 대상 텍스트
        matches: 삭제 조건 일치 여부
        with_score: relevance 점수가 설정된 사본
    """

    def id_of(self, item: T) -> str: ...

    def session_of(self, item: T) -> str: ...

    def vector_of(self, item: T) -> list[float] | None: ...

    def text_of(self, item: T) -> str: ...

    def matches(self, item: T, criteria: dict[str, Any]) -> bool: ...

    def with_score(self, item: T, score: float) -> T: ...


@runtime_checkable
class IndexStore(Protocol[T]):
    """
    Index Store Protocol

    Methods:
        index_chunks: 일괄 upsert
        vector_search: 세션 내 벡터 유사도 검색
        keyword_search: 세션 내 BM25 검색
        delete_by: 세션 + 조건 기반 삭제
        refresh: 색인 갱신 (검색 가시성 보장)
    """

    async def index_chunks(self, items: list[T]) -> int:
        """
        문서를 색인합니다. 같은 ID는 덮어씁니다.

        Returns:
            색인된 문서 수
        """
        ...

    async def vector_search(self, session_id: str, vector: list[float], k: int) -> list[T]:
        """
        세션 내에서 벡터 유사도 상위 k개를 반환합니다.

        Returns:
            relevance 점수가 설정된 문서 리스트 (내림차순)
        """
        ...

    async def keyword_search(self, session_id: str, query: str, k: int) -> list[T]:
        """세션 내에서 BM25 상위 k개를 반환합니다."""
        ...

    async def delete_by(self, session_id: str, **criteria: Any) -> int:
        """
        세션 내에서 조건에 맞는 문서를 삭제합니다.

        Args:
            session_id: 필수 세션 필터
            **criteria: 추가 조건 (예: document_id="...")

        Returns:
            삭제된 문서 수
        """
        ...

    async def refresh(self) -> None: ...
