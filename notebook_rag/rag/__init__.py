"""
RAG (Retrieval-Augmented Generation) Package
=============================================

Ingestion:

    ParsedDocument
     ├─ parse_markdown            – 헤딩 기반 섹션 트리
     ├─ SectionAwareChunker       – 섹션/표 보존 청크 + 이미지 연결
     ├─ DocumentMetadataExtractor – 제목, 섹션, 키워드, enriched content
     └─ DocumentIngestionService  – 임베딩 → 색인, 문서 상태 전이

Search pipeline (composition, not inheritance):

    Query
     ├─ QueryReformulator     – 대화 맥락 기반 후속 질문 재구성
     ├─ ChatHistorySearch     – 대화 기록 벡터 + BM25 검색 (재구성 맥락 보강)
     ├─ HybridSearchService   – 벡터 + BM25 병렬 검색, RRF 융합, 출처 고정
     ├─ DiversityReranker     – 문서별 라운드로빈
     ├─ SemanticReranker      – LLM 또는 교차 인코더 재순위
     ├─ RetrievalConfidenceScorer – 검색 신뢰도 (HIGH/MEDIUM/LOW)
     ├─ ContextBuilder        – LLM 메시지 조립 (토큰 예산 관리)
     └─ AnswerVerifier        – 인용 근거 검증
"""

from .answer_verifier import AnswerVerifier, CitedClaim, extract_claims
from .chat_history_search import ChatHistorySearch, ChatMessageIndexMapper, IndexedMessage
from .chunker import SectionAwareChunker
from .confidence import RetrievalConfidenceScorer
from .context_builder import ContextBuilder, ContextPriority, ContextSection, build_document_context
from .diversity_reranker import DiversityReranker, calculate_diversity_score
from .hybrid_search import HybridSearchService, boost_anchored, reciprocal_rank_fusion
from .image_grouping import (
    PageBasedGroupingStrategy,
    SpatialClusteringStrategy,
    create_grouping_strategy,
)
from .ingestion import DocumentIngestionService
from .markdown_parser import parse_markdown
from .metadata_extractor import DocumentMetadataExtractor
from .query_rewriter import QueryReformulator, ReformulatedQuery
from .reranker import CrossEncoderReranker, LLMReranker, SemanticReranker, create_reranker

__all__ = [
    # Ingestion
    "parse_markdown",
    "SectionAwareChunker",
    "SpatialClusteringStrategy",
    "PageBasedGroupingStrategy",
    "create_grouping_strategy",
    "DocumentMetadataExtractor",
    "DocumentIngestionService",
    # Search
    "QueryReformulator",
    "ReformulatedQuery",
    "HybridSearchService",
    "reciprocal_rank_fusion",
    "boost_anchored",
    "ChatHistorySearch",
    "ChatMessageIndexMapper",
    "IndexedMessage",
    "DiversityReranker",
    "calculate_diversity_score",
    "SemanticReranker",
    "LLMReranker",
    "CrossEncoderReranker",
    "create_reranker",
    # Scoring & assembly
    "RetrievalConfidenceScorer",
    "ContextBuilder",
    "ContextPriority",
    "ContextSection",
    "build_document_context",
    "AnswerVerifier",
    "CitedClaim",
    "extract_claims",
]
