"""
DI (Dependency Injection) 컨테이너

이 모듈은 RAG 코어의 의존성을 중앙에서 관리합니다.
모든 컴포넌트는 RagConfig 한 곳에서 설정을 읽어 생성됩니다.

사용 예:
    from notebook_rag.infrastructure.container import Container

    await Container.initialize()          # 저장소 초기화 + 워커 시작

    pipeline = Container.get_chat_pipeline()
    ingestion = Container.get_ingestion_service()

    # 테스트용 Mock 주입
    Container.override("llm_client", mock_llm)

    await Container.shutdown()
    Container.reset()
"""

from collections.abc import Callable
from contextlib import contextmanager
from typing import Any, TypeVar

from dotenv import load_dotenv

from notebook_rag.application.chat_pipeline import ChatPipeline
from notebook_rag.application.workers import BackgroundWorkerPool
from notebook_rag.core.circuit_breaker import CircuitBreaker
from notebook_rag.core.resilience import RERANKER_RETRY
from notebook_rag.domain.entities import Chunk
from notebook_rag.infrastructure.config import RagConfig
from notebook_rag.infrastructure.index import ChunkIndexMapper, InMemoryIndexStore
from notebook_rag.infrastructure.persistence import InMemoryRepository, SQLiteRepository
from notebook_rag.memory.chat_compaction import ChatCompactionService
from notebook_rag.memory.memory_service import MemoryService
from notebook_rag.monitoring.logger import RagLogger
from notebook_rag.monitoring.rag_metrics import RAGMetricsCollector
from notebook_rag.rag.answer_verifier import AnswerVerifier
from notebook_rag.rag.chat_history_search import ChatHistorySearch, ChatMessageIndexMapper
from notebook_rag.rag.chunker import SectionAwareChunker
from notebook_rag.rag.confidence import RetrievalConfidenceScorer
from notebook_rag.rag.context_builder import ContextBuilder
from notebook_rag.rag.diversity_reranker import DiversityReranker
from notebook_rag.rag.hybrid_search import HybridSearchService
from notebook_rag.rag.image_grouping import create_grouping_strategy
from notebook_rag.rag.ingestion import DocumentIngestionService
from notebook_rag.rag.metadata_extractor import DocumentMetadataExtractor
from notebook_rag.rag.query_rewriter import QueryReformulator
from notebook_rag.rag.reranker import SemanticReranker, create_reranker
from notebook_rag.shared.embedding_client import EmbeddingClient
from notebook_rag.shared.llm_client import LLMClient

T = TypeVar("T")

# 외부 서비스별 회로 차단기 이름
BREAKER_NAMES = ("embedding", "index", "completion", "reranker")


class Container:
    """
    Dependency Injection Container for the notebook RAG core

    싱글톤 컴포넌트 (캐시됨):
    - RagConfig, RagLogger, 저장소, 색인 저장소, 회로 차단기
    - 모델 클라이언트 (LLMClient, EmbeddingClient)
    - 검색/재순위/신뢰도/검증/재구성 서비스
    - 메모리, 압축, 워커 풀, 수집 서비스, 채팅 파이프라인

    오버라이드는 캐시보다 우선합니다.
    """

    _instances: dict[str, Any] = {}
    _overrides: dict[str, Any] = {}

    @classmethod
    def _resolve(cls, name: str, factory: Callable[[], T]) -> T:
        if name in cls._overrides:
            return cls._overrides[name]
        if name not in cls._instances:
            cls._instances[name] = factory()
        return cls._instances[name]

    # ========================================
    # 설정 / 로깅
    # ========================================

    @classmethod
    def get_config(cls) -> RagConfig:
        """
        RagConfig 싱글톤 반환 (.env 로드 후 환경변수 적용, 검증 실패 시 ConfigurationError)
        """

        def _load() -> RagConfig:
            load_dotenv()
            return RagConfig.from_env_validated(fail_fast=True)

        return cls._resolve("config", _load)

    @classmethod
    def get_rag_logger(cls) -> RagLogger:
        config = cls.get_config()
        return cls._resolve(
            "rag_logger",
            lambda: RagLogger(
                "notebook_rag", log_dir=config.logging.log_dir or None, level=config.logging.level
            ),
        )

    @classmethod
    def get_metrics(cls) -> RAGMetricsCollector:
        return cls._resolve("metrics", RAGMetricsCollector)

    # ========================================
    # 회복탄력성
    # ========================================

    @classmethod
    def get_breaker(cls, name: str) -> CircuitBreaker:
        """
        외부 서비스별 공유 회로 차단기

        Args:
            name: "embedding" | "index" | "completion" | "reranker"
        """
        if name not in BREAKER_NAMES:
            raise KeyError(f"Unknown circuit breaker: {name}")
        resilience = cls.get_config().resilience
        return cls._resolve(
            f"breaker_{name}",
            lambda: CircuitBreaker(
                name=name,
                failure_threshold=resilience.failure_threshold,
                recovery_timeout=resilience.recovery_timeout,
            ),
        )

    @classmethod
    def get_breaker_stats(cls) -> dict[str, dict[str, Any]]:
        return {name: cls.get_breaker(name).get_stats() for name in BREAKER_NAMES}

    # ========================================
    # 저장소 / 모델 클라이언트
    # ========================================

    @classmethod
    def get_repository(cls) -> InMemoryRepository | SQLiteRepository:
        persistence = cls.get_config().persistence

        def _create():
            if persistence.backend == "sqlite":
                return SQLiteRepository(persistence.sqlite_path)
            return InMemoryRepository()

        return cls._resolve("repository", _create)

    @classmethod
    def get_index_store(cls) -> InMemoryIndexStore[Chunk]:
        return cls._resolve("index_store", lambda: InMemoryIndexStore(ChunkIndexMapper()))

    @classmethod
    def get_llm_client(cls) -> LLMClient:
        llm = cls.get_config().llm
        return cls._resolve(
            "llm_client",
            lambda: LLMClient(
                model=llm.model,
                default_temperature=llm.temperature,
                timeout=llm.timeout,
                breaker=cls.get_breaker("completion"),
                logger=cls.get_rag_logger(),
            ),
        )

    @classmethod
    def get_reranker_llm_client(cls) -> LLMClient:
        """재순위 전용 LLM 클라이언트 (reranker 차단기 + 2회 재시도)"""
        llm = cls.get_config().llm
        return cls._resolve(
            "reranker_llm_client",
            lambda: LLMClient(
                model=llm.model,
                default_temperature=0.0,
                timeout=llm.timeout,
                breaker=cls.get_breaker("reranker"),
                retry_policy=RERANKER_RETRY,
                logger=cls.get_rag_logger(),
            ),
        )

    @classmethod
    def get_embedding_client(cls) -> EmbeddingClient:
        embedding = cls.get_config().embedding
        return cls._resolve(
            "embedding_client",
            lambda: EmbeddingClient(
                model=embedding.model,
                query_prefix=embedding.query_prefix,
                batch_size=embedding.batch_size,
                breaker=cls.get_breaker("embedding"),
            ),
        )

    # ========================================
    # 수집
    # ========================================

    @classmethod
    def get_chunker(cls) -> SectionAwareChunker:
        config = cls.get_config()
        return cls._resolve(
            "chunker",
            lambda: SectionAwareChunker(
                chunk_size=config.chunking.size,
                overlap=config.chunking.overlap,
                max_chars=config.chunking.max_chars,
                grouping_strategy=create_grouping_strategy(
                    config.image_grouping.strategy,
                    threshold=config.image_grouping.spatial_threshold,
                    min_group_size=config.image_grouping.min_group_size,
                ),
            ),
        )

    @classmethod
    def get_metadata_extractor(cls) -> DocumentMetadataExtractor:
        max_keywords = cls.get_config().metadata.max_keywords
        return cls._resolve(
            "metadata_extractor", lambda: DocumentMetadataExtractor(max_keywords=max_keywords)
        )

    @classmethod
    def get_worker_pool(cls, name: str) -> BackgroundWorkerPool:
        """
        백그라운드 워커 풀

        Args:
            name: "ingestion" | "memory"
        """
        workers = cls.get_config().workers
        return cls._resolve(
            f"worker_pool_{name}",
            lambda: BackgroundWorkerPool(
                name, workers=workers.core_workers, queue_size=workers.queue_size
            ),
        )

    @classmethod
    def get_ingestion_service(cls) -> DocumentIngestionService:
        return cls._resolve(
            "ingestion_service",
            lambda: DocumentIngestionService(
                repository=cls.get_repository(),
                index_store=cls.get_index_store(),
                embedder=cls.get_embedding_client(),
                chunker=cls.get_chunker(),
                metadata_extractor=cls.get_metadata_extractor(),
                worker_pool=cls.get_worker_pool("ingestion"),
                breaker=cls.get_breaker("index"),
                history_search=cls.get_chat_history_search(),
            ),
        )

    # ========================================
    # 검색
    # ========================================

    @classmethod
    def get_semantic_reranker(cls) -> SemanticReranker:
        reranking = cls.get_config().reranking
        return cls._resolve(
            "semantic_reranker",
            lambda: create_reranker(
                reranking.strategy,
                cls.get_reranker_llm_client(),
                batch_size=reranking.batch_size,
                passage_max_chars=reranking.passage_max_chars,
                enabled=reranking.enabled,
                cross_encoder_model=reranking.cross_encoder_model,
                breaker=cls.get_breaker("reranker"),
            ),
        )

    @classmethod
    def get_hybrid_search(cls) -> HybridSearchService:
        config = cls.get_config()
        return cls._resolve(
            "hybrid_search",
            lambda: HybridSearchService(
                index_store=cls.get_index_store(),
                embedder=cls.get_embedding_client(),
                diversity_reranker=DiversityReranker(
                    enabled=config.diversity.enabled,
                    min_chunks_per_document=config.diversity.min_chunks_per_document,
                ),
                semantic_reranker=cls.get_semantic_reranker(),
                rrf_k=config.retrieval.rrf_k,
                candidates_multiplier=config.retrieval.candidates_multiplier,
                default_top_k=config.retrieval.top_k,
                anchor_weight=config.retrieval.anchor_weight,
                breaker=cls.get_breaker("index"),
            ),
        )

    @classmethod
    def get_confidence_scorer(cls) -> RetrievalConfidenceScorer:
        confidence = cls.get_config().confidence
        return cls._resolve(
            "confidence_scorer",
            lambda: RetrievalConfidenceScorer(
                high_threshold=confidence.high_threshold,
                medium_threshold=confidence.medium_threshold,
                max_rrf_weight=confidence.max_rrf_weight,
                agreement_weight=confidence.agreement_weight,
                coverage_weight=confidence.coverage_weight,
                diversity_weight=confidence.diversity_weight,
            ),
        )

    @classmethod
    def get_answer_verifier(cls) -> AnswerVerifier:
        verification = cls.get_config().verification
        return cls._resolve(
            "answer_verifier",
            lambda: AnswerVerifier(
                cls.get_llm_client(),
                support_threshold=verification.support_threshold,
                enabled=verification.enabled,
            ),
        )

    @classmethod
    def get_chat_history_search(cls) -> ChatHistorySearch | None:
        """질문 재구성용 대화 기록 검색 (비활성화면 None)"""
        config = cls.get_config()
        if not config.query_reformulation.history_search_enabled:
            return None
        return cls._resolve(
            "chat_history_search",
            lambda: ChatHistorySearch(
                InMemoryIndexStore(ChatMessageIndexMapper()),
                cls.get_embedding_client(),
                rrf_k=config.retrieval.rrf_k,
                candidates_multiplier=config.query_reformulation.history_candidates_multiplier,
                breaker=cls.get_breaker("index"),
            ),
        )

    @classmethod
    def get_query_reformulator(cls) -> QueryReformulator:
        reformulation = cls.get_config().query_reformulation
        return cls._resolve(
            "query_reformulator",
            lambda: QueryReformulator(
                cls.get_llm_client(),
                history_turns=reformulation.history_turns,
                max_query_length=reformulation.max_query_length,
                enabled=reformulation.enabled,
                history_search=cls.get_chat_history_search(),
                recent_messages=reformulation.recent_messages,
            ),
        )

    # ========================================
    # 대화 / 메모리
    # ========================================

    @classmethod
    def get_memory_service(cls) -> MemoryService:
        memory = cls.get_config().memory
        return cls._resolve(
            "memory_service",
            lambda: MemoryService(
                cls.get_repository(),
                cls.get_llm_client(),
                enabled=memory.enabled,
                extraction_threshold=memory.extraction_threshold,
                max_per_session=memory.max_per_session,
                context_limit=memory.context_limit,
                duplicate_importance_bump=memory.duplicate_importance_bump,
            ),
        )

    @classmethod
    def get_compaction_service(cls) -> ChatCompactionService:
        compaction = cls.get_config().compaction
        return cls._resolve(
            "compaction_service",
            lambda: ChatCompactionService(
                cls.get_repository(),
                cls.get_llm_client(),
                sliding_window_size=compaction.sliding_window_size,
                token_threshold=compaction.token_threshold,
                message_threshold=compaction.message_threshold,
                batch_size=compaction.batch_size,
            ),
        )

    @classmethod
    def get_chat_pipeline(cls) -> ChatPipeline:
        config = cls.get_config()
        return cls._resolve(
            "chat_pipeline",
            lambda: ChatPipeline(
                repository=cls.get_repository(),
                search=cls.get_hybrid_search(),
                confidence_scorer=cls.get_confidence_scorer(),
                reformulator=cls.get_query_reformulator(),
                context_builder=ContextBuilder(),
                llm=cls.get_llm_client(),
                verifier=cls.get_answer_verifier(),
                memory_service=cls.get_memory_service(),
                compaction=cls.get_compaction_service(),
                worker_pool=cls.get_worker_pool("memory"),
                metrics=cls.get_metrics(),
                rag_logger=cls.get_rag_logger(),
                stream_timeout=config.llm.stream_timeout,
                sliding_window_size=config.compaction.sliding_window_size,
                max_tokens=config.llm.max_tokens,
                temperature=config.llm.temperature,
                source_anchoring_enabled=config.retrieval.source_anchoring_enabled,
                history_search=cls.get_chat_history_search(),
            ),
        )

    # ========================================
    # 수명 주기
    # ========================================

    @classmethod
    async def initialize(cls) -> None:
        """저장소 스키마 준비 + 워커 풀 시작 (실행 중인 이벤트 루프 필요)"""
        await cls.get_repository().initialize()
        for name in ("ingestion", "memory"):
            cls.get_worker_pool(name).start()
        cls.get_rag_logger().info("Container initialized", {"breakers": list(BREAKER_NAMES)})

    @classmethod
    async def shutdown(cls) -> None:
        for name in ("ingestion", "memory"):
            key = f"worker_pool_{name}"
            pool = cls._overrides.get(key) or cls._instances.get(key)
            if pool is not None:
                await pool.stop()

    @classmethod
    def override(cls, name: str, instance: Any) -> None:
        """
        테스트용 Mock 주입

        Example:
            Container.override("llm_client", mock_llm)
        """
        cls._overrides[name] = instance

    @classmethod
    def reset(cls) -> None:
        """모든 인스턴스 및 오버라이드 초기화"""
        cls._instances.clear()
        cls._overrides.clear()

    @classmethod
    @contextmanager
    def test_override(cls, name: str, instance: Any):
        """
        테스트용 임시 오버라이드 (context manager)

        Example:
            with Container.test_override("embedding_client", fake_embedder):
                service = Container.get_ingestion_service()
            # 원래 값 복원
        """
        had_override = name in cls._overrides
        old_override = cls._overrides.get(name)
        had_instance = name in cls._instances
        old_instance = cls._instances.get(name)

        cls._overrides[name] = instance
        cls._instances.pop(name, None)

        try:
            yield
        finally:
            if had_override:
                cls._overrides[name] = old_override
            else:
                cls._overrides.pop(name, None)

            if had_instance:
                cls._instances[name] = old_instance
            else:
                cls._instances.pop(name, None)
