"""
Centralized Configuration Manager
=================================
RAG 코어의 모든 설정을 중앙에서 관리합니다.

주요 기능:
- 기본값 → JSON 설정 파일 → 환경변수 순으로 로드
- 환경변수 형식: RAG_<SECTION>_<FIELD> (예: RAG_RETRIEVAL_TOP_K=8)
- 시작 시 설정 검증 (validate)
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from notebook_rag.domain.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "RAG_"


@dataclass
class ChunkingConfig:
    size: int = 512  # 토큰 (len/4 추정)
    overlap: int = 50  # 다음 청크로 넘기는 단어 수
    max_chars: int = 3500  # 하드 문자 상한


@dataclass
class ImageGroupingConfig:
    strategy: str = "spatial"  # "spatial" | "page-based"
    spatial_threshold: float = 100.0  # PDF 좌표 단위
    min_group_size: int = 2


@dataclass
class MetadataConfig:
    max_keywords: int = 10


@dataclass
class RetrievalConfig:
    top_k: int = 6
    rrf_k: int = 60
    candidates_multiplier: int = 2
    source_anchoring_enabled: bool = True  # 후속 질문은 직전 답변의 출처 문서에 가산점
    anchor_weight: float = 1.0  # 1.0 = 한 채널 1위 RRF 기여분


@dataclass
class DiversityConfig:
    enabled: bool = True
    min_chunks_per_document: int = 1


@dataclass
class RerankingConfig:
    enabled: bool = True
    strategy: str = "llm"  # "llm" | "cross-encoder"
    batch_size: int = 20
    passage_max_chars: int = 500
    cross_encoder_model: str = "cross-encoder/ms-marco-MiniLM-L-6-v2"


@dataclass
class ConfidenceConfig:
    high_threshold: float = 0.7
    medium_threshold: float = 0.4
    max_rrf_weight: float = 0.4
    agreement_weight: float = 0.3
    coverage_weight: float = 0.2
    diversity_weight: float = 0.1


@dataclass
class VerificationConfig:
    enabled: bool = True
    support_threshold: float = 0.7


@dataclass
class QueryReformulationConfig:
    enabled: bool = True
    history_turns: int = 5
    max_query_length: int = 500
    history_search_enabled: bool = True  # 대화 기록 하이브리드 검색으로 맥락 보강
    recent_messages: int = 4  # 항상 포함하는 최근 메시지 수
    history_candidates_multiplier: int = 4


@dataclass
class CompactionConfig:
    sliding_window_size: int = 10
    token_threshold: int = 3000
    message_threshold: int = 30
    batch_size: int = 20


@dataclass
class MemoryConfig:
    enabled: bool = True
    extraction_threshold: float = 0.3
    max_per_session: int = 50
    context_limit: int = 5
    duplicate_importance_bump: float = 0.1


@dataclass
class LLMConfig:
    model: str = "gpt-4.1-mini"
    temperature: float = 0.3
    timeout: float = 60.0
    stream_timeout: float = 120.0
    max_tokens: int = 2000


@dataclass
class EmbeddingConfig:
    model: str = "text-embedding-3-small"
    query_prefix: str = ""
    batch_size: int = 64


@dataclass
class WorkerConfig:
    core_workers: int = 2
    queue_size: int = 100


@dataclass
class ResilienceConfig:
    failure_threshold: int = 5
    recovery_timeout: float = 30.0


@dataclass
class PersistenceConfig:
    backend: str = "memory"  # "memory" | "sqlite"
    sqlite_path: str = "./data/notebook.db"


@dataclass
class LoggingConfig:
    level: str = "INFO"
    log_dir: str = ""  # 비어 있으면 파일 로그 비활성화


@dataclass
class RagConfig:
    """
    RAG 코어 설정

    섹션별 dataclass로 구성되며 모든 값은 파일/환경변수로 재정의할 수 있습니다.
    """

    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    image_grouping: ImageGroupingConfig = field(default_factory=ImageGroupingConfig)
    metadata: MetadataConfig = field(default_factory=MetadataConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    diversity: DiversityConfig = field(default_factory=DiversityConfig)
    reranking: RerankingConfig = field(default_factory=RerankingConfig)
    confidence: ConfidenceConfig = field(default_factory=ConfidenceConfig)
    verification: VerificationConfig = field(default_factory=VerificationConfig)
    query_reformulation: QueryReformulationConfig = field(default_factory=QueryReformulationConfig)
    compaction: CompactionConfig = field(default_factory=CompactionConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    workers: WorkerConfig = field(default_factory=WorkerConfig)
    resilience: ResilienceConfig = field(default_factory=ResilienceConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "RagConfig":
        """환경변수에서 설정 로드 (RAG_CONFIG_FILE이 있으면 먼저 적용)"""
        env = os.environ if environ is None else environ
        config_file = env.get(f"{ENV_PREFIX}CONFIG_FILE")
        config = cls.from_file(Path(config_file)) if config_file else cls()
        config._apply_env(env)
        return config

    @classmethod
    def from_file(cls, path: Path) -> "RagConfig":
        """JSON 설정 파일에서 로드. 없는 섹션/키는 기본값 유지"""
        config = cls()
        if not path.exists():
            logger.warning(f"[Config Warning] config file not found: {path}")
            return config

        with open(path, encoding="utf-8") as f:
            data = json.load(f)

        for section_name, values in data.items():
            section = getattr(config, section_name, None)
            if section is None or not isinstance(values, dict):
                logger.warning(f"[Config Warning] unknown section ignored: {section_name}")
                continue
            for key, value in values.items():
                if not hasattr(section, key):
                    logger.warning(f"[Config Warning] unknown key ignored: {section_name}.{key}")
                    continue
                setattr(section, key, value)
        return config

    def _apply_env(self, env: dict[str, str]) -> None:
        for section_field in fields(self):
            section = getattr(self, section_field.name)
            for item in fields(section):
                key = f"{ENV_PREFIX}{section_field.name}_{item.name}".upper()
                if key not in env:
                    continue
                current = getattr(section, item.name)
                setattr(section, item.name, _coerce(env[key], current, key))

    def validate(self) -> list[str]:
        """설정 검증

        Returns:
            오류 메시지 목록 (빈 리스트 = 정상)
        """
        errors: list[str] = []
        warnings: list[str] = []

        # === 청킹 ===
        if self.chunking.size <= 0:
            errors.append(f"chunking.size는 양수여야 합니다: {self.chunking.size}")
        if self.chunking.overlap < 0:
            errors.append(f"chunking.overlap은 음수일 수 없습니다: {self.chunking.overlap}")
        if self.chunking.max_chars <= 100:
            errors.append(f"chunking.max_chars는 100보다 커야 합니다: {self.chunking.max_chars}")
        if self.image_grouping.strategy not in ("spatial", "page-based"):
            errors.append(f"image_grouping.strategy 오류: {self.image_grouping.strategy}")

        # === 검색 ===
        if self.retrieval.top_k <= 0:
            errors.append(f"retrieval.top_k는 양수여야 합니다: {self.retrieval.top_k}")
        if self.retrieval.rrf_k <= 0:
            errors.append(f"retrieval.rrf_k는 양수여야 합니다: {self.retrieval.rrf_k}")
        if self.retrieval.candidates_multiplier < 1:
            errors.append("retrieval.candidates_multiplier는 1 이상이어야 합니다")
        if self.retrieval.anchor_weight < 0:
            errors.append(f"retrieval.anchor_weight는 음수일 수 없습니다: {self.retrieval.anchor_weight}")
        if self.diversity.min_chunks_per_document < 1:
            errors.append("diversity.min_chunks_per_document는 1 이상이어야 합니다")
        if self.reranking.strategy not in ("llm", "cross-encoder"):
            errors.append(f"reranking.strategy 오류: {self.reranking.strategy}")
        if self.reranking.batch_size <= 0:
            errors.append(f"reranking.batch_size는 양수여야 합니다: {self.reranking.batch_size}")

        # === 신뢰도 ===
        if not 0.0 <= self.confidence.medium_threshold <= self.confidence.high_threshold <= 1.0:
            errors.append("confidence 임계값은 0 <= medium <= high <= 1 이어야 합니다")
        weight_sum = (
            self.confidence.max_rrf_weight
            + self.confidence.agreement_weight
            + self.confidence.coverage_weight
            + self.confidence.diversity_weight
        )
        if abs(weight_sum - 1.0) > 1e-6:
            warnings.append(f"confidence 가중치 합이 1이 아닙니다: {weight_sum:.3f}")

        # === 대화/메모리 ===
        if self.query_reformulation.max_query_length <= 0:
            errors.append("query_reformulation.max_query_length는 양수여야 합니다")
        if (
            self.query_reformulation.recent_messages < 0
            or self.query_reformulation.history_candidates_multiplier < 1
        ):
            errors.append(
                "query_reformulation.recent_messages >= 0,"
                " history_candidates_multiplier >= 1 이어야 합니다"
            )
        if self.compaction.sliding_window_size < 0 or self.compaction.batch_size <= 0:
            errors.append("compaction.sliding_window_size >= 0, batch_size > 0 이어야 합니다")
        if not 0.0 <= self.memory.extraction_threshold <= 1.0:
            errors.append(f"memory.extraction_threshold 범위 오류: {self.memory.extraction_threshold}")
        if self.memory.max_per_session <= 0:
            errors.append(f"memory.max_per_session는 양수여야 합니다: {self.memory.max_per_session}")

        # === 실행 환경 ===
        if self.workers.core_workers <= 0 or self.workers.queue_size <= 0:
            errors.append("workers.core_workers와 workers.queue_size는 양수여야 합니다")
        if self.persistence.backend not in ("memory", "sqlite"):
            errors.append(f"persistence.backend 오류: {self.persistence.backend}")
        if self.llm.stream_timeout <= 0:
            errors.append(f"llm.stream_timeout은 양수여야 합니다: {self.llm.stream_timeout}")
        if self.logging.log_dir and not Path(self.logging.log_dir).exists():
            warnings.append(f"log 디렉토리가 없습니다 (생성 예정): {self.logging.log_dir}")

        for w in warnings:
            logger.warning(f"[Config Warning] {w}")

        return errors

    @classmethod
    def from_env_validated(cls, fail_fast: bool = True) -> "RagConfig":
        """환경변수에서 설정 로드 + 검증

        Raises:
            ConfigurationError: fail_fast=True이고 검증 실패 시
        """
        config = cls.from_env()
        errors = config.validate()

        if errors:
            error_msg = "설정 검증 실패:\n" + "\n".join(f"  - {e}" for e in errors)
            if fail_fast:
                raise ConfigurationError(error_msg)
            logger.error(error_msg)

        return config

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _coerce(raw: str, current: Any, key: str) -> Any:
    """환경변수 문자열을 기본값의 타입으로 변환"""
    try:
        if isinstance(current, bool):
            return raw.strip().lower() in ("1", "true", "yes", "on")
        if isinstance(current, int):
            return int(raw)
        if isinstance(current, float):
            return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"환경변수 타입 오류: {key}={raw!r}", config_key=key) from e
    return raw
