"""설정 관리"""

from .config_manager import (
    ChunkingConfig,
    CompactionConfig,
    ConfidenceConfig,
    DiversityConfig,
    EmbeddingConfig,
    ImageGroupingConfig,
    LLMConfig,
    LoggingConfig,
    MemoryConfig,
    MetadataConfig,
    PersistenceConfig,
    QueryReformulationConfig,
    RagConfig,
    RerankingConfig,
    ResilienceConfig,
    RetrievalConfig,
    VerificationConfig,
    WorkerConfig,
)

__all__ = [
    "ChunkingConfig",
    "CompactionConfig",
    "ConfidenceConfig",
    "DiversityConfig",
    "EmbeddingConfig",
    "ImageGroupingConfig",
    "LLMConfig",
    "LoggingConfig",
    "MemoryConfig",
    "MetadataConfig",
    "PersistenceConfig",
    "QueryReformulationConfig",
    "RagConfig",
    "RerankingConfig",
    "ResilienceConfig",
    "RetrievalConfig",
    "VerificationConfig",
    "WorkerConfig",
]
