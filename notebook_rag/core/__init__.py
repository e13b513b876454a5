"""
Core
====
외부 호출 경계의 회복탄력성 (회로 차단기, 재시도)
"""

from notebook_rag.core.circuit_breaker import CircuitBreaker, CircuitState
from notebook_rag.core.resilience import (
    COMPLETION_RETRY,
    EMBEDDING_RETRY,
    INDEX_RETRY,
    RERANKER_RETRY,
    RetryPolicy,
    call_with_resilience,
    resilient,
)

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "COMPLETION_RETRY",
    "EMBEDDING_RETRY",
    "INDEX_RETRY",
    "RERANKER_RETRY",
    "RetryPolicy",
    "call_with_resilience",
    "resilient",
]
