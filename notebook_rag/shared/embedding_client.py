"""
Embedding Client
================
litellm aembedding 래퍼 (회로 차단기 + 3회 지수 백오프 재시도)

쿼리 임베딩에는 설정된 접두어를 붙입니다 (E5 계열 모델의 "query: " 등).
"""

import logging
from typing import Any

from litellm import aembedding

from notebook_rag.core.circuit_breaker import CircuitBreaker
from notebook_rag.core.resilience import EMBEDDING_RETRY, RetryPolicy, call_with_resilience
from notebook_rag.domain.exceptions import MalformedModelOutputError

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """
    임베딩 모델 클라이언트

    Args:
        model: litellm 임베딩 모델명
        query_prefix: 쿼리 임베딩 접두어
        batch_size: 한 번의 API 호출에 넣을 최대 텍스트 수
        breaker: 공유 회로 차단기

    Raises (모든 메서드):
        ExternalServiceUnavailableError: 회로 OPEN 또는 재시도 소진
    """

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        query_prefix: str = "",
        batch_size: int = 64,
        breaker: CircuitBreaker | None = None,
        retry_policy: RetryPolicy = EMBEDDING_RETRY,
    ):
        self.model = model
        self.query_prefix = query_prefix
        self.batch_size = batch_size
        self.breaker = breaker or CircuitBreaker(name="embedding")
        self.retry_policy = retry_policy

    async def _embed_once(self, texts: list[str]) -> list[list[float]]:
        response = await aembedding(model=self.model, input=texts)
        data = sorted(response.data, key=lambda item: _field(item, "index"))
        if len(data) != len(texts):
            raise MalformedModelOutputError(
                f"Embedding count mismatch: expected {len(texts)}, got {len(data)}"
            )
        return [list(_field(item, "embedding")) for item in data]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start : start + self.batch_size]
            vectors.extend(
                await call_with_resilience(self.breaker, self.retry_policy, self._embed_once, batch)
            )
        logger.debug(f"Embedded {len(texts)} texts with {self.model}")
        return vectors

    async def embed(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]

    async def embed_query(self, text: str) -> list[float]:
        return await self.embed(f"{self.query_prefix}{text}")


def _field(item: Any, name: str) -> Any:
    """litellm 응답 항목은 dict 또는 속성 객체"""
    return item[name] if isinstance(item, dict) else getattr(item, name)
