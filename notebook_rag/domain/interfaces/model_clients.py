"""
Model Client Protocols
======================
임베딩 모델과 채팅/완성 모델의 추상 능력

둘 다 속도 제한이 있고 간헐적으로 사용 불가능하다고 가정합니다.

구현체:
- EmbeddingClient (notebook_rag/shared/embedding_client.py)
- LLMClient (notebook_rag/shared/llm_client.py)
"""

from collections.abc import AsyncIterator
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> list[float]: ...

    async def embed_query(self, text: str) -> list[float]:
        """검색 쿼리용 임베딩 (쿼리 접두어 적용)"""
        ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]: ...


@runtime_checkable
class CompletionProvider(Protocol):
    async def complete(
        self,
        system_prompt: str | None = None,
        user_prompt: str | None = None,
        messages: list[dict[str, str]] | None = None,
        **kwargs: Any,
    ) -> str: ...

    async def complete_json(
        self,
        system_prompt: str | None = None,
        user_prompt: str | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]: ...

    def stream(self, messages: list[dict[str, str]], **kwargs: Any) -> AsyncIterator[str]:
        """토큰 단위 스트리밍"""
        ...
