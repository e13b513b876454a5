"""테스트 공용 헬퍼 (외부 호출 없는 임베더, 청크 팩토리)"""

import zlib

from notebook_rag.domain.entities import Chunk
from notebook_rag.infrastructure.index import tokenize

EMBEDDING_DIM = 64


def fake_vector(text: str) -> list[float]:
    """토큰 해시 기반 결정적 bag-of-words 벡터"""
    vector = [0.0] * EMBEDDING_DIM
    for token in tokenize(text):
        vector[zlib.crc32(token.encode("utf-8")) % EMBEDDING_DIM] += 1.0
    return vector


class FakeEmbedder:
    """EmbeddingProvider 테스트 더블"""

    def __init__(self):
        self.calls = 0

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        return fake_vector(text)

    async def embed_query(self, text: str) -> list[float]:
        return await self.embed(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        return [fake_vector(t) for t in texts]


def make_chunk(
    chunk_id: str,
    document_id: str = "doc-1",
    session_id: str = "session-1",
    content: str | None = None,
    score: float | None = None,
    embed: bool = False,
    **kwargs,
) -> Chunk:
    content = content if content is not None else f"content of {chunk_id}"
    if embed:
        kwargs.setdefault("embedding", fake_vector(content))
    return Chunk(
        id=chunk_id,
        document_id=document_id,
        session_id=session_id,
        content=content,
        enriched_content=kwargs.pop("enriched_content", content),
        relevance_score=score,
        **kwargs,
    )
