"""색인 저장소 구현체"""

from .memory_index import ChunkIndexMapper, InMemoryIndexStore, tokenize

__all__ = ["ChunkIndexMapper", "InMemoryIndexStore", "tokenize"]
