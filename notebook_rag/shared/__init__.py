"""
Shared utilities
================
모델 클라이언트와 공통 상수
"""

from .constants import estimate_tokens
from .embedding_client import EmbeddingClient
from .llm_client import LLMClient, strip_code_fences

__all__ = ["estimate_tokens", "EmbeddingClient", "LLMClient", "strip_code_fences"]
