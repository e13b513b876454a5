"""
Session memory and chat history compaction
"""

from .chat_compaction import ChatCompactionService
from .memory_service import ExtractedMemory, MemoryService, parse_extracted_memories

__all__ = [
    "ChatCompactionService",
    "ExtractedMemory",
    "MemoryService",
    "parse_extracted_memories",
]
