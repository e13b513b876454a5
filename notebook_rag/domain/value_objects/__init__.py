"""
Domain Value Objects
====================
불변의 값 객체 정의
"""

from .parsed_document import DocumentSection, ExtractedImage, ParsedDocument, RawChunk
from .retrieval_result import (
    ConfidenceDecision,
    ConfidenceLevel,
    ConfidenceResult,
    SearchResult,
    VerificationResult,
)

__all__ = [
    "DocumentSection",
    "ExtractedImage",
    "ParsedDocument",
    "RawChunk",
    "ConfidenceDecision",
    "ConfidenceLevel",
    "ConfidenceResult",
    "SearchResult",
    "VerificationResult",
]
