"""
Monitoring and observability modules
"""

from .logger import ErrorDeduplicationFilter, RagLogger, SensitiveDataFilter, timed
from .rag_metrics import RAGMetricsCollector, RetrievalRecord

__all__ = [
    "ErrorDeduplicationFilter",
    "RagLogger",
    "SensitiveDataFilter",
    "timed",
    "RAGMetricsCollector",
    "RetrievalRecord",
]
