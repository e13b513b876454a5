"""
notebook_rag
============
세션 단위 문서 대화(노트북)를 위한 RAG 코어
"""

__version__ = "0.1.0"
