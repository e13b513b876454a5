"""
Infrastructure Layer
====================
Clean Architecture의 Frameworks & Drivers Layer

Domain의 Protocol들을 구현하고 컴포넌트를 조립합니다.

구조:
- config/: 설정 관리 (RagConfig)
- index/: 프로세스 내 색인 저장소 (벡터 + BM25)
- persistence/: 저장소 구현 (InMemory, SQLite)
- container.py: DI Container
"""

from notebook_rag.infrastructure.config import RagConfig

__all__ = ["RagConfig"]
