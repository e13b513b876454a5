"""
Persistence Layer
=================
NotebookRepository 구현체

- InMemoryRepository: 테스트/단일 프로세스용
- SQLiteRepository: 로컬 파일 영속화
"""

from .memory_repository import InMemoryRepository
from .sqlite_repository import SQLiteRepository

__all__ = ["InMemoryRepository", "SQLiteRepository"]
