"""
Application Layer
=================
Use Case Layer: 도메인 서비스들을 엮어 하나의 채팅 턴을 처리합니다.

구조:
- chat_pipeline: 검색 → 신뢰도 → 생성 스트리밍 → 검증 → 백그라운드 작업
- workers: 요청 경로와 분리된 백그라운드 작업 풀
"""

from notebook_rag.application.chat_pipeline import ChatPipeline, StreamEvent
from notebook_rag.application.workers import BackgroundWorkerPool, Job, JobStatus

__all__ = [
    "ChatPipeline",
    "StreamEvent",
    "BackgroundWorkerPool",
    "Job",
    "JobStatus",
]
