"""
Notebook Domain Entities
========================
세션, 문서, 청크 엔티티

Chunk.relevance_score는 검색 호출에서만 설정되는 일시 값이며 저장되지 않습니다.
"""

from datetime import datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field


def new_id() -> str:
    return str(uuid4())


class InteractionMode(str, Enum):
    """
    대화 모드

    모드마다 검색 청크 수와 시스템 프롬프트가 달라집니다.
    """

    EXPLORING = "exploring"
    RESEARCH = "research"
    LEARNING = "learning"

    @property
    def retrieval_count(self) -> int:
        return {"exploring": 8, "research": 4, "learning": 6}[self.value]


class DocumentStatus(str, Enum):
    """문서 처리 상태"""

    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class Session(BaseModel):
    """대화 세션. 모든 청크, 메시지, 메모리는 정확히 하나의 세션에 속합니다."""

    id: str = Field(default_factory=new_id, description="세션 ID")
    title: str = Field(default="Untitled notebook", description="세션 제목")
    current_mode: InteractionMode = Field(default=InteractionMode.EXPLORING)
    created_at: datetime = Field(default_factory=datetime.now)


class Document(BaseModel):
    """업로드된 문서 메타데이터"""

    id: str = Field(default_factory=new_id, description="문서 ID")
    session_id: str = Field(..., description="소속 세션 ID")
    file_name: str = Field(..., description="원본 파일명")
    title: str | None = Field(default=None, description="추출된 문서 제목")
    status: DocumentStatus = Field(default=DocumentStatus.PENDING)
    chunk_count: int = Field(default=0, ge=0)
    error_message: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)


class Chunk(BaseModel):
    """
    검색 가능한 문서 단위

    Attributes:
        content: 원문 텍스트 (사용자에게 노출)
        enriched_content: 메타데이터 태그가 붙은 텍스트 (임베딩/색인 전용)
        relevance_score: 검색 시점에만 설정되는 점수
    """

    id: str = Field(default_factory=new_id)
    document_id: str
    session_id: str
    ordinal_index: int = Field(default=0, ge=0)
    content: str
    enriched_content: str = ""
    token_count: int = 0
    embedding: list[float] | None = Field(default=None, repr=False)
    document_title: str | None = None
    section_title: str | None = None
    section_breadcrumb: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    associated_image_ids: list[str] = Field(default_factory=list)
    relevance_score: float | None = None

    def with_score(self, score: float) -> "Chunk":
        """점수가 설정된 사본 반환 (원본 불변)"""
        return self.model_copy(update={"relevance_score": score})

    @property
    def breadcrumb_text(self) -> str:
        return " > ".join(self.section_breadcrumb)
