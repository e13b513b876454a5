"""
Chat Domain Entities
====================
대화 메시지와 압축 요약

압축된 메시지는 다시 활성 윈도우로 돌아오지 않으며,
요약은 생성 순서대로 추가만 됩니다.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from .notebook import new_id


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """대화 메시지"""

    id: str = Field(default_factory=new_id)
    session_id: str
    role: MessageRole
    content: str
    token_count: int = 0
    is_compacted: bool = False
    summary_id: str | None = Field(default=None, description="이 메시지를 포함한 요약 ID")
    retrieved_document_ids: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)


class ChatSummary(BaseModel):
    """압축된 메시지 배치의 요약"""

    id: str = Field(default_factory=new_id)
    session_id: str
    summary_content: str
    message_count_covered: int = Field(..., ge=0)
    token_count: int = 0
    original_token_count: int = 0
    created_at: datetime = Field(default_factory=datetime.now)
