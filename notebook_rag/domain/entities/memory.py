"""
Memory Domain Entity
====================
세션 단위 장기 기억 (사실, 선호, 인사이트)
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from .notebook import new_id


class MemoryType(str, Enum):
    FACT = "fact"
    PREFERENCE = "preference"
    INSIGHT = "insight"


def clamp_importance(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


class Memory(BaseModel):
    """
    세션 메모리

    importance는 항상 [0, 1]로 클램프됩니다.
    """

    id: str = Field(default_factory=new_id)
    session_id: str
    content: str
    type: MemoryType
    importance: float = Field(default=0.5, description="중요도 (0.0-1.0)")
    created_at: datetime = Field(default_factory=datetime.now)
    last_accessed_at: datetime = Field(default_factory=datetime.now)

    model_config = {
        "validate_assignment": True,
        "json_schema_extra": {
            "example": {
                "session_id": "b7e1...",
                "content": "Project deadline is March 15",
                "type": "fact",
                "importance": 0.8,
            }
        },
    }

    @field_validator("importance", mode="before")
    @classmethod
    def _clamp(cls, value: float) -> float:
        return clamp_importance(value)
