"""
Memory Service
==============
대화에서 장기 기억(사실, 선호, 인사이트)을 추출하고 세션별로 관리합니다.

추출 흐름 (백그라운드 워커에서 실행):
1. (사용자 메시지, 어시스턴트 응답) 쌍으로 LLM에 JSON 배열 추출 요청
2. 잘못된 출력은 "추출 없음"으로 처리 (예외 없음)
3. importance < extraction_threshold(0.3) 후보 버림
4. 중복 검사
   - 완전 일치 (대소문자 무시, 양끝 공백 제거) → 버림
   - 포함 관계 (양방향) → 기존 메모리 importance +0.1 (최대 1.0)
5. 세션 상한(max_per_session) 초과 시 중요도 낮은 것부터, 같으면 오래된 것부터 정리
"""

import json
import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, field_validator
from pydantic import ValidationError as PydanticValidationError

from notebook_rag.domain.entities import Memory, MemoryType, clamp_importance
from notebook_rag.domain.exceptions import (
    ExternalServiceUnavailableError,
    MemoryNotFoundError,
    SessionNotFoundError,
    ValidationError,
)
from notebook_rag.domain.interfaces import CompletionProvider
from notebook_rag.domain.interfaces.repository import NotebookRepository
from notebook_rag.shared.llm_client import strip_code_fences

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """You are a memory extraction assistant. Analyze the following conversation exchange
and extract important facts, user preferences, or insights worth remembering.

User message: {user_message}
Assistant response: {assistant_response}

Extract memories in JSON format (return ONLY the JSON array, no other text):
[
  {{"type": "fact|preference|insight", "content": "...", "importance": 0.0-1.0}}
]

Rules:
- Only extract genuinely important information worth remembering long-term
- Facts: specific data points, dates, names, numbers from documents
- Preferences: how the user likes information presented or what they focus on
- Insights: connections, conclusions, or patterns discovered
- Importance: 0.0 (trivial) to 1.0 (critical)
- Return empty array [] if nothing worth remembering
- Keep each memory concise (1-2 sentences max)
- Return ONLY valid JSON, no markdown or explanation"""


class ExtractedMemory(BaseModel):
    """LLM 추출 항목 스키마"""

    type: MemoryType
    content: str
    importance: float = 0.5

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("content")
    @classmethod
    def _require_content(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content must not be blank")
        return value.strip()

    @field_validator("importance", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> float:
        return 0.5 if value is None else clamp_importance(value)


def parse_extracted_memories(response: str) -> list[ExtractedMemory]:
    """추출 응답 해석. 배열이 아니면 빈 리스트, 잘못된 항목은 개별적으로 건너뜀"""
    try:
        data = json.loads(strip_code_fences(response or ""))
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse memory extraction response: {e}")
        return []
    if not isinstance(data, list):
        logger.warning("Memory extraction response is not a JSON array")
        return []

    extracted = []
    for entry in data:
        try:
            extracted.append(ExtractedMemory.model_validate(entry))
        except PydanticValidationError:
            logger.debug(f"Skipping invalid memory entry: {entry!r}")
    return extracted


def _normalize(content: str) -> str:
    return content.strip().lower()


class MemoryService:
    """
    세션 메모리 서비스

    사용 예:
        service = MemoryService(repository, llm_client)
        await service.extract_and_save(session_id, user_message, assistant_response)
        memories = await service.get_relevant_memories(session_id, query)
        context = service.build_memory_context(memories)
    """

    def __init__(
        self,
        repository: NotebookRepository,
        llm: CompletionProvider,
        enabled: bool = True,
        extraction_threshold: float = 0.3,
        max_per_session: int = 50,
        context_limit: int = 5,
        duplicate_importance_bump: float = 0.1,
    ):
        self.repository = repository
        self.llm = llm
        self.enabled = enabled
        self.extraction_threshold = extraction_threshold
        self.max_per_session = max_per_session
        self.context_limit = context_limit
        self.duplicate_importance_bump = duplicate_importance_bump

    # =========================================================================
    # 추출
    # =========================================================================

    async def extract_and_save(
        self, session_id: str, user_message: str, assistant_response: str
    ) -> list[Memory]:
        """
        대화 쌍에서 메모리를 추출하여 저장

        Returns:
            새로 저장된 메모리 (중요도만 올라간 중복은 제외)
        """
        if not self.enabled:
            return []

        try:
            response = await self.llm.complete(
                user_prompt=EXTRACTION_PROMPT.format(
                    user_message=user_message, assistant_response=assistant_response
                ),
                temperature=0.1,
                max_tokens=800,
            )
        except ExternalServiceUnavailableError as e:
            logger.warning(f"Memory extraction unavailable for session {session_id}: {e}")
            return []

        candidates = [
            c for c in parse_extracted_memories(response) if c.importance >= self.extraction_threshold
        ]
        if not candidates:
            logger.debug(f"No memories extracted for session {session_id}")
            return []

        existing = await self.repository.list_memories(session_id)
        saved: list[Memory] = []
        for candidate in candidates:
            memory = await self._save_candidate(session_id, candidate, existing)
            if memory is not None:
                existing.append(memory)
                saved.append(memory)

        if saved:
            logger.info(f"Saved {len(saved)} memories for session {session_id}")
        await self.enforce_max_memories(session_id)
        return saved

    async def _save_candidate(
        self, session_id: str, candidate: ExtractedMemory, existing: list[Memory]
    ) -> Memory | None:
        content = _normalize(candidate.content)
        for memory in existing:
            current = _normalize(memory.content)
            if current == content:
                logger.debug(f"Dropping exact duplicate memory: {candidate.content[:50]}")
                return None
            if content in current or current in content:
                memory.importance = memory.importance + self.duplicate_importance_bump
                await self.repository.save_memory(memory)
                logger.debug(
                    f"Near-duplicate memory, bumped importance to {memory.importance:.2f}: "
                    f"{memory.content[:50]}"
                )
                return None

        return await self.repository.save_memory(
            Memory(
                session_id=session_id,
                content=candidate.content,
                type=candidate.type,
                importance=candidate.importance,
            )
        )

    async def enforce_max_memories(self, session_id: str) -> int:
        """상한 초과분 정리. 삭제한 수 반환"""
        memories = await self.repository.list_memories(session_id)
        overflow = len(memories) - self.max_per_session
        if overflow <= 0:
            return 0

        victims = sorted(memories, key=lambda m: (m.importance, m.created_at))[:overflow]
        for memory in victims:
            await self.repository.delete_memory(memory.id)
        logger.info(f"Pruned {len(victims)} memories for session {session_id}")
        return len(victims)

    # =========================================================================
    # 조회 / 수동 관리
    # =========================================================================

    async def get_relevant_memories(
        self, session_id: str, query: str, limit: int | None = None
    ) -> list[Memory]:
        """
        중요도 상위 N개 반환 후 last_accessed_at 갱신

        Raises:
            SessionNotFoundError: 세션이 없음
        """
        if await self.repository.get_session(session_id) is None:
            raise SessionNotFoundError(session_id)

        limit = self.context_limit if limit is None else limit
        memories = await self.repository.list_memories(session_id)
        top = sorted(memories, key=lambda m: m.importance, reverse=True)[:limit]

        now = datetime.now()
        for memory in top:
            memory.last_accessed_at = now
            await self.repository.save_memory(memory)
        return top

    async def add_memory(
        self, session_id: str, content: str, memory_type: str, importance: float | None = None
    ) -> Memory:
        """
        수동 메모리 추가

        Raises:
            SessionNotFoundError: 세션이 없음
            ValidationError: 알 수 없는 메모리 유형 또는 빈 내용
        """
        if await self.repository.get_session(session_id) is None:
            raise SessionNotFoundError(session_id)
        try:
            parsed_type = MemoryType(memory_type.strip().lower())
        except ValueError as e:
            raise ValidationError(
                f"Invalid memory type: {memory_type}",
                field="type",
                value=memory_type,
                constraint="fact|preference|insight",
            ) from e
        if not content or not content.strip():
            raise ValidationError("Memory content must not be blank", field="content", value=content)

        memory = await self.repository.save_memory(
            Memory(
                session_id=session_id,
                content=content.strip(),
                type=parsed_type,
                importance=0.5 if importance is None else importance,
            )
        )
        await self.enforce_max_memories(session_id)
        return memory

    async def get_memory(self, memory_id: str) -> Memory:
        memory = await self.repository.get_memory(memory_id)
        if memory is None:
            raise MemoryNotFoundError(memory_id)
        return memory

    async def get_all_memories(self, session_id: str) -> list[Memory]:
        return await self.repository.list_memories(session_id)

    async def delete_memory(self, memory_id: str) -> None:
        if not await self.repository.delete_memory(memory_id):
            raise MemoryNotFoundError(memory_id)

    @staticmethod
    def build_memory_context(memories: list[Memory]) -> str:
        if not memories:
            return ""
        lines = ["Relevant memories from this session:"]
        lines.extend(
            f"- [{m.type.value.upper()}] {m.content} (importance: {m.importance:.1f})"
            for m in memories
        )
        lines.append("")
        lines.append("Use these memories to provide contextually aware responses.")
        return "\n".join(lines)
