"""
MemoryService 단위 테스트

추출 → 임계값 필터 → 중복 검사 → 상한 정리 흐름 검증
"""

import json
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from notebook_rag.domain.entities import Memory, MemoryType
from notebook_rag.domain.exceptions import (
    ExternalServiceUnavailableError,
    MemoryNotFoundError,
    SessionNotFoundError,
    ValidationError,
)
from notebook_rag.memory import MemoryService, parse_extracted_memories


def _extraction(*entries: dict) -> str:
    return json.dumps(list(entries))


@pytest.fixture
def service(repository, mock_llm):
    return MemoryService(repository, mock_llm)


# =============================================================================
# 응답 파싱
# =============================================================================


class TestParseExtractedMemories:
    def test_valid_entries(self):
        response = _extraction(
            {"type": "FACT", "content": " Deadline is March 15 ", "importance": 0.8},
            {"type": "preference", "content": "Prefers bullet points"},
        )
        parsed = parse_extracted_memories(response)

        assert [m.type for m in parsed] == [MemoryType.FACT, MemoryType.PREFERENCE]
        assert parsed[0].content == "Deadline is March 15"
        assert parsed[1].importance == 0.5

    def test_importance_clamped(self):
        parsed = parse_extracted_memories(_extraction({"type": "insight", "content": "x", "importance": 3}))
        assert parsed[0].importance == 1.0

    def test_invalid_entries_skipped(self):
        response = _extraction(
            {"type": "opinion", "content": "unknown type"},
            {"type": "fact", "content": "   "},
            {"type": "fact", "content": "kept"},
        )
        assert [m.content for m in parse_extracted_memories(response)] == ["kept"]

    @pytest.mark.parametrize("response", ["not json", '{"type": "fact"}', "", None])
    def test_non_array_is_empty(self, response):
        assert parse_extracted_memories(response) == []

    def test_fenced_array(self):
        response = "```json\n" + _extraction({"type": "fact", "content": "x"}) + "\n```"
        assert len(parse_extracted_memories(response)) == 1


# =============================================================================
# 추출 및 저장
# =============================================================================


class TestExtractAndSave:
    @pytest.mark.asyncio
    async def test_saves_above_threshold(self, service, mock_llm, repository, session):
        mock_llm.complete = AsyncMock(
            return_value=_extraction(
                {"type": "fact", "content": "Deadline is March 15", "importance": 0.8},
                {"type": "insight", "content": "Trivial remark", "importance": 0.2},
            )
        )

        saved = await service.extract_and_save("session-1", "When is it due?", "March 15.")

        assert [m.content for m in saved] == ["Deadline is March 15"]
        assert len(await repository.list_memories("session-1")) == 1

    @pytest.mark.asyncio
    async def test_near_duplicate_bumps_importance(self, service, mock_llm, repository, session):
        """포함 관계 중복은 새 행 없이 기존 중요도 +0.1"""
        await repository.save_memory(
            Memory(session_id="session-1", content="Deadline is March 15", type=MemoryType.FACT)
        )
        mock_llm.complete = AsyncMock(
            return_value=_extraction(
                {"type": "fact", "content": "The project deadline is March 15th", "importance": 0.9}
            )
        )

        saved = await service.extract_and_save("session-1", "q", "a")

        memories = await repository.list_memories("session-1")
        assert saved == []
        assert len(memories) == 1
        assert memories[0].content == "Deadline is March 15"
        assert memories[0].importance == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_exact_duplicate_dropped(self, service, mock_llm, repository, session):
        await repository.save_memory(
            Memory(
                session_id="session-1",
                content="Deadline is March 15",
                type=MemoryType.FACT,
                importance=0.5,
            )
        )
        mock_llm.complete = AsyncMock(
            return_value=_extraction({"type": "fact", "content": "  deadline IS march 15 "})
        )

        await service.extract_and_save("session-1", "q", "a")

        memories = await repository.list_memories("session-1")
        assert len(memories) == 1
        assert memories[0].importance == 0.5

    @pytest.mark.asyncio
    async def test_importance_bump_capped(self, service, mock_llm, repository, session):
        await repository.save_memory(
            Memory(session_id="session-1", content="Budget", type=MemoryType.FACT, importance=0.95)
        )
        mock_llm.complete = AsyncMock(
            return_value=_extraction({"type": "fact", "content": "Budget is fixed"})
        )

        await service.extract_and_save("session-1", "q", "a")

        assert (await repository.list_memories("session-1"))[0].importance == 1.0

    @pytest.mark.asyncio
    async def test_malformed_output_saves_nothing(self, service, mock_llm, repository, session):
        mock_llm.complete = AsyncMock(return_value="I could not find anything")
        assert await service.extract_and_save("session-1", "q", "a") == []
        assert await repository.list_memories("session-1") == []

    @pytest.mark.asyncio
    async def test_llm_unavailable(self, service, mock_llm, session):
        mock_llm.complete = AsyncMock(
            side_effect=ExternalServiceUnavailableError("down", service="completion")
        )
        assert await service.extract_and_save("session-1", "q", "a") == []

    @pytest.mark.asyncio
    async def test_disabled(self, repository, mock_llm, session):
        service = MemoryService(repository, mock_llm, enabled=False)
        assert await service.extract_and_save("session-1", "q", "a") == []
        mock_llm.complete.assert_not_awaited()


# =============================================================================
# 상한 / 조회 / 수동 관리
# =============================================================================


class TestMemoryManagement:
    @pytest.mark.asyncio
    async def test_enforce_max_prunes_lowest_then_oldest(self, repository, mock_llm, session):
        service = MemoryService(repository, mock_llm, max_per_session=2)
        base = datetime(2024, 1, 1)
        for content, importance, age in [("old low", 0.2, 0), ("new low", 0.2, 1), ("high", 0.9, 2)]:
            await repository.save_memory(
                Memory(
                    session_id="session-1",
                    content=content,
                    type=MemoryType.FACT,
                    importance=importance,
                    created_at=base + timedelta(days=age),
                )
            )

        removed = await service.enforce_max_memories("session-1")

        assert removed == 1
        remaining = [m.content for m in await repository.list_memories("session-1")]
        assert remaining == ["high", "new low"]

    @pytest.mark.asyncio
    async def test_relevant_memories_top_by_importance(self, repository, mock_llm, session):
        service = MemoryService(repository, mock_llm, context_limit=2)
        for content, importance in [("a", 0.3), ("b", 0.9), ("c", 0.6)]:
            await repository.save_memory(
                Memory(session_id="session-1", content=content, type=MemoryType.FACT, importance=importance)
            )

        relevant = await service.get_relevant_memories("session-1", "anything")

        assert [m.content for m in relevant] == ["b", "c"]

    @pytest.mark.asyncio
    async def test_relevant_memories_unknown_session(self, service):
        with pytest.raises(SessionNotFoundError):
            await service.get_relevant_memories("missing", "q")

    @pytest.mark.asyncio
    async def test_add_memory(self, service, session):
        memory = await service.add_memory("session-1", "  Likes tables ", "Preference")

        assert memory.content == "Likes tables"
        assert memory.type == MemoryType.PREFERENCE
        assert memory.importance == 0.5
        assert (await service.get_memory(memory.id)).id == memory.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content,memory_type", [("x", "opinion"), ("  ", "fact")])
    async def test_add_memory_invalid(self, service, session, content, memory_type):
        with pytest.raises(ValidationError):
            await service.add_memory("session-1", content, memory_type)

    @pytest.mark.asyncio
    async def test_add_memory_unknown_session(self, service):
        with pytest.raises(SessionNotFoundError):
            await service.add_memory("missing", "x", "fact")

    @pytest.mark.asyncio
    async def test_delete_memory(self, service, session):
        memory = await service.add_memory("session-1", "x", "fact")
        await service.delete_memory(memory.id)

        with pytest.raises(MemoryNotFoundError):
            await service.get_memory(memory.id)
        with pytest.raises(MemoryNotFoundError):
            await service.delete_memory(memory.id)

    def test_build_memory_context(self):
        memories = [Memory(session_id="s", content="Deadline is March 15", type=MemoryType.FACT, importance=0.8)]
        context = MemoryService.build_memory_context(memories)

        assert context.startswith("Relevant memories from this session:")
        assert "- [FACT] Deadline is March 15 (importance: 0.8)" in context
        assert MemoryService.build_memory_context([]) == ""
