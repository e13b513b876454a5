"""
도메인 엔티티 / 값 객체 단위 테스트
"""

import pytest

from notebook_rag.domain.entities import (
    Chunk,
    InteractionMode,
    Memory,
    MemoryType,
    Session,
    clamp_importance,
)
from notebook_rag.domain.exceptions import (
    ExternalServiceUnavailableError,
    MalformedModelOutputError,
    NotebookRagError,
    NotFoundError,
    SessionNotFoundError,
)
from notebook_rag.domain.value_objects import (
    ConfidenceDecision,
    ConfidenceLevel,
    ConfidenceResult,
    SearchResult,
    VerificationResult,
)
from notebook_rag.domain.value_objects.parsed_document import RawChunk


class TestInteractionMode:
    @pytest.mark.parametrize(
        "mode,expected",
        [
            (InteractionMode.EXPLORING, 8),
            (InteractionMode.RESEARCH, 4),
            (InteractionMode.LEARNING, 6),
        ],
    )
    def test_retrieval_count(self, mode, expected):
        """모드별 검색 청크 수"""
        assert mode.retrieval_count == expected

    def test_session_default_mode(self):
        assert Session().current_mode == InteractionMode.EXPLORING


class TestMemory:
    """importance는 항상 [0, 1]"""

    @pytest.mark.parametrize(
        "raw,expected",
        [(-0.5, 0.0), (0.0, 0.0), (0.42, 0.42), (1.0, 1.0), (1.7, 1.0)],
    )
    def test_clamp_on_create(self, raw, expected):
        memory = Memory(session_id="s", content="x", type=MemoryType.FACT, importance=raw)
        assert memory.importance == expected

    def test_clamp_on_assignment(self):
        memory = Memory(session_id="s", content="x", type=MemoryType.FACT, importance=0.95)
        memory.importance = memory.importance + 0.1
        assert memory.importance == 1.0

    def test_clamp_helper(self):
        assert clamp_importance("0.3") == 0.3

    def test_type_from_string(self):
        memory = Memory(session_id="s", content="x", type="preference")
        assert memory.type == MemoryType.PREFERENCE


class TestChunk:
    def test_with_score_returns_copy(self):
        """원본 청크는 변경되지 않음"""
        chunk = Chunk(document_id="d", session_id="s", content="text")
        scored = chunk.with_score(0.8)

        assert scored.relevance_score == 0.8
        assert chunk.relevance_score is None
        assert scored.id == chunk.id

    def test_breadcrumb_text(self):
        chunk = Chunk(
            document_id="d", session_id="s", content="t", section_breadcrumb=["Intro", "Scope"]
        )
        assert chunk.breadcrumb_text == "Intro > Scope"

    def test_unique_ids(self):
        a = Chunk(document_id="d", session_id="s", content="t")
        b = Chunk(document_id="d", session_id="s", content="t")
        assert a.id != b.id


class TestRawChunk:
    def test_section_title(self):
        assert RawChunk("c", ["A", "B"], 0).section_title == "B"
        assert RawChunk("c", [], 0).section_title is None


class TestConfidenceResult:
    @pytest.mark.parametrize(
        "level,decision",
        [
            (ConfidenceLevel.HIGH, ConfidenceDecision.PROCEED),
            (ConfidenceLevel.MEDIUM, ConfidenceDecision.HEDGE),
            (ConfidenceLevel.LOW, ConfidenceDecision.CLARIFY),
        ],
    )
    def test_decision(self, level, decision):
        assert ConfidenceResult(score=0.5, level=level, explanation="").decision == decision

    def test_to_dict_rounds(self):
        result = ConfidenceResult(
            score=0.123456,
            level=ConfidenceLevel.LOW,
            explanation="weak",
            components={"max_rrf": 0.333333},
        )
        data = result.to_dict()
        assert data["score"] == 0.1235
        assert data["decision"] == "clarify"
        assert data["components"] == {"max_rrf": 0.3333}


class TestSearchResult:
    def test_degraded_when_channel_empty(self):
        chunk = Chunk(document_id="d", session_id="s", content="t")
        assert SearchResult(query="q", vector_results=[chunk]).degraded is True
        assert (
            SearchResult(query="q", vector_results=[chunk], keyword_results=[chunk]).degraded
            is False
        )


class TestVerificationResult:
    def test_to_dict(self):
        result = VerificationResult(is_valid=False, unsupported_claims=["x"], checked_claims=2)
        assert result.to_dict() == {
            "is_valid": False,
            "unsupported_claims": ["x"],
            "checked_claims": 2,
        }


class TestExceptions:
    def test_hierarchy(self):
        assert issubclass(SessionNotFoundError, NotFoundError)
        assert issubclass(NotFoundError, NotebookRagError)
        assert issubclass(ExternalServiceUnavailableError, NotebookRagError)

    def test_not_found_message(self):
        error = SessionNotFoundError("abc")
        assert error.entity_id == "abc"
        assert "Session not found: abc" in str(error)

    def test_malformed_output_truncated(self):
        error = MalformedModelOutputError("bad", raw_output="x" * 500)
        assert len(error.raw_output) == 200
